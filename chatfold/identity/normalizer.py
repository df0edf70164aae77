"""Canonical conversation identifiers.

Every conversation is keyed by a ``c_``-prefixed identifier. Raw values
reach the engine in several shapes (already canonical, bare suffixes taken
from URLs, stale keys persisted by older releases) and are funnelled
through :func:`normalize_id` before they are compared or stored.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

CANONICAL_PREFIX = "c_"
MIN_ID_SUFFIX_LENGTH = 8

# The suffix length floor keeps ordinary words such as "c_click" out.
CANONICAL_ID_PATTERN = re.compile(
    rf"{CANONICAL_PREFIX}[a-zA-Z0-9_-]{{{MIN_ID_SUFFIX_LENGTH},}}"
)
_BARE_HEX_PATTERN = re.compile(r"^[a-f0-9]{10,}$", re.IGNORECASE)


def normalize_id(raw: Any) -> str | None:
    """Return the canonical form of ``raw`` or ``None`` when it is blank."""

    if not isinstance(raw, str):
        return None
    trimmed = raw.strip()
    if not trimmed:
        return None
    if trimmed.startswith(CANONICAL_PREFIX):
        return trimmed
    return f"{CANONICAL_PREFIX}{trimmed}"


def normalize_all(mapping: Mapping[str, Any] | None) -> dict[str, Any]:
    """Normalize every key of ``mapping``.

    Keys that collapse onto the same canonical identifier are merged field
    by field with later entries winning, which repairs data persisted before
    identifiers were normalized.
    """

    normalized: dict[str, Any] = {}
    for raw_id, data in (mapping or {}).items():
        canonical = normalize_id(raw_id)
        if canonical is None:
            continue
        existing = normalized.get(canonical)
        if isinstance(existing, Mapping) and isinstance(data, Mapping):
            normalized[canonical] = {**existing, **data}
        else:
            normalized[canonical] = data
    return normalized


def strip_prefix(canonical_id: str) -> str:
    """Return the bare suffix of a canonical identifier."""

    if canonical_id.startswith(CANONICAL_PREFIX):
        return canonical_id[len(CANONICAL_PREFIX) :]
    return canonical_id


def has_minimum_entropy(canonical_id: str | None) -> bool:
    """Whether ``canonical_id`` carries enough characters to be trusted."""

    if not canonical_id:
        return False
    return len(strip_prefix(canonical_id)) >= MIN_ID_SUFFIX_LENGTH


def is_likely_id(value: Any) -> bool:
    """Classify a raw attribute value as a plausible conversation identifier."""

    if not isinstance(value, str) or not value:
        return False
    if CANONICAL_PREFIX in value:
        return CANONICAL_ID_PATTERN.search(value) is not None
    return _BARE_HEX_PATTERN.match(value) is not None


def conversation_path(conversation_id: str) -> str:
    """Build the host application path that opens ``conversation_id``."""

    return f"/app/{strip_prefix(conversation_id.strip())}"


__all__ = [
    "CANONICAL_ID_PATTERN",
    "CANONICAL_PREFIX",
    "MIN_ID_SUFFIX_LENGTH",
    "conversation_path",
    "has_minimum_entropy",
    "is_likely_id",
    "normalize_all",
    "normalize_id",
    "strip_prefix",
]
