"""Recover canonical conversation identifiers from live record descriptors.

The host application never hands out identifiers directly. Each rendered
conversation row is reported as a :class:`RecordNode` tree, and several
independent strategies look for an identifier in it. The first strategy
that yields a trustworthy value wins:

1. ``jslog`` trace attribute on the primary sub-element or the row itself
2. explicit ``data-conversation-id`` / ``data-chat-id`` attributes
3. ``jslog`` trace attribute on any descendant
4. ``href`` link targets, parsed against the known URL shapes
5. ``data-href`` intended destinations, parsed the same way
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from loguru import logger

from .normalizer import (
    CANONICAL_ID_PATTERN,
    CANONICAL_PREFIX,
    has_minimum_entropy,
    is_likely_id,
    normalize_id,
)

TRACE_ATTRIBUTE = "jslog"
DATA_ID_ATTRIBUTES = ("data-conversation-id", "data-chat-id")
LINK_ATTRIBUTE = "href"
INTENDED_DESTINATION_ATTRIBUTE = "data-href"
PRIMARY_MARKER = ("data-test-id", "conversation")
TITLE_CLASS = "conversation-title"

# Order matters: observed host URL history, first match wins.
_PATH_SHAPES = (
    re.compile(r"/app/([a-zA-Z0-9_-]+)"),
    re.compile(r"/gem/[^/]+/([a-zA-Z0-9_-]+)"),
    re.compile(r"/c/([a-zA-Z0-9_-]+)"),
)
_CONTEXT_PATH = re.compile(r"/gem/([^/?#]+)")


@dataclass(frozen=True)
class RecordNode:
    """Read-only view of one element of a rendered conversation row."""

    tag: str = "div"
    attributes: Mapping[str, str] = field(default_factory=dict)
    text: str = ""
    children: tuple[RecordNode, ...] = ()

    def get(self, name: str) -> str | None:
        value = self.attributes.get(name)
        return value if isinstance(value, str) else None

    def has_class(self, name: str) -> bool:
        return name in (self.get("class") or "").split()

    def iter_descendants(self) -> Iterator[RecordNode]:
        """Yield descendants in document order, excluding ``self``."""

        for child in self.children:
            yield child
            yield from child.iter_descendants()

    def find(self, predicate: Callable[[RecordNode], bool]) -> RecordNode | None:
        for node in self.iter_descendants():
            if predicate(node):
                return node
        return None

    def text_content(self) -> str:
        parts = [self.text] + [child.text_content() for child in self.children]
        return "".join(part for part in parts if part)


def primary_element(record: RecordNode) -> RecordNode | None:
    """Return the inner conversation element of a row, if rendered."""

    name, value = PRIMARY_MARKER
    return record.find(lambda node: node.get(name) == value)


def _candidates(record: RecordNode) -> list[RecordNode]:
    primary = primary_element(record)
    return [primary, record] if primary is not None else [record]


def id_from_trace(trace: str | None) -> str | None:
    """Pull a canonical identifier out of a structured trace attribute."""

    if not trace:
        return None
    match = CANONICAL_ID_PATTERN.search(trace)
    return normalize_id(match.group(0)) if match else None


def id_from_path(path: str | None) -> str | None:
    """Parse an identifier from a host path using the known URL shapes."""

    if not isinstance(path, str) or not path:
        return None
    clean_path = re.split(r"[?#]", path, maxsplit=1)[0]
    for shape in _PATH_SHAPES:
        match = shape.search(clean_path)
        if match:
            return normalize_id(match.group(1))
    return None


def id_from_url(url: str | None) -> str | None:
    """Like :func:`id_from_path` but accepts absolute URLs too."""

    if not isinstance(url, str) or not url.strip():
        return None
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return id_from_path(url)
    if parts.scheme or parts.netloc:
        return id_from_path(parts.path)
    return id_from_path(url.strip())


def context_id_from_path(path: str | None) -> str | None:
    """Return the linked-context (Gem) id of the page being viewed."""

    if not isinstance(path, str):
        return None
    match = _CONTEXT_PATH.search(path)
    return match.group(1) if match else None


def from_trace_attribute(record: RecordNode) -> str | None:
    for candidate in _candidates(record):
        found = id_from_trace(candidate.get(TRACE_ATTRIBUTE))
        if found:
            return found
    return None


def from_data_attribute(record: RecordNode) -> str | None:
    for candidate in _candidates(record):
        for attribute in DATA_ID_ATTRIBUTES:
            value = candidate.get(attribute)
            if not is_likely_id(value):
                continue
            if CANONICAL_PREFIX in value:
                return id_from_trace(value)
            return normalize_id(value)
    return None


def from_nested_trace_attribute(record: RecordNode) -> str | None:
    for node in record.iter_descendants():
        found = id_from_trace(node.get(TRACE_ATTRIBUTE))
        if found:
            return found
    return None


def from_link_target(record: RecordNode) -> str | None:
    primary = primary_element(record)
    link: RecordNode | None = None
    if primary is not None and primary.get(LINK_ATTRIBUTE):
        link = primary
    else:
        def is_anchor(node: RecordNode) -> bool:
            return node.tag == "a" and bool(node.get(LINK_ATTRIBUTE))

        if primary is not None:
            link = primary.find(is_anchor)
        if link is None:
            link = record.find(is_anchor)
    if link is None:
        return None
    return id_from_url(link.get(LINK_ATTRIBUTE))


def from_intended_destination(record: RecordNode) -> str | None:
    for candidate in _candidates(record):
        destination = candidate.get(INTENDED_DESTINATION_ATTRIBUTE)
        if destination:
            return id_from_url(destination)
    return None


EXTRACTION_STRATEGIES: tuple[Callable[[RecordNode], str | None], ...] = (
    from_trace_attribute,
    from_data_attribute,
    from_nested_trace_attribute,
    from_link_target,
    from_intended_destination,
)


def extract_id(record: RecordNode | None) -> str | None:
    """Return the canonical identifier of ``record`` or ``None``.

    Candidates that are too short to be trusted are treated as ambiguous
    and the next strategy is consulted.
    """

    if record is None:
        return None
    for strategy in EXTRACTION_STRATEGIES:
        candidate = strategy(record)
        if candidate is None:
            continue
        if has_minimum_entropy(candidate):
            return candidate
        logger.trace(
            "Discarding ambiguous identifier {} from {}", candidate, strategy.__name__
        )
    return None


def extract_title(record: RecordNode | None) -> str | None:
    """Return the visible title text of a row, if any."""

    if record is None:
        return None
    title_node = record.find(lambda node: node.has_class(TITLE_CLASS))
    if title_node is None:
        return None
    text = title_node.text_content().strip()
    return text or None


__all__ = [
    "EXTRACTION_STRATEGIES",
    "RecordNode",
    "context_id_from_path",
    "extract_id",
    "extract_title",
    "from_data_attribute",
    "from_intended_destination",
    "from_link_target",
    "from_nested_trace_attribute",
    "from_trace_attribute",
    "id_from_path",
    "id_from_trace",
    "id_from_url",
    "primary_element",
]
