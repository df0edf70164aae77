"""Identity namespaces and detection of namespace switches."""

from __future__ import annotations

import re
import time
from collections.abc import Callable, Iterable

from loguru import logger

DEFAULT_NAMESPACE = "default"
DEFAULT_CHECK_INTERVAL_S = 2.0

_EMAIL_PATTERN = re.compile(r"[\w.-]+@[\w.-]+\.\w+")
_UNSAFE_CHARACTERS = re.compile(r"[^a-z0-9@.]")

NamespaceDetector = Callable[[], "str | None"]


def sanitize_namespace(raw: str | None, default: str = DEFAULT_NAMESPACE) -> str:
    """Make ``raw`` safe for use as a storage key suffix."""

    if not isinstance(raw, str) or not raw.strip():
        return default
    return _UNSAFE_CHARACTERS.sub("_", raw.strip().lower())


def namespace_from_labels(
    labels: Iterable[str | None], default: str = DEFAULT_NAMESPACE
) -> str:
    """Derive a namespace from the first e-mail address found in ``labels``.

    ``labels`` are presentation strings such as the account button's
    accessible label ("Google Account: user@example.com").
    """

    for label in labels:
        if not label:
            continue
        match = _EMAIL_PATTERN.search(label)
        if match:
            return sanitize_namespace(match.group(0), default)
    return default


class NamespaceMonitor:
    """Rate-limited check for a change of the active identity namespace."""

    def __init__(
        self,
        detector: NamespaceDetector,
        *,
        min_interval_s: float = DEFAULT_CHECK_INTERVAL_S,
        default: str = DEFAULT_NAMESPACE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._detector = detector
        self._min_interval_s = min_interval_s
        self._default = default
        self._clock = clock
        self._last_check: float | None = None

    def detect(self) -> str:
        """Return the active namespace, falling back to the default."""

        try:
            raw = self._detector()
        except Exception as exc:
            logger.warning("Namespace detection failed, using '{}': {}", self._default, exc)
            return self._default
        return sanitize_namespace(raw, self._default)

    def check_namespace(self, last_known: str) -> str | None:
        """Return the new namespace when it differs from ``last_known``.

        Calls arriving within ``min_interval_s`` of the previous real check
        return ``None`` without consulting the detector.
        """

        now = self._clock()
        if (
            self._last_check is not None
            and now - self._last_check < self._min_interval_s
        ):
            return None
        self._last_check = now

        current = self.detect()
        if current != last_known:
            logger.info("Namespace changed from '{}' to '{}'", last_known, current)
            return current
        return None


__all__ = [
    "DEFAULT_NAMESPACE",
    "NamespaceDetector",
    "NamespaceMonitor",
    "namespace_from_labels",
    "sanitize_namespace",
]
