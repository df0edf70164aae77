"""Abstract interfaces for Chatfold persistence backends."""

from __future__ import annotations

import copy
import json
from typing import Any, Protocol

from loguru import logger

from ..utils.exceptions import StorageError, StorageQuotaExceededError

PROJECTS_KEY = "projects"
CHAT_MAPPINGS_KEY = "chat_mappings"
MIGRATED_KEY = "migrated"
NAMESPACE_SEPARATOR = "__"


class StorageBackend(Protocol):
    """Asynchronous key-value substrate with last-write-wins semantics."""

    async def get(self, key: str, default: Any = None) -> Any:
        """Return the value stored at ``key`` or ``default``."""

    async def set(self, key: str, value: Any) -> None:
        """Store ``value`` at ``key``, replacing any previous value."""

    async def delete(self, key: str) -> None:
        """Remove ``key`` (idempotent)."""

    def is_connected(self) -> bool:
        """Whether the backend session can still serve requests."""

    def close(self) -> None:
        """Release all backend resources (idempotent)."""


def measure_item(key: str, value: Any) -> int:
    """Size of one stored item, counted as key length plus its JSON encoding."""

    try:
        encoded = json.dumps(value, separators=(",", ":"), default=str)
    except (TypeError, ValueError) as exc:
        raise StorageError(
            f"Value for '{key}' is not JSON serialisable: {exc}",
            context={"key": key},
        ) from exc
    return len(key.encode("utf-8")) + len(encoded.encode("utf-8"))


def check_quota(
    key: str,
    value: Any,
    *,
    used_bytes: int,
    replaced_bytes: int,
    quota_bytes: int | None,
    item_quota_bytes: int | None,
) -> int:
    """Validate a pending write against the capacity limits.

    ``used_bytes`` is the space currently in use and ``replaced_bytes`` the
    size of the item being overwritten, if any. Returns the size of the new
    item; raises :class:`StorageQuotaExceededError` when a limit would
    be exceeded.
    """

    size = measure_item(key, value)
    if item_quota_bytes is not None and size > item_quota_bytes:
        raise StorageQuotaExceededError(
            f"Item '{key}' needs {size} bytes, per-item quota is {item_quota_bytes}",
            context={"key": key, "size": size, "limit": item_quota_bytes},
        )
    if quota_bytes is not None:
        total = used_bytes - replaced_bytes + size
        if total > quota_bytes:
            raise StorageQuotaExceededError(
                f"Writing '{key}' would use {total} bytes, quota is {quota_bytes}",
                context={"key": key, "size": total, "limit": quota_bytes},
            )
    return size


class NamespacedStorage:
    """Namespace-scoped view over a :class:`StorageBackend`.

    Failures never propagate: reads fall back to the supplied default and
    writes are dropped, both with a log record, so a vanished persistence
    session degrades Chatfold to in-memory state instead of breaking it.
    """

    def __init__(self, backend: StorageBackend, key_prefix: str = "gcm_") -> None:
        self.backend = backend
        self.key_prefix = key_prefix

    def global_key(self, name: str) -> str:
        return f"{self.key_prefix}{name}"

    def namespaced_key(self, namespace: str, name: str) -> str:
        return f"{self.global_key(name)}{NAMESPACE_SEPARATOR}{namespace}"

    def is_connected(self) -> bool:
        try:
            return bool(self.backend.is_connected())
        except Exception as exc:
            logger.debug("Storage connectivity probe failed: {}", exc)
            return False

    async def get_namespaced_value(
        self, namespace: str, name: str, default: Any = None
    ) -> Any:
        return await self._read(self.namespaced_key(namespace, name), default)

    async def read_namespaced_value(
        self, namespace: str, name: str, default: Any = None
    ) -> tuple[Any, bool]:
        """Like :meth:`get_namespaced_value` but also report whether the read succeeded."""

        return await self._read_checked(self.namespaced_key(namespace, name), default)

    async def set_namespaced_value(self, namespace: str, name: str, value: Any) -> bool:
        return await self._write(self.namespaced_key(namespace, name), value)

    async def get_global_value(self, name: str, default: Any = None) -> Any:
        return await self._read(self.global_key(name), default)

    async def set_global_value(self, name: str, value: Any) -> bool:
        return await self._write(self.global_key(name), value)

    async def delete_global_value(self, name: str) -> bool:
        key = self.global_key(name)
        if not self.is_connected():
            logger.warning("Storage disconnected; could not delete '{}'", key)
            return False
        try:
            await self.backend.delete(key)
        except StorageError as exc:
            logger.warning("Failed to delete '{}': {}", key, exc)
            return False
        return True

    async def _read(self, key: str, default: Any) -> Any:
        value, _ = await self._read_checked(key, default)
        return value

    async def _read_checked(self, key: str, default: Any) -> tuple[Any, bool]:
        if not self.is_connected():
            logger.warning("Storage disconnected; using empty value for '{}'", key)
            return copy.deepcopy(default), False
        try:
            return await self.backend.get(key, copy.deepcopy(default)), True
        except StorageError as exc:
            logger.warning("Storage read error for '{}': {}", key, exc)
            return copy.deepcopy(default), False

    async def _write(self, key: str, value: Any) -> bool:
        if not self.is_connected():
            logger.warning("Storage disconnected; dropping write to '{}'", key)
            return False
        try:
            await self.backend.set(key, value)
        except StorageError as exc:
            logger.warning("Storage write error for '{}': {}", key, exc)
            return False
        return True


__all__ = [
    "CHAT_MAPPINGS_KEY",
    "MIGRATED_KEY",
    "NamespacedStorage",
    "PROJECTS_KEY",
    "StorageBackend",
    "check_quota",
    "measure_item",
]
