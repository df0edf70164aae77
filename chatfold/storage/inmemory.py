"""In-memory storage backend for tests and single-process deployments."""

from __future__ import annotations

import copy
from typing import Any

from ..utils.exceptions import StorageUnavailableError
from .base import StorageBackend, check_quota, measure_item

DEFAULT_QUOTA_BYTES = 102400
DEFAULT_ITEM_QUOTA_BYTES = 8192


class InMemoryStorageBackend(StorageBackend):
    """Dictionary-backed store with the same capacity limits as the browser."""

    def __init__(
        self,
        initial: dict[str, Any] | None = None,
        *,
        quota_bytes: int | None = DEFAULT_QUOTA_BYTES,
        item_quota_bytes: int | None = DEFAULT_ITEM_QUOTA_BYTES,
    ) -> None:
        self.quota_bytes = quota_bytes
        self.item_quota_bytes = item_quota_bytes
        self._data: dict[str, Any] = {}
        self._sizes: dict[str, int] = {}
        self._connected = True
        for key, value in (initial or {}).items():
            self._sizes[key] = measure_item(key, value)
            self._data[key] = copy.deepcopy(value)

    async def get(self, key: str, default: Any = None) -> Any:
        self._ensure_connected()
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        self._ensure_connected()
        size = check_quota(
            key,
            value,
            used_bytes=self.bytes_in_use(),
            replaced_bytes=self._sizes.get(key, 0),
            quota_bytes=self.quota_bytes,
            item_quota_bytes=self.item_quota_bytes,
        )
        self._data[key] = copy.deepcopy(value)
        self._sizes[key] = size

    async def delete(self, key: str) -> None:
        self._ensure_connected()
        self._data.pop(key, None)
        self._sizes.pop(key, None)

    def is_connected(self) -> bool:
        return self._connected

    def disconnect(self) -> None:
        """Simulate the persistence session going away."""

        self._connected = False

    def reconnect(self) -> None:
        self._connected = True

    def close(self) -> None:
        self._connected = False

    def bytes_in_use(self) -> int:
        return sum(self._sizes.values())

    def snapshot(self) -> dict[str, Any]:
        """Return a deep copy of everything stored, regardless of connectivity."""

        return copy.deepcopy(self._data)

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise StorageUnavailableError("In-memory storage backend is disconnected")


__all__ = ["InMemoryStorageBackend"]
