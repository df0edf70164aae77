"""Factory helpers for constructing storage backends based on configuration."""

from __future__ import annotations

from typing import Any

from loguru import logger

from .base import StorageBackend
from .inmemory import InMemoryStorageBackend


def create_storage_backend(settings: Any) -> StorageBackend:
    """Instantiate an appropriate backend based on ``StorageSettings``."""

    backend_value = getattr(settings, "backend", None)
    if hasattr(backend_value, "value"):
        backend_value = backend_value.value
    backend_name = str(backend_value or "memory").lower()
    quota_bytes = getattr(settings, "quota_bytes", None)
    item_quota_bytes = getattr(settings, "item_quota_bytes", None)

    if backend_name in {"memory", "inmemory", "in-memory"}:
        return InMemoryStorageBackend(
            quota_bytes=quota_bytes, item_quota_bytes=item_quota_bytes
        )

    if backend_name == "sqlalchemy":
        database_url = getattr(settings, "database_url", None)
        if not database_url:
            logger.warning(
                "SQLAlchemy storage requested but no database URL provided; falling back to in-memory storage.",
            )
            return InMemoryStorageBackend(
                quota_bytes=quota_bytes, item_quota_bytes=item_quota_bytes
            )
        try:
            from .sqlalchemy_backend import SQLAlchemyStorageBackend

            return SQLAlchemyStorageBackend(
                database_url,
                quota_bytes=quota_bytes,
                item_quota_bytes=item_quota_bytes,
            )
        except Exception:
            logger.opt(exception=True).warning(
                "Failed to initialise SQLAlchemy storage backend; falling back to in-memory storage.",
            )
            return InMemoryStorageBackend(
                quota_bytes=quota_bytes, item_quota_bytes=item_quota_bytes
            )

    logger.warning(
        "Storage backend '{}' is not implemented; falling back to in-memory storage.",
        backend_name,
    )
    return InMemoryStorageBackend(
        quota_bytes=quota_bytes, item_quota_bytes=item_quota_bytes
    )


__all__ = ["create_storage_backend"]
