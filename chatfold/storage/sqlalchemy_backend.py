"""SQLAlchemy-backed key-value storage for Chatfold.

A single ``chatfold_kv`` table holds every persisted key. Blocking database
work runs in a worker thread through :func:`asyncio.to_thread` so the event
loop driving the reconciliation engine never stalls on I/O.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger
from sqlalchemy import JSON, Column, DateTime, Integer, String, create_engine, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..utils.exceptions import StorageError, StorageUnavailableError
from .base import StorageBackend, check_quota

Base: Any = declarative_base()


class KeyValueEntry(Base):
    """One persisted key."""

    __tablename__ = "chatfold_kv"

    key = Column(String(512), primary_key=True)
    value = Column(JSON, nullable=True)
    size = Column(Integer, nullable=False, default=0)
    updated_at = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class SQLAlchemyStorageBackend(StorageBackend):
    """Persist keys in any database SQLAlchemy can reach."""

    def __init__(
        self,
        database_url: str,
        *,
        quota_bytes: int | None = None,
        item_quota_bytes: int | None = None,
    ) -> None:
        self.database_url = database_url
        self.quota_bytes = quota_bytes
        self.item_quota_bytes = item_quota_bytes
        self.engine = self._create_engine(database_url)
        self.SessionLocal = sessionmaker(bind=self.engine)
        self._closed = False
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to initialise storage schema: {e}")
        logger.info(
            f"Initialized SQLAlchemy storage backend for {self.engine.dialect.name}"
        )

    def _create_engine(self, database_url: str):
        """Create SQLAlchemy engine with appropriate configuration"""
        if database_url.startswith("sqlite:"):
            in_memory = ":memory:" in database_url or database_url.rstrip("/") == "sqlite:"
            if ":///" in database_url and not in_memory:
                db_path = database_url.replace("sqlite:///", "")
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            # Worker threads must share the single in-memory connection.
            extra: dict[str, Any] = {"poolclass": StaticPool} if in_memory else {}
            return create_engine(
                database_url,
                **extra,
                json_serializer=json.dumps,
                json_deserializer=json.loads,
                echo=False,
                connect_args={"check_same_thread": False},
            )
        return create_engine(database_url, echo=False, pool_pre_ping=True)

    async def get(self, key: str, default: Any = None) -> Any:
        self._ensure_open()
        return await asyncio.to_thread(self._get_sync, key, default)

    async def set(self, key: str, value: Any) -> None:
        self._ensure_open()
        await asyncio.to_thread(self._set_sync, key, value)

    async def delete(self, key: str) -> None:
        self._ensure_open()
        await asyncio.to_thread(self._delete_sync, key)

    def is_connected(self) -> bool:
        return not self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.engine.dispose()

    def keys(self) -> list[str]:
        """Return every stored key (synchronous helper for tooling)."""

        self._ensure_open()
        with self.SessionLocal() as session:
            try:
                return [row[0] for row in session.query(KeyValueEntry.key).all()]
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to list keys: {e}")

    def _get_sync(self, key: str, default: Any) -> Any:
        with self.SessionLocal() as session:
            try:
                entry = session.get(KeyValueEntry, key)
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to read '{key}': {e}", context={"key": key})
            if entry is None:
                return default
            return entry.value

    def _set_sync(self, key: str, value: Any) -> None:
        with self.SessionLocal() as session:
            try:
                existing = session.get(KeyValueEntry, key)
                used = session.query(func.coalesce(func.sum(KeyValueEntry.size), 0)).scalar()
                size = check_quota(
                    key,
                    value,
                    used_bytes=int(used or 0),
                    replaced_bytes=existing.size if existing is not None else 0,
                    quota_bytes=self.quota_bytes,
                    item_quota_bytes=self.item_quota_bytes,
                )
                session.merge(
                    KeyValueEntry(
                        key=key,
                        value=value,
                        size=size,
                        updated_at=datetime.utcnow(),
                    )
                )
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(f"Failed to write '{key}': {e}", context={"key": key})

    def _delete_sync(self, key: str) -> None:
        with self.SessionLocal() as session:
            try:
                session.query(KeyValueEntry).filter_by(key=key).delete()
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StorageError(f"Failed to delete '{key}': {e}", context={"key": key})

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageUnavailableError(
                "SQLAlchemy storage backend is closed",
                context={"database_url": self.database_url},
            )


__all__ = ["KeyValueEntry", "SQLAlchemyStorageBackend"]
