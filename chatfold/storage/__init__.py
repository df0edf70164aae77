"""Persistence backends, data model and the association store."""

from .association_store import AssociationStore
from .base import NamespacedStorage, StorageBackend
from .factory import create_storage_backend
from .inmemory import InMemoryStorageBackend
from .migration import migrate_legacy_keys
from .models import (
    PLACEHOLDER_TITLES,
    Association,
    Project,
    generate_project_id,
    is_placeholder_title,
    prune_associations,
)

__all__ = [
    "Association",
    "AssociationStore",
    "InMemoryStorageBackend",
    "NamespacedStorage",
    "PLACEHOLDER_TITLES",
    "Project",
    "StorageBackend",
    "create_storage_backend",
    "generate_project_id",
    "is_placeholder_title",
    "migrate_legacy_keys",
    "prune_associations",
]
