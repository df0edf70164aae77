"""One-time migration of legacy unscoped keys into a namespace."""

from __future__ import annotations

from typing import Any

from loguru import logger

from ..identity.namespace import DEFAULT_NAMESPACE
from .base import CHAT_MAPPINGS_KEY, MIGRATED_KEY, PROJECTS_KEY, NamespacedStorage

LEGACY_KEYS = (PROJECTS_KEY, CHAT_MAPPINGS_KEY)


async def migrate_legacy_keys(
    storage: NamespacedStorage,
    namespace: str,
    *,
    default_namespace: str = DEFAULT_NAMESPACE,
) -> dict[str, Any]:
    """Copy unscoped legacy data into ``namespace`` and delete the originals.

    Runs at most once across every namespace ever observed: the first
    non-default namespace to load claims the legacy data and sets the global
    ``migrated`` flag. Existing namespaced values are never overwritten.

    Returns a summary dictionary describing what happened.
    """

    summary: dict[str, Any] = {
        "namespace": namespace,
        "migrated": False,
        "copied": [],
        "skipped": None,
    }
    if namespace == default_namespace:
        summary["skipped"] = "default namespace"
        return summary

    if await storage.get_global_value(MIGRATED_KEY, False):
        summary["skipped"] = "already migrated"
        return summary

    copied: list[str] = []
    for name in LEGACY_KEYS:
        legacy_value = await storage.get_global_value(name, None)
        if legacy_value is None:
            continue
        existing = await storage.get_namespaced_value(namespace, name, None)
        if existing is None:
            if not await storage.set_namespaced_value(namespace, name, legacy_value):
                # Leave the legacy data and the flag alone so a later load retries.
                summary["skipped"] = "write failed"
                return summary
            copied.append(name)
        else:
            logger.info(
                "Namespace '{}' already has '{}'; discarding legacy copy", namespace, name
            )
        await storage.delete_global_value(name)

    if not await storage.set_global_value(MIGRATED_KEY, True):
        summary["skipped"] = "write failed"
        summary["copied"] = copied
        return summary

    if copied:
        logger.info("Migrated legacy keys {} into namespace '{}'", copied, namespace)
    summary["migrated"] = True
    summary["copied"] = copied
    return summary


__all__ = ["LEGACY_KEYS", "migrate_legacy_keys"]
