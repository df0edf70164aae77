import asyncio

from chatfold.storage.association_store import AssociationStore
from chatfold.storage.base import NamespacedStorage
from chatfold.storage.inmemory import InMemoryStorageBackend
from chatfold.storage.migration import migrate_legacy_keys

LEGACY_PROJECTS = [
    {"id": "p_1", "name": "Work", "order": 0, "createdAt": 1, "isExpanded": False}
]
LEGACY_MAPPINGS = {
    "c_0123456789ab": {"projectId": "p_1", "title": "Budget review", "addedAt": 5}
}


def _legacy_backend() -> InMemoryStorageBackend:
    return InMemoryStorageBackend(
        {"gcm_projects": LEGACY_PROJECTS, "gcm_chat_mappings": LEGACY_MAPPINGS}
    )


def test_load_migrates_legacy_keys_into_first_namespace():
    backend = _legacy_backend()
    storage = NamespacedStorage(backend)

    async def scenario():
        store = AssociationStore(storage)
        await store.load("ns1")
        return store

    store = asyncio.run(scenario())
    data = backend.snapshot()

    assert data["gcm_projects__ns1"] == LEGACY_PROJECTS
    assert data["gcm_chat_mappings__ns1"] == LEGACY_MAPPINGS
    assert "gcm_projects" not in data
    assert "gcm_chat_mappings" not in data
    assert data["gcm_migrated"] is True
    assert store.associated_ids() == frozenset({"c_0123456789ab"})


def test_second_namespace_does_not_receive_legacy_copy():
    backend = _legacy_backend()
    storage = NamespacedStorage(backend)

    async def scenario():
        await AssociationStore(storage).load("ns1")
        # Legacy keys reappearing later (e.g. an old client) are ignored.
        await backend.set("gcm_projects", LEGACY_PROJECTS)
        second = AssociationStore(storage)
        await second.load("ns2")
        return second

    second = asyncio.run(scenario())
    data = backend.snapshot()

    assert second.list_projects() == []
    assert "gcm_projects__ns2" not in data
    assert data["gcm_projects"] == LEGACY_PROJECTS


def test_default_namespace_never_claims_legacy_data():
    backend = _legacy_backend()
    storage = NamespacedStorage(backend)

    summary = asyncio.run(migrate_legacy_keys(storage, "default"))

    assert summary["migrated"] is False
    assert summary["skipped"] == "default namespace"
    assert "gcm_migrated" not in backend.snapshot()
    assert backend.snapshot()["gcm_projects"] == LEGACY_PROJECTS


def test_existing_namespaced_data_is_not_overwritten():
    backend = _legacy_backend()
    backend_data = [{"id": "p_9", "name": "Mine", "order": 0, "createdAt": 2}]
    asyncio.run(backend.set("gcm_projects__ns1", backend_data))
    storage = NamespacedStorage(backend)

    summary = asyncio.run(migrate_legacy_keys(storage, "ns1"))
    data = backend.snapshot()

    assert summary["copied"] == ["chat_mappings"]
    assert data["gcm_projects__ns1"] == backend_data
    assert "gcm_projects" not in data


def test_failed_write_leaves_migration_pending():
    backend = _legacy_backend()
    storage = NamespacedStorage(backend)
    backend.disconnect()

    summary = asyncio.run(migrate_legacy_keys(storage, "ns1"))

    assert summary["migrated"] is False
    backend.reconnect()
    data = backend.snapshot()
    assert "gcm_migrated" not in data
    assert data["gcm_projects"] == LEGACY_PROJECTS
