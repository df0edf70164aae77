import asyncio

import pytest

from chatfold.storage.association_store import AssociationStore
from chatfold.storage.base import NamespacedStorage
from chatfold.storage.inmemory import InMemoryStorageBackend
from chatfold.storage.models import Project, generate_project_id, prune_associations
from chatfold.utils.exceptions import (
    ProjectNotFoundError,
    SessionClosedError,
    StorageError,
    StoreNotReadyError,
    ValidationError,
)

NS = "user@example.com"


def _project(project_id: str, name: str, order: int = 0, **extra) -> dict:
    return {
        "id": project_id,
        "name": name,
        "order": order,
        "createdAt": 1700000000000,
        "isExpanded": False,
        **extra,
    }


def _seeded_backend(projects, mappings) -> InMemoryStorageBackend:
    return InMemoryStorageBackend(
        {
            f"gcm_projects__{NS}": projects,
            f"gcm_chat_mappings__{NS}": mappings,
        }
    )


def test_load_prunes_invalid_associations_and_writes_back():
    backend = _seeded_backend(
        [_project("p1", "Work"), _project("p2", "Home", 1)],
        {
            "aaaaaaaaaaaa": {"projectId": "p1", "title": "Roadmap", "addedAt": 3},
            "c_bbbbbbbbbbbb": {"projectId": "gone", "title": "Orphan", "addedAt": 4},
            "c_cccccccccccc": {"projectId": "p2", "title": "Untitled Chat", "addedAt": 5},
            "c_dddddddddddd": {"projectId": "p2", "title": "Chats", "addedAt": 6},
            "c_eeeeeeeeeeee": "garbage",
            "c_ffffffffffff": {"projectId": "p2", "title": "Groceries", "addedAt": 7},
        },
    )
    store = AssociationStore(NamespacedStorage(backend))

    asyncio.run(store.load(NS))

    assert store.associated_ids() == frozenset({"c_aaaaaaaaaaaa", "c_ffffffffffff"})
    assert backend.snapshot()[f"gcm_chat_mappings__{NS}"] == {
        "c_aaaaaaaaaaaa": {"projectId": "p1", "title": "Roadmap", "addedAt": 3},
        "c_ffffffffffff": {"projectId": "p2", "title": "Groceries", "addedAt": 7},
    }


def test_load_is_a_fixed_point():
    backend = _seeded_backend(
        [_project("p1", "Work")],
        {
            "c_aaaaaaaaaaaa": {"projectId": "p1", "title": "Roadmap", "addedAt": 3},
            "c_bbbbbbbbbbbb": {"projectId": "p9", "title": "Orphan", "addedAt": 4},
        },
    )
    storage = NamespacedStorage(backend)

    async def scenario():
        first = AssociationStore(storage)
        await first.load(NS)
        after_first = backend.snapshot()
        second = AssociationStore(storage)
        await second.load(NS)
        return first.associations(), second.associations(), after_first

    first, second, after_first = asyncio.run(scenario())

    assert first == second
    assert backend.snapshot() == after_first


def test_extra_placeholder_titles_are_pruned():
    backend = _seeded_backend(
        [_project("p1", "Work")],
        {"c_aaaaaaaaaaaa": {"projectId": "p1", "title": "New chat", "addedAt": 3}},
    )
    store = AssociationStore(
        NamespacedStorage(backend), extra_placeholder_titles=["New Chat"]
    )

    asyncio.run(store.load(NS))

    assert store.associated_ids() == frozenset()


def test_mutations_before_load_are_refused(store):
    with pytest.raises(StoreNotReadyError):
        asyncio.run(store.create_project("Work"))


def test_file_and_unfile_round_trip(store):
    async def scenario():
        await store.load(NS)
        work = await store.create_project("Work")
        await store.add("c_aaaaaaaaaaaa", work.id, "Existing chat")
        before = store.associated_ids()
        await store.add("bbbbbbbbbbbb", work.id, "New chat title")
        assert store.is_associated("c_bbbbbbbbbbbb")
        assert await store.remove("c_bbbbbbbbbbbb") is True
        assert await store.remove("c_bbbbbbbbbbbb") is False
        return before, store.associated_ids()

    before, after = asyncio.run(scenario())
    assert before == after


def test_refiling_keeps_original_added_at(store, monkeypatch):
    import chatfold.storage.association_store as module

    times = iter([1000, 2000, 3000])
    monkeypatch.setattr(module, "now_ms", lambda: next(times))

    async def scenario():
        await store.load(NS)
        work = await store.create_project("Work")
        home = await store.create_project("Home")
        first = await store.add("c_aaaaaaaaaaaa", work.id, "Trip")
        second = await store.add("c_aaaaaaaaaaaa", home.id, "Trip  to   Rome")
        return first, second, home

    first, second, home = asyncio.run(scenario())

    assert first.added_at == second.added_at
    assert second.project_id == home.id
    assert second.title == "Trip to Rome"


def test_add_validates_project_and_title(store):
    async def scenario():
        await store.load(NS)
        work = await store.create_project("Work")
        with pytest.raises(ProjectNotFoundError):
            await store.add("c_aaaaaaaaaaaa", "p_missing", "Title")
        with pytest.raises(ValidationError):
            await store.add("c_aaaaaaaaaaaa", work.id, "Recent")
        with pytest.raises(ValidationError):
            await store.add("   ", work.id, "Title")

    asyncio.run(scenario())
    assert store.associated_ids() == frozenset()


def test_list_by_project_is_newest_first(store, monkeypatch):
    import chatfold.storage.association_store as module

    times = iter([10, 20, 30, 40])
    monkeypatch.setattr(module, "now_ms", lambda: next(times))

    async def scenario():
        await store.load(NS)
        work = await store.create_project("Work")
        await store.add("c_aaaaaaaaaaaa", work.id, "Oldest")
        await store.add("c_bbbbbbbbbbbb", work.id, "Middle")
        await store.add("c_cccccccccccc", work.id, "Newest")
        return store.list_by_project(work.id)

    rows = asyncio.run(scenario())
    assert [association.title for _, association in rows] == ["Newest", "Middle", "Oldest"]


def test_delete_project_cascades(store, backend):
    async def scenario():
        await store.load(NS)
        work = await store.create_project("Work")
        home = await store.create_project("Home")
        await store.add("c_aaaaaaaaaaaa", work.id, "A")
        await store.add("c_bbbbbbbbbbbb", home.id, "B")
        unfiled = await store.delete_project(work.id)
        return unfiled, home

    unfiled, home = asyncio.run(scenario())

    assert unfiled == ["c_aaaaaaaaaaaa"]
    assert store.associated_ids() == frozenset({"c_bbbbbbbbbbbb"})
    assert [p.id for p in store.list_projects()] == [home.id]
    assert store.list_projects()[0].order == 0
    persisted = backend.snapshot()[f"gcm_chat_mappings__{NS}"]
    assert list(persisted) == ["c_bbbbbbbbbbbb"]


def test_project_lifecycle_operations(store, backend):
    async def scenario():
        await store.load(NS)
        a = await store.create_project("  Alpha ")
        b = await store.create_project("Beta")
        c = await store.create_project("Gamma")
        await store.rename_project(b.id, "Beta 2")
        await store.move_project(c.id, 0)
        await store.set_project_expanded(a.id, True)
        await store.link_project_to_context(a.id, "gem-1", "Coach")
        # Linking the same context elsewhere moves the link.
        await store.link_project_to_context(b.id, "gem-1")
        await store.unlink_project(b.id)
        with pytest.raises(ValidationError):
            await store.rename_project(a.id, "   ")
        with pytest.raises(ProjectNotFoundError):
            await store.unlink_project("p_nope")
        return a, b, c

    a, b, c = asyncio.run(scenario())

    projects = store.list_projects()
    assert [p.name for p in projects] == ["Gamma", "Alpha", "Beta 2"]
    assert [p.order for p in projects] == [0, 1, 2]
    alpha = store.get_project(a.id)
    assert alpha.is_expanded is True
    assert alpha.linked_context_id is None
    assert store.project_for_context("gem-1") is None

    persisted = backend.snapshot()[f"gcm_projects__{NS}"]
    assert [p["name"] for p in persisted] == ["Gamma", "Alpha", "Beta 2"]
    assert "gemId" not in persisted[1]


def test_project_for_context(store):
    async def scenario():
        await store.load(NS)
        work = await store.create_project("Work")
        await store.link_project_to_context(work.id, "gem-7", "Writer")
        return work

    work = asyncio.run(scenario())
    linked = store.project_for_context("gem-7")
    assert linked.id == work.id
    assert linked.to_dict()["gemId"] == "gem-7"
    assert linked.to_dict()["gemName"] == "Writer"
    assert store.project_for_context(None) is None


def test_update_title_reports_real_changes_only(store):
    async def scenario():
        await store.load(NS)
        work = await store.create_project("Work")
        await store.add("c_aaaaaaaaaaaa", work.id, "Draft")
        return (
            await store.update_title("c_aaaaaaaaaaaa", "Draft"),
            await store.update_title("c_aaaaaaaaaaaa", "Final"),
            await store.update_title("c_aaaaaaaaaaaa", "Starred"),
            await store.update_title("c_zzzzzzzzzzzz", "Other"),
        )

    assert asyncio.run(scenario()) == (False, True, False, False)
    assert store.get("c_aaaaaaaaaaaa").title == "Final"


def test_prune_invalid_with_explicit_project_ids(store):
    async def scenario():
        await store.load(NS)
        work = await store.create_project("Work")
        home = await store.create_project("Home")
        await store.add("c_aaaaaaaaaaaa", work.id, "A")
        await store.add("c_bbbbbbbbbbbb", home.id, "B")
        return await store.prune_invalid({home.id})

    assert asyncio.run(scenario()) == ["c_aaaaaaaaaaaa"]
    assert store.associated_ids() == frozenset({"c_bbbbbbbbbbbb"})


def test_concurrent_mutations_do_not_lose_writes(store, backend):
    async def scenario():
        await store.load(NS)
        work = await store.create_project("Work")
        ids = [f"c_{index:012d}" for index in range(10)]
        await asyncio.gather(*(store.add(i, work.id, f"Chat {i}") for i in ids))
        return ids

    ids = asyncio.run(scenario())
    assert set(backend.snapshot()[f"gcm_chat_mappings__{NS}"]) == set(ids)


def test_closed_store_refuses_mutations(store):
    async def scenario():
        await store.load(NS)
        store.close()
        await store.create_project("Late")

    with pytest.raises(SessionClosedError):
        asyncio.run(scenario())
    assert store.list_projects() == []


def test_store_is_bound_to_one_namespace(store):
    async def scenario():
        await store.load(NS)
        await store.load("other@example.com")

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_unavailable_storage_degrades_to_empty_state():
    backend = _seeded_backend([_project("p1", "Work")], {})
    backend.disconnect()
    store = AssociationStore(NamespacedStorage(backend))

    async def scenario():
        await store.load(NS)
        return await store.create_project("Offline")

    project = asyncio.run(scenario())
    assert [p.id for p in store.list_projects()] == [project.id]
    backend.reconnect()
    assert backend.snapshot()[f"gcm_projects__{NS}"] == [_project("p1", "Work")]


def test_generate_project_id_avoids_collisions(monkeypatch):
    import chatfold.storage.models as models

    suffixes = iter("a" * 9 + "a" * 9 + "b" * 9)
    monkeypatch.setattr(models.secrets, "choice", lambda alphabet: next(suffixes))
    monkeypatch.setattr(models, "now_ms", lambda: 42)

    assert generate_project_id({"p_42_aaaaaaaaa"}) == "p_42_bbbbbbbbb"


def test_prune_associations_splits_kept_and_removed():
    from chatfold.storage.models import Association

    kept, removed = prune_associations(
        {
            "c_1": Association("p1", "Fine", 1),
            "c_2": Association("p1", "", 1),
            "c_3": Association("px", "Fine", 1),
        },
        {"p1"},
    )
    assert list(kept) == ["c_1"]
    assert sorted(removed) == ["c_2", "c_3"]


def test_project_from_dict_tolerates_bad_fields():
    project = Project.from_dict({"id": "p1", "order": "x", "createdAt": None, "gemId": ""})
    assert project.order == 0
    assert project.linked_context_id is None
    assert Project.from_dict({"name": "no id"}) is None


class FailingProjectsBackend(InMemoryStorageBackend):
    """Raises a storage error for the first read of the project list."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.failures_left = 1

    async def get(self, key, default=None):
        if key.startswith("gcm_projects__") and self.failures_left:
            self.failures_left -= 1
            raise StorageError("projects temporarily unreadable")
        return await super().get(key, default)


def test_failed_project_read_keeps_stored_associations():
    mappings = {"c_aaaaaaaaaaaa": {"projectId": "p1", "title": "Roadmap", "addedAt": 3}}
    backend = FailingProjectsBackend(
        {
            f"gcm_projects__{NS}": [_project("p1", "Work")],
            f"gcm_chat_mappings__{NS}": mappings,
        }
    )
    storage = NamespacedStorage(backend)

    async def scenario():
        degraded = AssociationStore(storage)
        await degraded.load(NS)
        recovered = AssociationStore(storage)
        await recovered.load(NS)
        return degraded, recovered

    degraded, recovered = asyncio.run(scenario())

    assert degraded.list_projects() == []
    assert degraded.associated_ids() == frozenset({"c_aaaaaaaaaaaa"})
    assert backend.snapshot()[f"gcm_chat_mappings__{NS}"] == mappings
    assert recovered.associated_ids() == frozenset({"c_aaaaaaaaaaaa"})
    assert [p.id for p in recovered.list_projects()] == ["p1"]


def test_load_closes_gaps_in_project_order():
    backend = _seeded_backend(
        [_project("p1", "Work", 0), _project("p2", "Home", 2)], {}
    )
    store = AssociationStore(NamespacedStorage(backend))

    async def scenario():
        await store.load(NS)
        return await store.create_project("Travel")

    created = asyncio.run(scenario())

    assert [(p.id, p.order) for p in store.list_projects()] == [
        ("p1", 0),
        ("p2", 1),
        (created.id, 2),
    ]
    persisted = backend.snapshot()[f"gcm_projects__{NS}"]
    assert [p["order"] for p in persisted] == [0, 1, 2]
