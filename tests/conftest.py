import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from chatfold.config.manager import ConfigManager
from chatfold.config.settings import ChatfoldSettings, ReconcileSettings
from chatfold.identity.extractor import RecordNode
from chatfold.storage.association_store import AssociationStore
from chatfold.storage.base import NamespacedStorage
from chatfold.storage.inmemory import InMemoryStorageBackend


def conversation_row(
    chat_id: str | None = None,
    title: str = "Quarterly planning notes",
    *,
    jslog: str | None = None,
    href: str | None = None,
    attributes: dict[str, str] | None = None,
) -> RecordNode:
    """Build a sidebar row shaped like the host application's markup."""

    inner_attributes = {"data-test-id": "conversation"}
    if jslog is not None:
        inner_attributes["jslog"] = jslog
    elif chat_id is not None:
        inner_attributes["jslog"] = f'186014;track:generic_click;BardVeMetadataKey:[["{chat_id}",null,0]]'
    inner_attributes.update(attributes or {})

    children = [RecordNode(attributes={"class": "conversation-title gds-label"}, text=title)]
    if href is not None:
        children.append(RecordNode(tag="a", attributes={"href": href}))
    inner = RecordNode(attributes=inner_attributes, children=tuple(children))
    return RecordNode(
        attributes={"class": "conversation-items-container"}, children=(inner,)
    )


class FakeRecord:
    """Live row whose suppression flag can be inspected."""

    def __init__(self, descriptor: RecordNode, suppressed: bool = False) -> None:
        self.descriptor = descriptor
        self.suppressed = suppressed
        self.writes: list[bool] = []

    def set_suppressed(self, value: bool) -> None:
        self.writes.append(value)
        self.suppressed = value


class FakeSubscription:
    def __init__(self, collection: "FakeCollection", handler) -> None:
        self._collection = collection
        self._handler = handler

    def close(self) -> None:
        if self._handler in self._collection.handlers:
            self._collection.handlers.remove(self._handler)


class FakeCollection:
    """In-memory stand-in for the host's conversation list."""

    def __init__(self, rows=None) -> None:
        self.rows: list[FakeRecord] = list(rows or [])
        self.handlers: list = []

    def records(self):
        return list(self.rows)

    def subscribe(self, handler):
        self.handlers.append(handler)
        return FakeSubscription(self, handler)

    def add(self, descriptor: RecordNode, suppressed: bool = False) -> FakeRecord:
        record = FakeRecord(descriptor, suppressed)
        self.rows.append(record)
        return record

    def emit(self) -> None:
        for handler in list(self.handlers):
            handler()


class FakeHostView:
    def __init__(
        self,
        path: str = "/app",
        headings=None,
        document_title: str | None = None,
    ) -> None:
        self.path = path
        self.headings = list(headings or [])
        self.title = document_title
        self.pointer_inside = False

    def current_path(self) -> str:
        return self.path

    def heading_candidates(self):
        return list(self.headings)

    def document_title(self):
        return self.title

    def pointer_inside_widget(self) -> bool:
        return self.pointer_inside


@pytest.fixture
def backend() -> InMemoryStorageBackend:
    return InMemoryStorageBackend()


@pytest.fixture
def storage(backend: InMemoryStorageBackend) -> NamespacedStorage:
    return NamespacedStorage(backend)


@pytest.fixture
def store(storage: NamespacedStorage) -> AssociationStore:
    return AssociationStore(storage)


@pytest.fixture
def collection() -> FakeCollection:
    return FakeCollection()


@pytest.fixture
def host_view() -> FakeHostView:
    return FakeHostView()


@pytest.fixture
def fast_settings() -> ChatfoldSettings:
    """Settings with timings short enough for tests."""

    return ChatfoldSettings(
        reconcile=ReconcileSettings(
            scan_debounce_ms=10,
            render_debounce_ms=10,
            hover_retry_ms=10,
            settle_delay_ms=10,
            seed_delay_ms=0,
            title_sync_interval_s=60,
            namespace_check_interval_s=0,
        )
    )


@pytest.fixture
def reset_config_manager():
    ConfigManager._instance = None
    ConfigManager._settings = None
    yield
    ConfigManager._instance = None
    ConfigManager._settings = None
