"""Chatfold engine: session lifecycle plus the operations the folder UI calls."""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from typing import Any

from loguru import logger

from ..config.settings import ChatfoldSettings
from ..identity.extractor import extract_id, extract_title
from ..identity.namespace import NamespaceDetector, NamespaceMonitor
from ..identity.normalizer import conversation_path, normalize_id
from ..reconcile.collection import ForeignCollection, HostView, NullHostView
from ..reconcile.loop import ReconciliationLoop
from ..reconcile.scheduler import CoalescingScheduler
from ..reconcile.title_sync import TitleSync, clean_title
from ..storage.association_store import AssociationStore
from ..storage.base import NamespacedStorage, StorageBackend
from ..storage.factory import create_storage_backend
from ..utils.exceptions import ExceptionHandler, SessionClosedError, StoreNotReadyError
from .session import SessionContext

RenderCallback = Callable[["ChatfoldEngine"], Any]


def _drop_if_session_closed(method):
    """Log and drop calls that raced with a namespace switch."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except SessionClosedError as exc:
            logger.debug("Dropped {} on a closed session: {}", method.__name__, exc)
            return None
        except StoreNotReadyError as exc:
            if not self._running:
                raise
            logger.debug("Dropped {} while a session loads: {}", method.__name__, exc)
            return None

    return wrapper


class ChatfoldEngine:
    """Keeps one namespace session alive and reconciles it with the host."""

    def __init__(
        self,
        collection: ForeignCollection,
        host_view: HostView | None = None,
        *,
        settings: ChatfoldSettings | None = None,
        backend: StorageBackend | None = None,
        namespace_detector: NamespaceDetector | None = None,
        on_render: RenderCallback | None = None,
    ) -> None:
        if settings is None:
            from ..config.manager import ConfigManager

            settings = ConfigManager.get_instance().get_settings()
        self.settings = settings
        self.collection = collection
        self.host_view = host_view or NullHostView()
        self.backend = backend or create_storage_backend(settings.storage)
        self.storage = NamespacedStorage(self.backend, settings.storage.key_prefix)
        self.monitor = NamespaceMonitor(
            namespace_detector or (lambda: None),
            min_interval_s=settings.reconcile.namespace_check_interval_s,
            default=settings.identity.default_namespace,
        )
        self._on_render = on_render
        self._session: SessionContext | None = None
        self._switch_lock = asyncio.Lock()
        self._background_tasks: list[asyncio.Task] = []
        self._running = False
        self.render_count = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def namespace(self) -> str | None:
        return self._session.namespace if self._session else None

    @property
    def session(self) -> SessionContext | None:
        return self._session

    async def start(self, *, background: bool = True) -> None:
        """Load the active namespace and begin observing the live list."""

        if self._running:
            return
        self._running = True
        await self.switch_namespace(self.monitor.detect())
        if background:
            self._start_background_tasks()
        logger.info("Chatfold engine started for namespace '{}'", self.namespace)

    async def stop(self) -> None:
        self._running = False
        for task in self._background_tasks:
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks = []
        if self._session is not None:
            self._session.close()
            self._session = None
        logger.info("Chatfold engine stopped")

    async def drain(self) -> None:
        """Wait for pending scans, auto-filing and renders of the session."""

        if self._session is not None:
            await self._session.drain()

    async def switch_namespace(self, namespace: str) -> SessionContext:
        """Discard the current session and load ``namespace`` from scratch."""

        async with self._switch_lock:
            # The closed session stays installed until its replacement is ready.
            previous = self._session
            if previous is not None:
                previous.close()
                logger.info(
                    "Switching namespace from '{}' to '{}'", previous.namespace, namespace
                )
            session = await self._open_session(namespace)
            self._session = session
        self.request_render()
        return session

    async def _open_session(self, namespace: str) -> SessionContext:
        reconcile = self.settings.reconcile
        extra_placeholders = self.settings.identity.extra_placeholder_titles
        store = AssociationStore(
            self.storage,
            extra_placeholder_titles=extra_placeholders,
            default_namespace=self.settings.identity.default_namespace,
        )
        await store.load(namespace)

        loop = ReconciliationLoop(
            store,
            self.collection,
            self.host_view,
            scan_debounce_s=reconcile.scan_debounce_ms / 1000,
            settle_delay_s=reconcile.settle_delay_ms / 1000,
            auto_assign_enabled=reconcile.auto_assign_enabled,
            on_change=self.request_render,
        )
        render_scheduler = CoalescingScheduler(
            reconcile.render_debounce_ms / 1000,
            self._render,
            idle_check=lambda: not self.host_view.pointer_inside_widget(),
            retry_s=reconcile.hover_retry_ms / 1000,
            name="render",
        )
        session = SessionContext(
            namespace=namespace,
            store=store,
            loop=loop,
            title_sync=TitleSync(
                store, self.host_view, extra_placeholder_titles=extra_placeholders
            ),
            render_scheduler=render_scheduler,
        )

        loop.start()
        # First scan also shows rows left hidden by an earlier session.
        loop.scan()
        session.seed_handle = asyncio.get_running_loop().call_later(
            reconcile.seed_delay_ms / 1000, loop.seed_known_ids
        )
        return session

    def notify_changed(self) -> None:
        """Forward a change notification from the host list."""

        if self._session is not None:
            self._session.loop.notify()

    def request_render(self) -> None:
        if self._session is not None:
            self._session.render_scheduler.trigger()

    def _render(self) -> None:
        self.render_count += 1
        if self._on_render is not None:
            self._on_render(self)

    # ------------------------------------------------------------------
    # Periodic work
    # ------------------------------------------------------------------
    def _start_background_tasks(self) -> None:
        loop = asyncio.get_running_loop()
        reconcile = self.settings.reconcile
        self._background_tasks = [
            loop.create_task(
                self._periodic(reconcile.title_sync_interval_s, self.sync_title),
                name="chatfold-title-sync",
            ),
            loop.create_task(
                self._periodic(reconcile.namespace_check_interval_s, self.check_namespace),
                name="chatfold-namespace-check",
            ),
        ]

    async def _periodic(self, interval_s: float, job: Callable[[], Any]) -> None:
        while True:
            try:
                await asyncio.sleep(interval_s)
                await job()
            except asyncio.CancelledError:
                logger.debug("Periodic task {} cancelled", job.__name__)
                break
            except Exception as exc:
                ExceptionHandler.log_exception(
                    exc, logger=logger.bind(task=job.__name__), level="WARNING"
                )

    async def check_namespace(self) -> bool:
        """Reload everything when the active namespace changed."""

        current = self.namespace
        if current is None or self._switch_lock.locked():
            return False
        new_namespace = self.monitor.check_namespace(current)
        if new_namespace is None:
            return False
        await self.switch_namespace(new_namespace)
        return True

    @_drop_if_session_closed
    async def sync_title(self) -> bool:
        session = self._require_session()
        changed = await session.title_sync.sync_title()
        if changed:
            self.request_render()
        return changed

    # ------------------------------------------------------------------
    # Operations used by the folder UI
    # ------------------------------------------------------------------
    def list_projects(self) -> list[dict[str, Any]]:
        session = self._require_session()
        return [project.to_dict() for project in session.store.list_projects()]

    def list_associations_for_project(self, project_id: str) -> list[dict[str, Any]]:
        """Conversations filed into ``project_id`` as view rows.

        Rows for conversations currently listed by the host come first, in
        host order and with the live title; the rest follow newest first.
        Each row carries the host path that opens the conversation.
        """

        session = self._require_session()
        filed = dict(session.store.list_by_project(project_id))
        rows: list[dict[str, Any]] = []
        seen: set[str] = set()
        for record in session.loop.live_records():
            chat_id = extract_id(record.descriptor)
            if chat_id is None or chat_id not in filed or chat_id in seen:
                continue
            seen.add(chat_id)
            association = filed[chat_id]
            live_title = clean_title(extract_title(record.descriptor))
            rows.append(
                {
                    "id": chat_id,
                    "title": live_title or association.title,
                    "path": conversation_path(chat_id),
                    "addedAt": association.added_at,
                    "isLoaded": True,
                }
            )
        for chat_id, association in filed.items():
            if chat_id in seen:
                continue
            rows.append(
                {
                    "id": chat_id,
                    "title": association.title,
                    "path": conversation_path(chat_id),
                    "addedAt": association.added_at,
                    "isLoaded": False,
                }
            )
        return rows

    @_drop_if_session_closed
    async def file_conversation(
        self, chat_id: str, title: str, project_id: str
    ) -> dict[str, Any]:
        session = self._require_session()
        association = await session.store.add(chat_id, project_id, title)
        session.loop.suppress_matching([normalize_id(chat_id)], True)
        self.request_render()
        return association.to_dict()

    @_drop_if_session_closed
    async def unfile_conversation(self, chat_id: str) -> bool:
        session = self._require_session()
        removed = await session.store.remove(chat_id)
        if removed:
            session.loop.suppress_matching([normalize_id(chat_id)], False)
            self.request_render()
        return removed

    @_drop_if_session_closed
    async def create_project(self, name: str) -> dict[str, Any]:
        session = self._require_session()
        project = await session.store.create_project(name)
        self.request_render()
        return project.to_dict()

    @_drop_if_session_closed
    async def rename_project(self, project_id: str, name: str) -> dict[str, Any]:
        session = self._require_session()
        project = await session.store.rename_project(project_id, name)
        self.request_render()
        return project.to_dict()

    @_drop_if_session_closed
    async def delete_project(self, project_id: str) -> list[str]:
        session = self._require_session()
        unfiled = await session.store.delete_project(project_id)
        session.loop.suppress_matching(unfiled, False)
        self.request_render()
        return unfiled

    @_drop_if_session_closed
    async def link_project_to_context(
        self, project_id: str, context_id: str, context_name: str | None = None
    ) -> dict[str, Any]:
        session = self._require_session()
        project = await session.store.link_project_to_context(
            project_id, context_id, context_name
        )
        self.request_render()
        return project.to_dict()

    @_drop_if_session_closed
    async def unlink_project(self, project_id: str) -> dict[str, Any]:
        session = self._require_session()
        project = await session.store.unlink_project(project_id)
        self.request_render()
        return project.to_dict()

    @_drop_if_session_closed
    async def set_project_expanded(self, project_id: str, expanded: bool) -> dict[str, Any]:
        session = self._require_session()
        project = await session.store.set_project_expanded(project_id, expanded)
        self.request_render()
        return project.to_dict()

    @_drop_if_session_closed
    async def move_project(self, project_id: str, new_index: int) -> list[dict[str, Any]]:
        session = self._require_session()
        projects = await session.store.move_project(project_id, new_index)
        self.request_render()
        return [project.to_dict() for project in projects]

    def _require_session(self) -> SessionContext:
        if self._session is None:
            raise StoreNotReadyError("Chatfold engine has no active session")
        return self._session


__all__ = ["ChatfoldEngine"]
