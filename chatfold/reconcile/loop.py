"""Reconcile the association store against the live conversation list.

The host list gives no semantic change events, only "something changed".
Each scan therefore rebuilds the picture from scratch: it takes a fresh
snapshot of the associated ids, walks every row currently rendered and
hides the rows that are filed into a project while showing the ones that
no longer are. A second pass files brand new conversations into the
project linked to the context (Gem) being viewed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from loguru import logger

from ..identity.extractor import context_id_from_path, extract_id, extract_title
from ..storage.association_store import AssociationStore
from ..utils.exceptions import (
    ProjectNotFoundError,
    SessionClosedError,
    StoreNotReadyError,
    ValidationError,
)
from .collection import CollectionSubscription, ForeignCollection, HostView, LiveRecord
from .scheduler import CoalescingScheduler
from .title_sync import clean_title


@dataclass
class ScanResult:
    """What one scan observed and changed."""

    present_ids: set[str] = field(default_factory=set)
    suppressed: list[str] = field(default_factory=list)
    unsuppressed: list[str] = field(default_factory=list)
    unidentified: int = 0
    auto_assign_scheduled: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.suppressed or self.unsuppressed or self.auto_assign_scheduled)


class ReconciliationLoop:
    """Debounced scanning of a :class:`ForeignCollection`."""

    def __init__(
        self,
        store: AssociationStore,
        collection: ForeignCollection,
        host_view: HostView,
        *,
        scan_debounce_s: float = 0.3,
        settle_delay_s: float = 0.15,
        auto_assign_enabled: bool = True,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._store = store
        self._collection = collection
        self._host_view = host_view
        self.settle_delay_s = settle_delay_s
        self.auto_assign_enabled = auto_assign_enabled
        self._on_change = on_change
        self._known_ids: set[str] = set()
        self._seeded = False
        self._closed = False
        self._subscription: CollectionSubscription | None = None
        self._assign_tasks: set[asyncio.Task] = set()
        self._scan_scheduler = CoalescingScheduler(
            scan_debounce_s, self._scheduled_scan, name="scan"
        )

    @property
    def seeded(self) -> bool:
        return self._seeded

    @property
    def known_ids(self) -> frozenset[str]:
        return frozenset(self._known_ids)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Subscribe to change notifications from the live list."""

        if self._closed or self._subscription is not None:
            return
        self._subscription = self._collection.subscribe(self.notify)

    def stop(self) -> None:
        """Unsubscribe and cancel pending scans and assignments."""

        self._closed = True
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self._scan_scheduler.cancel()
        for task in list(self._assign_tasks):
            task.cancel()

    def notify(self) -> None:
        """Change notification handler; coalesced into one scan."""

        if not self._closed:
            self._scan_scheduler.trigger()

    async def drain(self) -> None:
        """Wait for in-flight scans and settle-delayed assignments."""

        await self._scan_scheduler.drain()
        while self._assign_tasks:
            await asyncio.gather(*list(self._assign_tasks), return_exceptions=True)

    def _scheduled_scan(self) -> None:
        result = self.scan()
        if result.changed and self._on_change is not None:
            self._on_change()

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------
    def seed_known_ids(self) -> int:
        """Record every conversation currently listed as already seen.

        Runs once per loop; later calls are no-ops returning ``0``.
        """

        if self._seeded:
            return 0
        seeded = 0
        for record in self.live_records():
            chat_id = extract_id(record.descriptor)
            if chat_id and chat_id not in self._known_ids:
                self._known_ids.add(chat_id)
                seeded += 1
        self._seeded = True
        logger.debug("Seeded {} known conversation id(s)", seeded)
        return seeded

    def scan(self) -> ScanResult:
        """Bring row visibility in line with the store; schedule auto-filing."""

        result = ScanResult()
        if self._closed:
            return result

        associated = self._store.associated_ids()
        records = self.live_records()
        identified: list[tuple[LiveRecord, str]] = []

        for record in records:
            chat_id = extract_id(record.descriptor)
            if chat_id is None:
                result.unidentified += 1
                continue
            result.present_ids.add(chat_id)
            identified.append((record, chat_id))
            if chat_id in associated:
                if not record.suppressed:
                    record.set_suppressed(True)
                    result.suppressed.append(chat_id)
            elif record.suppressed:
                record.set_suppressed(False)
                result.unsuppressed.append(chat_id)

        if self.auto_assign_enabled:
            result.auto_assign_scheduled = self._auto_assign(identified, associated)

        if result.changed:
            logger.debug(
                "Scan: {} present, {} hidden, {} shown, {} queued for filing",
                len(result.present_ids),
                len(result.suppressed),
                len(result.unsuppressed),
                len(result.auto_assign_scheduled),
            )
        return result

    def suppress_matching(self, chat_ids: Iterable[str], suppressed: bool) -> int:
        """Hide or show the live rows for ``chat_ids`` without a full scan."""

        wanted = set(chat_ids)
        touched = 0
        for record in self.live_records():
            if record.suppressed == suppressed:
                continue
            if extract_id(record.descriptor) in wanted:
                record.set_suppressed(suppressed)
                touched += 1
        return touched

    def live_records(self) -> list[LiveRecord]:
        try:
            return list(self._collection.records())
        except Exception as exc:
            logger.warning("Could not enumerate live conversations: {}", exc)
            return []

    # ------------------------------------------------------------------
    # Auto-assignment
    # ------------------------------------------------------------------
    def _auto_assign(
        self,
        identified: list[tuple[LiveRecord, str]],
        associated: frozenset[str],
    ) -> list[str]:
        if not self._seeded:
            return []
        context_id = context_id_from_path(self._host_view.current_path())
        if context_id is None:
            return []
        project = self._store.project_for_context(context_id)
        if project is None:
            return []

        scheduled: list[str] = []
        for record, chat_id in identified:
            if chat_id in associated:
                self._known_ids.add(chat_id)
                continue
            if chat_id in self._known_ids:
                continue
            self._known_ids.add(chat_id)
            task = asyncio.get_running_loop().create_task(
                self._assign_after_settle(record, chat_id, project.id)
            )
            self._assign_tasks.add(task)
            task.add_done_callback(self._assign_tasks.discard)
            scheduled.append(chat_id)
        return scheduled

    async def _assign_after_settle(
        self, record: LiveRecord, chat_id: str, project_id: str
    ) -> None:
        # Give the host time to render the final title before capturing it.
        await asyncio.sleep(self.settle_delay_s)
        if self._closed:
            return
        latest_id = extract_id(record.descriptor) or chat_id
        title = clean_title(extract_title(record.descriptor))
        try:
            await self._store.add(latest_id, project_id, title)
        except ValidationError:
            # No real title yet; forget the id so a later scan retries.
            self._known_ids.discard(chat_id)
            logger.debug("Title of {} not ready; will retry auto-filing", latest_id)
            return
        except ProjectNotFoundError:
            logger.debug("Linked project {} vanished before filing {}", project_id, latest_id)
            return
        except (SessionClosedError, StoreNotReadyError) as exc:
            logger.debug("Dropping auto-filing of {}: {}", latest_id, exc)
            return

        self._known_ids.add(latest_id)
        if not record.suppressed:
            record.set_suppressed(True)
        logger.info("Auto-filed conversation {} into project {}", latest_id, project_id)
        if self._on_change is not None:
            self._on_change()


__all__ = ["ReconciliationLoop", "ScanResult"]
