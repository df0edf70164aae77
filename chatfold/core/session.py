"""Per-namespace session state.

Everything that belongs to one identity namespace lives on a
:class:`SessionContext`. A namespace switch closes the context as a whole
and builds a fresh one, so timers and tasks started for the previous
namespace can never touch the next one's data.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from loguru import logger

from ..reconcile.loop import ReconciliationLoop
from ..reconcile.scheduler import CoalescingScheduler
from ..reconcile.title_sync import TitleSync
from ..storage.association_store import AssociationStore


@dataclass
class SessionContext:
    namespace: str
    store: AssociationStore
    loop: ReconciliationLoop
    title_sync: TitleSync
    render_scheduler: CoalescingScheduler
    seed_handle: asyncio.TimerHandle | None = None
    closed: bool = field(default=False, init=False)

    def close(self) -> None:
        """Cancel every timer and task and refuse further store mutations."""

        if self.closed:
            return
        self.closed = True
        if self.seed_handle is not None:
            self.seed_handle.cancel()
            self.seed_handle = None
        self.loop.stop()
        self.render_scheduler.cancel()
        self.store.close()
        logger.debug("Closed session for namespace '{}'", self.namespace)

    async def drain(self) -> None:
        await self.loop.drain()
        await self.render_scheduler.drain()


__all__ = ["SessionContext"]
