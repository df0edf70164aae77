"""Single-slot debouncing on top of the running asyncio loop."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

IdleCheck = Callable[[], bool]


class CoalescingScheduler:
    """Run ``callback`` once a burst of triggers has gone quiet.

    At most one run is pending at any time: a trigger that arrives while a
    run is pending pushes the deadline back instead of queueing a second
    run. When ``idle_check`` is given and reports ``False`` at the deadline,
    the run is retried every ``retry_s`` seconds until it reports ``True``.
    """

    def __init__(
        self,
        delay_s: float,
        callback: Callable[[], Awaitable[Any] | Any],
        *,
        idle_check: IdleCheck | None = None,
        retry_s: float = 0.15,
        name: str = "scheduler",
    ) -> None:
        self.delay_s = delay_s
        self.retry_s = retry_s
        self.name = name
        self._callback = callback
        self._idle_check = idle_check
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._cancelled = False

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        """(Re)start the quiescence window."""

        if self._cancelled:
            return
        self._schedule(self.delay_s)

    def cancel(self) -> None:
        """Drop the pending run and cancel callbacks still in flight."""

        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        for task in list(self._tasks):
            task.cancel()

    async def drain(self) -> None:
        """Wait for callbacks that are already running."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _schedule(self, delay: float) -> None:
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        if self._cancelled:
            return
        if self._idle_check is not None and not self._is_idle():
            logger.trace("{} deferred: widget busy", self.name)
            self._schedule(self.retry_s)
            return
        try:
            result = self._callback()
        except Exception:
            logger.opt(exception=True).warning("{} callback failed", self.name)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _is_idle(self) -> bool:
        try:
            return bool(self._idle_check())
        except Exception as exc:
            logger.debug("{} idle check failed, running anyway: {}", self.name, exc)
            return True

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.opt(exception=error).warning("{} callback failed", self.name)


__all__ = ["CoalescingScheduler", "IdleCheck"]
