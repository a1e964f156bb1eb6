"""
Cancellable, room-scoped timers.

Rooms only ever see the small ``Scheduler`` interface, so the room engine
stays synchronous and testable. In the server, ``AsyncioScheduler`` hands
every expiry to a runner coroutine that takes the room lock before the
callback runs, which keeps timer-driven transitions from interleaving
with player actions.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol, Set

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], None]
TimerRunner = Callable[[TimerCallback], Awaitable[None]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle: ...


class _AsyncioTimer:
    def __init__(self, scheduler: "AsyncioScheduler", callback: TimerCallback):
        self._scheduler = scheduler
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self.cancelled = False

    def _expire(self):
        if self.cancelled:
            return
        self._scheduler._spawn(self._callback)

    def cancel(self):
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()


class AsyncioScheduler:
    """Arms timers on the running event loop and runs expiries through `runner`."""

    def __init__(self, runner: TimerRunner):
        self._runner = runner
        self._tasks: Set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: TimerCallback) -> _AsyncioTimer:
        loop = asyncio.get_running_loop()
        timer = _AsyncioTimer(self, callback)
        timer._handle = loop.call_later(delay, timer._expire)
        return timer

    def _spawn(self, callback: TimerCallback):
        task = asyncio.ensure_future(self._runner(callback))
        # Keep a strong reference until the task finishes
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Timer callback failed", exc_info=exc)
