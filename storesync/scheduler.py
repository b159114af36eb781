"""
Timer scheduling for retry backoff and display holds.

Every delayed action in the client (launch retries, completed/error banner
holds, guard timeouts) goes through a Scheduler so it can be cancelled on
teardown and driven deterministically in tests.

Usage:
    scheduler = AsyncioScheduler()
    handle = scheduler.call_later(2.0, launcher.launch, "order-sync", params)
    handle.cancel()

    # In tests:
    scheduler = ManualScheduler()
    await scheduler.advance(2.0)
"""
import asyncio
import heapq
import inspect
import itertools
from typing import Any, Callable, List, Optional, Protocol, Set, Tuple

from storesync.observability import get_logger

logger = get_logger(__name__)

Callback = Callable[..., Any]


class TimerHandle:
    """Cancellable reference to a scheduled callback."""

    def __init__(self, when: float, on_cancel: Optional[Callable[[], None]] = None):
        self.when = when
        self._cancelled = False
        self._on_cancel = on_cancel

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._on_cancel:
            self._on_cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class Scheduler(Protocol):
    """Clock plus one-shot timers."""

    def time(self) -> float:
        ...

    def call_later(self, delay: float, callback: Callback, *args: Any) -> TimerHandle:
        ...


class AsyncioScheduler:
    """
    Scheduler backed by the running asyncio event loop.

    Coroutine callbacks are wrapped in tasks; failures are logged rather
    than lost as "exception was never retrieved".
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def time(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callback, *args: Any) -> TimerHandle:
        timer = self.loop.call_later(delay, self._run, callback, args)
        return TimerHandle(self.loop.time() + delay, on_cancel=timer.cancel)

    def _run(self, callback: Callback, args: Tuple[Any, ...]) -> None:
        try:
            result = callback(*args)
        except Exception as e:
            logger.error(f"Scheduled callback {_name(callback)} failed: {e}", exc_info=True)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Scheduled task failed: {error}", exc_info=error)

    async def drain(self) -> None:
        """Wait for coroutine callbacks that are already running."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class ManualScheduler:
    """
    Deterministic scheduler with a virtual clock.

    Time only moves when advance() is called. Callbacks run in due-time
    order (ties in scheduling order); coroutine results are awaited inline
    and exceptions propagate to the caller of advance().
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: List[Tuple[float, int, TimerHandle, Callback, Tuple[Any, ...]]] = []
        self._counter = itertools.count()

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callback, *args: Any) -> TimerHandle:
        handle = TimerHandle(self._now + delay)
        heapq.heappush(self._queue, (handle.when, next(self._counter), handle, callback, args))
        return handle

    @property
    def pending(self) -> int:
        """Number of timers that are scheduled and not cancelled."""
        return sum(1 for entry in self._queue if not entry[2].cancelled)

    async def advance(self, seconds: float) -> int:
        """
        Move the clock forward and fire every timer that falls due.

        Timers scheduled by callbacks are honoured if they fall inside the
        same window.

        Returns:
            Number of callbacks executed
        """
        deadline = self._now + seconds
        fired = 0

        while self._queue and self._queue[0][0] <= deadline:
            when, _, handle, callback, args = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, when)
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
            fired += 1

        self._now = deadline
        return fired


def _name(callback: Callback) -> str:
    return getattr(callback, "__qualname__", repr(callback))
