"""
Tests for storesync.scheduler module.
"""
import asyncio
import pytest

from storesync.scheduler import AsyncioScheduler, ManualScheduler


class TestManualScheduler:
    """Tests for the virtual-clock scheduler."""

    @pytest.mark.asyncio
    async def test_fires_in_due_order(self):
        """Callbacks run in due-time order once the clock passes them."""
        scheduler = ManualScheduler()
        fired = []
        scheduler.call_later(2.0, fired.append, "b")
        scheduler.call_later(1.0, fired.append, "a")

        assert await scheduler.advance(1.5) == 1
        assert fired == ["a"]
        assert await scheduler.advance(0.5) == 1
        assert fired == ["a", "b"]
        assert scheduler.time() == 2.0

    @pytest.mark.asyncio
    async def test_cancelled_timer_skipped(self):
        """Cancelled timers never fire."""
        scheduler = ManualScheduler()
        fired = []
        handle = scheduler.call_later(1.0, fired.append, "x")
        handle.cancel()

        assert scheduler.pending == 0
        assert await scheduler.advance(5.0) == 0
        assert fired == []

    @pytest.mark.asyncio
    async def test_awaits_coroutines(self):
        """Coroutine callbacks are awaited inline."""
        scheduler = ManualScheduler()
        fired = []

        async def callback(value):
            fired.append(value)

        scheduler.call_later(1.0, callback, 7)
        await scheduler.advance(1.0)
        assert fired == [7]

    @pytest.mark.asyncio
    async def test_chained_timers_within_window(self):
        """Timers scheduled by callbacks fire if they fall in the same window."""
        scheduler = ManualScheduler()
        fired = []

        def first():
            fired.append("first")
            scheduler.call_later(1.0, fired.append, "second")

        scheduler.call_later(1.0, first)
        assert await scheduler.advance(3.0) == 2
        assert fired == ["first", "second"]


class TestAsyncioScheduler:
    """Tests for the event-loop scheduler."""

    @pytest.mark.asyncio
    async def test_call_later(self):
        """Callback runs after the delay."""
        scheduler = AsyncioScheduler()
        done = asyncio.Event()
        scheduler.call_later(0.01, done.set)
        await asyncio.wait_for(done.wait(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_cancel(self):
        """Cancelled callbacks do not run."""
        scheduler = AsyncioScheduler()
        fired = []
        handle = scheduler.call_later(0.01, fired.append, 1)
        handle.cancel()
        await asyncio.sleep(0.03)
        assert fired == []

    @pytest.mark.asyncio
    async def test_coroutine_callback_drained(self):
        """Coroutine callbacks run as tasks and can be drained."""
        scheduler = AsyncioScheduler()
        fired = []

        async def callback():
            fired.append("ran")

        scheduler.call_later(0.0, callback)
        await asyncio.sleep(0.01)
        await scheduler.drain()
        assert fired == ["ran"]

    @pytest.mark.asyncio
    async def test_failing_callback_logged(self):
        """A failing callback does not break the loop."""
        scheduler = AsyncioScheduler()

        def broken():
            raise RuntimeError("boom")

        scheduler.call_later(0.0, broken)
        await asyncio.sleep(0.01)
        assert scheduler.time() > 0
