"""
Pytest configuration and shared fixtures.
"""
import inspect
import pytest
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from storesync.channel import ChannelClient
from storesync.launcher import DedupeGuards
from storesync.scheduler import ManualScheduler
from storesync.series import RawSeriesPoint


class FakeTransport:
    """
    In-memory stand-in for the Socket.IO client.

    connect() fires the registered "connect" handler like the real client;
    tests push server events with server_emit() and simulate drops with drop().
    """

    def __init__(self, sid: str = "sid-1", fail_connect: Optional[Exception] = None):
        self.sid: Optional[str] = sid
        self.handlers: Dict[str, Callable[..., Any]] = {}
        self.emitted: List[Tuple[str, Any]] = []
        self.connected = False
        self.fail_connect = fail_connect
        self.fail_emit = False
        self.connect_args: Optional[Tuple[str, Sequence[str], float]] = None
        self.disconnect_calls = 0

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self.handlers[event] = handler

    async def connect(self, url: str, transports: Sequence[str], wait_timeout: float) -> None:
        self.connect_args = (url, tuple(transports), wait_timeout)
        if self.fail_connect:
            raise self.fail_connect
        self.connected = True
        await self._fire("connect")

    async def emit(self, event: str, data: Any) -> None:
        if self.fail_emit:
            raise ConnectionError("socket closed")
        self.emitted.append((event, data))

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        if self.connected:
            self.connected = False
            await self._fire("disconnect")

    # ─── Test helpers ─────────────────────────────────────────────────────────

    async def server_emit(self, event: str, data: Any = None) -> None:
        """Deliver an event from the backend."""
        await self._fire(event, data)

    async def drop(self, reason: str = "transport close") -> None:
        """Lose the connection without the client asking for it."""
        self.connected = False
        await self._fire("disconnect", reason)

    async def restore(self, sid: str) -> None:
        """Automatic reconnect with a new session id."""
        self.sid = sid
        self.connected = True
        await self._fire("connect")

    def emitted_events(self, event: str) -> List[Any]:
        return [data for name, data in self.emitted if name == event]

    async def _fire(self, event: str, *args: Any) -> None:
        handler = self.handlers.get(event)
        if handler is None:
            return
        result = handler(*args)
        if inspect.isawaitable(result):
            await result


class TransportFactory:
    """Creates FakeTransports and remembers them."""

    def __init__(self):
        self.created: List[FakeTransport] = []
        self.fail_connect: Optional[Exception] = None

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(sid=f"sid-{len(self.created) + 1}", fail_connect=self.fail_connect)
        self.created.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.created[-1]


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Virtual clock for retry and hold timers."""
    return ManualScheduler()


@pytest.fixture
def guards(scheduler) -> DedupeGuards:
    """In-flight guards with a 300s timeout on the virtual clock."""
    return DedupeGuards(scheduler, timeout=300.0)


@pytest.fixture
def transport_factory() -> TransportFactory:
    return TransportFactory()


@pytest.fixture
def channel(transport_factory) -> ChannelClient:
    """Channel over fake transports; not opened yet."""
    return ChannelClient(
        url="http://sync.test",
        transport_factory=transport_factory,
        transports=("websocket",),
        connect_timeout=5.0,
    )


@pytest.fixture
def daily_spend() -> List[RawSeriesPoint]:
    """Five days of ad spend: 10, 20, 30, 40, 50."""
    start = date(2026, 1, 5)
    return [
        RawSeriesPoint(start + timedelta(days=i), {"spend": value})
        for i, value in enumerate([10, 20, 30, 40, 50])
    ]


@pytest.fixture
def sample_daily_rows() -> List[Dict[str, Any]]:
    """Rows as returned by /analytics/daily."""
    return [
        {
            "date": "2026-01-05",
            "revenue": 1000.0,
            "cost_of_goods": 400.0,
            "google_ads_spend": 100.0,
            "facebook_ads_spend": 50.0,
            "orders": 12,
        },
        {
            "date": "2026-01-06",
            "revenue": 500.0,
            "cost_of_goods": 200.0,
            "google_ads_spend": 0.0,
            "facebook_ads_spend": 25.0,
            "orders": 5,
        },
    ]
