"""
Integration tests for storesync/channel.py

Drives ChannelClient over an in-memory transport.
"""
import pytest
from typing import Any, Dict, List, Tuple

from storesync.channel import ChannelClient, ConnectionState, LifecycleEvent
from storesync.config import config
from storesync.exceptions import ChannelError


class TestChannelOpen:
    """Tests for connection management."""

    @pytest.mark.asyncio
    async def test_open(self, channel, transport_factory):
        """open() connects with configured transports and reports OPEN."""
        connection = await channel.open()

        assert connection.state is ConnectionState.OPEN
        assert connection.id == "sid-1"
        assert channel.is_open
        assert transport_factory.current.connect_args == ("http://sync.test", ("websocket",), 5.0)

    @pytest.mark.asyncio
    async def test_open_is_idempotent(self, channel, transport_factory):
        """A second open() reuses the live connection."""
        await channel.open()
        await channel.open()
        assert len(transport_factory.created) == 1

    @pytest.mark.asyncio
    async def test_open_failure(self, channel, transport_factory):
        """Connect failures raise ChannelError and emit a lifecycle error."""
        transport_factory.fail_connect = ConnectionError("refused")
        events: List[LifecycleEvent] = []
        channel.on_lifecycle(lambda event, info: events.append(event))

        with pytest.raises(ChannelError) as exc_info:
            await channel.open()

        assert exc_info.value.url == "http://sync.test"
        assert channel.state is ConnectionState.CLOSED
        assert events == [LifecycleEvent.ERROR]

    @pytest.mark.asyncio
    async def test_close_and_reopen(self, channel, transport_factory):
        """close() keeps handlers; a later open() re-attaches them."""
        received = []
        channel.on("syncProgress", received.append)

        await channel.open()
        await channel.close()
        assert channel.state is ConnectionState.CLOSED

        await channel.open()
        await transport_factory.current.server_emit("syncProgress", {"stage": "fetching"})

        assert len(transport_factory.created) == 2
        assert received == [{"stage": "fetching"}]

    @pytest.mark.asyncio
    async def test_reopen_after_drop_shuts_old_transport(self, channel, transport_factory):
        """A dropped transport is shut down before a new one is created."""
        await channel.open()
        first = transport_factory.current
        await first.drop()

        await channel.open()
        assert first.disconnect_calls == 1
        assert transport_factory.current is not first

    @pytest.mark.asyncio
    async def test_lifecycle_sequence(self, channel, transport_factory):
        """Connect, drop and automatic reconnect are reported in order."""
        events: List[Tuple[LifecycleEvent, Dict[str, Any]]] = []
        channel.on_lifecycle(lambda event, info: events.append((event, info)))

        await channel.open()
        await transport_factory.current.drop("ping timeout")
        await transport_factory.current.restore("sid-9")

        assert [e for e, _ in events] == [
            LifecycleEvent.CONNECT, LifecycleEvent.DISCONNECT, LifecycleEvent.CONNECT,
        ]
        assert events[1][1]["reason"] == "ping timeout"
        assert channel.connection_id == "sid-9"
        assert channel.get_stats()["connect_count"] == 2


class TestChannelMessaging:
    """Tests for send() and handler dispatch."""

    @pytest.mark.asyncio
    async def test_send_when_closed(self, channel):
        """send() reports False instead of raising."""
        assert await channel.send("startJob", {"kind": "order-sync"}) is False

    @pytest.mark.asyncio
    async def test_send(self, channel, transport_factory):
        """send() hands the payload to the transport."""
        await channel.open()
        assert await channel.send("startJob", {"kind": "order-sync"}) is True
        assert transport_factory.current.emitted == [("startJob", {"kind": "order-sync"})]
        assert channel.get_stats()["messages_sent"] == 1

    @pytest.mark.asyncio
    async def test_send_failure(self, channel, transport_factory):
        """Emit errors become False plus a lifecycle error."""
        events = []
        channel.on_lifecycle(lambda event, info: events.append(event))
        await channel.open()
        transport_factory.current.fail_emit = True

        assert await channel.send("startJob", {}) is False
        assert events[-1] is LifecycleEvent.ERROR

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self, channel, transport_factory):
        """Both plain and coroutine handlers receive the payload."""
        received = []

        async def async_handler(data):
            received.append(("async", data))

        channel.on("syncProgress", lambda data: received.append(("sync", data)))
        channel.on("syncProgress", async_handler)
        await channel.open()
        await transport_factory.current.server_emit("syncProgress", {"stage": "saving"})

        assert received == [("sync", {"stage": "saving"}), ("async", {"stage": "saving"})]

    @pytest.mark.asyncio
    async def test_handler_registered_after_open(self, channel, transport_factory):
        """Handlers added while open are attached immediately."""
        await channel.open()
        received = []
        channel.on("adsSyncProgress", received.append)
        await transport_factory.current.server_emit("adsSyncProgress", {"stage": "fetching_google"})
        assert received == [{"stage": "fetching_google"}]

    @pytest.mark.asyncio
    async def test_handler_error_isolation(self, channel, transport_factory):
        """One failing handler doesn't stop the others."""
        received = []

        def broken(data):
            raise ValueError("bad handler")

        channel.on("syncProgress", broken)
        channel.on("syncProgress", received.append)
        await channel.open()
        await transport_factory.current.server_emit("syncProgress", {"stage": "saving"})

        assert received == [{"stage": "saving"}]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, channel, transport_factory):
        """Unsubscribed handlers stop receiving events."""
        received = []
        unsubscribe = channel.on("syncProgress", received.append)
        await channel.open()
        unsubscribe()
        await transport_factory.current.server_emit("syncProgress", {"stage": "saving"})

        assert received == []
        assert channel.handler_count("syncProgress") == 0


class TestChannelDefaults:
    """Tests for default construction."""

    def test_uses_config_url(self):
        """URL falls back to configuration."""
        channel = ChannelClient(transport_factory=lambda: None)
        assert channel.url == config.channel.url
        assert channel.state is ConnectionState.CLOSED
