"""
Duplex event channel to the sync backend.

Owns the single Socket.IO connection of a client, keeps an event-name keyed
handler registry that survives reconnects, and reports connection lifecycle
transitions (connect, disconnect, error) to subscribers.

Usage:
    from storesync.channel import ChannelClient

    channel = ChannelClient("http://localhost:5000")
    unsubscribe = channel.on("syncProgress", handle_progress)
    await channel.open()

    await channel.send("startJob", {"kind": "order-sync", "params": {}})
"""
import inspect
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Set

import socketio

from storesync.config import config
from storesync.exceptions import ChannelError
from storesync.observability import get_logger

logger = get_logger(__name__)

Handler = Callable[[Any], Any]
LifecycleHandler = Callable[["LifecycleEvent", Dict[str, Any]], Any]
Unsubscribe = Callable[[], None]


class ConnectionState(Enum):
    """State of the underlying connection."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class LifecycleEvent(Enum):
    """Connection lifecycle transitions delivered to subscribers."""

    CONNECT = "connect"
    DISCONNECT = "disconnect"
    ERROR = "error"


@dataclass(frozen=True)
class ChannelConnection:
    """Snapshot of the current connection."""

    id: Optional[str]
    state: ConnectionState


class ChannelTransport(Protocol):
    """Minimal surface of a Socket.IO client used by ChannelClient."""

    @property
    def sid(self) -> Optional[str]:
        ...

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        ...

    async def connect(self, url: str, transports: Sequence[str], wait_timeout: float) -> None:
        ...

    async def emit(self, event: str, data: Any) -> None:
        ...

    async def disconnect(self) -> None:
        ...


class SocketIOTransport:
    """ChannelTransport backed by python-socketio's AsyncClient."""

    def __init__(self, reconnection: bool = True):
        self._sio = socketio.AsyncClient(
            reconnection=reconnection,
            logger=False,
            engineio_logger=False,
        )

    @property
    def sid(self) -> Optional[str]:
        return self._sio.sid

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._sio.on(event, handler)

    async def connect(self, url: str, transports: Sequence[str], wait_timeout: float) -> None:
        await self._sio.connect(url, transports=list(transports), wait_timeout=wait_timeout)

    async def emit(self, event: str, data: Any) -> None:
        await self._sio.emit(event, data)

    async def disconnect(self) -> None:
        if self._sio.connected:
            await self._sio.disconnect()


class ChannelClient:
    """
    Client side of the duplex event channel.

    Features:
    - At most one open connection per instance
    - Handler registry keyed by event name, re-attached on every new transport
    - Lifecycle subscriptions (connect / disconnect / error)
    - send() never raises; it reports False when the channel is not open
    - Error isolation (one handler failure doesn't affect others)
    """

    def __init__(
        self,
        url: Optional[str] = None,
        transport_factory: Optional[Callable[[], ChannelTransport]] = None,
        transports: Optional[Sequence[str]] = None,
        connect_timeout: Optional[float] = None,
    ):
        self.url = url or config.channel.url
        self._transport_factory = transport_factory or SocketIOTransport
        self._transports = tuple(transports or config.channel.transports)
        self._connect_timeout = connect_timeout or config.channel.connect_timeout

        self._transport: Optional[ChannelTransport] = None
        self._attached: Set[str] = set()
        self._state = ConnectionState.CLOSED
        self._connection_id: Optional[str] = None

        # Event name -> handlers, in registration order
        self._handlers: Dict[str, List[Handler]] = {}
        self._lifecycle_handlers: List[LifecycleHandler] = []

        self._messages_received = 0
        self._messages_sent = 0
        self._connect_count = 0
        self._opened_at: Optional[datetime] = None

    # ─── State ────────────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def connection_id(self) -> Optional[str]:
        return self._connection_id

    @property
    def connection(self) -> ChannelConnection:
        return ChannelConnection(id=self._connection_id, state=self._state)

    # ─── Connection management ────────────────────────────────────────────────

    async def open(self) -> ChannelConnection:
        """
        Open the connection if none is open or in progress.

        Returns:
            Snapshot of the connection

        Raises:
            ChannelError: If the transport could not connect
        """
        if self._transport is not None:
            if self._state is not ConnectionState.CLOSED:
                return self.connection
            # A dropped transport may still be reconnecting on its own
            await self._shutdown_transport(self._transport)
            self._transport = None

        transport = self._transport_factory()
        self._transport = transport
        self._attached = set()
        self._attach_builtins(transport)
        for event in self._handlers:
            self._attach(transport, event)

        self._state = ConnectionState.CONNECTING
        logger.info(f"Opening channel to {self.url}")

        try:
            await transport.connect(self.url, self._transports, self._connect_timeout)
        except Exception as e:
            self._state = ConnectionState.CLOSED
            self._transport = None
            await self._notify_lifecycle(LifecycleEvent.ERROR, {"error": str(e)})
            raise ChannelError("Failed to open channel", str(e), url=self.url) from e

        # Some transports report the connect before connect() returns
        if self._state is ConnectionState.CONNECTING:
            await self._on_connect()

        return self.connection

    async def close(self) -> None:
        """Close the connection; registered handlers are kept for a later open()."""
        transport = self._transport
        if transport is None:
            return

        await self._shutdown_transport(transport)

        self._transport = None
        if self._state is not ConnectionState.CLOSED:
            await self._on_disconnect("client close")

    async def _shutdown_transport(self, transport: ChannelTransport) -> None:
        try:
            await transport.disconnect()
        except Exception as e:
            logger.warning(f"Error while closing channel: {e}")

    async def reconnect(self) -> ChannelConnection:
        """Force a fresh connection; handlers are re-attached automatically."""
        await self.close()
        return await self.open()

    # ─── Messaging ────────────────────────────────────────────────────────────

    async def send(self, event: str, payload: Any = None) -> bool:
        """
        Emit a message to the backend.

        Args:
            event: Event name
            payload: JSON-serializable payload

        Returns:
            True if the message was handed to the transport, False otherwise
        """
        if not self.is_open or self._transport is None:
            logger.debug(f"Channel not open, dropping '{event}'")
            return False

        try:
            await self._transport.emit(event, payload)
        except Exception as e:
            logger.warning(f"Failed to send '{event}': {e}")
            await self._notify_lifecycle(LifecycleEvent.ERROR, {"error": str(e), "event": event})
            return False

        self._messages_sent += 1
        return True

    def on(self, event: str, handler: Handler) -> Unsubscribe:
        """
        Register a handler for an event name.

        Args:
            event: Event name (e.g. "syncProgress")
            handler: Sync or async callable receiving the event payload

        Returns:
            Callable that removes this registration
        """
        handlers = self._handlers.setdefault(event, [])
        handlers.append(handler)

        if self._transport is not None:
            self._attach(self._transport, event)

        def unsubscribe() -> None:
            registered = self._handlers.get(event)
            if registered and handler in registered:
                registered.remove(handler)

        return unsubscribe

    def on_lifecycle(self, handler: LifecycleHandler) -> Unsubscribe:
        """
        Register a handler for connection lifecycle transitions.

        Returns:
            Callable that removes this registration
        """
        self._lifecycle_handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._lifecycle_handlers:
                self._lifecycle_handlers.remove(handler)

        return unsubscribe

    def handler_count(self, event: Optional[str] = None) -> int:
        """Number of registered handlers for an event, or for all events."""
        if event:
            return len(self._handlers.get(event, []))
        return sum(len(h) for h in self._handlers.values())

    def get_stats(self) -> Dict[str, Any]:
        """
        Get channel statistics.

        Returns:
            Dict with connection and message stats
        """
        return {
            "state": self._state.value,
            "connection_id": self._connection_id,
            "connect_count": self._connect_count,
            "opened_at": self._opened_at.isoformat() if self._opened_at else None,
            "messages_sent": self._messages_sent,
            "messages_received": self._messages_received,
            "events": {event: len(h) for event, h in self._handlers.items() if h},
        }

    # ─── Transport callbacks ──────────────────────────────────────────────────

    def _attach_builtins(self, transport: ChannelTransport) -> None:
        transport.on("connect", self._on_connect)
        transport.on("disconnect", self._on_transport_disconnect)
        transport.on("connect_error", self._on_connect_error)

    def _attach(self, transport: ChannelTransport, event: str) -> None:
        if event in self._attached:
            return
        self._attached.add(event)

        async def dispatch(*args: Any) -> None:
            await self._dispatch(event, args[0] if args else None)

        transport.on(event, dispatch)

    async def _dispatch(self, event: str, data: Any) -> None:
        self._messages_received += 1

        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Handler {getattr(handler, '__name__', handler)!s} failed for '{event}': {e}",
                    exc_info=True,
                )

    async def _on_connect(self) -> None:
        if self._state is ConnectionState.OPEN:
            return

        self._state = ConnectionState.OPEN
        self._connection_id = self._transport.sid if self._transport else None
        self._connect_count += 1
        self._opened_at = datetime.now()
        logger.info(f"Channel open (id={self._connection_id}, connects={self._connect_count})")
        await self._notify_lifecycle(LifecycleEvent.CONNECT, {"id": self._connection_id})

    async def _on_transport_disconnect(self, *args: Any) -> None:
        reason = str(args[0]) if args else "transport closed"
        await self._on_disconnect(reason)

    async def _on_disconnect(self, reason: str) -> None:
        if self._state is ConnectionState.CLOSED:
            return

        previous_id = self._connection_id
        self._state = ConnectionState.CLOSED
        self._connection_id = None
        logger.info(f"Channel closed (id={previous_id}): {reason}")
        await self._notify_lifecycle(
            LifecycleEvent.DISCONNECT, {"id": previous_id, "reason": reason}
        )

    async def _on_connect_error(self, *args: Any) -> None:
        error = args[0] if args else "unknown error"
        logger.warning(f"Channel connection error: {error}")
        await self._notify_lifecycle(LifecycleEvent.ERROR, {"error": str(error)})

    async def _notify_lifecycle(self, event: LifecycleEvent, info: Dict[str, Any]) -> None:
        for handler in list(self._lifecycle_handlers):
            try:
                result = handler(event, info)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Lifecycle handler failed for {event.value}: {e}", exc_info=True)
