"""
Partition (store) binding for the event channel.

The backend scopes progress events to the store a connection announced. It
keeps no memory of bindings across reconnects, so the announcement is
repeated on every CLOSED -> OPEN transition.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from storesync.channel import ChannelClient, LifecycleEvent
from storesync.config import config
from storesync.observability import get_logger
from storesync.schemas import PartitionSelectMessage
from storesync.validators import validate_partition_key

logger = get_logger(__name__)


@dataclass(frozen=True)
class RoomBinding:
    """The (connection, partition) pair currently announced to the backend."""

    connection_id: Optional[str]
    partition_key: str


class RoomSelector:
    """
    Binds a ChannelClient to one partition key.

    bind() before the channel is open queues the intent; it is flushed on
    the next connect. Every reconnect re-announces the current key.
    """

    def __init__(self, channel: ChannelClient, event_name: Optional[str] = None):
        self._channel = channel
        self._event_name = event_name or config.channel.partition_event
        self._partition_key: Optional[str] = None
        self._binding: Optional[RoomBinding] = None
        self._pending = False
        self._unsubscribe = channel.on_lifecycle(self._on_lifecycle)

    @property
    def partition_key(self) -> Optional[str]:
        return self._partition_key

    @property
    def binding(self) -> Optional[RoomBinding]:
        return self._binding

    @property
    def pending(self) -> bool:
        """True when a bind is queued waiting for the channel to open."""
        return self._pending

    async def bind(self, partition_key: str) -> bool:
        """
        Select the partition to receive events for.

        Args:
            partition_key: Store identifier

        Returns:
            True if announced now, False if queued until the channel opens

        Raises:
            ValidationError: If the key is empty or malformed
        """
        partition_key = validate_partition_key(partition_key)

        if partition_key != self._partition_key:
            logger.info(f"Binding channel to partition '{partition_key}'")
            self._binding = None
        self._partition_key = partition_key

        if not self._channel.is_open:
            self._pending = True
            logger.debug(f"Channel not open, queued partition '{partition_key}'")
            return False

        return await self._announce()

    def matches(self, partition: Optional[str]) -> bool:
        """
        Check whether an event's declared partition belongs to this binding.

        Events that declare no partition are accepted.
        """
        if partition is None:
            return True
        return partition == self._partition_key

    def close(self) -> None:
        """Stop following lifecycle transitions."""
        self._unsubscribe()
        self._pending = False

    async def _announce(self) -> bool:
        message = PartitionSelectMessage(partitionKey=self._partition_key)
        sent = await self._channel.send(self._event_name, message.model_dump())

        self._pending = not sent
        if sent:
            self._binding = RoomBinding(self._channel.connection_id, self._partition_key)
            logger.debug(
                f"Announced partition '{self._partition_key}' "
                f"on connection {self._channel.connection_id}"
            )
        return sent

    async def _on_lifecycle(self, event: LifecycleEvent, info: Dict[str, Any]) -> None:
        if event is LifecycleEvent.CONNECT:
            if self._partition_key is not None:
                await self._announce()
        elif event is LifecycleEvent.DISCONNECT:
            self._binding = None
            if self._partition_key is not None:
                self._pending = True
