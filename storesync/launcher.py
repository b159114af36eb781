"""
Job launching with per-kind deduplication.

A job kind may have at most one launch in flight. DedupeGuards holds the
in-flight flags for one session and is injected into both the launcher
(which sets them) and the progress reducers (which clear them on a terminal
stage), so independent sessions never share state.

Usage:
    guards = DedupeGuards(scheduler)
    launcher = JobLauncher(channel, guards, scheduler, rooms=rooms)

    outcome = await launcher.launch("order-sync", {"syncDate": "2026-10-01"})
"""
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from storesync.channel import ChannelClient
from storesync.config import config
from storesync.observability import get_logger
from storesync.resilience import RetryPolicy
from storesync.rooms import RoomSelector
from storesync.scheduler import Scheduler, TimerHandle
from storesync.schemas import JobStartMessage

logger = get_logger(__name__)

ExpiryListener = Callable[[str], None]


class DedupeGuards:
    """
    Session-scoped in-flight flags keyed by job kind.

    When a scheduler and timeout are given, a guard that sees no activity
    (set() or touch()) for `timeout` seconds is released automatically so a
    job whose terminal event was lost does not block the kind forever.
    """

    def __init__(
        self,
        scheduler: Optional[Scheduler] = None,
        timeout: Optional[float] = None,
    ):
        self._scheduler = scheduler
        self._timeout = timeout
        self._active: Dict[str, float] = {}  # kind -> time set
        self._timers: Dict[str, TimerHandle] = {}
        self._expiry_listeners: List[ExpiryListener] = []

    def is_set(self, kind: str) -> bool:
        return kind in self._active

    def set(self, kind: str) -> None:
        self._active[kind] = self._scheduler.time() if self._scheduler else 0.0
        self._arm(kind)

    def release(self, kind: str) -> bool:
        """
        Clear the guard for a kind.

        Returns:
            True if the guard was set
        """
        self._disarm(kind)
        return self._active.pop(kind, None) is not None

    def release_all(self) -> List[str]:
        """Clear every guard; returns the kinds that were set."""
        kinds = list(self._active)
        for kind in kinds:
            self.release(kind)
        return kinds

    def touch(self, kind: str) -> None:
        """Record activity for a kind, restarting its timeout."""
        if kind in self._active:
            self._arm(kind)

    def active(self) -> List[str]:
        return sorted(self._active)

    def add_expiry_listener(self, listener: ExpiryListener) -> Callable[[], None]:
        """Be told when a guard is released by timeout."""
        self._expiry_listeners.append(listener)

        def remove() -> None:
            if listener in self._expiry_listeners:
                self._expiry_listeners.remove(listener)

        return remove

    def _arm(self, kind: str) -> None:
        self._disarm(kind)
        if self._scheduler is None or self._timeout is None:
            return
        self._timers[kind] = self._scheduler.call_later(self._timeout, self._expire, kind)

    def _disarm(self, kind: str) -> None:
        timer = self._timers.pop(kind, None)
        if timer:
            timer.cancel()

    def _expire(self, kind: str) -> None:
        self._timers.pop(kind, None)
        if self._active.pop(kind, None) is None:
            return

        logger.warning(
            f"Releasing '{kind}' guard after {self._timeout}s without progress",
            extra={"kind": kind},
        )
        for listener in list(self._expiry_listeners):
            try:
                listener(kind)
            except Exception as e:
                logger.error(f"Guard expiry listener failed for '{kind}': {e}", exc_info=True)


class LaunchOutcome(Enum):
    """What launch() did with a request."""

    SENT = "sent"
    DEDUPED = "deduped"
    SCHEDULED = "scheduled"
    EXHAUSTED = "exhausted"


class JobLauncher:
    """
    Issues job-start messages, at most one in flight per job kind.

    Features:
    - Second launch of a kind while its guard is set is dropped
    - Launch while the channel is closed is retried per RetryPolicy
    - A newer launch of the same kind replaces a pending retry
    - Pending retries are cancelled by cancel()/close()
    """

    def __init__(
        self,
        channel: ChannelClient,
        guards: DedupeGuards,
        scheduler: Scheduler,
        rooms: Optional[RoomSelector] = None,
        retry_policy: Optional[RetryPolicy] = None,
        event_name: Optional[str] = None,
        on_started: Optional[Callable[[str, Dict[str, Any]], None]] = None,
        on_exhausted: Optional[Callable[[str, Dict[str, Any], int], None]] = None,
    ):
        self._channel = channel
        self._guards = guards
        self._scheduler = scheduler
        self._rooms = rooms
        self._policy = retry_policy or RetryPolicy.fixed(
            config.launcher.retry_delay_seconds, config.launcher.max_attempts
        )
        self._event_name = event_name or config.channel.start_job_event
        self._on_started = on_started
        self._on_exhausted = on_exhausted
        self._retries: Dict[str, TimerHandle] = {}

    @property
    def pending_retries(self) -> List[str]:
        return sorted(self._retries)

    async def launch(self, kind: str, params: Optional[Dict[str, Any]] = None) -> LaunchOutcome:
        """
        Start a backend job unless one of the same kind is in flight.

        Args:
            kind: Job kind, e.g. "order-sync"
            params: Job parameters (date range, SKU, ...)

        Returns:
            LaunchOutcome describing what happened
        """
        if self._guards.is_set(kind):
            logger.debug(f"Launch of '{kind}' dropped, one is already in flight")
            return LaunchOutcome.DEDUPED

        self.cancel(kind)
        return await self._attempt(kind, dict(params or {}), 1)

    def cancel(self, kind: str) -> bool:
        """
        Cancel a pending retry for a kind.

        Returns:
            True if a retry was pending
        """
        timer = self._retries.pop(kind, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def close(self) -> None:
        """Cancel every pending retry."""
        for kind in list(self._retries):
            self.cancel(kind)

    async def _attempt(self, kind: str, params: Dict[str, Any], attempt: int) -> LaunchOutcome:
        self._retries.pop(kind, None)

        if self._guards.is_set(kind):
            return LaunchOutcome.DEDUPED

        if self._channel.is_open:
            self._guards.set(kind)
            if self._on_started:
                self._on_started(kind, params)

            message = JobStartMessage(
                kind=kind,
                params=params,
                roomKey=self._rooms.partition_key if self._rooms else None,
            )
            if await self._channel.send(self._event_name, message.model_dump()):
                logger.info(
                    f"Launched '{kind}' (attempt {attempt})",
                    extra={"kind": kind, "room": message.roomKey},
                )
                return LaunchOutcome.SENT

            # The channel dropped between the check and the send
            self._guards.release(kind)

        return self._schedule_retry(kind, params, attempt)

    def _schedule_retry(self, kind: str, params: Dict[str, Any], attempt: int) -> LaunchOutcome:
        if not self._policy.allows(attempt + 1):
            logger.error(
                f"Giving up launching '{kind}' after {attempt} attempts, channel not open",
                extra={"kind": kind},
            )
            if self._on_exhausted:
                self._on_exhausted(kind, params, attempt)
            return LaunchOutcome.EXHAUSTED

        delay = self._policy.delay_for(attempt)
        logger.info(f"Channel not open, retrying '{kind}' in {delay:.1f}s (attempt {attempt})")
        self._retries[kind] = self._scheduler.call_later(
            delay, self._attempt, kind, params, attempt + 1
        )
        return LaunchOutcome.SCHEDULED
