"""
Sync session: channel, partition binding, launcher and reducers wired together.

One SyncSession per view (or per process) follows a set of job families.
It routes progress events from the channel to the reducer of the right job
kind, drops events for other partitions, and tears everything down in one
call.

Usage:
    async with SyncSession(channel, families=default_families()) as session:
        await session.select_store("buycosari")
        session.reducer("order-sync").subscribe(render)
        await session.launch("order-sync", {"syncDate": "2026-10-01"})
"""
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from storesync.channel import ChannelClient, LifecycleEvent
from storesync.config import config
from storesync.exceptions import PayloadError
from storesync.launcher import DedupeGuards, JobLauncher, LaunchOutcome
from storesync.observability import get_logger, job_context
from storesync.progress import ProgressReducer, SyncStatus, parse_progress_event
from storesync.resilience import RetryPolicy
from storesync.rooms import RoomSelector
from storesync.scheduler import AsyncioScheduler, Scheduler, TimerHandle
from storesync.schemas import ProgressEventMessage

logger = get_logger(__name__)


@dataclass(frozen=True)
class JobFamily:
    """A job kind and the channel events that carry its progress."""

    kind: str
    event: str
    data_stages: Tuple[str, ...] = ()
    # Events that ask the client to launch the job again with current params
    relaunch_events: Tuple[str, ...] = ()


def default_families() -> List[JobFamily]:
    """Job families known to the analytics backend."""
    families = []
    for kind, event in config.jobs.events.items():
        families.append(JobFamily(
            kind=kind,
            event=event,
            data_stages=tuple(config.jobs.data_stages.get(kind, [])),
            relaunch_events=("refresh_product_skus",) if kind == "ltv-cohort" else (),
        ))
    return families


class SyncSession:
    """
    Orchestrates job launches and progress for several job kinds.

    Features:
    - Per-kind reducer, guard and retry timer (no cross-kind state)
    - Events for another partition are ignored
    - Events on a shared channel go to the kind they declare, else to the
      most recently launched kind in flight, else to the first family on
      that channel
    - A job that ends after its selection changed is relaunched with the
      new selection
    - Disconnect mid-job marks in-flight statuses as stalled
    - teardown() unsubscribes handlers and cancels every timer
    """

    def __init__(
        self,
        channel: ChannelClient,
        families: Optional[Iterable[JobFamily]] = None,
        scheduler: Optional[Scheduler] = None,
        guards: Optional[DedupeGuards] = None,
        rooms: Optional[RoomSelector] = None,
        retry_policy: Optional[RetryPolicy] = None,
        completed_hold: Optional[float] = None,
        error_hold: Optional[float] = None,
    ):
        self.channel = channel
        self.scheduler = scheduler or AsyncioScheduler()
        self.guards = guards or DedupeGuards(
            self.scheduler, timeout=config.launcher.guard_timeout_seconds
        )
        self.rooms = rooms or RoomSelector(channel)
        self.launcher = JobLauncher(
            channel,
            self.guards,
            self.scheduler,
            rooms=self.rooms,
            retry_policy=retry_policy,
            on_started=self._on_launch_started,
            on_exhausted=self._on_launch_exhausted,
        )

        self._families: Dict[str, JobFamily] = {}
        self._reducers: Dict[str, ProgressReducer] = {}
        self._by_event: Dict[str, List[str]] = {}
        self._relaunch: Dict[str, List[str]] = {}

        for family in (families if families is not None else default_families()):
            self._families[family.kind] = family
            self._reducers[family.kind] = ProgressReducer(
                family.kind,
                self.scheduler,
                self.guards,
                data_stages=family.data_stages,
                completed_hold=completed_hold,
                error_hold=error_hold,
            )
            self._by_event.setdefault(family.event, []).append(family.kind)
            for event in family.relaunch_events:
                self._relaunch.setdefault(event, []).append(family.kind)

        self._unsubscribers: List[Callable[[], None]] = []
        self._started = False
        # kind -> launch sequence number, for routing events that name no kind
        self._launch_order: Dict[str, int] = {}
        self._launch_seq = 0
        self._relaunch_timers: Dict[str, TimerHandle] = {}

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Attach to the channel. Safe to call more than once."""
        if self._started:
            return
        self._started = True

        for event in self._by_event:
            self._unsubscribers.append(self.channel.on(event, self._progress_handler(event)))
        for event in self._relaunch:
            self._unsubscribers.append(self.channel.on(event, self._relaunch_handler(event)))
        self._unsubscribers.append(self.channel.on_lifecycle(self._on_lifecycle))
        self._unsubscribers.append(self.guards.add_expiry_listener(self._on_guard_expired))
        for reducer in self._reducers.values():
            self._unsubscribers.append(reducer.on_superseded(self._on_superseded))

        logger.debug(f"Sync session attached to {sorted(self._by_event)}")

    def teardown(self, release_guards: bool = False) -> None:
        """
        Detach from the channel and cancel every pending timer.

        Args:
            release_guards: Also clear in-flight guards. Off by default since
                the backend job may still be running; the guard timeout
                releases them if it never reports back.
        """
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        self.launcher.close()
        for timer in self._relaunch_timers.values():
            timer.cancel()
        self._relaunch_timers.clear()
        for reducer in self._reducers.values():
            reducer.close(release_guard=release_guards)
        self.rooms.close()
        self._started = False

        logger.debug("Sync session torn down", extra={"released_guards": release_guards})

    async def __aenter__(self) -> "SyncSession":
        self.start()
        return self

    async def __aexit__(self, *args) -> None:
        self.teardown()

    # ─── Operations ───────────────────────────────────────────────────────────

    @property
    def kinds(self) -> List[str]:
        return list(self._families)

    def reducer(self, kind: str) -> ProgressReducer:
        try:
            return self._reducers[kind]
        except KeyError:
            raise KeyError(f"Unknown job kind: {kind}") from None

    def status(self, kind: str) -> SyncStatus:
        return self.reducer(kind).status

    def on_refresh(self, kind: str, callback: Callable[[str], None]) -> Callable[[], None]:
        """Register a refetch callback fired after a completed job's display hold."""
        return self.reducer(kind).on_refresh(callback)

    async def select_store(self, store_id: str) -> bool:
        """Bind the channel to a store; queued if the channel is not open yet."""
        return await self.rooms.bind(store_id)

    async def launch(self, kind: str, params: Optional[Dict[str, Any]] = None) -> LaunchOutcome:
        """
        Launch a job of a known kind.

        The current selection for the kind is updated even when the launch
        is deduplicated, so results for the previous selection are dropped.
        """
        reducer = self.reducer(kind)
        reducer.expect(params)
        with job_context(kind=kind, store=self.rooms.partition_key):
            return await self.launcher.launch(kind, params)

    # ─── Event routing ────────────────────────────────────────────────────────

    def _progress_handler(self, event_name: str) -> Callable[[Any], None]:
        def handle(data: Any) -> None:
            self._route(event_name, data)

        handle.__name__ = f"route_{event_name}"
        return handle

    def _relaunch_handler(self, event_name: str) -> Callable[[Any], Any]:
        async def handle(data: Any) -> None:
            for kind in self._relaunch.get(event_name, []):
                params = self._reducers[kind].expected_params
                if params is None:
                    continue
                with job_context(kind=kind, store=self.rooms.partition_key):
                    logger.info(f"'{event_name}' received, relaunching '{kind}'")
                    await self.launcher.launch(kind, params)

        handle.__name__ = f"relaunch_{event_name}"
        return handle

    def _route(self, event_name: str, data: Any) -> None:
        try:
            event = parse_progress_event(data if isinstance(data, Mapping) else _as_mapping(data))
        except PayloadError as e:
            logger.warning(f"Ignoring malformed '{event_name}' message: {e}")
            return

        if not self.rooms.matches(event.store_id):
            logger.debug(
                f"Ignoring '{event_name}' for partition '{event.store_id}'",
                extra={"bound": self.rooms.partition_key},
            )
            return

        store = event.store_id or self.rooms.partition_key
        for kind in self._targets(event_name, event):
            with job_context(kind=kind, store=store):
                self._reducers[kind].apply(event)

    def _targets(self, event_name: str, event: ProgressEventMessage) -> List[str]:
        kinds = self._by_event.get(event_name, [])

        if event.kind is not None:
            return [event.kind] if event.kind in kinds else []

        data_kinds = [k for k in kinds if self._reducers[k].handles_data_stage(event.stage)]
        if data_kinds:
            return data_kinds

        active = [k for k in kinds if self._reducers[k].status.is_active]
        if active:
            # One event ends at most one job; jobs not launched here rank last
            return [max(active, key=lambda k: self._launch_order.get(k, -1))]

        return kinds[:1]

    # ─── Callbacks ────────────────────────────────────────────────────────────

    def _on_launch_started(self, kind: str, params: Dict[str, Any]) -> None:
        self._launch_seq += 1
        self._launch_order[kind] = self._launch_seq
        self._reducers[kind].begin(params)

    def _on_superseded(self, kind: str, params: Optional[Dict[str, Any]]) -> None:
        previous = self._relaunch_timers.pop(kind, None)
        if previous:
            previous.cancel()
        self._relaunch_timers[kind] = self.scheduler.call_later(
            0, self._relaunch_selection, kind, params
        )

    async def _relaunch_selection(self, kind: str, params: Optional[Dict[str, Any]]) -> None:
        self._relaunch_timers.pop(kind, None)
        with job_context(kind=kind, store=self.rooms.partition_key):
            logger.info(f"Launching '{kind}' for the new selection {params}")
            await self.launcher.launch(kind, params)

    def _on_launch_exhausted(self, kind: str, params: Dict[str, Any], attempts: int) -> None:
        self._reducers[kind].fail(f"Could not reach the sync server after {attempts} attempts")

    def _on_guard_expired(self, kind: str) -> None:
        reducer = self._reducers.get(kind)
        if reducer and reducer.status.is_active:
            reducer.fail("No progress received from the sync server")

    def _on_lifecycle(self, event: LifecycleEvent, info: Dict[str, Any]) -> None:
        if event is LifecycleEvent.DISCONNECT:
            for reducer in self._reducers.values():
                reducer.mark_disconnected()
        elif event is LifecycleEvent.ERROR:
            logger.warning(f"Channel error: {info.get('error')}")


def _as_mapping(data: Any) -> Any:
    # Older emitters send the event as a JSON string
    if isinstance(data, (str, bytes)):
        try:
            return json.loads(data)
        except ValueError as e:
            raise PayloadError("Progress message is not JSON", str(e)) from e
    return data
