"""
Progress reduction for backend sync jobs.

Folds the stream of ProgressEvents for one job kind into a single
SyncStatus that a view can render.

Stage handling:
- "error"                 -> ERROR, guard released, reset to IDLE after a hold
- "completed"             -> COMPLETED, guard released, refresh + reset after a hold
- "<phase>_completed"     -> FINALIZING (not terminal)
- configured data stages  -> payload stored in the data slot, stage unchanged
- terminal for old params -> guard released, IDLE, superseded listeners told
- anything else           -> RUNNING

Usage:
    reducer = ProgressReducer("ltv-cohort", scheduler, guards,
                              data_stages=["get_customer_ltv_cohorts"])
    reducer.subscribe(render)
    reducer.begin({"sku": "SKU-1"})
    reducer.apply({"stage": "calculating", "message": "...", "progress": 40})
"""
import json
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from storesync.config import config
from storesync.exceptions import PayloadError
from storesync.launcher import DedupeGuards
from storesync.observability import get_logger
from storesync.scheduler import Scheduler, TimerHandle
from storesync.schemas import UNBOUNDED, ProgressEventMessage

logger = get_logger(__name__)

TERMINAL_COMPLETED = "completed"
TERMINAL_ERROR = "error"
PARTIAL_COMPLETED_SUFFIX = "_completed"

StatusListener = Callable[["SyncStatus"], None]
DataListener = Callable[[str, Any], None]
RefreshListener = Callable[[str], None]
SupersededListener = Callable[[str, Optional[Dict[str, Any]]], None]


class Stage(Enum):
    """Renderable stage of a job."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ERROR = "error"


ACTIVE_STAGES = frozenset({Stage.STARTING, Stage.RUNNING, Stage.FINALIZING})


@dataclass(frozen=True)
class SyncStatus:
    """Reduced view of one job kind's progress."""

    kind: str
    stage: Stage = Stage.IDLE
    message: str = ""
    progress_pct: float = 0.0
    current: Optional[int] = None
    total: Optional[Union[int, str]] = None
    stalled: bool = False
    params: Optional[Dict[str, Any]] = None

    @property
    def is_active(self) -> bool:
        return self.stage in ACTIVE_STAGES

    @property
    def is_terminal(self) -> bool:
        return self.stage in (Stage.COMPLETED, Stage.ERROR)

    @property
    def is_unbounded(self) -> bool:
        return self.total == UNBOUNDED

    @property
    def counter_text(self) -> str:
        """
        Counter for display.

        "12 / 40" for a bounded total, "12 so far" for an unbounded one,
        "" when the backend reports no counts.
        """
        if self.current is None and self.total is None:
            return ""
        current = self.current or 0
        if self.is_unbounded or self.total is None:
            return f"{current} so far"
        return f"{current} / {self.total}"


def parse_progress_event(raw: Union[ProgressEventMessage, Mapping[str, Any]]) -> ProgressEventMessage:
    """
    Validate an inbound progress message.

    Raises:
        PayloadError: If the message is not a valid progress event
    """
    if isinstance(raw, ProgressEventMessage):
        return raw
    if not isinstance(raw, Mapping):
        raise PayloadError("Progress event is not an object", type(raw).__name__)
    try:
        return ProgressEventMessage.model_validate(dict(raw))
    except PydanticValidationError as e:
        raise PayloadError(
            "Invalid progress event", str(e), stage=str(raw.get("stage"))
        ) from e


def decode_payload(event: ProgressEventMessage) -> Any:
    """
    Decode the JSON payload of a data event.

    Raises:
        PayloadError: If the payload is missing or not valid JSON
    """
    if event.payload is None:
        raise PayloadError("Data event has no payload", stage=event.stage)
    try:
        return json.loads(event.payload)
    except (TypeError, ValueError) as e:
        raise PayloadError("Payload is not valid JSON", str(e), stage=event.stage) from e


def is_partial_completion(stage: str) -> bool:
    """True for phase completions such as 'analytics_completed'."""
    return stage != TERMINAL_COMPLETED and stage.endswith(PARTIAL_COMPLETED_SUFFIX)


class ProgressReducer:
    """
    State machine for one job kind.

    Features:
    - Monotonic progress within a job instance, reset on begin()
    - Partial completions held as FINALIZING until the final "completed"
    - Guard released the moment a terminal stage arrives
    - COMPLETED / ERROR held for display, then reset to IDLE
    - Results for superseded params are discarded
    - Malformed events are logged and leave the status unchanged
    """

    def __init__(
        self,
        kind: str,
        scheduler: Scheduler,
        guards: Optional[DedupeGuards] = None,
        data_stages: Iterable[str] = (),
        completed_hold: Optional[float] = None,
        error_hold: Optional[float] = None,
    ):
        self.kind = kind
        self._scheduler = scheduler
        self._guards = guards
        self._data_stages = frozenset(s.lower() for s in data_stages)
        self._completed_hold = (
            config.progress.completed_hold_seconds if completed_hold is None else completed_hold
        )
        self._error_hold = config.progress.error_hold_seconds if error_hold is None else error_hold

        self._status = SyncStatus(kind=kind)
        self._expected_params: Optional[Dict[str, Any]] = None
        self._data: Any = None
        self._loading = False
        self._hold_timer: Optional[TimerHandle] = None

        self._listeners: List[StatusListener] = []
        self._data_listeners: List[DataListener] = []
        self._refresh_listeners: List[RefreshListener] = []
        self._superseded_listeners: List[SupersededListener] = []

    # ─── State ────────────────────────────────────────────────────────────────

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def data(self) -> Any:
        """Last result delivered by a data stage."""
        return self._data

    @property
    def loading(self) -> bool:
        """True between begin() and the first data event."""
        return self._loading

    @property
    def expected_params(self) -> Optional[Dict[str, Any]]:
        return self._expected_params

    def handles_data_stage(self, stage: str) -> bool:
        return stage.lower() in self._data_stages

    # ─── Subscriptions ────────────────────────────────────────────────────────

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Be told about every status change."""
        return _add_listener(self._listeners, listener)

    def on_data(self, listener: DataListener) -> Callable[[], None]:
        """Be told when a data stage delivers a result."""
        return _add_listener(self._data_listeners, listener)

    def on_refresh(self, listener: RefreshListener) -> Callable[[], None]:
        """Be told when dependent views should refetch (after the completed hold)."""
        return _add_listener(self._refresh_listeners, listener)

    def on_superseded(self, listener: SupersededListener) -> Callable[[], None]:
        """
        Be told when a job for an older selection ends.

        The listener receives the kind and the current selection, which has
        not been launched yet.
        """
        return _add_listener(self._superseded_listeners, listener)

    # ─── Transitions ──────────────────────────────────────────────────────────

    def begin(self, params: Optional[Dict[str, Any]] = None) -> SyncStatus:
        """Start tracking a new job instance (IDLE -> STARTING)."""
        self._cancel_hold()
        self._expected_params = dict(params) if params is not None else None
        self._loading = True
        return self._set(SyncStatus(
            kind=self.kind,
            stage=Stage.STARTING,
            message="Starting...",
            params=self._expected_params,
        ))

    def expect(self, params: Optional[Dict[str, Any]]) -> None:
        """
        Change the selection results must match, without starting a job.

        Used when the selection changes while a launch for the previous
        selection is still in flight.
        """
        self._expected_params = dict(params) if params is not None else None

    def apply(self, raw: Union[ProgressEventMessage, Mapping[str, Any]]) -> SyncStatus:
        """
        Fold one progress event into the status.

        Args:
            raw: Progress event (validated model or wire dict)

        Returns:
            The status after the event
        """
        try:
            event = parse_progress_event(raw)
        except PayloadError as e:
            logger.warning(f"Ignoring malformed '{self.kind}' event: {e}")
            return self._status

        if not self._params_match(event):
            if event.stage in (TERMINAL_COMPLETED, TERMINAL_ERROR):
                return self._finish_superseded(event)
            logger.debug(
                f"Discarding '{self.kind}' event for superseded params",
                extra={"stage": event.stage},
            )
            return self._status

        if self._guards:
            self._guards.touch(self.kind)

        stage = event.stage
        if stage in self._data_stages:
            self._apply_data(event)
            return self._status
        if stage == TERMINAL_ERROR:
            return self._fail(event.message or "Sync failed")
        if stage == TERMINAL_COMPLETED:
            return self._complete(event)

        if self._status.stage is Stage.COMPLETED and stage != "starting":
            # Trailing chatter from the finished instance
            return self._status

        if self._status.stage in (Stage.IDLE, Stage.COMPLETED, Stage.ERROR):
            # Job started elsewhere (e.g. a scheduled auto-sync)
            self._cancel_hold()
            self._status = SyncStatus(kind=self.kind, params=self._expected_params)

        # A later phase may report progress again after a phase completion
        next_stage = Stage.FINALIZING if is_partial_completion(stage) else Stage.RUNNING

        return self._set(replace(
            self._status,
            stage=next_stage,
            message=event.message or self._status.message,
            progress_pct=max(self._status.progress_pct, event.progress),
            current=event.current if event.current is not None else self._status.current,
            total=event.total if event.total is not None else self._status.total,
            stalled=False,
        ))

    def fail(self, message: str) -> SyncStatus:
        """Enter ERROR from the client side (launch exhausted, guard expired)."""
        return self._fail(message)

    def mark_disconnected(self) -> SyncStatus:
        """Flag an in-flight job as stalled after the channel dropped."""
        if not self._status.is_active:
            return self._status
        logger.warning(f"Channel dropped while '{self.kind}' was {self._status.stage.value}")
        return self._set(replace(self._status, stalled=True))

    def close(self, release_guard: bool = False) -> None:
        """Cancel timers; optionally release this kind's guard."""
        self._cancel_hold()
        if release_guard and self._guards:
            self._guards.release(self.kind)

    # ─── Internals ────────────────────────────────────────────────────────────

    def _params_match(self, event: ProgressEventMessage) -> bool:
        if event.params is None or self._expected_params is None:
            return True
        return event.params == self._expected_params

    def _finish_superseded(self, event: ProgressEventMessage) -> SyncStatus:
        # The in-flight job ran for an older selection; its result is not shown
        if self._guards:
            self._guards.release(self.kind)
        self._cancel_hold()

        logger.info(
            f"Superseded '{self.kind}' job ended ({event.stage}), selection changed to "
            f"{self._expected_params}",
            extra={"kind": self.kind},
        )
        status = self._set(SyncStatus(kind=self.kind, params=self._expected_params))
        _notify(self._superseded_listeners, self.kind, self._expected_params)
        return status

    def _apply_data(self, event: ProgressEventMessage) -> None:
        try:
            data = decode_payload(event)
        except PayloadError as e:
            logger.warning(f"Ignoring '{self.kind}' data event: {e}")
            return

        self._data = data
        self._loading = False
        logger.debug(f"Received '{event.stage}' data for '{self.kind}'")
        _notify(self._data_listeners, event.stage, data)

    def _complete(self, event: ProgressEventMessage) -> SyncStatus:
        if self._guards:
            self._guards.release(self.kind)

        status = self._set(replace(
            self._status,
            stage=Stage.COMPLETED,
            message=event.message or "Complete!",
            progress_pct=100.0,
            current=event.current if event.current is not None else self._status.current,
            total=event.total if event.total is not None else self._status.total,
            stalled=False,
        ))
        logger.info(f"'{self.kind}' completed", extra={"kind": self.kind})
        self._schedule_reset(self._completed_hold, refresh=True)
        return status

    def _fail(self, message: str) -> SyncStatus:
        if self._guards:
            self._guards.release(self.kind)

        self._loading = False
        status = self._set(replace(
            self._status, stage=Stage.ERROR, message=message, stalled=False
        ))
        logger.warning(f"'{self.kind}' failed: {message}", extra={"kind": self.kind})
        self._schedule_reset(self._error_hold, refresh=False)
        return status

    def _schedule_reset(self, hold: float, refresh: bool) -> None:
        self._cancel_hold()
        self._hold_timer = self._scheduler.call_later(hold, self._reset, refresh)

    def _reset(self, refresh: bool) -> None:
        self._hold_timer = None
        self._set(SyncStatus(kind=self.kind, params=self._expected_params))
        if refresh:
            _notify(self._refresh_listeners, self.kind)

    def _cancel_hold(self) -> None:
        if self._hold_timer:
            self._hold_timer.cancel()
            self._hold_timer = None

    def _set(self, status: SyncStatus) -> SyncStatus:
        self._status = status
        _notify(self._listeners, status)
        return status


def _add_listener(listeners: List[Callable], listener: Callable) -> Callable[[], None]:
    listeners.append(listener)

    def remove() -> None:
        if listener in listeners:
            listeners.remove(listener)

    return remove


def _notify(listeners: List[Callable], *args: Any) -> None:
    for listener in list(listeners):
        try:
            listener(*args)
        except Exception as e:
            logger.error(f"Progress listener failed: {e}", exc_info=True)
