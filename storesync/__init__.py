"""
Client-side orchestration for store sync jobs.

This package contains:
- channel: Duplex event channel (Socket.IO) with lifecycle events
- rooms: Store (partition) binding, re-announced on reconnect
- launcher: Deduplicated job launches with retry
- progress: Progress event reduction into a renderable status
- session: All of the above wired per view
- series: Chart series down-sampling
- pagination: Page-number windows for tables
- api_client: REST analytics endpoints
"""

# Import in dependency order
from storesync.exceptions import (
    StoreSyncError,
    ChannelError,
    APIError,
    PayloadError,
    ValidationError,
)

from storesync.config import config

from storesync.channel import ChannelClient, ConnectionState, LifecycleEvent
from storesync.rooms import RoomSelector
from storesync.launcher import DedupeGuards, JobLauncher, LaunchOutcome
from storesync.progress import ProgressReducer, Stage, SyncStatus
from storesync.session import JobFamily, SyncSession

from storesync.series import (
    AggregatedSeriesPoint,
    RawSeriesPoint,
    aggregate,
    resolution,
)

from storesync.pagination import ELLIPSIS, PaginationWindow, page_tokens

__all__ = [
    # Exceptions
    "StoreSyncError",
    "ChannelError",
    "APIError",
    "PayloadError",
    "ValidationError",
    # Config
    "config",
    # Channel
    "ChannelClient",
    "ConnectionState",
    "LifecycleEvent",
    "RoomSelector",
    # Jobs
    "DedupeGuards",
    "JobLauncher",
    "LaunchOutcome",
    "ProgressReducer",
    "Stage",
    "SyncStatus",
    "JobFamily",
    "SyncSession",
    # Series
    "AggregatedSeriesPoint",
    "RawSeriesPoint",
    "aggregate",
    "resolution",
    # Pagination
    "ELLIPSIS",
    "PaginationWindow",
    "page_tokens",
]
