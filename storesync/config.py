"""
Centralized configuration for the store sync client.

This module provides a single source of truth for all configuration values.
Configuration is loaded from environment variables with sensible defaults.

Usage:
    from storesync.config import config

    url = config.channel.url
    delay = config.launcher.retry_delay_seconds
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw.isdigit() else None


@dataclass(frozen=True)
class ChannelConfig:
    """Socket.IO channel configuration."""

    url: str = field(
        default_factory=lambda: os.getenv("STORESYNC_SOCKET_URL", "http://localhost:5000")
    )
    transports: Tuple[str, ...] = ("websocket", "polling")
    connect_timeout: float = 20.0
    partition_event: str = "selectPartition"
    start_job_event: str = "startJob"


@dataclass(frozen=True)
class LauncherConfig:
    """Job launch retry and dedupe configuration."""

    retry_delay_seconds: float = 2.0
    # None = retry until the channel opens or the launch is cancelled
    max_attempts: Optional[int] = field(
        default_factory=lambda: _optional_int("STORESYNC_LAUNCH_MAX_ATTEMPTS")
    )
    guard_timeout_seconds: float = 300.0


@dataclass(frozen=True)
class ProgressConfig:
    """Progress display configuration."""

    completed_hold_seconds: float = 2.0
    error_hold_seconds: float = 2.0
    unbounded_sentinels: Tuple[str, ...] = ("unlimited", "unbounded")


@dataclass(frozen=True)
class APIConfig:
    """REST analytics API configuration."""

    base_url: str = field(
        default_factory=lambda: os.getenv("STORESYNC_API_URL", "http://localhost:5000/api")
    )
    token: str = field(default_factory=lambda: os.getenv("STORESYNC_API_TOKEN", ""))
    request_timeout: float = 30.0
    default_page_size: int = 25


@dataclass(frozen=True)
class SeriesConfig:
    """Chart resolution thresholds (span in days -> bucket count)."""

    # Ordered (max_span_days, buckets); spans beyond the last entry use long_range_buckets
    steps: List[Tuple[int, int]] = field(default_factory=lambda: [(30, 50), (90, 60)])
    long_range_buckets: int = 50


@dataclass(frozen=True)
class JobFamilyConfig:
    """Channel event names per job kind."""

    events: Dict[str, str] = field(default_factory=lambda: {
        "order-sync": "syncProgress",
        "ads-sync": "adsSyncProgress",
        "ltv-cohort": "syncProgress",
        "analytics-recalc": "recalcProgress",
        "dashboard-sync": "dashboard_syncProgress",
        "auto-sync": "autoSyncProgress",
    })

    # Stage tags that deliver result data rather than progress
    data_stages: Dict[str, List[str]] = field(default_factory=lambda: {
        "ltv-cohort": ["get_customer_ltv_cohorts"],
    })

    def event_for(self, kind: str) -> str:
        """Get the progress event name for a job kind."""
        return self.events.get(kind, "syncProgress")


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "0.3.0"
    default_store_id: str = field(
        default_factory=lambda: os.getenv("STORESYNC_DEFAULT_STORE", "buycosari")
    )
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_json: bool = field(
        default_factory=lambda: os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes")
    )
    channel: ChannelConfig = field(default_factory=ChannelConfig)
    launcher: LauncherConfig = field(default_factory=LauncherConfig)
    progress: ProgressConfig = field(default_factory=ProgressConfig)
    api: APIConfig = field(default_factory=APIConfig)
    series: SeriesConfig = field(default_factory=SeriesConfig)
    jobs: JobFamilyConfig = field(default_factory=JobFamilyConfig)


# Global config instance
config = AppConfig()


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(require_api: bool = False) -> None:
    """
    Validate that all required configuration is present.

    Call this on startup to fail fast with clear error messages
    instead of cryptic runtime failures.

    Args:
        require_api: If True, validate the REST API settings too

    Raises:
        ConfigurationError: If required configuration is missing
    """
    errors = []

    if not config.channel.url.startswith(("http://", "https://", "ws://", "wss://")):
        errors.append(f"STORESYNC_SOCKET_URL is not a valid URL: {config.channel.url!r}")

    if require_api and not config.api.base_url.startswith(("http://", "https://")):
        errors.append(f"STORESYNC_API_URL is not a valid URL: {config.api.base_url!r}")

    if config.launcher.max_attempts is not None and config.launcher.max_attempts < 1:
        errors.append("STORESYNC_LAUNCH_MAX_ATTEMPTS must be a positive integer")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
