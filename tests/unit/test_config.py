"""
Tests for storesync.config module.
"""
import importlib

import pytest

from storesync.config import (
    AppConfig,
    ConfigurationError,
    JobFamilyConfig,
    LauncherConfig,
    config,
    validate_config,
)


class TestDefaults:
    """Tests for default configuration values."""

    def test_launcher_defaults(self, monkeypatch):
        """Retry every 2s, unbounded, 300s guard timeout."""
        monkeypatch.delenv("STORESYNC_LAUNCH_MAX_ATTEMPTS", raising=False)
        launcher = LauncherConfig()
        assert launcher.retry_delay_seconds == 2.0
        assert launcher.max_attempts is None
        assert launcher.guard_timeout_seconds == 300.0

    def test_max_attempts_from_env(self, monkeypatch):
        """STORESYNC_LAUNCH_MAX_ATTEMPTS bounds retries."""
        monkeypatch.setenv("STORESYNC_LAUNCH_MAX_ATTEMPTS", "5")
        assert LauncherConfig().max_attempts == 5

    def test_progress_holds(self):
        """Completed and error banners are held for 2s."""
        assert config.progress.completed_hold_seconds == 2.0
        assert config.progress.error_hold_seconds == 2.0

    def test_job_events(self):
        """Each job kind maps to its progress event."""
        jobs = JobFamilyConfig()
        assert jobs.event_for("ads-sync") == "adsSyncProgress"
        assert jobs.event_for("analytics-recalc") == "recalcProgress"
        assert jobs.event_for("unknown") == "syncProgress"
        assert jobs.data_stages["ltv-cohort"] == ["get_customer_ltv_cohorts"]

    def test_socket_url_from_env(self, monkeypatch):
        """STORESYNC_SOCKET_URL overrides the channel URL."""
        monkeypatch.setenv("STORESYNC_SOCKET_URL", "https://sync.example.com")
        assert AppConfig().channel.url == "https://sync.example.com"

    def test_frozen(self):
        """Config instances are immutable."""
        with pytest.raises(Exception):
            config.version = "9.9.9"


class TestValidateConfig:
    """Tests for validate_config()."""

    def test_defaults_valid(self):
        """Default configuration validates."""
        validate_config(require_api=True)

    def test_invalid_url(self, monkeypatch):
        """A non-URL channel address fails fast."""
        # The package re-exports `config`, shadowing the submodule attribute
        config_module = importlib.import_module("storesync.config")
        monkeypatch.setattr(config_module, "config", AppConfig(
            channel=type(config.channel)(url="localhost:5000"),
        ))
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config()
        assert "STORESYNC_SOCKET_URL" in str(exc_info.value)
