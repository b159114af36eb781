"""
Integration tests for storesync/observability.py

Tests structured logging, correlation IDs and timing.
"""
import logging
import json
import pytest
import time as time_module

from storesync.observability import (
    HumanReadableFormatter,
    JobContextFilter,
    StructuredFormatter,
    Timer,
    correlation_context,
    current_job_context,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    job_context,
    setup_logging,
    stamp_record,
)


def _record(msg: str = "Test message", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationId:
    """Tests for correlation ID management."""

    def test_generate_correlation_id_not_empty(self):
        """Generated ID is not empty."""
        cid = generate_correlation_id()
        assert cid
        assert cid != generate_correlation_id()

    def test_context_sets_and_restores(self):
        """correlation_context sets the id and restores the previous one."""
        assert get_correlation_id() is None
        with correlation_context("job-123") as cid:
            assert cid == "job-123"
            assert get_correlation_id() == "job-123"
        assert get_correlation_id() is None

    def test_context_generates_id(self):
        """Without an id the context generates one."""
        with correlation_context() as cid:
            assert get_correlation_id() == cid


class TestTimer:
    """Tests for Timer context manager."""

    def test_measures_elapsed_time(self):
        """Timer measures elapsed time correctly."""
        with Timer("test_operation") as timer:
            time_module.sleep(0.05)

        assert timer.elapsed_ms >= 45
        assert timer.elapsed_ms < 1000

    def test_logs_when_logger_given(self, caplog):
        """With a logger the duration is logged."""
        logger = get_logger("test.timer")
        with caplog.at_level(logging.DEBUG, logger="test.timer"):
            with Timer("fetch_table", logger):
                pass

        assert any(r.getMessage().startswith("fetch_table took") for r in caplog.records)


class TestStructuredFormatter:
    """Tests for JSON log formatter."""

    def test_formats_as_json(self):
        """Outputs valid JSON."""
        parsed = json.loads(StructuredFormatter().format(_record()))

        assert parsed["message"] == "Test message"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test.logger"
        assert "T" in parsed["timestamp"]

    def test_includes_correlation_id(self):
        """JSON includes correlation ID when set."""
        with correlation_context("test-correlation-456"):
            parsed = json.loads(StructuredFormatter().format(_record()))

        assert parsed["correlation_id"] == "test-correlation-456"

    def test_includes_extra_and_job_context(self):
        """extra= fields and job context are merged in."""
        with job_context(store="buycosari"):
            parsed = json.loads(StructuredFormatter().format(_record(kind="order-sync", attempt=2)))

        assert parsed["kind"] == "order-sync"
        assert parsed["store"] == "buycosari"
        assert parsed["attempt"] == 2

    def test_explicit_extra_wins(self):
        """A field passed with extra= is not overwritten by the context."""
        with job_context(kind="ads-sync"):
            parsed = json.loads(StructuredFormatter().format(_record(kind="order-sync")))

        assert parsed["kind"] == "order-sync"


class TestJobContext:
    """Tests for job_context()."""

    def test_nested_blocks_merge_and_restore(self):
        """Inner blocks add fields; leaving restores the outer context."""
        with job_context(store="buycosari"):
            with job_context(kind="ltv-cohort", store=None) as inner:
                assert inner == {"store": "buycosari", "kind": "ltv-cohort"}
            assert current_job_context() == {"store": "buycosari"}
        assert current_job_context() == {}

    def test_filter_stamps_records(self):
        """JobContextFilter copies the context onto records."""
        record = _record()
        with job_context(kind="order-sync"), correlation_context("abc"):
            assert JobContextFilter().filter(record) is True

        assert record.kind == "order-sync"
        assert record.correlation_id == "abc"

    def test_stamp_outside_context(self):
        """Without context nothing but an empty correlation id is added."""
        record = stamp_record(_record())
        assert record.correlation_id is None
        assert not hasattr(record, "kind")


class TestHumanReadableFormatter:
    """Tests for the console formatter."""

    def test_includes_level_and_message(self):
        """Console lines include level, logger and message."""
        formatter = HumanReadableFormatter()
        output = formatter.format(_record("Channel open"))

        assert "INFO" in output
        assert "Channel open" in output

    def test_job_tag_and_extras(self):
        """store/kind are shown as a tag, other fields after the message."""
        with job_context(kind="order-sync", store="buycosari"):
            output = HumanReadableFormatter().format(_record("Launched", attempt=1))

        assert "buycosari/order-sync - Launched" in output
        assert output.endswith("| attempt=1")


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.mark.parametrize("json_format,formatter_type", [
        (True, StructuredFormatter),
        (False, HumanReadableFormatter),
    ])
    def test_installs_formatter(self, json_format, formatter_type):
        """Root logger gets one handler with the chosen formatter."""
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level="DEBUG", json_format=json_format)
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, formatter_type)
            assert root.level == logging.DEBUG
            assert logging.getLogger("socketio").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
