"""
Observability module for structured logging, correlation IDs, and timing.

Log records are stamped with the current correlation ID and job context
(job kind, store) so that lines written deep inside the launcher or a
reducer can be traced back to the job they belong to.

Usage:
    from storesync.observability import setup_logging, get_logger, job_context

    # In application startup:
    setup_logging()

    # In modules:
    logger = get_logger(__name__)

    # Around work for one job:
    with job_context(kind="order-sync", store="buycosari"):
        logger.info("Launching")  # carries kind= and store=
"""
import json
import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# kind / store of the job the current code is working for
_job_context: ContextVar[Optional[Mapping[str, Any]]] = ContextVar("job_context", default=None)

# Attributes every LogRecord has; anything else came from extra= or stamping
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

NOISY_LOGGERS = ("httpx", "httpcore", "socketio", "engineio")


# ═══════════════════════════════════════════════════════════════════════════════
# CONTEXT
# ═══════════════════════════════════════════════════════════════════════════════

def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return uuid.uuid4().hex[:8]


class correlation_context:
    """Context manager for setting correlation ID."""

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self.token = None

    def __enter__(self):
        self.token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, *args):
        _correlation_id.reset(self.token)


@contextmanager
def job_context(
    kind: Optional[str] = None,
    store: Optional[str] = None,
    **fields: Any,
) -> Iterator[Dict[str, Any]]:
    """
    Attach job fields to every log record written inside the block.

    Nested blocks inherit the outer fields; None values are not set.

    Yields:
        The merged context
    """
    merged = dict(_job_context.get() or {})
    merged.update({k: v for k, v in dict(fields, kind=kind, store=store).items() if v is not None})

    token = _job_context.set(merged)
    try:
        yield merged
    finally:
        _job_context.reset(token)


def current_job_context() -> Dict[str, Any]:
    """Fields set by the enclosing job_context blocks."""
    return dict(_job_context.get() or {})


def stamp_record(record: logging.LogRecord) -> logging.LogRecord:
    """
    Copy correlation ID and job context onto a record.

    Fields passed explicitly with extra= win over the context.
    """
    if getattr(record, "correlation_id", None) is None:
        record.correlation_id = get_correlation_id()
    for key, value in (_job_context.get() or {}).items():
        if not hasattr(record, key):
            setattr(record, key, value)
    return record


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        k: v for k, v in record.__dict__.items()
        if k not in _RECORD_ATTRS and not k.startswith("_") and v is not None
    }


class JobContextFilter(logging.Filter):
    """Handler filter that stamps records before any formatter sees them."""

    def filter(self, record: logging.LogRecord) -> bool:
        stamp_record(record)
        return True


# ═══════════════════════════════════════════════════════════════════════════════
# FORMATTERS
# ═══════════════════════════════════════════════════════════════════════════════

class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line.

    Keys: timestamp, level, logger, message, then correlation_id, kind,
    store and any extra= fields, then exception when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        stamp_record(record)
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_extra_fields(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Console formatter.

    Format: TIME LEVEL LOGGER [CORRELATION_ID] store/kind - MESSAGE | extras
    """

    _TAGGED = ("correlation_id", "kind", "store")

    def format(self, record: logging.LogRecord) -> str:
        stamp_record(record)
        extras = _extra_fields(record)

        line = (
            f"{datetime.fromtimestamp(record.created):%H:%M:%S} "
            f"{record.levelname:<7} {record.name}"
        )
        if extras.get("correlation_id"):
            line += f" [{extras['correlation_id']}]"

        job = "/".join(str(extras[k]) for k in ("store", "kind") if extras.get(k))
        if job:
            line += f" {job}"

        line += f" - {record.getMessage()}"

        rest = {k: v for k, v in extras.items() if k not in self._TAGGED}
        if rest:
            line += " | " + " ".join(f"{k}={v}" for k, v in rest.items())

        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"

        return line


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    quiet: Sequence[str] = NOISY_LOGGERS,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, output JSON logs; otherwise human-readable
        quiet: Third-party loggers capped at WARNING
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())
    handler.addFilter(JobContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


class Timer:
    """
    Context manager that measures and optionally logs a REST call.

    Usage:
        with Timer("fetch_table", logger) as t:
            page = await client.fetch_table("/orders", query)
        logger.debug(f"Fetch took {t.elapsed_ms}ms")
    """

    def __init__(
        self,
        name: str,
        logger: Optional[logging.Logger] = None,
        slow_ms: float = 1000.0,
    ):
        self.name = name
        self.logger = logger
        self.slow_ms = slow_ms
        self.elapsed_ms: float = 0
        self._started: float = 0

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed_ms = (time.perf_counter() - self._started) * 1000

        if self.logger:
            slow = self.elapsed_ms > self.slow_ms
            self.logger.log(
                logging.WARNING if slow else logging.DEBUG,
                f"{self.name} took {self.elapsed_ms:.0f}ms" + (" (slow)" if slow else ""),
                extra={"duration_ms": round(self.elapsed_ms, 2)},
            )
