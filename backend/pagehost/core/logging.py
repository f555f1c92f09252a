"""Structured logging configuration for PageHost.

Records emitted while a deployment run is executing carry the run id, so
provider retries and adapter errors can be matched to the run's own log.
"""

import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

# Set by the orchestrator for the duration of one run's task
current_run_id: ContextVar[str | None] = ContextVar("current_run_id", default=None)

# Third-party loggers and the level they are held at
QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "celery": logging.INFO,
    "httpcore": logging.WARNING,
    "httpx": logging.WARNING,
    "tenacity": logging.WARNING,
}

# Loggers that follow LOG_LEVEL
PAGEHOST_LOGGERS = ("pagehost", "pagehost.workers.runs")


class PageHostFormatter(logging.Formatter):
    """Single line: timestamp, level, logger, run (when inside one), message."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        level = record.levelname.ljust(8)
        fields = [timestamp, level, record.name]

        # RunLogger lines already open with their own [run=... domain=...] prefix
        run_id = None if getattr(record, "run_prefixed", False) else current_run_id.get()
        if run_id:
            fields.append(f"run={run_id[:12]}")
        fields.append(record.getMessage())

        base = " | ".join(fields)
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def setup_logging(log_level: str = "INFO") -> None:
    """Configure application-wide logging."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates on reload
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(PageHostFormatter())
    root_logger.addHandler(console_handler)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
    for name in PAGEHOST_LOGGERS:
        logging.getLogger(name).setLevel(level)
