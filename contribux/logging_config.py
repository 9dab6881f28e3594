"""Logging for Contribux search.

Modules get their logger via:
    from contribux.logging_config import get_logger
    logger = get_logger(__name__)

Two rotating files are kept under ``$CONTRIBUX_LOG_DIR`` (default
``~/.contribux``):

    contribux.log   everything from the ``contribux`` and ``api`` namespaces
    degraded.log    degraded-mode events only, one ``key=value`` line each

A degraded event is any failure the engine absorbs instead of raising: one
index source down during a hybrid search, or the shared cache tier
unreachable. Report them through :func:`log_degraded` so they land in both
files and carry the ``degraded_component`` / ``degraded_reason`` attributes
alerting can key on.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

DEGRADED_LOGGER = "contribux.degraded"

MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 3

_LINE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_initialized = False


def _log_dir() -> Path:
    return Path(os.environ.get("CONTRIBUX_LOG_DIR", str(Path.home() / ".contribux")))


def _level() -> int:
    return getattr(logging, os.environ.get("CONTRIBUX_LOG_LEVEL", "INFO").upper(), logging.INFO)


class DegradedEventFormatter(logging.Formatter):
    """Renders degraded events as a timestamp plus ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        fields = {
            "component": getattr(record, "degraded_component", "unknown"),
            "reason": getattr(record, "degraded_reason", "unknown"),
        }
        fields.update(getattr(record, "degraded_context", {}))
        pairs = " ".join(f"{key}={value}" for key, value in fields.items())
        return f"{self.formatTime(record, _DATE_FORMAT)} {pairs} | {record.getMessage()}"


def _rotating(path: Path, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_logging() -> None:
    """Attach the file handlers once per process. Later calls are no-ops."""
    global _initialized
    if _initialized:
        return
    _initialized = True

    level = _level()
    project = logging.getLogger("contribux")
    api = logging.getLogger("api")
    degraded = logging.getLogger(DEGRADED_LOGGER)
    for logger in (project, api):
        logger.setLevel(level)
    # Degraded events are always recorded, whatever the project level
    degraded.setLevel(logging.WARNING)

    log_dir = _log_dir()
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        # Read-only home directory: records still reach any handler the host installs
        project.addHandler(logging.NullHandler())
        return

    main_handler = _rotating(log_dir / "contribux.log", logging.Formatter(_LINE_FORMAT, datefmt=_DATE_FORMAT))
    project.addHandler(main_handler)
    api.addHandler(main_handler)
    degraded.addHandler(_rotating(log_dir / "degraded.log", DegradedEventFormatter()))

    project.info("Logging initialized -> %s (level=%s)", log_dir, logging.getLevelName(level))


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name."""
    setup_logging()
    return logging.getLogger(name)


def log_degraded(component: str, reason: str, message: str, *args: Any, **context: Any) -> None:
    """Record a failure that was absorbed rather than raised.

    Args:
        component: what stopped working, e.g. ``"vector"`` or ``"shared_cache"``
        reason: short error code, e.g. ``"Timeout"``
        message: %-style log message, formatted with ``args``
        context: extra ``key=value`` fields for the degraded log line
    """
    get_logger(DEGRADED_LOGGER).warning(
        message,
        *args,
        extra={
            "degraded_component": component,
            "degraded_reason": reason,
            "degraded_context": context,
        },
    )
