"""
Centralized logging configuration.

Every module logs through ``get_logger(__name__)``, which returns a
``StructuredLogger``: keyword arguments become structured fields, and
``bind()`` returns a child logger that stamps fixed context (order id, post
id) on every record. Console output is human readable; the optional log file
holds one JSON object per line.

Two dedicated channels sit on top:
- ``musixbot.audit``: ``log_business_event`` for payment / request lifecycle
- ``musixbot.performance``: ``log_performance`` for job and endpoint timings
"""
import logging
import logging.config
import json
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from pathlib import Path

ROOT_LOGGER = "musixbot"
AUDIT_CHANNEL = "audit"
PERFORMANCE_CHANNEL = "performance"

# Third-party loggers routed through our handlers, with their own floor level.
# ``None`` follows the configured application level.
MANAGED_LOGGERS: Dict[str, Optional[str]] = {
    ROOT_LOGGER: None,
    "uvicorn": "INFO",
    "aiohttp": "WARNING",
    "redis": "WARNING",
}

_RESERVED_FIELDS = {"exc_info", "stack_info"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record; structured fields are merged at top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        fields = getattr(record, "fields", None)
        if fields:
            entry.update(fields)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger:
    """
    Thin wrapper over ``logging.Logger`` taking structured keyword fields.

    ``None`` values are dropped so optional context does not clutter records.
    """

    def __init__(self, name: str, context: Optional[Dict[str, Any]] = None):
        self.logger = logging.getLogger(name)
        self.context: Dict[str, Any] = dict(context or {})

    @property
    def name(self) -> str:
        return self.logger.name

    def bind(self, **context: Any) -> "StructuredLogger":
        """Child logger that adds ``context`` to every record it emits."""
        return StructuredLogger(self.logger.name, {**self.context, **context})

    def _emit(self, level: int, message: str, fields: Dict[str, Any]) -> None:
        if not self.logger.isEnabledFor(level):
            return
        exc_info = fields.pop("exc_info", None)
        merged = {**self.context, **fields}
        payload = {k: v for k, v in merged.items() if v is not None and k not in _RESERVED_FIELDS}
        self.logger.log(level, message, exc_info=exc_info, extra={"fields": payload})

    def debug(self, message: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._emit(logging.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._emit(logging.WARNING, message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self._emit(logging.ERROR, message, fields)


def _handler_configs(log_level: str, log_file: Optional[str], enable_console: bool) -> Dict[str, dict]:
    handlers: Dict[str, dict] = {}
    if enable_console:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "console",
            "level": log_level,
        }
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
            "formatter": "json",
            "level": log_level,
        }
    return handlers


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True
) -> None:
    """
    Configure the application loggers.

    Args:
        log_level: Level for application loggers (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path of the rotating JSON log file
        enable_console: Whether to also log to stdout
    """
    handlers = _handler_configs(log_level, log_file, enable_console)
    handler_names = list(handlers)

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JSONFormatter},
            "console": {
                "format": "%(asctime)s %(levelname)-7s %(name)s | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "loggers": {
            name: {"level": level or log_level, "handlers": handler_names, "propagate": False}
            for name, level in MANAGED_LOGGERS.items()
        },
        "root": {"level": log_level, "handlers": handler_names},
    })


def get_logger(name: str) -> StructuredLogger:
    """Structured logger namespaced under ``musixbot``."""
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return StructuredLogger(name)


def log_business_event(
    event_type: str,
    details: Dict[str, Any],
    user_id: Optional[str] = None,
    correlation_id: Optional[str] = None
) -> None:
    """
    Record a payment / request lifecycle event on the audit channel.

    Args:
        event_type: e.g. 'payment_created', 'payment_completed', 'music_delivered'
        details: Event-specific fields (order id, amounts, media ref)
        user_id: Social user id, when known
        correlation_id: Originating post id
    """
    get_logger(AUDIT_CHANNEL).info(
        f"Business event: {event_type}",
        event_type=event_type,
        user_id=user_id,
        correlation_id=correlation_id,
        **details
    )


def log_performance(
    operation: str,
    duration_ms: float,
    additional_data: Optional[Dict[str, Any]] = None,
    slow_threshold_ms: Optional[float] = None,
) -> None:
    """
    Record how long an operation took on the performance channel.

    Operations slower than ``slow_threshold_ms`` are logged at WARNING with
    ``slow=True``.
    """
    fields: Dict[str, Any] = {"operation": operation, "duration_ms": round(duration_ms, 2)}
    if additional_data:
        fields.update(additional_data)
    perf_logger = get_logger(PERFORMANCE_CHANNEL)
    if slow_threshold_ms is not None and duration_ms > slow_threshold_ms:
        perf_logger.warning(f"Slow operation: {operation}", slow=True, **fields)
    else:
        perf_logger.info(f"Performance: {operation}", **fields)


__all__ = [
    "JSONFormatter",
    "StructuredLogger",
    "setup_logging",
    "get_logger",
    "log_business_event",
    "log_performance",
]
