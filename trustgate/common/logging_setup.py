"""
Structured Logging Setup

Every gateway module logs through the adapter returned by
get_service_logger(). A record carries:
- the service name ("gateway.queue", "gateway.pipeline", ...)
- fields passed with `extra=`
- fields bound with LogContext for the current task

Records render as one JSON object per line (TRUSTGATE_LOG_FORMAT=json,
the default) or as plain text for development.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

LOGGER_PREFIX = "trustgate"

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
TEXT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Attributes every LogRecord has; anything else on a record is a field
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "service"}

# Fields bound by LogContext; one value per asyncio task
_bound_fields: ContextVar[dict[str, Any]] = ContextVar("trustgate_log_fields", default={})


def current_context() -> dict[str, Any]:
    """Fields bound by the LogContext blocks enclosing the caller."""
    return dict(_bound_fields.get())


class ContextFilter(logging.Filter):
    """Copies LogContext fields onto records (explicit `extra=` wins)."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _bound_fields.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(
            (key, value) for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Adds the service name to every record, keeping caller `extra` fields."""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs["extra"] = {**kwargs.get("extra", {}), "service": self.extra["service"]}
        return msg, kwargs


def _build_handler(log_level: int, json_format: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATE_FORMAT))
    handler.addFilter(ContextFilter())
    return handler


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Configure the logger of one service.

    Calling it again for the same service replaces the handler, so the
    level and format can change after startup.

    Args:
        service_name: Name of the service (e.g., "gateway", "gateway.queue")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines (True) or plain text (False)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"{LOGGER_PREFIX}.{service_name}")
    logger.setLevel(numeric_level)
    logger.handlers = [_build_handler(numeric_level, json_format)]
    # Gateway records never reach the root logger (uvicorn owns it)
    logger.propagate = False
    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Logger adapter for a module, configured from the environment.

    Module loggers exist before settings are loaded; configure_logging()
    re-applies the settings later.
    """
    log_level = os.environ.get("TRUSTGATE_LOG_LEVEL", "INFO")
    json_format = os.environ.get("TRUSTGATE_LOG_FORMAT", "json").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def configure_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """Re-apply level and format to every gateway logger created so far."""
    prefix = f"{LOGGER_PREFIX}."
    for name in list(logging.Logger.manager.loggerDict):
        if name.startswith(prefix) and logging.getLogger(name).handlers:
            setup_logging(name[len(prefix):], log_level, json_format)


class LogContext:
    """
    Bind fields to every record logged inside the block.

    Bindings live in a context variable, so concurrent submissions each
    see only their own fields. Blocks nest; inner values win.

    Usage:
        with LogContext(event_id="evt-1", group_id="group-1"):
            logger.info("Analyzing event")
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._token = None

    def __enter__(self):
        self._token = _bound_fields.set({**_bound_fields.get(), **self.fields})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _bound_fields.reset(self._token)
        return False


def log_decision(
    logger: logging.LoggerAdapter,
    event_id: str,
    group_id: str,
    action: str,
    reason: str | None = None,
) -> None:
    """Log the outcome of trend analysis for one event"""
    logger.info(
        f"Decision {event_id} [{group_id}]: {action}" + (f" ({reason})" if reason else ""),
        extra={"event_id": event_id, "group_id": group_id, "action": action, "reason": reason},
    )


# Alert severity per decision action
_ALERT_LEVELS = {
    "confirm_unreliable": logging.ERROR,
    "flag_for_review": logging.WARNING,
    "adjust_threshold_lower": logging.WARNING,
}


def log_system_alert(
    logger: logging.LoggerAdapter,
    device_id: str,
    group_id: str,
    action: str,
    reason: str | None = None,
) -> None:
    """Log a system alert raised by a decision"""
    logger.log(
        _ALERT_LEVELS.get(action, logging.INFO),
        f"ALERT [{action.upper()}] device={device_id} group={group_id}: {reason or '-'}",
        extra={"device_id": device_id, "group_id": group_id, "action": action, "reason": reason},
    )
