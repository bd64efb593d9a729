"""Structured JSON logging utilities for event-based logging."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "event_type"):
            log_data["event_type"] = record.event_type
        if hasattr(record, "event_data"):
            log_data.update(record.event_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Enum members and datetimes end up in event data
        return json.dumps(log_data, default=str)


def _event_data(base: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
    """Merge kwargs into base, dropping None values."""
    for key, value in kwargs.items():
        if value is not None:
            base[key] = value
    return base


def log_ocpp_message(
    logger: logging.Logger,
    direction: str,
    cp_id: str,
    message_type: str,
    message_id: str | None = None,
    action: str | None = None,
    payload: dict[str, Any] | None = None,
    **kwargs: Any,
) -> None:
    """
    Log an OCPP message event.

    Args:
        logger: Logger instance
        direction: "received" or "sent"
        cp_id: Device serial
        message_type: "CALL", "CALLRESULT", "CALLERROR"
        message_id: OCPP message ID
        action: OCPP action name (e.g., "BootNotification")
        payload: Message payload
        **kwargs: Additional fields to include
    """
    event_data = _event_data(
        {"direction": direction, "cp_id": cp_id, "message_type": message_type},
        message_id=message_id,
        action=action,
        payload=payload,
        **kwargs,
    )
    extra = {"event_type": "ocpp_message", "event_data": event_data}
    logger.info(f"OCPP {direction}: {action or message_type}", extra=extra)


def log_websocket_event(
    logger: logging.Logger,
    event: str,
    cp_id: str | None = None,
    **kwargs: Any,
) -> None:
    """
    Log a WebSocket event.

    Args:
        logger: Logger instance
        event: Event name (e.g., "connect", "disconnect", "replaced")
        cp_id: Device serial (if applicable)
        **kwargs: Additional fields to include
    """
    event_data = _event_data({"event": event}, cp_id=cp_id, **kwargs)
    extra = {"event_type": "websocket_event", "event_data": event_data}
    logger.info(f"WebSocket {event}", extra=extra)


def log_session_event(
    logger: logging.Logger,
    event: str,
    cp_id: str,
    transaction_id: int | None = None,
    **kwargs: Any,
) -> None:
    """Log a charging-session lifecycle event (started, stopped, auto_stop, ...)."""
    event_data = _event_data(
        {"event": event, "cp_id": cp_id}, transaction_id=transaction_id, **kwargs
    )
    extra = {"event_type": "session_event", "event_data": event_data}
    logger.info(f"Session {event}", extra=extra)


def log_command_event(
    logger: logging.Logger,
    outcome: str,
    cp_id: str,
    action: str,
    level: int = logging.INFO,
    **kwargs: Any,
) -> None:
    """Log the outcome of an outbound command (acknowledged, rejected, timed_out)."""
    event_data = _event_data({"outcome": outcome, "cp_id": cp_id, "action": action}, **kwargs)
    extra = {"event_type": "command_event", "event_data": event_data}
    logger.log(level, f"Command {action} {outcome}", extra=extra)


def log_error(
    logger: logging.Logger,
    error_type: str,
    message: str,
    cp_id: str | None = None,
    exc_info: Exception | None = None,
    **kwargs: Any,
) -> None:
    """
    Log an error event.

    Args:
        logger: Logger instance
        error_type: Type of error (e.g., "handler_error", "plugin_error")
        message: Error message
        cp_id: Device serial (if applicable)
        exc_info: Exception object (will extract traceback)
        **kwargs: Additional fields to include
    """
    event_data = _event_data({"error_type": error_type}, cp_id=cp_id, **kwargs)
    extra = {"event_type": "error", "event_data": event_data}
    logger.error(message, extra=extra, exc_info=exc_info)


QUIET_LOGGERS = ("websockets", "ocpp", "httpx", "uvicorn", "uvicorn.access")


def setup_logging(level: str = "INFO", log_file: str | None = None, stream=None) -> None:
    """Send JSON records to ``stream`` (stdout by default) and optionally a file."""
    json_formatter = JSONFormatter()

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setFormatter(json_formatter)
    handlers: list[logging.Handler] = [console_handler]

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(json_formatter)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers = handlers

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
