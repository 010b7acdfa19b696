"""
Structured logging for the booking lifecycle.

A ContextVar carries the draft id, provider session id and correlation id of
the request being handled, so every log line emitted while handling it can
be tied back to one booking attempt.
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

booking_context: ContextVar[dict[str, Any]] = ContextVar("booking_context", default={})

_CONTEXT_FIELDS = ("draft_id", "provider_session_id", "correlation_id")


class BookingJsonFormatter(logging.Formatter):
    """
    JSON formatter with booking correlation fields.
    """

    # Fields to extract from log record if present
    _EXTRA_FIELDS = (
        "draft_id",
        "provider_session_id",
        "booking_id",
        "event_id",
        "correlation_id",
        "outcome",
        "attempt",
        "duration_ms",
        "error_type",
    )

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        context = booking_context.get()
        for key in _CONTEXT_FIELDS:
            if context.get(key):
                log_entry[key] = context[key]

        for key in self._EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None and value != "":
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class BookingContextFilter(logging.Filter):
    """Copy the current booking context onto each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = booking_context.get()
        for key in _CONTEXT_FIELDS:
            if not hasattr(record, key):
                setattr(record, key, context.get(key, ""))
        return True


@contextmanager
def booking_scope(**fields: Any) -> Iterator[dict[str, Any]]:
    """
    Bind booking fields to logs emitted inside the block.

    Example:
        >>> with booking_scope(draft_id=draft.draft_id):
        ...     logger.info("Handoff started")
    """
    merged = {**booking_context.get(), **{k: v for k, v in fields.items() if v}}
    token = booking_context.set(merged)
    try:
        yield merged
    finally:
        booking_context.reset(token)


def setup_json_logging(level: int | str = logging.INFO, logger_name: str = "voyagez") -> None:
    """Send ``voyagez`` logs to stderr as JSON lines."""
    handler = logging.StreamHandler()
    handler.setFormatter(BookingJsonFormatter())
    handler.addFilter(BookingContextFilter())

    target = logging.getLogger(logger_name)
    target.handlers = [h for h in target.handlers if not isinstance(h, logging.NullHandler)]
    target.addHandler(handler)
    target.setLevel(level)
