"""
Structured logging for the decision engine.

Every record carries the request's correlation id (when there is one) and any
fields passed through ``extra``. Pricing, allocation, claim and lifecycle
decisions go through ``log_decision`` so they share a ``decision`` field that
log queries can filter on.
"""
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from fieldops.lib.settings import settings


correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Attributes present on every LogRecord; anything else came in through `extra`
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

# Libraries that log every request or statement at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def _extra_fields(record: logging.LogRecord) -> dict:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, context."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            entry["correlation_id"] = correlation_id

        entry.update(_extra_fields(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local runs, context appended as key=value."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _extra_fields(record)
        correlation_id = correlation_id_var.get()
        if correlation_id:
            context = {"correlation_id": correlation_id, **context}
        if context:
            line += " " + " ".join(f"{key}={value}" for key, value in context.items())
        return line


def setup_logging(level: str = "INFO", json_format: bool = True) -> None:
    """
    Install a single stdout handler on the root logger.

    Args:
        level: Log level name; unknown names fall back to INFO
        json_format: JSON lines when True, plain text otherwise
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(JSONFormatter() if json_format else TextFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; call with ``__name__``."""
    return logging.getLogger(name)


def set_correlation_id(correlation_id: Optional[str]) -> None:
    """Bind a correlation id to the current request context."""
    correlation_id_var.set(correlation_id)


def log_decision(
    logger: logging.Logger,
    decision: str,
    message: str,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """
    Log the outcome of a decision.

    Args:
        logger: Module logger
        decision: Kind of decision (quote, allocation, claim, transition, lookup)
        message: Human-readable summary
        level: Logging level constant
        **fields: Structured context (ids, scores, tiers)
    """
    logger.log(level, message, extra={"decision": decision, **fields})


setup_logging(
    level="DEBUG" if settings.debug else settings.log_level,
    json_format=settings.log_json,
)
