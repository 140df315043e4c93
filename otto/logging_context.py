"""Turn ID logging context for tracing a single turn across modules.

Provides a turn_id-aware logger that attaches a correlation ID to every
log record, making it easy to follow one utterance through matching,
extraction, and execution while other sessions run concurrently.

Usage:
    from otto.logging_context import get_turn_logger, set_turn_id

    set_turn_id("TURN-abc123")
    logger = get_turn_logger(__name__)
    logger.info("Matching utterance")  # record.turn_id == "TURN-abc123"
"""

import logging
import uuid
from contextvars import ContextVar

_turn_id: ContextVar[str] = ContextVar("turn_id", default="NO_TURN_ID")


def new_turn_id() -> str:
    """Generate a fresh correlation ID for a turn."""
    return f"TURN-{uuid.uuid4().hex[:8]}"


def set_turn_id(turn_id: str) -> None:
    """Set the correlation ID for the current context."""
    _turn_id.set(turn_id)


def get_turn_id() -> str:
    """Retrieve the current correlation ID."""
    return _turn_id.get()


class TurnIdFilter(logging.Filter):
    """Injects turn_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.turn_id = _turn_id.get()  # type: ignore[attr-defined]
        return True


def get_turn_logger(name: str) -> logging.Logger:
    """Return a logger with the TurnIdFilter attached.

    The filter adds ``turn_id`` to each record so formatters can
    include ``%(turn_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, TurnIdFilter) for f in logger.filters):
        logger.addFilter(TurnIdFilter())
    return logger


def build_log_handler(fmt: str, datefmt: str) -> logging.Handler:
    """Stream handler whose records always carry ``turn_id``.

    Filtering on the handler covers records from any logger, including
    third-party ones that never went through ``get_turn_logger``.
    """
    handler = logging.StreamHandler()
    handler.addFilter(TurnIdFilter())
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler
