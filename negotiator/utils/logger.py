"""
Logging utilities.

WHAT: Centralized logging configuration tagged with the negotiation being served
WHY: Concurrent turns interleave in one log; every line must say which negotiation it belongs to
HOW: Python logging with file and console handlers, a filter that stamps the
     negotiation id held in a context variable (one per asyncio task)
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Iterator

from ..core.config import settings

NO_NEGOTIATION = "-"

_current_negotiation: ContextVar[str] = ContextVar("negotiation_id", default=NO_NEGOTIATION)


class NegotiationIdFilter(logging.Filter):
    """Adds record.negotiation_id so formats can reference it."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "negotiation_id"):
            record.negotiation_id = _current_negotiation.get()
        return True


@contextmanager
def negotiation_context(negotiation_id: str) -> Iterator[None]:
    """Tag every log line emitted inside the block with negotiation_id."""
    token = _current_negotiation.set(negotiation_id)
    try:
        yield
    finally:
        _current_negotiation.reset(token)


def current_negotiation_id() -> str:
    return _current_negotiation.get()


def setup_logging():
    """
    Configure application logging.

    WHAT: Set up root logger with file and console handlers
    WHY: Ensure logs are captured to file and visible in console
    HOW: Create handlers with formatters and the negotiation id filter, set levels from config
    """
    log_file = Path(settings.LOG_FILE)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root_logger.handlers.clear()

    id_filter = NegotiationIdFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.addFilter(id_filter)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(negotiation_id)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(console_handler)

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.addFilter(id_filter)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(negotiation_id)s] %(pathname)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(file_handler)

    root_logger.info(f"Logging initialized (level={settings.LOG_LEVEL}, file={log_file})")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
