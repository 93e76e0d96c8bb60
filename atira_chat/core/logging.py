# atira_chat/core/logging.py

import logging
import os
import sys
from typing import Iterable


DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Libraries that log every statement, connection or frame at INFO/DEBUG
NOISY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "aiosqlite",
    "redis",
    "websockets",
)


def _level(name: str, default: int) -> int:
    return getattr(logging, name.upper(), default) if name else default


def _quiet(names: Iterable[str], level: int = logging.WARNING) -> None:
    for name in names:
        logging.getLogger(name).setLevel(level)


def setup_logging() -> None:
    """
    Configure logging for the chat relay process.

    Environment:
        LOG_LEVEL       root level (default INFO)
        CHAT_LOG_LEVEL  level of the ``atira_chat`` loggers only, e.g. DEBUG
                        to trace routing without turning on library chatter
        LOG_FORMAT      logging.Formatter format string

    Logs go to stdout. Storage, Redis and websocket libraries are held at
    WARNING; uvicorn access lines are dropped to WARNING as well since every
    REST poll from the admin dashboard would otherwise be logged.
    """
    level = _level(os.getenv("LOG_LEVEL", "INFO"), logging.INFO)
    chat_level = _level(os.getenv("CHAT_LOG_LEVEL", ""), level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    logging.getLogger("atira_chat").setLevel(chat_level)

    # Uvicorn may have installed its own handlers already
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(os.getenv("LOG_FORMAT", DEFAULT_FORMAT)))
        root_logger.addHandler(handler)

    _quiet(NOISY_LOGGERS)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> logging.Logger:
    """Module logger; pass ``__name__`` so CHAT_LOG_LEVEL applies."""
    return logging.getLogger(name)
