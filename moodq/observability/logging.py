"""
Logger factory for moodq.

Every module gets its logger from get_logger(); the first call attaches one
stream handler to the root logger and later calls only re-read the level from
MOODQ_LOG_LEVEL, so the CLI and the insights pipeline share one output.

httpx logs each request line at INFO, and the Gemini client carries its API
key in the query string, so the HTTP client loggers are capped at WARNING.
"""

from __future__ import annotations

import logging
import os
from typing import Final

_HANDLER_ATTACHED: bool = False
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_QUIET_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore")


def _resolve_level() -> int:
    level_name = os.getenv("MOODQ_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Return a module logger; attaches the shared stream handler on first use."""
    global _HANDLER_ATTACHED

    level = _resolve_level()
    root = logging.getLogger()

    if not _HANDLER_ATTACHED:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)
        for quiet in _QUIET_LOGGERS:
            logging.getLogger(quiet).setLevel(max(level, logging.WARNING))
        _HANDLER_ATTACHED = True
    root.setLevel(level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger
