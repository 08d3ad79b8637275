"""Logging setup shared by the app entrypoint and tools."""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are noisy at DEBUG
QUIET_LOGGERS = ("websockets", "httpx", "httpcore")


def setup_logging(level: Optional[str] = None, fmt: str = DEFAULT_FORMAT) -> logging.Logger:
    """
    Configure the root logger once and return it.

    Args:
        level: Log level name. Defaults to the LOG_LEVEL env var or INFO.
        fmt: Log format string.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(level=log_level, format=fmt, stream=sys.stdout)
    root = logging.getLogger()
    root.setLevel(log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.INFO))
    return root
