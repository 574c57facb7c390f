"""Logging configuration for the fleet service.

Adds a ``SUCCESS`` level between INFO and WARNING so fleet activity logs keep
their four levels when mirrored into the standard logging stream.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

SUCCESS = 25

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logging.addLevelName(SUCCESS, "SUCCESS")


def configure_logging(level: str = "INFO", log_file: str | Path | None = None) -> None:
    """Configure console logging, plus an optional file handler."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(numeric_level)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    # Avoid duplicate handlers on re-init
    root.handlers.clear()
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # Bridge sockets and the Telegram client are chatty at INFO
    for noisy in ("websockets", "httpx", "httpcore", "telegram"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
