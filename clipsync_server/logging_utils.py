"""Logging helpers shared by the runtime and the desktop host."""
from __future__ import annotations

import logging
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGGER_NAME = "ClipSync"
LOG_TAG = "ClipSync"
MESSAGE_LOGGER_NAME = f"{LOGGER_NAME}.messages"
MESSAGE_LOG_FILE_NAME = "clipsync-messages.log"
MESSAGE_LOG_MAX_BYTES = 512 * 1024

_HANDLER_MARKER = "_clipsync_handler"


def build_console_formatter() -> logging.Formatter:
    return logging.Formatter(f"[%(asctime)s] [{LOG_TAG}] %(message)s", "%H:%M:%S")


def build_message_formatter() -> logging.Formatter:
    formatter = logging.Formatter(
        "%(asctime)s.%(msecs)03d UTC - %(levelname)s - %(message)s",
        "%Y-%m-%d %H:%M:%S",
    )
    formatter.converter = time.gmtime
    return formatter


def build_rotating_message_handler(
    directory: Path,
    filename: str = MESSAGE_LOG_FILE_NAME,
    *,
    retention: int,
    max_bytes: int = MESSAGE_LOG_MAX_BYTES,
    formatter: Optional[logging.Formatter] = None,
) -> RotatingFileHandler:
    """Create a size-rotated handler keeping ``retention`` files in total."""

    directory.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        directory / filename,
        maxBytes=max(1, int(max_bytes)),
        backupCount=max(0, int(retention) - 1),
        encoding="utf-8",
    )
    handler.setFormatter(formatter or build_message_formatter())
    return handler


def install_console_handler(logger: logging.Logger, handler: Optional[logging.Handler] = None) -> logging.Logger:
    """Attach the tagged stream handler once and stop propagation to the root logger."""

    if not any(getattr(existing, _HANDLER_MARKER, False) for existing in logger.handlers):
        handler = handler or logging.StreamHandler()
        setattr(handler, _HANDLER_MARKER, True)
        handler.setFormatter(build_console_formatter())
        logger.addHandler(handler)
    logger.propagate = False
    return logger
