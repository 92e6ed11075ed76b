"""Loguru setup for the orchestrator process.

The services log through loguru directly; the execution modules, uvicorn and
the model provider SDKs log through stdlib ``logging``.  ``setup_logging``
routes the latter into loguru so one sink sees everything.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

_NOISY = ("uvicorn.access", "httpx", "httpcore", "openai", "anthropic")

_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> "
    "<level>{level: <7}</level> "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> "
    "<level>{message}</level>"
)


class _LoguruBridge(logging.Handler):
    """Forward stdlib records to loguru, keeping the original call site."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", *, json_logs: bool = False) -> None:
    """Install loguru as the only sink.  Call once, before serving.

    With *json_logs*, every record is written as one JSON object per line.
    """
    level = level.upper()
    logger.remove()
    if json_logs:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=_FORMAT)

    logging.basicConfig(handlers=[_LoguruBridge()], level=0, force=True)
    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging ready (level={}, json={})", level, json_logs)
