"""Logging configuration using loguru.

Everything the server prints goes through one loguru sink.  Records from
stdlib loggers (uvicorn, httpx, asyncio, playwright) are intercepted and
re-emitted through loguru.

Each line carries the workspace it concerns.  Code that works on behalf of a
workspace wraps itself in ``logger.contextualize(workspace=name)``; tasks
created inside inherit the value, so Chrome's output observers and reapers
are tagged too.  Lines outside any workspace show ``-``.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

from loguru import logger

NO_WORKSPACE = "-"

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[workspace]: <10}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "asyncio", "playwright")


class _InterceptHandler(logging.Handler):
    """Re-emit stdlib records through loguru at the caller's frame."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", *, sink: TextIO | None = None) -> None:
    """Install the single loguru sink and route stdlib logging into it.

    Called by the CLI before uvicorn starts and again by the app lifespan;
    repeated calls replace the sink rather than adding one.
    """
    level = level.upper()

    logger.remove()
    logger.configure(extra={"workspace": NO_WORKSPACE})
    logger.add(sink or sys.stderr, level=level, format=LOG_FORMAT, diagnose=False)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging initialised (level={})", level)
