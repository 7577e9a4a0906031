"""Loguru setup shared by the whole backend.

Importing this module installs a stdout sink at ``LOG_LEVEL`` (environment,
default INFO) so modules can log before settings exist. :func:`configure_logging`
re-installs the sink at the level from the injected settings and routes
uvicorn and asyncio records from the standard ``logging`` package into Loguru.

Usage: ``from dental_auth.core.logging import logger``
"""

import logging
import os
import sys

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} | {message}"
INTERCEPTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "asyncio")


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to Loguru, keeping the original caller."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(level: str = "INFO") -> None:
    """(Re)install the stdout sink and the stdlib intercept at ``level``."""
    level = level.upper()
    logger.remove()
    # NOTE: diagnose off so local variables (passwords, tokens) never reach the logs
    logger.add(sys.stdout, level=level, format=LOG_FORMAT, backtrace=True, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=level, force=True)
    for name in INTERCEPTED_LOGGERS:
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [InterceptHandler()]
        stdlib_logger.propagate = False
        stdlib_logger.setLevel(level)


configure_logging(os.getenv("LOG_LEVEL", "INFO"))
