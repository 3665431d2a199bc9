"""
Loguru setup for headshot-studio.

Everything logs through loguru; records emitted through the standard
`logging` module (uvicorn, fastapi, httpx) are forwarded to it.
"""

import logging
import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

FORWARDED_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "fastapi", "httpx")


class InterceptHandler(logging.Handler):
    """Forwards stdlib log records to loguru, keeping the original call site."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO") -> None:
    """
    Route all logging to a single stdout sink.

    Args:
        level: Minimum level written to stdout.
    """
    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT, level=level, colorize=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in FORWARDED_LOGGERS:
        forwarded = logging.getLogger(name)
        forwarded.handlers = [InterceptHandler()]
        forwarded.propagate = False

    logger.info(f"Logging initialized (level={level})")
