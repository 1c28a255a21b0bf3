"""
Logging setup for the refinery process.

Console output goes to stderr in the same format the agent daemons use.
When a log directory is configured, a serialized JSONL sink is added with
daily rotation and 30 days of retention. Records emitted through the
standard ``logging`` module are forwarded into loguru.
"""

import logging
import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"
)


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def configure_logging(
    level: str = "INFO",
    log_dir: str | Path | None = None,
    service: str = "refinery",
) -> None:
    """
    Configure loguru sinks for a refinery process.

    Args:
        level: Minimum level for every sink
        log_dir: Directory for the JSONL sink; no file sink when None
        service: Service name, used as the log file stem
    """
    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)

    if log_dir is not None:
        service_dir = Path(log_dir) / service
        service_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(service_dir / f"{service}.jsonl"),
            level=level,
            serialize=True,
            rotation="00:00",
            retention="30 days",
            encoding="utf-8",
            enqueue=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
