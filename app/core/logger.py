"""Logger configuration for the activity intake service.

Log calls may bind ``user_id`` (``logger.info(..., user_id=...)`` or
``logger.bind(user_id=...)``); records without one show ``-``.
"""

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | user={extra[user_id]} - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | user={extra[user_id]} - {message}"


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """Replace loguru's default sink with the service sinks.

    Args:
        level: Minimum level for every sink
        log_file: Optional path of a rotating, zip-compressed file sink
        rotation: Size or age at which the file sink rotates
        retention: How long rotated files are kept
    """
    logger.remove()
    logger.configure(extra={"user_id": "-"})

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            format=FILE_FORMAT,
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

    logger.info(f"Logger initialized with level={level}, file={log_file or '-'}")
