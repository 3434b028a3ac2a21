"""
Logging configuration

Library modules log through the standard ``logging`` module. Applications
embedding the engine may call ``setup_logging()`` once to route those
records into loguru sinks.
"""
import logging
import sys
from pathlib import Path

from loguru import logger
from fsrs_engine.core.config import settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """
    Intercept standard logging and redirect to loguru
    """

    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding Loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(level: str = None):
    """
    Setup logging configuration

    Args:
        level: Overrides ``settings.LOG_LEVEL`` when given
    """
    level = level or settings.LOG_LEVEL

    # Remove default logger
    logger.remove()

    logger.add(
        sys.stdout,
        colorize=True,
        format=LOG_FORMAT,
        level=level,
    )

    # Add file logger for production
    if settings.ENVIRONMENT == "production":
        log_path = Path("logs")
        log_path.mkdir(exist_ok=True)

        logger.add(
            log_path / "fsrs_engine_{time:YYYY-MM-DD}.log",
            rotation="100 MB",
            retention="30 days",
            enqueue=True,
            serialize=False,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        )

    # Intercept everything at the engine's root logger
    engine_logger = logging.getLogger("fsrs_engine")
    engine_logger.handlers = [InterceptHandler()]
    engine_logger.setLevel(level)
    engine_logger.propagate = False

    return logger
