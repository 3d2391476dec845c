"""Logging configuration for the Taskboard API."""

import logging
import sys

from app.core.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

THIRD_PARTY_LEVELS = {
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "asyncio": logging.WARNING,
}


def setup_logging(settings: Settings) -> None:
    """Configure the root logger from the application settings.

    Args:
        settings: Application settings containing the log level
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(
        logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    )
    root_logger.addHandler(console_handler)

    for logger_name, logger_level in THIRD_PARTY_LEVELS.items():
        logging.getLogger(logger_name).setLevel(logger_level)

    logging.getLogger(__name__).info(
        "Logging configured with level: %s", settings.log_level.upper()
    )
