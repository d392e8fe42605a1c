"""Logging configuration for Stockroom.

Sets up logging to both file (with date-based naming) and console. Components
log through child loggers of ``stockroom`` (e.g. ``stockroom.hierarchy``) so
tree mutations can be filtered out of the general application log.
"""

import logging
from datetime import date
from typing import Optional

from config import Config

ROOT_LOGGER_NAME = "stockroom"


def setup_logging(config: Config, console: bool = True) -> logging.Logger:
    """Set up application logging with file and console handlers.

    Args:
        config: Application configuration containing log settings.
        console: Whether to also log to stderr. The CLI keeps this on; embedding
            callers (an HTTP layer, tests) usually turn it off.

    Returns:
        Configured root application logger.
    """
    config.log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(config.log_level)

    # Clear any existing handlers (in case this is called multiple times)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    detailed_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_file_path = config.log_dir / f"stockroom-{date.today().isoformat()}.log"
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(config.log_level)
    file_handler.setFormatter(detailed_formatter)
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(config.log_level)
        console_handler.setFormatter(logging.Formatter("%(levelname)s - %(message)s"))
        logger.addHandler(console_handler)

    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get the application logger or one of its children.

    Args:
        name: Optional component name, e.g. ``"hierarchy"``.

    Returns:
        The ``stockroom`` logger, or ``stockroom.<name>`` when a name is given.
    """
    if name:
        return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
    return logging.getLogger(ROOT_LOGGER_NAME)
