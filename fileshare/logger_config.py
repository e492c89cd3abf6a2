import logging
import sys
from pathlib import Path
from typing import Union

LOGGER_NAME = "fileserver"
LOG_PREFIX = "[FILE SERVER]"


def setup_logger(
    name: str = LOGGER_NAME,
    log_file: Union[str, Path] = "server.log",
    level: int = logging.INFO,
) -> logging.Logger:
    """Configure a logger writing to stdout and appending to ``log_file``.

    The returned logger is meant to be passed to the handlers explicitly.
    Calling this again for the same name returns the already configured logger.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(level)

    # Create the log directory if it doesn't exist
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # Create formatters
    file_formatter = logging.Formatter(
        f'{LOG_PREFIX} %(asctime)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
    )
    console_formatter = logging.Formatter(
        f'{LOG_PREFIX} %(asctime)s - %(levelname)s - %(message)s'
    )

    # File handler (appends across restarts)
    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(file_formatter)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(console_formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger
