import logging
import os
from datetime import datetime

LOG_FORMAT = "[ %(asctime)s ] %(lineno)d %(name)s - %(levelname)s - %(message)s"

LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))
LOG_FILE = f"{datetime.now().strftime('%m_%d_%Y_%H_%M_%S')}.log"

_file_handler = None


def _get_file_handler():
    """Create the per-run file handler once and share it across loggers."""
    global _file_handler
    if _file_handler is None:
        try:
            os.makedirs(LOG_DIR, exist_ok=True)
            _file_handler = logging.FileHandler(os.path.join(LOG_DIR, LOG_FILE), encoding="utf-8")
            _file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        except OSError:
            # Read-only filesystems (containers, CI) still get console output
            _file_handler = logging.NullHandler()
    return _file_handler


def get_logger(name: str) -> logging.Logger:
    """
    Returns a module logger writing to stdout and to logs/<run>.log.

    Level comes from LOG_LEVEL (default INFO).
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    logger.setLevel(level)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(stream_handler)
    logger.addHandler(_get_file_handler())

    logger.propagate = False
    return logger
