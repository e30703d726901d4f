"""
Console and Logging Setup

Colored console output plus the aggregate run log. Every line has the
form ``[LEVEL][YYYY-mm-dd HH:MM:SS] message``; the console copy is colored
by level, the file copy is plain.

License: MIT
"""

import logging
import sys
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO, Tuple

LOGGER_NAME = "security_setup"

LOG_FORMAT = "[%(levelname)s][%(asctime)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Between INFO and WARNING
SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")


class Colors:
    """ANSI color codes for terminal output."""
    RED = '\033[0;31m'
    GREEN = '\033[0;32m'
    YELLOW = '\033[1;33m'
    BLUE = '\033[0;34m'
    PURPLE = '\033[0;35m'
    CYAN = '\033[0;36m'
    BOLD = '\033[1m'
    NC = '\033[0m'


LEVEL_COLORS = {
    logging.DEBUG: Colors.CYAN,
    logging.INFO: Colors.BLUE,
    SUCCESS: Colors.GREEN,
    logging.WARNING: Colors.YELLOW,
    logging.ERROR: Colors.RED,
    logging.CRITICAL: Colors.BOLD + Colors.RED,
}


class ColorFormatter(logging.Formatter):
    """Formatter that wraps each record in its level color."""

    def __init__(self, fmt: str = LOG_FORMAT, datefmt: str = DATE_FORMAT,
                 use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if not self.use_colors:
            return message
        color = LEVEL_COLORS.get(record.levelno)
        if color is None:
            return message
        return f"{color}{message}{Colors.NC}"


def timestamp() -> str:
    """Timestamp used in log and backup file names."""
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def create_file_handler(path: Path, level: int = logging.DEBUG) -> logging.FileHandler:
    """Plain (uncolored) file handler in the standard line format."""
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    return handler


def log_success(logger: logging.Logger, message: str, *args) -> None:
    logger.log(SUCCESS, message, *args)


def setup_logging(log_dir: Path, verbose: bool = False,
                  stream: Optional[TextIO] = None) -> Tuple[logging.Logger, Path]:
    """
    Configure the ``security_setup`` logger.

    Existing handlers are removed first so repeated calls in one process do
    not duplicate output. When ``log_dir`` cannot be created (typically
    when not running as root) the log falls back to the temp directory.

    Returns:
        The configured logger and the path of the aggregate run log.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream = stream or sys.stdout
    console_handler = logging.StreamHandler(stream)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(ColorFormatter(use_colors=stream.isatty()))
    logger.addHandler(console_handler)

    fallback_reason = None
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / f"security_setup_{timestamp()}.log"
        file_handler = create_file_handler(log_path)
    except OSError as e:
        fallback_reason = e
        log_dir = Path(tempfile.gettempdir()) / "security-setup"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / f"security_setup_{timestamp()}.log"
        file_handler = create_file_handler(log_path)
    logger.addHandler(file_handler)

    if fallback_reason is not None:
        logger.warning(f"Cannot write to the configured log directory ({fallback_reason}); "
                       f"logging to {log_dir}")
    return logger, log_path
