"""Logging utilities"""

import logging
import sys
from pathlib import Path
from typing import Optional

from .platform_utils import get_logs_directory as _platform_logs_directory

LOG_FILE_NAME = "stackwarp.log"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Path of the active log file, if file logging could be set up
_log_file_path: Optional[Path] = None


def _is_writable(directory: Path) -> bool:
    test_file = directory / ".test_write"
    try:
        test_file.write_text("test")
        test_file.unlink()
        return True
    except OSError:
        return False


def get_logs_directory() -> Path:
    """Get logs directory with fallbacks"""
    try:
        log_dir = _platform_logs_directory()
        if _is_writable(log_dir):
            return log_dir
    except OSError:
        pass

    # Fall back to a local logs directory
    try:
        log_dir = Path("logs")
        log_dir.mkdir(parents=True, exist_ok=True)
        if _is_writable(log_dir):
            return log_dir
    except OSError:
        pass

    return Path(".")


def setup_logger(
    name: str,
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_dir: Optional[Path] = None
) -> logging.Logger:
    """Setup logger with consistent formatting"""
    global _log_file_path

    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        if log_to_file:
            try:
                log_file = (log_dir or get_logs_directory()) / LOG_FILE_NAME
                file_handler = logging.FileHandler(str(log_file), mode='a', encoding='utf-8')
                file_handler.setLevel(logging.DEBUG)
                file_handler.setFormatter(formatter)
                logger.addHandler(file_handler)
                _log_file_path = log_file
                logger.debug(f"Logging to: {log_file.absolute()}")
            except OSError as e:
                # Console logging keeps working without the file
                print(f"Could not set up file logging: {e}", file=sys.stderr)

    return logger


def get_log_file_path() -> Optional[Path]:
    """Get the path to the log file"""
    return _log_file_path
