"""
Logger Module

Every pipeline component logs under the "attendance" logger. Handlers are
attached once to that parent: console at INFO, file at DEBUG.

The log file defaults to attendance_core.log in the project root; set
ATTENDANCE_LOG_DIR to write it elsewhere.
"""

import logging
import os
import sys
import threading
from pathlib import Path
from typing import Optional

_ROOT_LOGGER_NAME = "attendance"
_LOG_FILE_NAME = "attendance_core.log"
_LOG_DIR_ENV = "ATTENDANCE_LOG_DIR"

_configure_lock = threading.Lock()


def _default_log_path() -> Path:
    log_dir = os.environ.get(_LOG_DIR_ENV)
    if log_dir:
        return Path(log_dir) / _LOG_FILE_NAME
    return Path(__file__).parent.parent.parent / _LOG_FILE_NAME


def _configure_root(log_file: Optional[str]) -> logging.Logger:
    root = logging.getLogger(_ROOT_LOGGER_NAME)
    with _configure_lock:
        if root.handlers:
            return root

        root.setLevel(logging.DEBUG)
        root.propagate = False
        formatter = logging.Formatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(threadName)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

        log_path = Path(log_file) if log_file else _default_log_path()
        try:
            file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        except OSError as e:
            root.warning(f"Unable to open log file {log_path}, logging to console only: {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
    return root


def get_logger(name: str, log_file: Optional[str] = None) -> logging.Logger:
    """
    Get a component logger.

    Args:
        name: Component name (e.g. "ExcelParser", "BatchService")
        log_file: Log file for the first configuration only; later calls reuse it

    Returns:
        Child of the "attendance" logger
    """
    return _configure_root(log_file).getChild(name)


def set_console_level(level: int) -> None:
    """Change console verbosity. The file handler stays at DEBUG."""
    root = logging.getLogger(_ROOT_LOGGER_NAME)
    for handler in root.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)
