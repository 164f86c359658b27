from __future__ import annotations

import logging
import os
import traceback
from datetime import datetime
from pathlib import Path

_LOGGER = logging.getLogger("untinnitus.logging")
LOG_DIR_ENV = "UNTINNITUS_LOG_DIR"
DEBUG_ENV = "UNTINNITUS_DEBUG"
_LOG_FILE = "untinnitus.log"
_logging_configured = False
_CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def debug_enabled() -> bool:
    return bool(os.environ.get(DEBUG_ENV))


def get_log_dir() -> Path:
    configured = os.environ.get(LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "untinnitus" / "logs"


def get_log_path() -> Path:
    return get_log_dir() / _LOG_FILE


def configure_logging() -> None:
    """Send `untinnitus` records to stderr and to the log file, once per process."""

    global _logging_configured
    if _logging_configured:
        return

    logger = logging.getLogger("untinnitus")
    logger.setLevel(logging.DEBUG)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if debug_enabled() else logging.INFO)
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console_handler)

    try:
        log_dir = get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(get_log_path(), encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATE_FORMAT))
        logger.addHandler(file_handler)
    except OSError as exc:
        _LOGGER.warning("Failed to configure file logging: %s", exc, exc_info=True)
    _logging_configured = True


def log_exception(context: str, exc: BaseException) -> Path | None:
    try:
        log_dir = get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        path = get_log_path()
        timestamp = datetime.now().isoformat()
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{timestamp}] {context} failed: {type(exc).__name__}: {exc}\n")
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=handle)
            handle.write("\n")
        return path
    except OSError as log_exc:
        _LOGGER.warning("Failed to write log file: %s", log_exc, exc_info=True)
        return None
