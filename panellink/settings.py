"""Logging setup and shared constants for panellink."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

CONFIG_FILE = "panellink.json"
LOG_DIR = "logs"
LOG_LEVEL = logging.INFO
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
FILE_LOG_FORMAT = "[%(asctime)s][%(levelname)s] %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def log_file_path(log_dir: str | Path = LOG_DIR, *, now: Optional[datetime] = None) -> Path:
    """Return ``<log_dir>/logs_YYYYMMDD_HHMMSS.txt`` for the current session."""

    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return Path(log_dir) / f"logs_{stamp}.txt"


def parse_level(value: str | int, default: int = LOG_LEVEL) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).strip().upper())
    return level if isinstance(level, int) else default


def configure_logging(
    *,
    level: int = LOG_LEVEL,
    fmt: str = LOG_FORMAT,
    force: bool = False,
    log_dir: str | Path | None = None,
) -> Optional[Path]:
    """Initialize the root logger used across panellink.

    When *log_dir* is given, a per-session log file is added next to the
    console output. Returns the path of that file, if any.
    """

    if force:
        logging.basicConfig(level=level, format=fmt, force=True)
    elif not logging.getLogger().handlers:
        logging.basicConfig(level=level, format=fmt)

    if log_dir is None:
        return None

    path = log_file_path(log_dir)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as exc:
        logging.getLogger(__name__).error("Could not open log file %s: %s", path, exc)
        return None
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    logging.getLogger().addHandler(handler)
    return path
