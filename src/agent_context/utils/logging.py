"""Logging configuration and utilities for Agent Context.

Console output goes through rich; every record also lands in a per-run
log file so pipeline runs can be inspected after the fact.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from rich.logging import RichHandler


FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
DEBUG_FILE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - "
    "%(funcName)s() - %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
SNAPSHOT_LIST_PREVIEW = 5

_loggers: dict[str, logging.Logger] = {}


def _file_handler(path: Path, level: int, fmt: str) -> logging.FileHandler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    level: str = "WARNING",
    log_dir: Optional[Path] = None,
    session_id: Optional[str] = None,
    always_debug_file: bool = True,
) -> Path:
    """Configure the root logger for a context system run.

    Replaces any existing root handlers with a rich console handler at
    ``level`` and a ``context_<session>.log`` file. With
    ``always_debug_file`` the main file records DEBUG, and a quieter
    console additionally gets a ``debug_<session>.log`` with function names.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files, ``logs`` when omitted
        session_id: Suffix of the log file names, a timestamp when omitted
        always_debug_file: Record DEBUG in files whatever the console level

    Returns:
        Path of the main log file
    """
    console_level = getattr(logging, level.upper(), logging.WARNING)
    log_dir = Path(log_dir) if log_dir is not None else Path("logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    session_id = session_id or datetime.now().strftime("%Y-%m-%d_%H%M%S")

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG)

    console = RichHandler(rich_tracebacks=True, show_time=True, show_path=False)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console)

    log_file = log_dir / f"context_{session_id}.log"
    file_level = logging.DEBUG if always_debug_file else console_level
    root.addHandler(_file_handler(log_file, file_level, FILE_FORMAT))

    debug_file = None
    if always_debug_file and console_level > logging.DEBUG:
        debug_file = log_dir / f"debug_{session_id}.log"
        root.addHandler(_file_handler(debug_file, logging.DEBUG, DEBUG_FILE_FORMAT))

    logger = get_logger(__name__)
    logger.debug(
        f"Logging initialized for session {session_id}: console={level.upper()}, "
        f"file={log_file.absolute()}"
    )
    if debug_file is not None:
        logger.debug(f"Debug log file: {debug_file.absolute()}")
    return log_file


def get_logger(name: str) -> logging.Logger:
    """Get a logger by name, cached per name."""
    if name not in _loggers:
        _loggers[name] = logging.getLogger(name)
    return _loggers[name]


def get_current_log_files() -> dict[str, Path]:
    """Files the root logger writes to, keyed ``main`` and ``debug``."""
    files = {}
    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.FileHandler):
            path = Path(handler.baseFilename)
            files["debug" if path.name.startswith("debug_") else "main"] = path
    return files


def log_debug_system_state(state_info: dict[str, Any]) -> None:
    """Write a snapshot of system state at DEBUG.

    Nested dicts are printed one level deep; long lists are previewed.

    Args:
        state_info: Snapshot to log
    """
    logger = get_logger("agent_context.debug")
    rule = "=" * 50
    logger.debug(rule)
    logger.debug("SYSTEM STATE DEBUG SNAPSHOT")
    logger.debug(rule)

    for key, value in state_info.items():
        if isinstance(value, dict):
            logger.debug(f"{key}:")
            for sub_key, sub_value in value.items():
                logger.debug(f"  {sub_key}: {sub_value}")
        elif isinstance(value, (list, tuple)):
            logger.debug(f"{key}: [{len(value)} items]")
            for index, item in enumerate(value[:SNAPSHOT_LIST_PREVIEW]):
                logger.debug(f"  [{index}]: {item}")
            hidden = len(value) - SNAPSHOT_LIST_PREVIEW
            if hidden > 0:
                logger.debug(f"  ... and {hidden} more items")
        else:
            logger.debug(f"{key}: {value}")

    logger.debug(rule)
