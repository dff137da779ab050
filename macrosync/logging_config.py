"""Logging setup for macrosync.

All modules log through ``logging.getLogger(__name__)`` under the
``macrosync`` logger. This module attaches a dated file handler to it and
offers a compact append-only log of sync cycles.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
ROOT_LOGGER_NAME = "macrosync"


def _resolve_log_dir(data_dir: Optional[Path]) -> Path:
    if data_dir is None:
        from .config import get_settings

        data_dir = get_settings().data_dir
    log_dir = Path(data_dir) / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def setup_macrosync_logging(
    level: str = "INFO", data_dir: Optional[Path] = None
) -> logging.Logger:
    """Configure the ``macrosync`` logger.

    Writes to ``<data_dir>/logs/local-YYYY-MM-DD.log``. At DEBUG level a
    console handler is added as well. Calling this twice does not stack
    handlers.

    Args:
        level: Logging level name (case-insensitive); unknown names fall back to INFO.
        data_dir: Base directory for logs (default: configured data dir).

    Returns:
        The configured ``macrosync`` logger.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    resolved = getattr(logging, level.upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    if any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        return logger

    log_dir = _resolve_log_dir(data_dir)
    log_file = log_dir / f"local-{datetime.now().strftime('%Y-%m-%d')}.log"
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if resolved == logging.DEBUG:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    return logger


def log_sync_event(
    direction: str,
    count: int,
    errors: int = 0,
    identity: Optional[str] = None,
    data_dir: Optional[Path] = None,
) -> None:
    """Append one line describing a sync phase to the daily sync-events log."""
    log_dir = _resolve_log_dir(data_dir)
    event_file = log_dir / f"sync-events-{datetime.now().strftime('%Y-%m-%d')}.log"
    timestamp = datetime.now().isoformat(timespec="seconds")
    line = (
        f"{timestamp} | sync | identity={identity or 'public'} | "
        f"direction={direction}, count={count}, errors={errors}\n"
    )
    with open(event_file, "a", encoding="utf-8") as f:
        f.write(line)
