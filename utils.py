# utils.py - Utility Functions for the order dashboard engine
"""
Helper functions for logging, numeric coercion, text cleanup and timestamps
"""

import math
import logging
import logging.handlers
from datetime import datetime, timezone
from typing import Any, Optional
from pathlib import Path

import config

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
ENGINE_LOG_NAME = "order_engine.log"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    log_dir: Optional[str] = None,
) -> None:
    """
    Configure the root logger for a dashboard process.

    Args:
        log_level: Level name, defaults to config.LOG_LEVEL
        log_file: Plain file to log to instead of the rotating engine log
        log_dir: Directory for the rotating engine log, defaults to config.LOG_DIR
    """
    level_name = (log_level or config.LOG_LEVEL or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        target = log_file
    else:
        directory = Path(log_dir or config.LOG_DIR)
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / ENGINE_LOG_NAME
        file_handler = logging.handlers.RotatingFileHandler(
            target, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS
        )

    handlers = [logging.StreamHandler(), file_handler]
    for handler in handlers:
        handler.setFormatter(formatter)

    # Replaces handlers left by an earlier call
    logging.basicConfig(level=level, handlers=handlers, force=True)

    for name in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Logging at {level_name} to console and {target}")


def to_number(value: Any) -> Optional[float]:
    """
    Coerce a backend numeric field to float.

    Returns None for missing, non-numeric and NaN values. Booleans are not
    numbers here.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def clean_text(value: Any) -> Optional[str]:
    """Trim a free-text field; empty strings become None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_iso_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    """
    Parse ISO datetime string safely, handling Z suffix and timezone-naive inputs.
    Returns timezone-aware datetime in UTC, or None if invalid.
    """
    if not dt_str:
        return None
    if isinstance(dt_str, datetime):
        dt = dt_str
    else:
        try:
            normalized = str(dt_str).replace("Z", "+00:00")
            dt = datetime.fromisoformat(normalized)
        except (ValueError, TypeError) as e:
            logger.warning(f"Invalid datetime format: {dt_str} - {e}")
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def sort_key_for_timestamp(dt_str: Optional[str]) -> float:
    """Epoch seconds for sorting; unparseable timestamps sort oldest."""
    dt = parse_iso_datetime(dt_str)
    return dt.timestamp() if dt else float("-inf")
