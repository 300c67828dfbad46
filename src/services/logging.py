"""
Logging - Application logging configuration and disk persistence.

Provides:
- Python logging configuration with console and optional file output
- Log persistence to daily files: solwallet-YYYY-MM-DD.log
- Automatic cleanup of old log files
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional
import logging

from utils import get_logs_dir

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
LOG_FILE_PREFIX = "solwallet-"


def configure_logging(level: int = logging.INFO, retention_days: int = 0) -> None:
    """
    Configure Python logging for the application.

    Sets up a root logger with console output, plus today's log file when
    retention is enabled.

    Args:
        level: Logging level (default: INFO)
        retention_days: If 0, don't write to disk
    """
    root_logger = logging.getLogger()

    # Only configure if not already configured
    if root_logger.handlers:
        return

    root_logger.setLevel(level)

    # Console handler with simple format
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S'))
    root_logger.addHandler(console_handler)

    if retention_days > 0:
        cleanup_old_logs(retention_days)
        file_handler = logging.FileHandler(get_log_file_path(), encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        root_logger.addHandler(file_handler)


def get_log_file_path(date: Optional[datetime] = None) -> Path:
    """Get the log file path for a specific date (defaults to today)."""
    if date is None:
        date = datetime.now()
    filename = f"{LOG_FILE_PREFIX}{date.strftime('%Y-%m-%d')}.log"
    return get_logs_dir() / filename


def load_recent_logs(max_lines: int = 500) -> list[str]:
    """
    Load recent log lines from disk.

    Reads from today's log file, and if needed yesterday's,
    to get up to max_lines.

    Args:
        max_lines: Maximum number of lines to load (0 = don't load)

    Returns:
        List of log lines, oldest first
    """
    if max_lines <= 0:
        return []

    lines = []

    # Try today's file first
    today_path = get_log_file_path()
    if today_path.exists():
        lines = _read_last_n_lines(today_path, max_lines)

    # If we need more lines, try yesterday
    if len(lines) < max_lines:
        yesterday = datetime.now() - timedelta(days=1)
        yesterday_path = get_log_file_path(yesterday)
        if yesterday_path.exists():
            remaining = max_lines - len(lines)
            yesterday_lines = _read_last_n_lines(yesterday_path, remaining)
            lines = yesterday_lines + lines

    return lines


def _read_last_n_lines(file_path: Path, n: int) -> list[str]:
    """Read the last N lines from a file."""
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            all_lines = f.readlines()
            return [line.rstrip('\n') for line in all_lines[-n:]]
    except OSError as e:
        logging.getLogger(__name__).warning(f"Failed to read {file_path.name}: {e}")
        return []


def cleanup_old_logs(retention_days: int) -> int:
    """
    Delete log files older than retention_days.

    Args:
        retention_days: Delete files older than this (0 = delete all)

    Returns:
        Number of files deleted
    """
    if retention_days < 0:
        return 0

    logs_dir = get_logs_dir()
    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for file_path in logs_dir.glob(f"{LOG_FILE_PREFIX}*.log"):
        # Parse date from filename
        try:
            date_str = file_path.stem.replace(LOG_FILE_PREFIX, "")
            file_date = datetime.strptime(date_str, "%Y-%m-%d")

            if file_date < cutoff_date:
                file_path.unlink()
                deleted_count += 1
        except (ValueError, OSError):
            # Skip files that don't match expected format
            continue

    return deleted_count
