"""Logging configuration for tqm."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Client libraries that log every request at DEBUG
QUIET_LOGGERS = ('qbittorrentapi', 'urllib3', 'deluge_client', 'tldextract')


def rotate_previous_log(log_path: Path, keep: int) -> None:
    """Move the last run's log aside as ``activity-YYYYmmdd-HHMMSS.log``.

    The timestamp is the old file's mtime. Only the `keep` newest moved logs
    survive. Empty or missing logs are left alone.
    """
    if not log_path.is_file() or log_path.stat().st_size == 0:
        return

    stamp = datetime.fromtimestamp(log_path.stat().st_mtime, tz=timezone.utc)
    log_path.rename(log_path.with_name(f"{log_path.stem}-{stamp:%Y%m%d-%H%M%S}{log_path.suffix}"))

    previous = sorted(log_path.parent.glob(f"{log_path.stem}-*{log_path.suffix}"))
    for old in previous[:-keep] if keep > 0 else previous:
        old.unlink()


def verbosity_to_level(verbosity: int) -> str:
    """Map the number of -v flags to a level name."""
    return 'DEBUG' if verbosity > 0 else 'INFO'


def setup_logger(
    name: str,
    log_level: str = "INFO",
    log_file: str | None = None,
    max_files: int = 5,
) -> logging.Logger:
    """
    Configure the root logger and return the named logger.

    Every run starts a fresh activity log; the previous one is rotated.

    Args:
        name: Logger name
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional activity log path
        max_files: Rotated activity logs to keep

    Returns:
        Logger for `name`
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper()))
    root.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        rotate_previous_log(log_path, max_files)
        handlers.append(logging.FileHandler(log_path))

    for handler in handlers:
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for quiet in QUIET_LOGGERS:
        logging.getLogger(quiet).setLevel(logging.WARNING)

    return logging.getLogger(name)
