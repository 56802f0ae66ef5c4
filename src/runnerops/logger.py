"""
Installation log for runnerops.

All runnerops modules log through ``logging.getLogger(__name__)``.
``configure_installation_log`` attaches a size-rotated file handler to the
``runnerops`` logger so those records land in the append-only installation
log, one line per record::

    [2026-01-31 12:00:00] [INFO] [4242] [runnerops.executor] Starting step: update | max_attempts=4

The ``| details`` suffix comes from ``extra={"details": ...}`` on the
logging call. A ``SUCCESS`` level sits between INFO and WARNING.

When the configured log directory is not writable (the default lives
under /var/log) the fallback directory in the user's home is used.
"""

from __future__ import annotations

import logging
import os
import re
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from runnerops.config import RunnerOpsConfig
from runnerops.contracts import paths
from runnerops.contracts.timeouts import LOG_RETENTION_DAYS

__all__ = [
    "SUCCESS",
    "InstallationLogFormatter",
    "resolve_log_dir",
    "configure_installation_log",
    "log_success",
    "search_logs",
    "recent_logs",
    "cleanup_logs",
]

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

_ROOT_LOGGER = "runnerops"

logger = logging.getLogger(__name__)


class InstallationLogFormatter(logging.Formatter):
    """``[timestamp] [LEVEL] [pid] [source] message | details``"""

    def __init__(self):
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"[{self.formatTime(record, self.datefmt)}] [{record.levelname}] "
            f"[{record.process}] [{record.name}] {record.getMessage()}"
        )
        details = getattr(record, "details", None)
        if details:
            line += f" | {details}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def resolve_log_dir(config: RunnerOpsConfig) -> Path:
    """Configured log directory, or the fallback when it cannot be written."""
    for candidate in (config.log_dir, config.fallback_log_dir):
        path = Path(candidate)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError:
            continue
        if os.access(path, os.W_OK):
            return path
    raise PermissionError(
        f"Neither {config.log_dir} nor {config.fallback_log_dir} is writable"
    )


def configure_installation_log(
    config: RunnerOpsConfig,
    console: bool = False,
) -> Path:
    """
    Route runnerops logging into the rotating installation log.

    Safe to call more than once: previously attached handlers are replaced.

    Args:
        config: Log directory, rotation limits and level
        console: Also echo records to stderr

    Returns:
        Path of the installation log file
    """
    log_path = resolve_log_dir(config) / paths.INSTALLATION_LOG_NAME
    root = logging.getLogger(_ROOT_LOGGER)
    root.setLevel(config.log_level.upper())

    for handler in list(root.handlers):
        if getattr(handler, "_runnerops_handler", False):
            root.removeHandler(handler)
            handler.close()

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=config.max_log_bytes,
        backupCount=config.max_log_files,
        encoding="utf-8",
    )
    file_handler.setFormatter(InstallationLogFormatter())
    file_handler._runnerops_handler = True
    root.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(InstallationLogFormatter())
        stream_handler._runnerops_handler = True
        root.addHandler(stream_handler)

    return log_path


def log_success(log: logging.Logger, message: str, *args, details: Optional[str] = None) -> None:
    log.log(SUCCESS, message, *args, extra={"details": details or ""})


# ---------------------------------------------------------------------------
# Log maintenance
# ---------------------------------------------------------------------------


def search_logs(log_path: Path, pattern: str, max_results: int = 50) -> list[str]:
    """
    Lines of the installation log matching ``pattern`` (case-insensitive).

    Returns the last ``max_results`` matches, each prefixed with its line
    number as ``N:line``.

    Raises:
        FileNotFoundError: the log does not exist
    """
    regex = re.compile(pattern, re.IGNORECASE)
    matches = []
    with open(log_path, "r", encoding="utf-8", errors="replace") as f:
        for lineno, line in enumerate(f, start=1):
            if regex.search(line):
                matches.append(f"{lineno}:{line.rstrip()}")
    return matches[-max_results:]


def recent_logs(log_path: Path, lines: int = 50) -> list[str]:
    """Last ``lines`` lines of the installation log."""
    with open(log_path, "r", encoding="utf-8", errors="replace") as f:
        content = f.read().splitlines()
    return content[-lines:] if lines > 0 else []


def cleanup_logs(
    log_dir: Path,
    days: int = LOG_RETENTION_DAYS,
    now: Optional[float] = None,
) -> list[Path]:
    """
    Delete log and metrics files older than ``days``.

    Returns the removed paths.
    """
    cutoff = (now if now is not None else time.time()) - days * 86400
    removed = []
    for path in sorted(Path(log_dir).iterdir()):
        if not path.is_file():
            continue
        if not (".log" in path.name or path.suffix == ".json"):
            continue
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                removed.append(path)
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)
    if removed:
        logger.info("Removed %d log files older than %d days", len(removed), days)
    return removed
