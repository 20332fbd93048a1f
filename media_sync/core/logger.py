"""
Logging configuration for media-sync.

This module sets up the logging system with multiple outputs:
    - Console: Real-time messages with tqdm-compatible formatting
    - log_full.log: Complete log of all events (DEBUG and above)
    - log_errors.log: Only ERROR and CRITICAL level messages
    - download_cleanup_failures.log: Cached audio files that could not be
      removed after their track disappeared from the server

The logging system follows the principle: everything to screen is also saved
to file, then filtered into specialized files.

Log File Locations:
    All log files are created in a 'logs' subdirectory of the storage
    directory specified in config.yaml. Each run gets its own timestamp.

Usage:
    from media_sync.core.logger import setup_logging, get_logger

    setup_logging(storage_dir)  # Call once at startup
    logger = get_logger(__name__)  # Get logger for each module

    logger.info("Starting sync")
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from tqdm import tqdm


LOG_FULL_FILENAME = "log_full"
LOG_ERRORS_FILENAME = "log_errors"
CLEANUP_FAILURES_FILENAME = "download_cleanup_failures"

# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Log format for console output (compact, tqdm-friendly)
CONSOLE_LOG_FORMAT = "%(levelname)s: %(message)s"


class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BOLD = "\033[1m"


class ColoredConsoleFormatter(logging.Formatter):
    """
    Formatter that colors the level name on console output.

    Colors:
        - DEBUG: Blue
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bold Red
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.BLUE,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        colored_levelname = f"{color}{record.levelname}{Colors.RESET}"
        return f"{colored_levelname}: {record.getMessage()}"


class TqdmLoggingHandler(logging.Handler):
    """
    Logging handler that writes to console without breaking progress bars.

    Progress bars redraw in place using carriage returns; plain writes to
    stderr would tear them. tqdm.write() prints above any active bar.

    Attributes:
        stream: The output stream (defaults to sys.stderr).
    """

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
        except Exception:
            self.handleError(record)


class CleanupFailureHandler(logging.Handler):
    """
    Handler that collects cached downloads which could not be deleted.

    Orphan cleanup never fails a sync because a file could not be removed;
    instead the failure is logged with extra fields and this handler writes
    a short report the user can act on:

        track 5f1c2e... (/home/user/.media-sync/downloads/5f1c2e.m4a)
        Permission denied

    The handler looks for these extra fields in log records:
        - 'cleanup_failed_track_id': Remote id of the removed track
        - 'cleanup_failed_path': File that could not be deleted (optional)
        - 'cleanup_failed_reason': Error message (optional)

    Only records carrying 'cleanup_failed_track_id' are written.

    Usage:
        log_cleanup_failure(logger, track_id, path, "Permission denied")
    """

    def __init__(self, report_path: Path) -> None:
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """Open the report file for writing (overwrites existing content)."""
        self.report_file = open(self.report_path, "w", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, "cleanup_failed_track_id"):
            return

        if self.report_file is None:
            return

        try:
            track_id = getattr(record, "cleanup_failed_track_id")
            path = getattr(record, "cleanup_failed_path", None)
            reason = getattr(record, "cleanup_failed_reason", "")

            header = f"track {track_id}"
            if path:
                header += f" ({path})"

            self.report_file.write(f"{header}\n")
            self.report_file.write(f"{reason}\n\n")
            self.report_file.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        """Close the report file handle. Safe to call multiple times."""
        if self.report_file is not None:
            try:
                self.report_file.close()
            except OSError:
                pass
            self.report_file = None
        super().close()


class ErrorOnlyFilter(logging.Filter):
    """Filter that only allows ERROR and CRITICAL level records."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(output_dir: Path, verbose: bool = False) -> None:
    """
    Configure the logging system for the application.

    This function should be called ONCE at application startup, after
    the configuration is loaded but before any other operations.

    Args:
        output_dir: Directory where log files will be created.
                    Logs are stored in a 'logs' subdirectory.
        verbose: If True, the console shows DEBUG messages too.

    Behavior:
        1. Create output_dir/logs if it doesn't exist
        2. Generate timestamp for this run's log files
        3. Configure root logger level to DEBUG
        4. Console handler (TqdmLoggingHandler), INFO or DEBUG
        5. Full log file handler, DEBUG
        6. Error log file handler, ERROR+ via ErrorOnlyFilter
        7. Download cleanup failure report handler

    Thread Safety:
        This function is NOT thread-safe. Call it once from the main
        thread before starting the event loop.
    """
    logs_dir = output_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    full_log_path = logs_dir / f"{LOG_FULL_FILENAME}_{timestamp}.log"
    full_handler = logging.FileHandler(full_log_path, mode="w", encoding="utf-8")
    full_handler.setLevel(logging.DEBUG)
    full_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    root_logger.addHandler(full_handler)

    error_log_path = logs_dir / f"{LOG_ERRORS_FILENAME}_{timestamp}.log"
    error_handler = logging.FileHandler(error_log_path, mode="w", encoding="utf-8")
    error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
    error_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    error_handler.addFilter(ErrorOnlyFilter())
    root_logger.addHandler(error_handler)

    cleanup_path = logs_dir / f"{CLEANUP_FAILURES_FILENAME}_{timestamp}.log"
    cleanup_handler = CleanupFailureHandler(cleanup_path)
    cleanup_handler.open()
    root_logger.addHandler(cleanup_handler)

    # aiohttp is chatty at DEBUG
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.
              This creates a hierarchy like 'media_sync.sync.importer'.

    Returns:
        logging.Logger: A logger instance configured by setup_logging().

    Note:
        Loggers obtained before setup_logging() is called will have no
        handlers and will not produce output.
    """
    return logging.getLogger(name)


def log_cleanup_failure(
    logger: logging.Logger,
    track_id: str,
    path: Path | str | None,
    reason: str
) -> None:
    """
    Log a cached download that could not be deleted.

    Adds the extra fields CleanupFailureHandler picks up. Logged at
    WARNING: a leftover file never fails a sync.
    """
    logger.warning(
        f"Failed to delete cached download for track {track_id}: {reason}",
        extra={
            "cleanup_failed_track_id": track_id,
            "cleanup_failed_path": str(path) if path else None,
            "cleanup_failed_reason": reason,
        }
    )


def shutdown_logging() -> None:
    """
    Flush and close all handlers on the root logger.

    This is typically called in a finally block at application exit.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError):
            pass
        root_logger.removeHandler(handler)
