"""
Logging infrastructure for rating runs.

Provides:
- Timestamped, level-aligned output with milliseconds
- Console output plus an optional log file
- key=value structured data on each message
- Error and warning tracking for the end-of-run summary
"""

import logging
import sys
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..config import get_log_dir


class MillisecondsFormatter(logging.Formatter):
    """Custom formatter that includes milliseconds and aligns log levels."""

    def formatTime(self, record, datefmt=None):  # noqa: N802 - must match parent class method name
        """Override formatTime to include milliseconds."""
        ct = datetime.fromtimestamp(record.created)
        if datefmt and "%f" in datefmt:
            s = ct.strftime(datefmt.replace(",%f", ""))
            return s + f",{int(record.msecs):03d}"
        elif datefmt:
            return ct.strftime(datefmt)
        else:
            return ct.strftime("%Y-%m-%d %H:%M:%S") + f",{int(record.msecs):03d}"


def _format_data(message: str, data: dict) -> str:
    if not data:
        return message
    formatted = " ".join(f"{k}={v}" for k, v in data.items())
    return f"{message} [{formatted}]"


class RatingLogger:
    """
    Logger for a batch rating run with structured output.

    Module loggers (logging.getLogger(__name__)) propagate to the root logger,
    which this class configures with the same format, so engine warnings and
    run-level messages look alike.
    """

    def __init__(
        self,
        name: str = "traffic_light",
        log_level: str = "INFO",
        log_file: Optional[str] = None,
        log_dir: Optional[Path] = None,
    ):
        """
        Initialize the rating logger.

        Args:
            name: Logger name
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional log file name
            log_dir: Directory for log files (defaults to the data dir's logs/)
        """
        level = getattr(logging, log_level.upper())
        self.logger = logging.getLogger(f"{name}.run")
        self.logger.setLevel(level)

        fmt_str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        formatter = MillisecondsFormatter(fmt_str, datefmt="%Y-%m-%d %H:%M:%S,%f")

        # Root handler serves both this logger and every module logger
        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        self.log_path: Optional[Path] = None
        if log_file:
            log_dir = log_dir or get_log_dir()
            log_dir.mkdir(parents=True, exist_ok=True)
            self.log_path = log_dir / log_file

            file_handler = logging.FileHandler(self.log_path)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

            self.info(f"Logging to file: {self.log_path}")

        self.errors: list[dict] = []
        self.warnings: list[dict] = []

    def debug(self, message: str, **kwargs):
        """Log debug message with optional structured data."""
        self.logger.debug(_format_data(message, kwargs), stacklevel=2)

    def info(self, message: str, **kwargs):
        """Log info message with optional structured data."""
        self.logger.info(_format_data(message, kwargs), stacklevel=2)

    def warning(self, message: str, **kwargs):
        """Log warning message and track for reporting."""
        message = _format_data(message, kwargs)
        self.logger.warning(message, stacklevel=2)
        self.warnings.append(
            {
                "message": message,
                "timestamp": datetime.now().isoformat(),
                "data": kwargs,
            }
        )

    def error(self, message: str, exception: Optional[Exception] = None, **kwargs):
        """Log error message and track for reporting."""
        if exception:
            message = f"{message} | Exception: {exception}"
        message = _format_data(message, kwargs)

        self.logger.error(message, exc_info=exception is not None, stacklevel=2)
        self.errors.append(
            {
                "message": message,
                "exception": str(exception) if exception else None,
                "timestamp": datetime.now().isoformat(),
                "data": kwargs,
            }
        )

    def log_run_start(self, num_employers: int):
        """Log start of a batch rating run."""
        self.info("=" * 60)
        self.info(f"Rating run started - {num_employers} employers", num_employers=num_employers)
        self.info("=" * 60)

    def log_run_complete(self, succeeded: int, failed: int, duration_seconds: float):
        """Log completion of a batch rating run."""
        self.info("=" * 60)
        self.info(
            "Rating run completed",
            succeeded=succeeded,
            failed=failed,
            total=succeeded + failed,
            duration_seconds=round(duration_seconds, 2),
        )
        self.info("=" * 60)

    @contextmanager
    def time_employer(self, employer_id: str, operation: str = "rating"):
        """
        Context manager to time and log one employer's computation.

        Usage:
            with logger.time_employer("emp-42"):
                state = compute_employer_rating(...)
        """
        start_time = datetime.now()
        self.debug(f"Starting {operation}", employer_id=employer_id)
        try:
            yield
            duration = (datetime.now() - start_time).total_seconds()
            self.debug(f"Completed {operation}", employer_id=employer_id, duration_seconds=round(duration, 3))
        except Exception as e:
            duration = (datetime.now() - start_time).total_seconds()
            self.error(
                f"Failed {operation}",
                exception=e,
                employer_id=employer_id,
                duration_seconds=round(duration, 3),
            )
            raise

    def get_error_summary(self) -> dict:
        """Get summary of errors and warnings for reporting."""
        return {
            "total_errors": len(self.errors),
            "total_warnings": len(self.warnings),
            "errors": self.errors,
            "warnings": self.warnings,
        }

    def clear_tracking(self):
        """Clear tracked errors and warnings (useful between runs)."""
        self.errors = []
        self.warnings = []
