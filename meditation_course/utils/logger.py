"""
Logging utilities for the course progression core.
"""

import logging
import sys
import traceback
from datetime import datetime
from functools import wraps
from typing import Optional
from pathlib import Path

from .config import config


ROOT_LOGGER_NAME = "meditation_course"


class CourseLogger:
    """Custom logger for the course progression core."""

    def __init__(self, name: str = ROOT_LOGGER_NAME, log_file: Optional[str] = None):
        """Initialize the logger."""
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)

        # Prevent duplicate handlers; module loggers propagate to the package logger
        if self.logger.handlers or name.startswith(ROOT_LOGGER_NAME + "."):
            return

        detailed_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        )
        simple_formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s'
        )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, config.logging.console_level, logging.ERROR))
        console_handler.setFormatter(simple_formatter)
        self.logger.addHandler(console_handler)

        if config.logging.enable_file_logging or log_file is not None:
            if log_file is None:
                logs_dir = Path(config.logging.log_dir)
                logs_dir.mkdir(parents=True, exist_ok=True)

                timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
                log_file = logs_dir / f"meditation_course_{timestamp}.log"

            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(getattr(logging, config.logging.log_level, logging.INFO))
            file_handler.setFormatter(detailed_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str) -> None:
        """Log debug message."""
        self.logger.debug(message)

    def info(self, message: str) -> None:
        """Log info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log error message."""
        self.logger.error(message)

    def critical(self, message: str) -> None:
        """Log critical message."""
        self.logger.critical(message)

    def log_unlock_decision(self, level: int, day, unlocked: bool, reason: str = "") -> None:
        """Log a level/day unlock decision."""
        message = f"Unlock - Level {level}, Day {day}: {'unlocked' if unlocked else 'locked'}"
        if reason:
            message += f" ({reason})"
        self.debug(message)

    def log_snapshot(self, t: float, eye_closed_pct: float, head_move: float,
                     hand_move: float, hand_stability: float) -> None:
        """Log a meditation metrics snapshot."""
        self.debug(f"Snapshot - t: {t:.0f}s, Eyes Closed: {eye_closed_pct:.1f}%, "
                   f"Head: {head_move:.4f}, Hands: {hand_move:.4f}, Stability: {hand_stability:.3f}")

    def log_verdict(self, passed: bool, reason: str, duration: float, policy: str) -> None:
        """Log a meditation test verdict."""
        self.info(f"Verdict - Passed: {passed}, Duration: {duration / 60:.1f} min, "
                  f"Policy: {policy}, Reason: {reason or '-'}")

    def log_sync(self, action: str, records: int, stale: int = 0) -> None:
        """Log a persistence sync event."""
        self.info(f"Sync - {action}: {records} records, {stale} stale kept local")

    def log_error_with_context(self, error: Exception, context: str) -> None:
        """Log error with additional context."""
        self.error(f"Error in {context}: {str(error)}")
        if error.__traceback__ is not None:
            self.debug("Traceback: " + "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ))


# Global logger instance
logger = CourseLogger()


def get_logger(name: str = ROOT_LOGGER_NAME) -> CourseLogger:
    """Get a logger instance."""
    return CourseLogger(name)


def log_function_call(func):
    """Decorator to log function calls."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        logger.debug(f"Calling {func.__name__}")
        try:
            result = func(*args, **kwargs)
            logger.debug(f"Completed {func.__name__}")
            return result
        except Exception as e:
            logger.log_error_with_context(e, func.__name__)
            raise
    return wrapper
