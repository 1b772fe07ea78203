"""
Error taxonomy for the course progression core.
"""

from typing import List, Optional


class CourseError(Exception):
    """Base class for all errors raised by the course core."""


class ConfigurationError(CourseError):
    """Raised when configuration is malformed. Fatal at load time."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors) if errors else [message]
        super().__init__(message)


class CaptureUnavailable(CourseError):
    """Raised when a frame source cannot be started."""


class StaleReconciliation(CourseError):
    """A remote record is older than an in-flight local write."""

    def __init__(self, key, local_stamp: float, remote_stamp: float):
        self.key = key
        self.local_stamp = local_stamp
        self.remote_stamp = remote_stamp
        super().__init__(
            f"Remote record {key} ({remote_stamp}) is older than local write ({local_stamp})"
        )


class SyncError(CourseError):
    """The remote progress store could not be reached or rejected a request."""


class SessionStateError(CourseError):
    """An operation was attempted in the wrong meditation session state."""
