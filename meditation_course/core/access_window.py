"""
Access Window Module

Decides whether course content may be accessed at a given wall-clock time.
Windows are daily hour ranges evaluated against the calendar day of ``now``
only; a window never wraps past midnight.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..utils.exceptions import ConfigurationError


@dataclass(frozen=True)
class AccessWindow:
    """A daily access range ``[start_hour, end_hour)``."""
    start_hour: int
    end_hour: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AccessWindow":
        try:
            return cls(int(data['start_hour']), int(data['end_hour']))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed access window {data!r}: {e}") from e

    def bounds_on(self, now: datetime) -> Tuple[datetime, datetime]:
        """Return the window's start and end placed on ``now``'s date."""
        start = now.replace(hour=self.start_hour, minute=0, second=0, microsecond=0)
        end = now.replace(hour=self.end_hour, minute=0, second=0, microsecond=0)
        return start, end


WindowLike = Union[AccessWindow, Mapping[str, Any]]


def validate_windows(windows: Iterable[WindowLike]) -> List[AccessWindow]:
    """Normalize and validate configured windows.

    An end hour that is not after the start hour is a configuration error;
    it is never interpreted as an overnight range.
    """
    validated = []
    for window in windows:
        if not isinstance(window, AccessWindow):
            window = AccessWindow.from_dict(window)
        if not (0 <= window.start_hour <= 23 and 0 <= window.end_hour <= 23):
            raise ConfigurationError(
                f"Access window hours must be within 0-23, got {window.start_hour}-{window.end_hour}"
            )
        if window.end_hour <= window.start_hour:
            raise ConfigurationError(
                f"Access window ends before it starts: {window.start_hour}-{window.end_hour}"
            )
        validated.append(window)
    return validated


def _as_windows(windows: Iterable[WindowLike]) -> List[AccessWindow]:
    return [w if isinstance(w, AccessWindow) else AccessWindow.from_dict(w) for w in windows]


def is_within_window(now: datetime, windows: Iterable[WindowLike]) -> bool:
    """True when ``now`` falls inside any window of today."""
    for window in _as_windows(windows):
        start, end = window.bounds_on(now)
        if start <= now < end:
            return True
    return False


def next_window_start(now: datetime, windows: Iterable[WindowLike]) -> Optional[datetime]:
    """Earliest window start later today, or None when no window remains."""
    upcoming = [
        start for start, _ in (w.bounds_on(now) for w in _as_windows(windows))
        if now < start
    ]
    return min(upcoming) if upcoming else None


def time_until_next_window(now: datetime, windows: Iterable[WindowLike]) -> float:
    """Seconds until the next window opens today; 0.0 when none remains."""
    start = next_window_start(now, windows)
    if start is None:
        return 0.0
    return (start - now).total_seconds()


def should_show_countdown(now: datetime, windows: Sequence[WindowLike],
                          lead_seconds: float = 300.0) -> bool:
    """True when the next window opens within ``lead_seconds``."""
    remaining = time_until_next_window(now, windows)
    return 0 < remaining <= lead_seconds


class AccessWindowEvaluator:
    """Config-bound wrapper around the window functions."""

    def __init__(self, windows: Iterable[WindowLike], countdown_lead_seconds: float = 300.0):
        self.windows = validate_windows(windows)
        self.countdown_lead_seconds = countdown_lead_seconds

    @classmethod
    def from_config(cls, access_config) -> "AccessWindowEvaluator":
        return cls(access_config.windows, access_config.countdown_lead_seconds)

    def is_open(self, now: Optional[datetime] = None) -> bool:
        return is_within_window(now or datetime.now(), self.windows)

    def next_start(self, now: Optional[datetime] = None) -> Optional[datetime]:
        return next_window_start(now or datetime.now(), self.windows)

    def seconds_until_open(self, now: Optional[datetime] = None) -> float:
        return time_until_next_window(now or datetime.now(), self.windows)

    def show_countdown(self, now: Optional[datetime] = None) -> bool:
        return should_show_countdown(now or datetime.now(), self.windows,
                                     self.countdown_lead_seconds)
