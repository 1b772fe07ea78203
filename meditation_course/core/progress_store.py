"""
Progress Store Module

In-memory projection of a learner's progress: one ProgressEntry per
(level, day) plus the per-level LevelTestState markers. Mutations are
serialized by a re-entrant lock so a reconciliation replace never
interleaves with a local write.
"""

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

# Synthetic day identifier of the meditation test record
MEDITATION_TEST_DAY = "meditation_test"

DayKey = Union[int, str]
EntryKey = Tuple[int, DayKey]


def parse_timestamp(value: Any) -> Optional[float]:
    """Convert a remote timestamp to epoch seconds.

    Accepts ISO-8601 strings (``Z`` suffix allowed), epoch milliseconds as
    produced by browser clients, datetimes and None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) / 1000.0
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def format_timestamp(value: Optional[float]) -> Optional[str]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class ProgressEntry:
    """Progress of one day of one level."""
    level: int
    day: DayKey
    completed: bool = False
    completed_at: Optional[float] = None
    watched_seconds: float = 0.0
    video_duration: float = 0.0
    feedback: str = ""
    updated_at: Optional[float] = None

    def __post_init__(self):
        if self.level < 1:
            raise ValueError(f"Level must be >= 1, got {self.level}")
        if self.day != MEDITATION_TEST_DAY and (not isinstance(self.day, int) or self.day < 1):
            raise ValueError(f"Day must be >= 1, got {self.day!r}")
        if self.completed and self.completed_at is None:
            raise ValueError(f"Completed entry L{self.level}D{self.day} needs completed_at")

    @property
    def key(self) -> EntryKey:
        return (self.level, self.day)

    @property
    def is_meditation_test(self) -> bool:
        return self.day == MEDITATION_TEST_DAY

    def to_dict(self) -> Dict[str, Any]:
        """Remote record shape."""
        return {
            'level': self.level,
            'day': self.day,
            'completed': self.completed,
            'completedAt': format_timestamp(self.completed_at),
            'watchedSeconds': self.watched_seconds,
            'videoDuration': self.video_duration,
            'feedback': self.feedback,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProgressEntry":
        completed = bool(data.get('completed', False))
        completed_at = parse_timestamp(data.get('completedAt'))
        if completed and completed_at is None:
            # A completed remote record without a date cannot satisfy the gap rule
            completed = False
        return cls(
            level=int(data['level']),
            day=data['day'] if data['day'] == MEDITATION_TEST_DAY else int(data['day']),
            completed=completed,
            completed_at=completed_at,
            watched_seconds=float(data.get('watchedSeconds') or 0.0),
            video_duration=float(data.get('videoDuration') or 0.0),
            feedback=data.get('feedback') or "",
            updated_at=parse_timestamp(data.get('updatedAt')),
        )


@dataclass(frozen=True)
class LevelTestState:
    """First-mastery marker of a level, used for rewatch expiry."""
    level: int
    test_passed: bool = False
    first_completed_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'level': self.level,
            'testPassed': self.test_passed,
            'firstCompletedAt': format_timestamp(self.first_completed_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LevelTestState":
        return cls(
            level=int(data['level']),
            test_passed=bool(data.get('testPassed', False)),
            first_completed_at=parse_timestamp(data.get('firstCompletedAt')),
        )


class ProgressStore:
    """Holds ProgressEntry and LevelTestState records for one learner."""

    def __init__(self, entries: Iterable[ProgressEntry] = (),
                 level_tests: Iterable[LevelTestState] = ()):
        self._lock = threading.RLock()
        self._entries: Dict[EntryKey, ProgressEntry] = {e.key: e for e in entries}
        self._level_tests: Dict[int, LevelTestState] = {t.level: t for t in level_tests}

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # --- Entries -------------------------------------------------------

    def get(self, level: int, day: DayKey) -> Optional[ProgressEntry]:
        with self._lock:
            return self._entries.get((level, day))

    def is_completed(self, level: int, day: DayKey) -> bool:
        entry = self.get(level, day)
        return bool(entry and entry.completed)

    def completed_at(self, level: int, day: DayKey) -> Optional[float]:
        entry = self.get(level, day)
        return entry.completed_at if entry else None

    def entries(self) -> List[ProgressEntry]:
        with self._lock:
            return sorted(self._entries.values(), key=_sort_key)

    def put(self, entry: ProgressEntry) -> ProgressEntry:
        """Store a whole record, replacing any previous one."""
        with self._lock:
            self._entries[entry.key] = entry
            return entry

    def update(self, level: int, day: DayKey, **changes: Any) -> ProgressEntry:
        """Merge field changes into the record for (level, day), creating it if absent."""
        with self._lock:
            current = self._entries.get((level, day)) or ProgressEntry(level=level, day=day)
            updated = replace(current, **changes)
            self._entries[updated.key] = updated
            return updated

    def replace_all(self, entries: Iterable[ProgressEntry]) -> None:
        """Atomically replace the whole entry projection."""
        new_entries = {e.key: e for e in entries}
        with self._lock:
            self._entries = new_entries

    # --- Level tests ---------------------------------------------------

    def get_level_test(self, level: int) -> LevelTestState:
        with self._lock:
            return self._level_tests.get(level) or LevelTestState(level=level)

    def put_level_test(self, state: LevelTestState) -> LevelTestState:
        with self._lock:
            self._level_tests[state.level] = state
            return state

    def level_tests(self) -> List[LevelTestState]:
        with self._lock:
            return [self._level_tests[k] for k in sorted(self._level_tests)]

    def replace_level_tests(self, states: Iterable[LevelTestState]) -> None:
        new_states = {s.level: s for s in states}
        with self._lock:
            self._level_tests = new_states

    # --- Housekeeping --------------------------------------------------

    def reset(self) -> None:
        """Discard all local progress and level test markers."""
        with self._lock:
            self._entries = {}
            self._level_tests = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _sort_key(entry: ProgressEntry):
    # Synthetic meditation record sorts after the level's real days
    day = entry.day if isinstance(entry.day, int) else float('inf')
    return (entry.level, day)
