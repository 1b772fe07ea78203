"""
Progression State Machine

Derives, from the Progress Store, whether each level and day of the course
is unlocked. The per-day and per-level states are explicit enums computed by
pure functions over the store; the only writes are completion, watch and
feedback upserts plus the meditation-test pass record.

Rules:
- Level 1 is always unlocked; level L needs every day of L-1 completed, and
  the meditation-gated level additionally needs the meditation test passed.
- Rewatch expiry: the lowest level whose first mastery is older than the
  configured number of months locks every level above it.
- Day d > 1 needs day d-1 completed at least ``day_gap_seconds`` ago.
- The meditation test opens once every day of the level before the gated
  level is completed, regardless of gap and expiry.
"""

import time
from enum import Enum
from typing import Callable, Optional

from .course_structure import CourseStructure
from .progress_store import (
    MEDITATION_TEST_DAY,
    DayKey,
    LevelTestState,
    ProgressEntry,
    ProgressStore,
)
from ..utils.exceptions import ConfigurationError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class DayState(Enum):
    """Unlock state of a single day."""
    LOCKED = "locked"
    UNLOCKED_NOT_STARTED = "unlocked_not_started"
    UNLOCKED_IN_PROGRESS = "unlocked_in_progress"
    COMPLETED = "completed"


class LevelState(Enum):
    """Unlock state of a level."""
    LOCKED = "locked"
    EXPIRED = "expired"        # locked by the rewatch expiry of a lower level
    UNLOCKED = "unlocked"
    COMPLETED = "completed"


class ProgressionStateMachine:
    """Unlock decisions and completion writes for one learner."""

    def __init__(
        self,
        store: ProgressStore,
        course: CourseStructure,
        day_gap_seconds: float,
        rewatch_expiry_seconds: float,
        meditation_gated_level: int = 4,
        clock: Callable[[], float] = time.time,
    ):
        if day_gap_seconds <= 0:
            raise ConfigurationError(f"Day gap duration must be positive, got {day_gap_seconds}")
        if rewatch_expiry_seconds <= 0:
            raise ConfigurationError(
                f"Rewatch expiry must be positive, got {rewatch_expiry_seconds}"
            )
        if meditation_gated_level < 2:
            raise ConfigurationError(
                f"Meditation gated level must be at least 2, got {meditation_gated_level}"
            )

        self.store = store
        self.course = course
        self.day_gap_seconds = day_gap_seconds
        self.rewatch_expiry_seconds = rewatch_expiry_seconds
        self.meditation_gated_level = meditation_gated_level
        self.clock = clock

    @classmethod
    def from_config(cls, store: ProgressStore, course_config,
                    clock: Callable[[], float] = time.time) -> "ProgressionStateMachine":
        return cls(
            store=store,
            course=CourseStructure.from_config(course_config),
            day_gap_seconds=course_config.day_gap_seconds,
            rewatch_expiry_seconds=course_config.rewatch_expiry_seconds,
            meditation_gated_level=course_config.meditation_gated_level,
            clock=clock,
        )

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    # --- Queries -------------------------------------------------------

    def level_days_completed(self, level: int) -> bool:
        """True when every day of ``level`` is completed."""
        course_level = self.course.get_level(level)
        if course_level is None:
            return False
        return all(self.store.is_completed(level, d) for d in course_level.day_numbers)

    def meditation_test_passed(self) -> bool:
        return self.store.is_completed(self.meditation_gated_level, MEDITATION_TEST_DAY)

    def first_mastery_at(self, level: int) -> Optional[float]:
        """When ``level`` was first fully completed.

        The LevelTestState marker wins; a completed level without one (seeded
        or fetched from the remote store) falls back to its latest day completion.
        """
        first_completed_at = self.store.get_level_test(level).first_completed_at
        if first_completed_at is not None:
            return first_completed_at
        course_level = self.course.get_level(level)
        if course_level is None or not self.level_days_completed(level):
            return None
        return max(self.store.completed_at(level, d) for d in course_level.day_numbers)

    def expired_level(self, now: Optional[float] = None) -> Optional[int]:
        """Lowest level whose first mastery is past the rewatch expiry, if any."""
        now = self._now(now)
        for level in range(1, self.course.num_levels + 1):
            first_completed_at = self.first_mastery_at(level)
            if first_completed_at is not None and now - first_completed_at > self.rewatch_expiry_seconds:
                return level
        return None

    def rewatch_required(self, level: int, now: Optional[float] = None) -> bool:
        """True when ``level`` sits above the active expiry boundary."""
        expired = self.expired_level(now)
        return expired is not None and level > expired

    def is_level_unlocked(self, level: int, now: Optional[float] = None) -> bool:
        if self.rewatch_required(level, now):
            logger.log_unlock_decision(level, "*", False, "rewatch expired")
            return False
        if level == 1:
            return True
        if self.course.get_level(level - 1) is None:
            return False

        unlocked = self.level_days_completed(level - 1)
        if level == self.meditation_gated_level:
            unlocked = unlocked and self.meditation_test_passed()
        return unlocked

    def is_meditation_test_unlocked(self) -> bool:
        return self.level_days_completed(self.meditation_gated_level - 1)

    def is_day_unlocked(self, level: int, day: DayKey, now: Optional[float] = None) -> bool:
        if day == MEDITATION_TEST_DAY:
            return level == self.meditation_gated_level and self.is_meditation_test_unlocked()

        if not self.is_level_unlocked(level, now):
            return False
        if self.course.get_day(level, day) is None:
            return False
        if day == 1:
            return True

        previous = self.store.get(level, day - 1)
        if previous is None or not previous.completed or previous.completed_at is None:
            return False

        unlocked = self._now(now) - previous.completed_at >= self.day_gap_seconds
        logger.log_unlock_decision(level, day, unlocked, "gap" if not unlocked else "")
        return unlocked

    def next_available_time(self, level: int, day: DayKey) -> float:
        """Epoch seconds at which ``day`` opens after its predecessor, or 0."""
        if day == MEDITATION_TEST_DAY or day == 1:
            return 0
        previous_completed_at = self.store.completed_at(level, day - 1)
        if previous_completed_at is None:
            return 0
        return previous_completed_at + self.day_gap_seconds

    def day_state(self, level: int, day: DayKey, now: Optional[float] = None) -> DayState:
        if not self.is_day_unlocked(level, day, now):
            return DayState.LOCKED
        entry = self.store.get(level, day)
        if entry is None:
            return DayState.UNLOCKED_NOT_STARTED
        if entry.completed:
            return DayState.COMPLETED
        if entry.watched_seconds > 0 or entry.feedback:
            return DayState.UNLOCKED_IN_PROGRESS
        return DayState.UNLOCKED_NOT_STARTED

    def level_state(self, level: int, now: Optional[float] = None) -> LevelState:
        if self.rewatch_required(level, now):
            return LevelState.EXPIRED
        if not self.is_level_unlocked(level, now):
            return LevelState.LOCKED
        if self.level_days_completed(level):
            return LevelState.COMPLETED
        return LevelState.UNLOCKED

    def all_levels_complete(self) -> bool:
        """Every day of every real level is completed."""
        return all(self.level_days_completed(level.level) for level in self.course)

    def is_terminal_stage_unlocked(self) -> bool:
        return self.all_levels_complete()

    def first_in_progress_level(self) -> int:
        """First level with an incomplete day; the last level when all are done."""
        for level in self.course:
            if not self.level_days_completed(level.level):
                return level.level
        return self.course.num_levels

    # --- Writes --------------------------------------------------------

    def record_completion(
        self,
        level: int,
        day: int,
        watched_seconds: float,
        video_duration: float,
        feedback: Optional[str] = None,
        now: Optional[float] = None,
    ) -> ProgressEntry:
        """Mark a day completed. The first completion time is never moved."""
        self._require_day(level, day)
        now = self._now(now)

        with self.store.lock:
            existing = self.store.get(level, day)
            changes = {
                'watched_seconds': watched_seconds,
                'video_duration': video_duration,
                'updated_at': now,
            }
            if feedback is not None:
                changes['feedback'] = feedback
            if existing is None or not existing.completed:
                changes['completed'] = True
                changes['completed_at'] = now
            entry = self.store.update(level, day, **changes)
            self._mark_first_mastery(level, now)

        logger.info(f"Completion recorded - Level {level}, Day {day}")
        return entry

    def record_watch_progress(self, level: int, day: int, watched_seconds: float,
                              video_duration: float, now: Optional[float] = None) -> ProgressEntry:
        """Track the furthest watched position without completing the day."""
        self._require_day(level, day)
        with self.store.lock:
            existing = self.store.get(level, day)
            furthest = max(watched_seconds, existing.watched_seconds if existing else 0.0)
            return self.store.update(level, day, watched_seconds=furthest,
                                     video_duration=video_duration, updated_at=self._now(now))

    def record_feedback(self, level: int, day: int, feedback: str,
                        now: Optional[float] = None) -> ProgressEntry:
        """Store feedback text, leaving completion untouched."""
        self._require_day(level, day)
        return self.store.update(level, day, feedback=feedback, updated_at=self._now(now))

    def record_meditation_pass(self, now: Optional[float] = None) -> ProgressEntry:
        """Write the synthetic meditation-test completion. First pass wins."""
        now = self._now(now)
        gated = self.meditation_gated_level

        with self.store.lock:
            existing = self.store.get(gated, MEDITATION_TEST_DAY)
            if existing is not None and existing.completed:
                return existing
            entry = self.store.put(ProgressEntry(
                level=gated,
                day=MEDITATION_TEST_DAY,
                completed=True,
                completed_at=now,
                updated_at=now,
            ))
            state = self.store.get_level_test(gated)
            self.store.put_level_test(LevelTestState(
                level=gated,
                test_passed=True,
                first_completed_at=state.first_completed_at,
            ))

        logger.info(f"Meditation test passed - Level {gated} unlocked once level {gated - 1} is complete")
        return entry

    def _mark_first_mastery(self, level: int, now: float) -> None:
        state = self.store.get_level_test(level)
        if state.first_completed_at is not None or not self.level_days_completed(level):
            return
        test_passed = level != self.meditation_gated_level or self.meditation_test_passed()
        self.store.put_level_test(LevelTestState(
            level=level,
            test_passed=test_passed or state.test_passed,
            first_completed_at=now,
        ))
        logger.info(f"Level {level} mastered for the first time")

    def _require_day(self, level: int, day: int) -> None:
        if self.course.get_day(level, day) is None:
            raise ValueError(f"Level {level} has no day {day}")
