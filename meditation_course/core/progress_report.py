"""
Progress reporting and analytics export.
"""

import csv
import io
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .progress_store import format_timestamp
from .progression import ProgressionStateMachine
from ..utils.logger import get_logger, log_function_call

logger = get_logger(__name__)

CSV_HEADER = ['Level', 'Day', 'Completed', 'Feedback', 'CompletedAt',
              'WatchedSeconds', 'VideoDuration']


@dataclass(frozen=True)
class LevelProgress:
    level: int
    completed_days: int
    total_days: int
    percentage: int
    test_passed: bool
    level_completed_at: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'level': self.level,
            'completedDays': self.completed_days,
            'totalDays': self.total_days,
            'percentage': self.percentage,
            'testPassed': self.test_passed,
            'levelCompletedAt': format_timestamp(self.level_completed_at),
        }


class ProgressReport:
    """Completion summary and exports for one learner."""

    def __init__(self, state_machine: ProgressionStateMachine):
        self.state_machine = state_machine
        self.store = state_machine.store
        self.course = state_machine.course

    def overall_percentage(self) -> int:
        """Completed days over all days of every level, rounded."""
        total = self.course.total_days()
        if total == 0:
            return 0
        completed = sum(
            1 for level in self.course for day in level.day_numbers
            if self.store.is_completed(level.level, day)
        )
        return round(completed / total * 100)

    def level_progress(self) -> List[LevelProgress]:
        rows = []
        for level in self.course:
            days = level.day_numbers
            completed_ats = [
                self.store.completed_at(level.level, d) for d in days
                if self.store.is_completed(level.level, d)
            ]
            all_done = len(completed_ats) == len(days)

            test_passed = self.store.get_level_test(level.level).test_passed
            # Levels without the meditation gate pass once all their days are done
            if level.level != self.state_machine.meditation_gated_level and all_done:
                test_passed = True

            rows.append(LevelProgress(
                level=level.level,
                completed_days=len(completed_ats),
                total_days=len(days),
                percentage=round(len(completed_ats) / len(days) * 100) if days else 0,
                test_passed=test_passed,
                level_completed_at=max(completed_ats) if all_done and completed_ats else None,
            ))
        return rows

    def to_dict(self, participant: Optional[Dict[str, Any]] = None,
                exported_at: Optional[float] = None) -> Dict[str, Any]:
        """Analytics export document."""
        return {
            'participant': participant or {},
            'overallPercentage': self.overall_percentage(),
            'levels': [row.to_dict() for row in self.level_progress()],
            'progress': [entry.to_dict() for entry in self.store.entries()],
            'levelTest': [state.to_dict() for state in self.store.level_tests()],
            'exportedAt': format_timestamp(time.time() if exported_at is None else exported_at),
        }

    def export_json(self, participant: Optional[Dict[str, Any]] = None,
                    exported_at: Optional[float] = None) -> str:
        return json.dumps(self.to_dict(participant, exported_at), indent=2)

    def export_csv(self) -> str:
        """One row per progress record."""
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator='\n')
        writer.writerow(CSV_HEADER)
        for entry in self.store.entries():
            writer.writerow([
                entry.level,
                entry.day,
                entry.completed,
                entry.feedback,
                format_timestamp(entry.completed_at) or '',
                entry.watched_seconds,
                entry.video_duration,
            ])
        return buffer.getvalue()

    def save(self, filepath: str, fmt: str = 'json',
             participant: Optional[Dict[str, Any]] = None) -> str:
        """Write an export to ``filepath`` in ``json`` or ``csv`` format."""
        if fmt == 'json':
            content = self.export_json(participant)
        elif fmt == 'csv':
            content = self.export_csv()
        else:
            raise ValueError(f"Unsupported export format: {fmt}")

        with open(filepath, 'w', newline='') as f:
            f.write(content)
        logger.info(f"Progress export saved to: {filepath}")
        return filepath


@log_function_call
def reset_progress(store) -> None:
    """Discard all local progress and level test markers."""
    store.reset()
    logger.warning("All local progress has been reset")
