"""
Static course catalog: levels, their days and the content each day points to.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..utils.exceptions import ConfigurationError


@dataclass(frozen=True)
class CourseDay:
    level: int
    day: int
    content_url: str


@dataclass(frozen=True)
class CourseLevel:
    level: int
    days: Tuple[CourseDay, ...]

    @property
    def day_numbers(self) -> List[int]:
        return [d.day for d in self.days]


class CourseStructure:
    """Read-only catalog of levels 1..N with a fixed number of days each."""

    def __init__(self, num_levels: int, days_per_level: int, content_urls: Sequence[str]):
        if num_levels <= 0 or days_per_level <= 0:
            raise ConfigurationError(
                f"Course needs positive levels and days per level, got {num_levels}x{days_per_level}"
            )
        if not content_urls:
            content_urls = [""]
        levels = []
        for level in range(1, num_levels + 1):
            # Even levels start one URL further along
            offset = 0 if level % 2 else 1
            days = tuple(
                CourseDay(level, day, content_urls[(day - 1 + offset) % len(content_urls)])
                for day in range(1, days_per_level + 1)
            )
            levels.append(CourseLevel(level, days))
        self.levels: Tuple[CourseLevel, ...] = tuple(levels)
        self.days_per_level = days_per_level

    @classmethod
    def from_config(cls, course_config) -> "CourseStructure":
        return cls(course_config.num_levels, course_config.days_per_level,
                   course_config.content_urls)

    @property
    def num_levels(self) -> int:
        return len(self.levels)

    @property
    def terminal_level(self) -> int:
        """The informational stage beyond the last real level."""
        return self.num_levels + 1

    def get_level(self, level: int) -> Optional[CourseLevel]:
        if 1 <= level <= len(self.levels):
            return self.levels[level - 1]
        return None

    def get_day(self, level: int, day: int) -> Optional[CourseDay]:
        course_level = self.get_level(level)
        if course_level is None or not 1 <= day <= len(course_level.days):
            return None
        return course_level.days[day - 1]

    def __iter__(self):
        return iter(self.levels)

    def total_days(self) -> int:
        return sum(len(level.days) for level in self.levels)
