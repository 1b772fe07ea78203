"""
Tests for progress records and the in-memory progress store.
"""

import os
import sys
import unittest
from datetime import datetime, timezone

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from meditation_course.core.progress_store import (
    MEDITATION_TEST_DAY,
    LevelTestState,
    ProgressEntry,
    ProgressStore,
    format_timestamp,
    parse_timestamp,
)

T0 = 1_700_000_000.0


class TestTimestamps(unittest.TestCase):

    def test_parse_iso_with_z(self):
        self.assertEqual(parse_timestamp("2023-11-14T22:13:20Z"), T0)

    def test_parse_epoch_millis(self):
        self.assertEqual(parse_timestamp(T0 * 1000), T0)

    def test_parse_datetime_and_none(self):
        self.assertEqual(parse_timestamp(datetime.fromtimestamp(T0, tz=timezone.utc)), T0)
        self.assertIsNone(parse_timestamp(None))
        self.assertIsNone(parse_timestamp(""))

    def test_format(self):
        self.assertEqual(format_timestamp(T0), "2023-11-14T22:13:20Z")
        self.assertIsNone(format_timestamp(None))


class TestProgressEntry(unittest.TestCase):

    def test_completed_requires_timestamp(self):
        with self.assertRaises(ValueError):
            ProgressEntry(level=1, day=1, completed=True)

    def test_invalid_key(self):
        with self.assertRaises(ValueError):
            ProgressEntry(level=0, day=1)
        with self.assertRaises(ValueError):
            ProgressEntry(level=1, day=0)
        with self.assertRaises(ValueError):
            ProgressEntry(level=1, day="bonus")

    def test_meditation_day_allowed(self):
        entry = ProgressEntry(level=4, day=MEDITATION_TEST_DAY, completed=True, completed_at=T0)
        self.assertTrue(entry.is_meditation_test)
        self.assertEqual(entry.key, (4, MEDITATION_TEST_DAY))

    def test_remote_shape(self):
        entry = ProgressEntry(level=2, day=3, completed=True, completed_at=T0,
                              watched_seconds=600, video_duration=900, feedback="calm")
        data = entry.to_dict()
        self.assertEqual(data["completedAt"], "2023-11-14T22:13:20Z")
        self.assertEqual(data["watchedSeconds"], 600)

        parsed = ProgressEntry.from_dict(data)
        self.assertEqual(parsed.completed_at, T0)
        self.assertEqual(parsed.feedback, "calm")

    def test_remote_completed_without_date_is_not_completed(self):
        entry = ProgressEntry.from_dict({"level": 1, "day": 2, "completed": True,
                                         "completedAt": None})
        self.assertFalse(entry.completed)

    def test_remote_null_fields(self):
        entry = ProgressEntry.from_dict({"level": "1", "day": "1", "feedback": None,
                                         "watchedSeconds": None})
        self.assertEqual(entry.key, (1, 1))
        self.assertEqual(entry.feedback, "")
        self.assertEqual(entry.watched_seconds, 0.0)


class TestProgressStore(unittest.TestCase):

    def setUp(self):
        self.store = ProgressStore()

    def test_empty_store(self):
        self.assertIsNone(self.store.get(1, 1))
        self.assertFalse(self.store.is_completed(1, 1))
        self.assertIsNone(self.store.completed_at(1, 1))
        self.assertEqual(len(self.store), 0)

    def test_update_creates_and_merges(self):
        self.store.update(1, 1, watched_seconds=30.0)
        entry = self.store.update(1, 1, feedback="nice")
        self.assertEqual(entry.watched_seconds, 30.0)
        self.assertEqual(entry.feedback, "nice")
        self.assertEqual(len(self.store), 1)

    def test_entries_sorted_with_meditation_last(self):
        self.store.put(ProgressEntry(level=4, day=MEDITATION_TEST_DAY, completed=True,
                                     completed_at=T0))
        self.store.put(ProgressEntry(level=4, day=2))
        self.store.put(ProgressEntry(level=1, day=3))
        keys = [e.key for e in self.store.entries()]
        self.assertEqual(keys, [(1, 3), (4, 2), (4, MEDITATION_TEST_DAY)])

    def test_replace_all(self):
        self.store.put(ProgressEntry(level=1, day=1))
        self.store.replace_all([ProgressEntry(level=2, day=1)])
        self.assertIsNone(self.store.get(1, 1))
        self.assertIsNotNone(self.store.get(2, 1))

    def test_level_tests(self):
        self.assertEqual(self.store.get_level_test(3), LevelTestState(level=3))
        self.store.put_level_test(LevelTestState(level=2, test_passed=True, first_completed_at=T0))
        self.store.put_level_test(LevelTestState(level=1, test_passed=True, first_completed_at=T0))
        self.assertEqual([s.level for s in self.store.level_tests()], [1, 2])

    def test_reset(self):
        self.store.put(ProgressEntry(level=1, day=1))
        self.store.put_level_test(LevelTestState(level=1, test_passed=True))
        self.store.reset()
        self.assertEqual(len(self.store), 0)
        self.assertEqual(self.store.level_tests(), [])


if __name__ == '__main__':
    unittest.main()
