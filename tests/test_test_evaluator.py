"""
Tests for meditation test evaluation.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from meditation_course.core.course_structure import CourseStructure
from meditation_course.core.frame_reducer import MetricsSnapshot
from meditation_course.core.meditation_session import SessionResult
from meditation_course.core.progress_store import MEDITATION_TEST_DAY, ProgressStore
from meditation_course.core.progression import ProgressionStateMachine
from meditation_course.core.test_evaluator import (
    MeditationThresholds,
    PassPolicy,
    TestEvaluator,
    apply_verdict,
)
from meditation_course.utils.config import MeditationTestConfig


def make_result(eye_closed=95.0, head=10.0, hand=0.5, snapshots=40, last_t=1800.0):
    step = last_t / snapshots if snapshots else 0
    timeline = [
        MetricsSnapshot(t=step * (i + 1), eye_closed_pct=eye_closed, head_move=head,
                        hand_move=hand, hand_stability=1 / (1 + hand))
        for i in range(snapshots)
    ]
    return SessionResult(
        eye_closed_percent=eye_closed,
        head_movement=head,
        hand_stability=1 / (1 + hand),
        hand_movement=hand,
        metrics_timeline=timeline,
        elapsed_seconds=last_t,
    )


class TestEvaluatorThresholds(unittest.TestCase):

    def setUp(self):
        self.enforcing = TestEvaluator(MeditationThresholds(), PassPolicy.ENFORCE_THRESHOLDS)
        self.lenient = TestEvaluator(MeditationThresholds(), PassPolicy.ALWAYS_PASS)

    def test_derived_limits(self):
        thresholds = MeditationThresholds()
        self.assertAlmostEqual(thresholds.max_head_move, 90.0)
        self.assertAlmostEqual(thresholds.max_hand_move, 90.0)

    def test_forty_snapshots_enforced(self):
        verdict = self.enforcing.evaluate(make_result(eye_closed=95.0, head=10.0))
        self.assertTrue(verdict.passed)
        self.assertEqual(verdict.duration, 1800.0)
        self.assertEqual(verdict.reason, "")
        self.assertEqual(verdict.failures, [])

    def test_forty_snapshots_always_pass(self):
        verdict = self.lenient.evaluate(make_result(eye_closed=95.0, head=10.0))
        self.assertTrue(verdict.passed)
        self.assertEqual(verdict.policy, PassPolicy.ALWAYS_PASS)

    def test_short_session_with_open_eyes(self):
        result = make_result(eye_closed=50.0, snapshots=10, last_t=600.0)

        enforced = self.enforcing.evaluate(result)
        self.assertFalse(enforced.passed)
        self.assertEqual(enforced.failures, [
            "Eyes closed only 50.0% of the time.",
            "Session lasted only 10.0 min.",
        ])
        self.assertEqual(enforced.reason,
                         "Eyes closed only 50.0% of the time. Session lasted only 10.0 min.")

        lenient = self.lenient.evaluate(result)
        self.assertTrue(lenient.passed)
        self.assertEqual(lenient.reason, "")
        self.assertEqual(len(lenient.failures), 2)

    def test_head_movement_limit(self):
        verdict = self.enforcing.evaluate(make_result(head=95.0))
        self.assertEqual(verdict.failures, ["Too much head movement."])

    def test_hand_checks(self):
        verdict = self.enforcing.evaluate(make_result(hand=1.0))
        self.assertEqual(verdict.failures, ["Too much hand movement."])

        verdict = self.enforcing.evaluate(make_result(hand=95.0))
        self.assertEqual(verdict.failures, ["Hands moved too much.", "Too much hand movement."])

    def test_empty_timeline_duration_zero(self):
        verdict = self.enforcing.evaluate(make_result(snapshots=0, last_t=0.0))
        self.assertEqual(verdict.duration, 0.0)
        self.assertIn("Session lasted only 0.0 min.", verdict.failures)

    def test_from_config(self):
        evaluator = TestEvaluator.from_config(
            MeditationTestConfig(min_minutes=10, pass_policy="enforce_thresholds"))
        self.assertEqual(evaluator.policy, PassPolicy.ENFORCE_THRESHOLDS)
        self.assertAlmostEqual(evaluator.thresholds.max_head_move, 30.0)

    def test_verdict_to_dict(self):
        data = self.enforcing.evaluate(make_result()).to_dict()
        self.assertEqual(data['policy'], "enforce_thresholds")
        self.assertTrue(data['passed'])


class TestApplyVerdict(unittest.TestCase):

    def setUp(self):
        self.store = ProgressStore()
        self.machine = ProgressionStateMachine(
            self.store, CourseStructure(4, 3, ["a"]),
            day_gap_seconds=10, rewatch_expiry_seconds=90 * 86400,
            clock=lambda: 1_700_000_000.0,
        )

    def test_pass_records_meditation(self):
        verdict = TestEvaluator().evaluate(make_result(eye_closed=10.0))
        entry = apply_verdict(verdict, self.machine)

        self.assertTrue(entry.completed)
        self.assertEqual(entry.day, MEDITATION_TEST_DAY)
        self.assertTrue(self.machine.meditation_test_passed())

    def test_failure_records_nothing(self):
        evaluator = TestEvaluator(policy=PassPolicy.ENFORCE_THRESHOLDS)
        verdict = evaluator.evaluate(make_result(eye_closed=10.0))

        self.assertIsNone(apply_verdict(verdict, self.machine))
        self.assertFalse(self.machine.meditation_test_passed())
        self.assertEqual(len(self.store), 0)


if __name__ == '__main__':
    unittest.main()
