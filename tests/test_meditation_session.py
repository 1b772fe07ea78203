"""
Tests for the meditation session lifecycle.
"""

import os
import sys
import time
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from meditation_course.core.frame_source import FrameObservation, IterableFrameSource
from meditation_course.core.meditation_session import (
    MeditationSession,
    SessionResult,
    SessionState,
)
from meditation_course.utils.config import MeditationTestConfig
from meditation_course.utils.exceptions import CaptureUnavailable, SessionStateError


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def ticking_frames(clock, count, dt=1.0, frame=None):
    """Yield ``count`` frames, advancing the clock by ``dt`` per frame."""
    frame = frame or FrameObservation()
    for _ in range(count):
        clock.now += dt
        yield frame


class TestMeditationSession(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()

    def make_session(self, frames, max_duration_seconds=3600, available=True):
        self.source = IterableFrameSource(frames, available=available)
        return MeditationSession(
            self.source,
            snapshot_interval_frames=10,
            max_duration_seconds=max_duration_seconds,
            clock=self.clock,
            use_timer=False,
        )

    def test_capture_unavailable_leaves_session_idle(self):
        session = self.make_session([], available=False)

        with self.assertRaises(CaptureUnavailable):
            session.start()

        self.assertEqual(session.state, SessionState.IDLE)
        self.assertIsNone(session.reducer)
        self.assertEqual(self.source.close_count, 0)

    def test_run_before_start(self):
        session = self.make_session([])
        with self.assertRaises(SessionStateError):
            session.run()

    def test_double_start(self):
        session = self.make_session([])
        session.start()
        with self.assertRaises(SessionStateError):
            session.start()
        session.cancel()

    def test_source_exhaustion_completes(self):
        session = self.make_session(ticking_frames(self.clock, 25))
        session.start()
        result = session.run()

        self.assertIsInstance(result, SessionResult)
        self.assertEqual(session.state, SessionState.COMPLETED)
        self.assertEqual(result.frames_processed, 25)
        self.assertEqual(len(result.metrics_timeline), 2)
        self.assertFalse(result.timed_out)
        self.assertEqual(result.elapsed_seconds, 25.0)
        self.assertEqual(self.source.close_count, 1)

    def test_deadline_stops_reduction(self):
        session = self.make_session(ticking_frames(self.clock, 1000), max_duration_seconds=60)
        session.start()
        result = session.run()

        self.assertTrue(result.timed_out)
        self.assertEqual(result.frames_processed, 60)
        self.assertEqual(result.elapsed_seconds, 60)
        self.assertEqual(self.source.close_count, 1)

    def test_stop_signal_discards_pending_frame(self):
        def frames():
            for i in range(100):
                if i == 5:
                    session.stop()
                yield FrameObservation()

        session = self.make_session(frames())
        session.start()
        result = session.run()

        self.assertEqual(result.frames_processed, 5)
        self.assertEqual(session.state, SessionState.COMPLETED)
        self.assertEqual(self.source.close_count, 1)

    def test_cancel_discards_metrics(self):
        def frames():
            for i in range(100):
                if i == 3:
                    session.cancel()
                yield FrameObservation()

        session = self.make_session(frames())
        session.start()

        self.assertIsNone(session.run())
        self.assertEqual(session.state, SessionState.CANCELLED)
        self.assertIsNone(session.reducer)
        self.assertIsNone(session.result)
        self.assertEqual(self.source.close_count, 1)

    def test_stop_without_run_loop(self):
        session = self.make_session(ticking_frames(self.clock, 5))
        session.start()
        result = session.stop()

        self.assertEqual(result.frames_processed, 0)
        self.assertIs(session.stop(), result)
        session.cancel()
        self.assertEqual(session.state, SessionState.COMPLETED)
        self.assertEqual(self.source.close_count, 1)

    def test_source_error_releases_once(self):
        def frames():
            yield FrameObservation()
            raise RuntimeError("camera disconnected")

        session = self.make_session(frames())
        session.start()
        with self.assertRaises(RuntimeError):
            session.run()

        self.assertEqual(session.state, SessionState.CANCELLED)
        self.assertEqual(self.source.close_count, 1)

    def test_context_manager(self):
        with self.make_session(ticking_frames(self.clock, 12)) as session:
            result = session.run()

        self.assertEqual(result.frames_processed, 12)
        self.assertEqual(self.source.open_count, 1)
        self.assertEqual(self.source.close_count, 1)

    def test_context_manager_cancels_on_error(self):
        with self.assertRaises(ValueError):
            with self.make_session(ticking_frames(self.clock, 12)) as session:
                raise ValueError("ui closed")

        self.assertEqual(session.state, SessionState.CANCELLED)
        self.assertEqual(self.source.close_count, 1)

    def test_result_to_dict(self):
        session = self.make_session(ticking_frames(self.clock, 10))
        session.start()
        data = session.run().to_dict()
        self.assertEqual(data['framesProcessed'], 10)
        self.assertEqual(len(data['metricsTimeline']), 1)

    def test_timer_deadline(self):
        def endless():
            while True:
                time.sleep(0.001)
                yield FrameObservation()

        source = IterableFrameSource(endless())
        session = MeditationSession(source, max_duration_seconds=0.05,
                                    clock=FakeClock(), use_timer=True)
        session.start()
        result = session.run()

        self.assertTrue(result.timed_out)
        self.assertGreater(result.frames_processed, 0)
        self.assertEqual(source.close_count, 1)

    def test_deadline_finalizes_without_run(self):
        source = IterableFrameSource([])
        session = MeditationSession(source, max_duration_seconds=0.05,
                                    clock=FakeClock(), use_timer=True)
        session.start()

        waited = 0.0
        while session.state == SessionState.RUNNING and waited < 2.0:
            time.sleep(0.01)
            waited += 0.01

        self.assertEqual(session.state, SessionState.COMPLETED)
        self.assertTrue(session.result.timed_out)
        self.assertEqual(session.result.frames_processed, 0)
        self.assertEqual(source.close_count, 1)
        self.assertIs(session.run(), session.result)

        session.stop()
        self.assertEqual(source.close_count, 1)

    def test_from_config(self):
        source = IterableFrameSource([])
        session = MeditationSession.from_config(source, MeditationTestConfig(max_duration_minutes=2))
        self.assertEqual(session.max_duration_seconds, 120)
        self.assertEqual(session.state, SessionState.IDLE)


if __name__ == '__main__':
    unittest.main()
