"""
Meditation Session

Lifecycle of one meditation test attempt. The session acquires a frame
source, pulls frames one at a time into a BiometricFrameReducer, and
finalizes the accumulators into a SessionResult on stop, source exhaustion
or the maximum duration. Stop and cancel are cooperative signals checked
before every pull; the capture resource is released exactly once.
"""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .frame_reducer import BiometricFrameReducer, MetricsSnapshot
from .frame_source import FrameSource
from ..utils.exceptions import SessionStateError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class SessionResult:
    """Final metrics of a completed session."""
    eye_closed_percent: float
    head_movement: float
    hand_stability: float
    hand_movement: float = 0.0
    metrics_timeline: List[MetricsSnapshot] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    timed_out: bool = False
    frames_processed: int = 0

    def to_dict(self) -> dict:
        return {
            'eyeClosedPercent': self.eye_closed_percent,
            'headMovement': self.head_movement,
            'handStability': self.hand_stability,
            'handMovement': self.hand_movement,
            'metricsTimeline': [s.to_dict() for s in self.metrics_timeline],
            'elapsedSeconds': self.elapsed_seconds,
            'timedOut': self.timed_out,
            'framesProcessed': self.frames_processed,
        }


class MeditationSession:
    """One supervised meditation test attempt over a frame source."""

    def __init__(
        self,
        source: FrameSource,
        ear_threshold: float = 0.18,
        snapshot_interval_frames: int = 30,
        max_duration_seconds: float = 60 * 60,
        clock: Callable[[], float] = time.monotonic,
        use_timer: bool = True,
    ):
        """
        Initialize the session. Nothing is acquired until ``start``.

        Args:
            source: Frame source to pull observations from
            ear_threshold: EAR below which an eye counts as closed
            snapshot_interval_frames: Frames between timeline snapshots
            max_duration_seconds: Hard deadline after start
            clock: Monotonic clock in seconds
            use_timer: Also arm a timer thread that signals the deadline
        """
        self.source = source
        self.ear_threshold = ear_threshold
        self.snapshot_interval_frames = snapshot_interval_frames
        self.max_duration_seconds = max_duration_seconds
        self.clock = clock
        self.use_timer = use_timer

        self.state = SessionState.IDLE
        self.reducer: Optional[BiometricFrameReducer] = None
        self.result: Optional[SessionResult] = None
        self.started_at: Optional[float] = None

        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._cancel_requested = False
        self._timed_out = False
        self._looping = False
        self._released = False
        self._timer: Optional[threading.Timer] = None

    @classmethod
    def from_config(cls, source: FrameSource, meditation_config,
                    clock: Callable[[], float] = time.monotonic) -> "MeditationSession":
        return cls(
            source,
            ear_threshold=meditation_config.ear_threshold,
            snapshot_interval_frames=meditation_config.snapshot_interval_frames,
            max_duration_seconds=meditation_config.max_duration_minutes * 60,
            clock=clock,
        )

    @property
    def elapsed_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        return self.clock() - self.started_at

    def start(self) -> None:
        """Acquire the frame source and begin the session.

        CaptureUnavailable propagates and leaves the session IDLE.
        """
        with self._lock:
            if self.state != SessionState.IDLE:
                raise SessionStateError(f"Cannot start a session in state {self.state.value}")

            self.source.open()

            self.reducer = BiometricFrameReducer(self.ear_threshold, self.snapshot_interval_frames)
            self.started_at = self.clock()
            self.state = SessionState.RUNNING

            if self.use_timer:
                self._timer = threading.Timer(self.max_duration_seconds, self._on_deadline)
                self._timer.daemon = True
                self._timer.start()

        logger.info(f"Meditation session started (max {self.max_duration_seconds / 60:.0f} min)")

    def run(self) -> Optional[SessionResult]:
        """Pull and reduce frames until stopped, cancelled, exhausted or timed out.

        Returns:
            The SessionResult, or None when the session was cancelled
        """
        with self._lock:
            # The deadline may already have finalized a session that was never run
            if self._timed_out and self.state == SessionState.COMPLETED:
                return self.result
            if self.state != SessionState.RUNNING:
                raise SessionStateError(f"Cannot run a session in state {self.state.value}")
            self._looping = True

        try:
            while not self._stop_event.is_set():
                elapsed = self.elapsed_seconds
                if elapsed >= self.max_duration_seconds:
                    self._timed_out = True
                    break
                try:
                    frame = self.source.next_frame()
                except StopIteration:
                    logger.info("Frame source exhausted")
                    break
                # A signal raised while blocked on the source discards the frame
                if self._stop_event.is_set():
                    break
                self.reducer.process(frame, elapsed)
        except Exception as e:
            logger.log_error_with_context(e, "meditation session")
            with self._lock:
                self._looping = False
                self._cancel_requested = True
                self._finish()
            raise

        with self._lock:
            self._looping = False
            return self._finish()

    def stop(self) -> Optional[SessionResult]:
        """Request a normal stop. Returns the result when no run loop is active."""
        with self._lock:
            self._stop_event.set()
            if self.state == SessionState.RUNNING and not self._looping:
                return self._finish()
            return self.result

    def cancel(self) -> None:
        """Abandon the attempt; accumulated metrics are discarded."""
        with self._lock:
            self._cancel_requested = True
            self._stop_event.set()
            if self.state == SessionState.RUNNING and not self._looping:
                self._finish()

    def _on_deadline(self) -> None:
        """Timer callback; finalizes directly when no run loop will notice the signal."""
        logger.info("Meditation session reached its maximum duration")
        with self._lock:
            if self.state != SessionState.RUNNING:
                return
            self._timed_out = True
            self._stop_event.set()
            if not self._looping:
                self._finish()

    def _finish(self) -> Optional[SessionResult]:
        if self.state != SessionState.RUNNING:
            return self.result

        self._release()

        if self._cancel_requested:
            self.state = SessionState.CANCELLED
            self.reducer = None
            logger.info("Meditation session cancelled")
            return None

        metrics = self.reducer.finalize()
        self.result = SessionResult(
            eye_closed_percent=metrics['eye_closed_percent'],
            head_movement=metrics['head_movement'],
            hand_stability=metrics['hand_stability'],
            hand_movement=metrics['hand_movement'],
            metrics_timeline=metrics['metrics_timeline'],
            elapsed_seconds=min(self.elapsed_seconds, self.max_duration_seconds),
            timed_out=self._timed_out,
            frames_processed=metrics['frames_processed'],
        )
        self.state = SessionState.COMPLETED
        logger.info(f"Meditation session completed - {self.result.frames_processed} frames, "
                    f"{self.result.elapsed_seconds / 60:.1f} min"
                    f"{' (timed out)' if self.result.timed_out else ''}")
        return self.result

    def _release(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._released:
            self._released = True
            self.source.close()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.cancel()
        else:
            self.stop()
