"""
Biometric Frame Reducer

Reduces a stream of landmark observations into the meditation test metrics:
eyes-closed percentage from the eye aspect ratio (EAR), cumulative nose
displacement as head movement, and cumulative wrist displacement as hand
movement. All accumulation lives in a session-scoped ReducerState.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from .frame_source import FrameObservation, Point
from ..utils.logger import get_logger

logger = get_logger(__name__)

# MediaPipe Face Mesh eye contours, ordered p0..p5 for the EAR formula
LEFT_EYE_INDICES = [33, 160, 158, 133, 153, 144]
RIGHT_EYE_INDICES = [362, 385, 387, 263, 373, 380]
NOSE_TIP_INDEX = 1
WRIST_INDEX = 0


def _distance(a: Point, b: Point) -> float:
    return float(np.linalg.norm(np.array([a.x - b.x, a.y - b.y])))


def compute_ear(landmarks: Sequence[Point], indices: Sequence[int]) -> float:
    """
    Calculate the Eye Aspect Ratio for one eye.

    EAR = (|p1-p5| + |p2-p4|) / (2 * |p0-p3|)

    Args:
        landmarks: Face mesh landmarks
        indices: Six landmark indices p0..p5

    Returns:
        EAR value, 0.0 when a landmark is missing or the eye has no width
    """
    if any(i >= len(landmarks) for i in indices):
        return 0.0

    p = [landmarks[i] for i in indices]

    # Vertical eye distances
    A = _distance(p[1], p[5])
    B = _distance(p[2], p[4])

    # Horizontal eye distance
    C = _distance(p[0], p[3])
    if C == 0:
        return 0.0

    return (A + B) / (2.0 * C)


@dataclass(frozen=True)
class MetricsSnapshot:
    """Periodic view of the running metrics."""
    t: float
    eye_closed_pct: float
    head_move: float
    hand_move: float
    hand_stability: float

    def to_dict(self) -> dict:
        return {
            't': self.t,
            'eyeClosedPct': self.eye_closed_pct,
            'headMove': self.head_move,
            'handMove': self.hand_move,
            'handStability': self.hand_stability,
        }


@dataclass
class ReducerState:
    """Accumulators for one meditation session."""
    processed_frames: int = 0
    face_frames: int = 0
    closed_frames: int = 0
    head_movement: float = 0.0
    hand_movement: float = 0.0
    prev_nose: Optional[Point] = None
    prev_hand_centers: List[Point] = field(default_factory=list)
    timeline: List[MetricsSnapshot] = field(default_factory=list)

    @property
    def eye_closed_pct(self) -> float:
        if self.face_frames == 0:
            return 0.0
        return self.closed_frames / self.face_frames * 100.0

    @property
    def hand_stability(self) -> float:
        return 1.0 / (1.0 + self.hand_movement)


class BiometricFrameReducer:
    """Folds frame observations into ReducerState in arrival order."""

    def __init__(self, ear_threshold: float = 0.18, snapshot_interval_frames: int = 30):
        """
        Initialize the reducer.

        Args:
            ear_threshold: Both eyes below this EAR count as closed
            snapshot_interval_frames: Processed frames between timeline snapshots
        """
        self.ear_threshold = ear_threshold
        self.snapshot_interval_frames = snapshot_interval_frames
        self.state = ReducerState()

    @classmethod
    def from_config(cls, meditation_config) -> "BiometricFrameReducer":
        return cls(
            ear_threshold=meditation_config.ear_threshold,
            snapshot_interval_frames=meditation_config.snapshot_interval_frames,
        )

    def process(self, frame: FrameObservation, elapsed_seconds: float) -> Optional[MetricsSnapshot]:
        """
        Accumulate one frame.

        Args:
            frame: Landmarks of the frame
            elapsed_seconds: Time since the session started

        Returns:
            The snapshot emitted on this frame, if any
        """
        state = self.state

        if frame.has_face:
            self._process_face(frame.face_landmarks)

        if frame.has_hands:
            self._process_hands(frame.hand_landmark_sets)

        state.processed_frames += 1
        if state.processed_frames % self.snapshot_interval_frames == 0:
            return self._snapshot(elapsed_seconds)
        return None

    def _process_face(self, landmarks: Sequence[Point]) -> None:
        state = self.state
        left_ear = compute_ear(landmarks, LEFT_EYE_INDICES)
        right_ear = compute_ear(landmarks, RIGHT_EYE_INDICES)

        state.face_frames += 1
        if left_ear < self.ear_threshold and right_ear < self.ear_threshold:
            state.closed_frames += 1

        if NOSE_TIP_INDEX < len(landmarks):
            nose = landmarks[NOSE_TIP_INDEX]
            if state.prev_nose is not None:
                state.head_movement += _distance(nose, state.prev_nose)
            state.prev_nose = nose

    def _process_hands(self, hand_sets: Sequence[Sequence[Point]]) -> None:
        state = self.state
        centers = [hand[WRIST_INDEX] for hand in hand_sets if len(hand) > WRIST_INDEX]

        # Hands are matched by index only while the count stays the same
        if centers and len(centers) == len(state.prev_hand_centers):
            state.hand_movement += sum(
                _distance(current, previous)
                for current, previous in zip(centers, state.prev_hand_centers)
            )
        state.prev_hand_centers = centers

    def _snapshot(self, elapsed_seconds: float) -> MetricsSnapshot:
        state = self.state
        snapshot = MetricsSnapshot(
            t=elapsed_seconds,
            eye_closed_pct=state.eye_closed_pct,
            head_move=state.head_movement,
            hand_move=state.hand_movement,
            hand_stability=state.hand_stability,
        )
        state.timeline.append(snapshot)
        logger.log_snapshot(snapshot.t, snapshot.eye_closed_pct, snapshot.head_move,
                            snapshot.hand_move, snapshot.hand_stability)
        return snapshot

    def finalize(self) -> dict:
        """Current metrics computed from the accumulators."""
        state = self.state
        return {
            'eye_closed_percent': state.eye_closed_pct,
            'head_movement': state.head_movement,
            'hand_movement': state.hand_movement,
            'hand_stability': state.hand_stability,
            'metrics_timeline': list(state.timeline),
            'frames_processed': state.processed_frames,
        }
