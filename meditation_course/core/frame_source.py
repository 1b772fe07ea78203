"""
Frame observations and the pull-based frame source interface.

A frame source yields one FrameObservation per captured video frame. A frame
may carry no face and no hands; that is a normal observation, not an error.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..utils.exceptions import CaptureUnavailable


@dataclass(frozen=True)
class Point:
    """Normalized landmark coordinate."""
    x: float
    y: float

    @classmethod
    def coerce(cls, value: Any) -> "Point":
        if isinstance(value, Point):
            return value
        if isinstance(value, Mapping):
            return cls(float(value['x']), float(value['y']))
        if hasattr(value, 'x') and hasattr(value, 'y'):
            return cls(float(value.x), float(value.y))
        x, y = value[0], value[1]
        return cls(float(x), float(y))


@dataclass(frozen=True)
class FrameObservation:
    """Landmarks detected in one frame.

    ``face_landmarks`` holds the 468 face mesh points when a face was found;
    ``hand_landmark_sets`` holds one 21-point set per detected hand.
    """
    face_landmarks: Optional[Tuple[Point, ...]] = None
    hand_landmark_sets: Tuple[Tuple[Point, ...], ...] = field(default_factory=tuple)

    @classmethod
    def from_landmarks(cls, face_landmarks: Optional[Sequence[Any]] = None,
                       hand_landmark_sets: Optional[Iterable[Sequence[Any]]] = None
                       ) -> "FrameObservation":
        face = tuple(Point.coerce(p) for p in face_landmarks) if face_landmarks else None
        hands = tuple(
            tuple(Point.coerce(p) for p in hand) for hand in (hand_landmark_sets or ()) if hand
        )
        return cls(face_landmarks=face, hand_landmark_sets=hands)

    @property
    def has_face(self) -> bool:
        return bool(self.face_landmarks)

    @property
    def has_hands(self) -> bool:
        return len(self.hand_landmark_sets) > 0


class FrameSource:
    """Pull-based source of frame observations with scoped acquisition.

    ``open`` acquires the capture resource and raises CaptureUnavailable when
    it cannot; ``next_frame`` blocks until the next frame and raises
    StopIteration only when the source cannot produce more frames;
    ``close`` releases the resource and is safe to call more than once.
    """

    def open(self) -> None:
        raise NotImplementedError

    def next_frame(self) -> FrameObservation:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def __iter__(self) -> Iterator[FrameObservation]:
        return self

    def __next__(self) -> FrameObservation:
        return self.next_frame()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class IterableFrameSource(FrameSource):
    """Replays in-memory observations, e.g. recorded landmarks or test data."""

    def __init__(self, frames: Iterable[FrameObservation], available: bool = True):
        self._frames = frames
        self._iterator: Optional[Iterator[FrameObservation]] = None
        self.available = available
        self.open_count = 0
        self.close_count = 0
        self.frames_delivered = 0

    @property
    def is_open(self) -> bool:
        return self._iterator is not None

    def open(self) -> None:
        if not self.available:
            raise CaptureUnavailable("Frame source is not available")
        self._iterator = iter(self._frames)
        self.open_count += 1

    def next_frame(self) -> FrameObservation:
        if self._iterator is None:
            raise CaptureUnavailable("Frame source is not open")
        frame = next(self._iterator)
        self.frames_delivered += 1
        return frame

    def close(self) -> None:
        if self._iterator is not None:
            self._iterator = None
            self.close_count += 1


def frames_from_dicts(records: Iterable[Mapping[str, Any]]) -> List[FrameObservation]:
    """Build observations from ``{faceLandmarks, handLandmarksSets}`` records."""
    return [
        FrameObservation.from_landmarks(
            record.get('faceLandmarks'), record.get('handLandmarksSets')
        )
        for record in records
    ]
