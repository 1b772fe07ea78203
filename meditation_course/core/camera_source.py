"""
Camera Landmark Source

Captures frames from a local camera with OpenCV and runs MediaPipe Face Mesh
and Hands on each one, yielding normalized landmark observations for the
meditation test.
"""

import os
import time
from typing import Optional

import cv2

# Suppress TensorFlow Lite warnings emitted by MediaPipe
os.environ.setdefault('TF_CPP_MIN_LOG_LEVEL', '3')

try:
    import mediapipe as mp
    MP_AVAILABLE = True
except ImportError:
    mp = None
    MP_AVAILABLE = False

from .frame_source import FrameObservation, FrameSource
from ..utils.exceptions import CaptureUnavailable
from ..utils.logger import get_logger

logger = get_logger(__name__)


class CameraLandmarkSource(FrameSource):
    """Frame source backed by a camera device and MediaPipe landmark models."""

    def __init__(self, device_id: int = 0, width: int = 640, height: int = 480, fps: int = 30,
                 max_hands: int = 2, min_detection_confidence: float = 0.5,
                 min_tracking_confidence: float = 0.5, max_read_failures: int = 30):
        """
        Initialize the camera source. Nothing is acquired until ``open``.

        Args:
            device_id: OpenCV camera index
            width: Requested frame width
            height: Requested frame height
            fps: Requested capture rate
            max_hands: Maximum number of hands to track
            min_detection_confidence: MediaPipe detection confidence
            min_tracking_confidence: MediaPipe tracking confidence
            max_read_failures: Consecutive failed reads before the source ends
        """
        self.device_id = device_id
        self.width = width
        self.height = height
        self.fps = fps
        self.max_hands = max_hands
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self.max_read_failures = max(1, max_read_failures)

        self.cap = None
        self.face_mesh = None
        self.hands = None
        self.frames_read = 0

    @property
    def is_open(self) -> bool:
        return self.cap is not None

    def open(self) -> None:
        """Acquire the camera and landmark models."""
        if not MP_AVAILABLE:
            raise CaptureUnavailable("MediaPipe is not installed")

        cap = cv2.VideoCapture(self.device_id)
        if not cap.isOpened():
            cap.release()
            raise CaptureUnavailable(f"Could not open camera device {self.device_id}")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        cap.set(cv2.CAP_PROP_FPS, self.fps)

        try:
            self.face_mesh = mp.solutions.face_mesh.FaceMesh(
                max_num_faces=1,
                refine_landmarks=True,
                min_detection_confidence=self.min_detection_confidence,
                min_tracking_confidence=self.min_tracking_confidence,
            )
            self.hands = mp.solutions.hands.Hands(
                max_num_hands=self.max_hands,
                model_complexity=1,
                min_detection_confidence=self.min_detection_confidence,
                min_tracking_confidence=self.min_tracking_confidence,
            )
        except Exception as e:
            cap.release()
            self._close_models()
            raise CaptureUnavailable(f"Could not initialize landmark models: {e}") from e

        self.cap = cap
        self.frames_read = 0
        logger.info(f"Camera source opened: device {self.device_id}, "
                    f"{self.width}x{self.height} @ {self.fps}fps")

    def next_frame(self) -> FrameObservation:
        """Read one frame and return its landmarks.

        Failed reads are retried up to ``max_read_failures`` times in a row;
        after that, or once the device closes, the source is exhausted.
        """
        if self.cap is None:
            raise CaptureUnavailable("Camera source is not open")

        failures = 0
        ret, frame = self.cap.read()
        while not ret:
            failures += 1
            if not self.cap.isOpened() or failures >= self.max_read_failures:
                logger.error(f"Camera stopped delivering frames after {failures} failed reads")
                raise StopIteration
            logger.warning("Failed to read frame from camera")
            time.sleep(1.0 / max(self.fps, 1))
            ret, frame = self.cap.read()

        self.frames_read += 1
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        rgb.flags.writeable = False

        face_results = self.face_mesh.process(rgb)
        hand_results = self.hands.process(rgb)

        face_landmarks = None
        if face_results.multi_face_landmarks:
            face_landmarks = face_results.multi_face_landmarks[0].landmark

        hand_sets = []
        if hand_results.multi_hand_landmarks:
            hand_sets = [hand.landmark for hand in hand_results.multi_hand_landmarks]

        return FrameObservation.from_landmarks(face_landmarks, hand_sets)

    def close(self) -> None:
        """Release camera and model resources."""
        if self.cap is None:
            return
        self.cap.release()
        self.cap = None
        self._close_models()
        logger.info(f"Camera source released after {self.frames_read} frames")

    def _close_models(self) -> None:
        for model in (self.face_mesh, self.hands):
            if model is not None:
                model.close()
        self.face_mesh = None
        self.hands = None


def create_camera_source(camera_config: Optional[dict] = None) -> CameraLandmarkSource:
    """Build a camera source from an optional settings mapping."""
    return CameraLandmarkSource(**(camera_config or {}))
