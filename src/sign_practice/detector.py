"""Hand pose estimation using MediaPipe."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol

import numpy as np

try:
    import mediapipe as mp
except ImportError:
    mp = None

try:
    import cv2
except ImportError:
    cv2 = None

from sign_practice.errors import ResourceInitError, TransientEstimationError
from sign_practice.keypoints import NUM_KEYPOINTS

logger = logging.getLogger("sign_practice.detector")


class PoseSource(Protocol):
    """Black-box hand pose capability consumed by the engine.

    ``estimate`` may be a plain or a coroutine function. It returns one
    keypoint set of shape (21, 2|3) in frame pixels, or None when no hand
    is visible.
    """

    def open(self) -> object: ...

    def estimate(self, frame: np.ndarray) -> Optional[np.ndarray]: ...

    def close(self) -> None: ...


class HandPoseEstimator:
    """Extracts 21 hand keypoints for a single hand per frame.

    Input frames are BGR (OpenCV default). Keypoints come back in pixel
    space: x and y scaled by the frame size, z as reported by MediaPipe.

    The legacy ``mp.solutions.hands`` backend is preferred. Builds that
    ship without it use the Tasks HandLandmarker, which needs a ``.task``
    model file on disk.
    """

    def __init__(
        self,
        min_detection_confidence: float = 0.7,
        min_tracking_confidence: float = 0.5,
        model_complexity: int = 1,
        tasks_model_path: str | Path = "models/hand_landmarker.task",
    ):
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self.model_complexity = model_complexity
        self.tasks_model_path = Path(tasks_model_path)

        self._hands = None
        self._landmarker = None
        self._timestamp_ms = 0

    def open(self) -> HandPoseEstimator:
        """Load the model. Idempotent."""
        if self.is_open:
            return self
        if mp is None:
            raise ResourceInitError(
                "mediapipe is required. Install with: pip install mediapipe"
            )
        if cv2 is None:
            raise ResourceInitError(
                "opencv-python is required. Install with: pip install opencv-python"
            )

        try:
            if hasattr(mp, "solutions"):
                self._hands = mp.solutions.hands.Hands(
                    static_image_mode=False,
                    max_num_hands=1,
                    model_complexity=self.model_complexity,
                    min_detection_confidence=self.min_detection_confidence,
                    min_tracking_confidence=self.min_tracking_confidence,
                )
                logger.info("MediaPipe Hands ready (solutions backend)")
            else:
                self._landmarker = self._create_landmarker()
                logger.info("MediaPipe Hands ready (tasks backend, %s)", self.tasks_model_path)
        except ResourceInitError:
            raise
        except Exception as e:
            raise ResourceInitError(f"Could not initialize MediaPipe Hands: {e}") from e

        return self

    def _create_landmarker(self):
        if not self.tasks_model_path.exists():
            raise ResourceInitError(
                "This MediaPipe build has no `mp.solutions`; the Tasks fallback needs "
                f"a model file at {self.tasks_model_path}"
            )
        from mediapipe.tasks.python import BaseOptions
        from mediapipe.tasks.python.vision import (
            HandLandmarker,
            HandLandmarkerOptions,
            RunningMode,
        )

        options = HandLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=str(self.tasks_model_path)),
            running_mode=RunningMode.VIDEO,
            num_hands=1,
            min_hand_detection_confidence=self.min_detection_confidence,
            min_tracking_confidence=self.min_tracking_confidence,
        )
        return HandLandmarker.create_from_options(options)

    def estimate(self, frame_bgr: np.ndarray) -> Optional[np.ndarray]:
        """Detect one hand.

        Returns:
            Keypoints of shape (21, 3) in pixel space, or None.

        Raises:
            TransientEstimationError: if the backend fails on this frame.
        """
        if not self.is_open:
            raise TransientEstimationError("Pose estimator is not open")

        h, w = frame_bgr.shape[:2]
        try:
            frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
            landmarks = self._process(frame_rgb)
        except Exception as e:
            raise TransientEstimationError(f"Hand estimation failed: {e}") from e

        if landmarks is None:
            return None

        keypoints = np.array(
            [[lm.x * w, lm.y * h, getattr(lm, "z", 0.0)] for lm in landmarks],
            dtype=np.float64,
        )
        if len(keypoints) != NUM_KEYPOINTS:
            logger.debug("Backend returned %d keypoints", len(keypoints))
        return keypoints

    def _process(self, frame_rgb: np.ndarray):
        if self._hands is not None:
            results = self._hands.process(frame_rgb)
            if not results.multi_hand_landmarks:
                return None
            return results.multi_hand_landmarks[0].landmark

        image = mp.Image(image_format=mp.ImageFormat.SRGB, data=frame_rgb)
        # VIDEO mode requires monotonically increasing timestamps
        self._timestamp_ms += 33
        result = self._landmarker.detect_for_video(image, self._timestamp_ms)
        hands = getattr(result, "hand_landmarks", None) or []
        return hands[0] if hands else None

    @property
    def is_open(self) -> bool:
        return self._hands is not None or self._landmarker is not None

    def close(self):
        """Release MediaPipe resources."""
        hands, self._hands = self._hands, None
        landmarker, self._landmarker = self._landmarker, None
        if hands is not None:
            hands.close()
        if landmarker is not None:
            landmarker.close()
        if hands is not None or landmarker is not None:
            logger.info("MediaPipe Hands closed")

    def __enter__(self):
        return self.open()

    def __exit__(self, *args):
        self.close()
