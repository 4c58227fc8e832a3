"""Camera acquisition via OpenCV.

A DeviceHandle owns one open cv2.VideoCapture and releases it exactly once.
Opening fails with DeviceUnavailable or DeviceAccessDenied so the caller can
show the right message; neither is retried here.
"""

from __future__ import annotations

import logging
import os
import platform
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np

try:
    import cv2
except ImportError:
    cv2 = None

from sign_practice.errors import DeviceAccessDenied, DeviceUnavailable

logger = logging.getLogger("sign_practice.capture")

# OpenCV addresses cameras by index; laptops usually enumerate the
# front camera first.
FACING_INDEX = {"user": 0, "environment": 1}


@dataclass(frozen=True)
class CaptureConstraints:
    """Requested capture settings. Resolution and fps are best effort."""
    device_index: Optional[int] = None
    facing: str = "user"
    width: int = 640
    height: int = 480
    fps: int = 30

    def resolve_index(self) -> int:
        if self.device_index is not None:
            return self.device_index
        try:
            return FACING_INDEX[self.facing]
        except KeyError:
            raise ValueError(
                f"Unknown facing '{self.facing}'. Available: {list(FACING_INDEX)}"
            ) from None

    @classmethod
    def from_dict(cls, data: dict) -> CaptureConstraints:
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


class DeviceHandle:
    """An open camera stream.

    ``read()`` may block in a worker thread for as long as the driver takes.
    The lock only guards the bookkeeping, never the read itself, so
    ``release()`` returns at once. A release that arrives mid-read is
    finished by that read as soon as the driver hands the frame back.
    """

    def __init__(self, capture, index: int):
        self._capture = capture
        self._lock = threading.Lock()
        self._reading = False
        self._release_pending = False
        self.index = index
        self.frames_read = 0

    def read(self) -> Optional[np.ndarray]:
        """Return the next BGR frame, or None if none is decodable yet."""
        with self._lock:
            capture = self._capture
            if capture is None or self._reading:
                return None
            self._reading = True
        try:
            ok, frame = capture.read()
        finally:
            with self._lock:
                self._reading = False
                finish_release, self._release_pending = self._release_pending, False
            if finish_release:
                self._close(capture)
        if finish_release or not ok or frame is None:
            return None
        self.frames_read += 1
        return frame

    def release(self):
        """Stop the stream. Safe to call repeatedly and during a read."""
        with self._lock:
            capture, self._capture = self._capture, None
            if capture is not None and self._reading:
                self._release_pending = True
                capture = None
        if capture is not None:
            self._close(capture)

    def _close(self, capture):
        capture.release()
        logger.info("Camera %d released", self.index)

    @property
    def is_open(self) -> bool:
        return self._capture is not None


class CameraDevice:
    """Opens cameras through OpenCV with explicit constraints."""

    def __init__(self, backend: str = "auto"):
        self._backend = backend

    def acquire(self, constraints: CaptureConstraints) -> DeviceHandle:
        if cv2 is None:
            raise DeviceUnavailable("opencv-python is required for camera capture")

        index = constraints.resolve_index()
        self._probe(index)

        capture = cv2.VideoCapture(index, self._api_preference())
        if not capture.isOpened():
            capture.release()
            hint = ""
            if platform.system() == "Darwin":
                hint = (
                    " On macOS: System Settings -> Privacy & Security -> Camera "
                    "-> allow your terminal."
                )
            raise DeviceUnavailable(f"Could not open camera index {index}.{hint}")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        capture.set(cv2.CAP_PROP_FPS, constraints.fps)
        capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        logger.info(
            "Camera %d opened: %dx%d @ %.0f FPS (requested %dx%d @ %d, facing=%s)",
            index,
            int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            capture.get(cv2.CAP_PROP_FPS),
            constraints.width, constraints.height, constraints.fps,
            constraints.facing,
        )
        return DeviceHandle(capture, index)

    def release(self, handle: DeviceHandle):
        handle.release()

    def _probe(self, index: int):
        """Tell a missing device from a forbidden one where the OS allows it."""
        if platform.system() != "Linux":
            return
        node = Path(f"/dev/video{index}")
        if not node.exists():
            raise DeviceUnavailable(f"No camera at {node}")
        if not os.access(node, os.R_OK | os.W_OK):
            raise DeviceAccessDenied(
                f"Permission denied for {node}; add this user to the 'video' group"
            )

    def _api_preference(self) -> int:
        backends = {
            "auto": cv2.CAP_ANY,
            "v4l2": cv2.CAP_V4L2,
            "avfoundation": cv2.CAP_AVFOUNDATION,
            "dshow": cv2.CAP_DSHOW,
        }
        if self._backend == "auto" and platform.system() == "Darwin":
            return cv2.CAP_AVFOUNDATION
        return backends.get(self._backend, cv2.CAP_ANY)
