"""Session recording and replay.

Record the keypoint stream of a live session to disk, then feed it back
through a real CaptureSession without a camera. Useful for:
- Reproducible tests and CI on headless machines
- Calibrating thresholds against real hands
- Capturing template geometry from a recorded frame
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

from sign_practice.capture import CaptureConstraints

logger = logging.getLogger("sign_practice.recorder")


@dataclass
class RecordedFrame:
    """A single frame in a recording."""
    timestamp: float  # seconds from recording start
    keypoints: Optional[list[list[float]]]  # None when no hand was seen
    confidence: int = 0
    phase: str = ""


class SessionRecorder:
    """Records the frames a session emits.

    Usage:
        recorder = SessionRecorder()
        recorder.attach(session)
        recorder.start()
        ...
        recorder.stop()
        recorder.save("session.json")
    """

    def __init__(self):
        self._frames: list[RecordedFrame] = []
        self._start_time: Optional[float] = None
        self._recording = False

    def attach(self, session):
        """Subscribe to a session's frame stream."""
        session.on_frame(self.add_result)

    def start(self):
        self._frames = []
        self._start_time = time.monotonic()
        self._recording = True

    def stop(self) -> int:
        """Stop recording. Returns number of frames captured."""
        self._recording = False
        return len(self._frames)

    def add_result(self, result):
        """Frame listener: store one FrameResult."""
        if not self._recording:
            return
        keypoints = result.keypoints.tolist() if result.keypoints is not None else None
        self._frames.append(RecordedFrame(
            timestamp=time.monotonic() - self._start_time,
            keypoints=keypoints,
            confidence=result.sample.value,
            phase=result.feedback.phase.value,
        ))

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp

    def save(self, path: str | Path):
        """Save recording to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": 1,
            "frame_count": len(self._frames),
            "duration": self.duration,
            "frames": [asdict(f) for f in self._frames],
        }
        with open(path, "w") as f:
            json.dump(data, f)
        logger.info("Saved %d frames to %s", len(self._frames), path)


class RecordingPlayer:
    """Read access to a saved recording."""

    def __init__(self, frames: list[RecordedFrame]):
        self._frames = frames

    @classmethod
    def load(cls, path: str | Path) -> RecordingPlayer:
        with open(path) as f:
            data = json.load(f)

        frames = [
            RecordedFrame(
                timestamp=f["timestamp"],
                keypoints=f.get("keypoints"),
                confidence=f.get("confidence", 0),
                phase=f.get("phase", ""),
            )
            for f in data["frames"]
        ]
        return cls(frames)

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp

    def play(self) -> Iterator[Optional[np.ndarray]]:
        """Yield each frame's keypoints as an array, or None."""
        for frame in self._frames:
            if frame.keypoints is None:
                yield None
            else:
                yield np.array(frame.keypoints, dtype=np.float64)

    def get_frame(self, index: int) -> Optional[RecordedFrame]:
        if 0 <= index < len(self._frames):
            return self._frames[index]
        return None


class RecordedPoseSource:
    """Pose source that returns recorded keypoints in order.

    The incoming frame is ignored. Once the recording runs out every
    estimate is None and ``exhausted`` turns True.
    """

    def __init__(self, player: RecordingPlayer):
        self._player = player
        self._frames: Optional[Iterator[Optional[np.ndarray]]] = None
        self.exhausted = False

    def open(self):
        self._frames = self._player.play()
        self.exhausted = False
        return self

    def estimate(self, frame) -> Optional[np.ndarray]:
        if self._frames is None:
            return None
        try:
            return next(self._frames)
        except StopIteration:
            self.exhausted = True
            return None

    def close(self):
        self._frames = None


class ReplayDevice:
    """Stand-in camera that always has a blank frame ready."""

    def __init__(self):
        self.acquired = 0
        self.released = 0

    def acquire(self, constraints: CaptureConstraints) -> _BlankStream:
        self.acquired += 1
        return _BlankStream(constraints.width, constraints.height)

    def release(self, handle: _BlankStream):
        self.released += 1
        handle.release()


class _BlankStream:
    def __init__(self, width: int, height: int):
        self._frame = np.zeros((height, width, 3), dtype=np.uint8)
        self.is_open = True

    def read(self) -> Optional[np.ndarray]:
        return self._frame if self.is_open else None

    def release(self):
        self.is_open = False
