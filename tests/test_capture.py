"""Tests for camera constraints, device handles and device probing."""

import threading
import time

import numpy as np
import pytest

from sign_practice import capture
from sign_practice.capture import CameraDevice, CaptureConstraints, DeviceHandle
from sign_practice.errors import DeviceAccessDenied, DeviceUnavailable

from fakes import SlowCapture


class FakeCapture:
    def __init__(self, frames):
        self._frames = list(frames)
        self.release_count = 0

    def read(self):
        if not self._frames:
            return False, None
        return True, self._frames.pop(0)

    def release(self):
        self.release_count += 1


class TestCaptureConstraints:
    def test_defaults(self):
        c = CaptureConstraints()
        assert (c.width, c.height, c.fps) == (640, 480, 30)
        assert c.resolve_index() == 0

    def test_facing_environment(self):
        assert CaptureConstraints(facing="environment").resolve_index() == 1

    def test_explicit_index_wins(self):
        assert CaptureConstraints(device_index=3, facing="environment").resolve_index() == 3

    def test_unknown_facing(self):
        with pytest.raises(ValueError):
            CaptureConstraints(facing="sideways").resolve_index()

    def test_from_dict_ignores_unknown(self):
        c = CaptureConstraints.from_dict({"width": 1280, "height": 720, "zoom": 2})
        assert (c.width, c.height) == (1280, 720)


class TestDeviceHandle:
    def test_read_frames(self):
        frame = np.zeros((4, 4, 3), dtype=np.uint8)
        handle = DeviceHandle(FakeCapture([frame]), index=0)
        assert handle.read() is frame
        assert handle.frames_read == 1
        # Nothing decodable yet
        assert handle.read() is None

    def test_release_once(self):
        fake = FakeCapture([])
        handle = DeviceHandle(fake, index=0)
        handle.release()
        handle.release()
        assert fake.release_count == 1
        assert not handle.is_open
        assert handle.read() is None

    def test_device_release_delegates(self):
        fake = FakeCapture([])
        handle = DeviceHandle(fake, index=2)
        CameraDevice().release(handle)
        assert fake.release_count == 1

    def test_release_during_read_is_finished_by_the_read(self):
        slow = SlowCapture(delay=0.3)
        handle = DeviceHandle(slow, index=0)
        frames = []
        reader = threading.Thread(target=lambda: frames.append(handle.read()))
        reader.start()
        deadline = time.monotonic() + 2.0
        while not slow.reading and time.monotonic() < deadline:
            time.sleep(0.005)

        started = time.monotonic()
        handle.release()
        assert time.monotonic() - started < 0.1
        assert not handle.is_open
        assert slow.release_count == 0

        reader.join(2.0)
        assert frames == [None]
        assert slow.release_count == 1
        assert not slow.released_during_read
        handle.release()
        assert slow.release_count == 1

    def test_concurrent_read_returns_none(self):
        slow = SlowCapture(delay=0.2)
        handle = DeviceHandle(slow, index=0)
        reader = threading.Thread(target=handle.read)
        reader.start()
        deadline = time.monotonic() + 2.0
        while not slow.reading and time.monotonic() < deadline:
            time.sleep(0.005)
        assert handle.read() is None
        reader.join(2.0)
        assert slow.reads == 1
        assert handle.frames_read == 1


class TestProbe:
    def test_missing_node(self, monkeypatch, tmp_path):
        monkeypatch.setattr(capture.platform, "system", lambda: "Linux")
        monkeypatch.setattr(capture, "Path", lambda p: tmp_path / "video9")
        with pytest.raises(DeviceUnavailable):
            CameraDevice()._probe(9)

    def test_node_without_permission(self, monkeypatch, tmp_path):
        node = tmp_path / "video0"
        node.touch()
        monkeypatch.setattr(capture.platform, "system", lambda: "Linux")
        monkeypatch.setattr(capture, "Path", lambda p: node)
        monkeypatch.setattr(capture.os, "access", lambda path, mode: False)
        with pytest.raises(DeviceAccessDenied):
            CameraDevice()._probe(0)

    def test_accessible_node(self, monkeypatch, tmp_path):
        node = tmp_path / "video0"
        node.touch()
        monkeypatch.setattr(capture.platform, "system", lambda: "Linux")
        monkeypatch.setattr(capture, "Path", lambda p: node)
        monkeypatch.setattr(capture.os, "access", lambda path, mode: True)
        CameraDevice()._probe(0)

    def test_other_platforms_skip_probe(self, monkeypatch):
        monkeypatch.setattr(capture.platform, "system", lambda: "Windows")
        CameraDevice()._probe(42)

    def test_missing_opencv(self, monkeypatch):
        monkeypatch.setattr(capture, "cv2", None)
        with pytest.raises(DeviceUnavailable):
            CameraDevice().acquire(CaptureConstraints())
