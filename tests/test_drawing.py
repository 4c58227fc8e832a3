"""Tests for the OpenCV overlay."""

import numpy as np
import pytest

pytest.importorskip("cv2")

from sign_practice.drawing import (
    HIGH_COLOR,
    LOW_COLOR,
    MID_COLOR,
    SKELETON_COLOR,
    confidence_color,
    draw_hand,
    draw_overlay,
    draw_text,
)
from sign_practice.feedback import FeedbackPhase, FeedbackState
from sign_practice.session import ConfidenceSample, FrameResult

from fakes import make_hand


class TestDrawing:
    @pytest.mark.parametrize("value,color", [
        (100, HIGH_COLOR), (80, HIGH_COLOR), (79, MID_COLOR), (60, MID_COLOR), (59, LOW_COLOR), (0, LOW_COLOR),
    ])
    def test_confidence_bands(self, value, color):
        assert confidence_color(value) == color

    def test_overlay_draws_on_frame(self):
        frame = np.zeros((240, 320, 3), dtype=np.uint8)
        result = FrameResult(
            sample=ConfidenceSample(72, 0, 0.0, True),
            keypoints=make_hand(offset=(60, 40)),
            feedback=FeedbackState(phase=FeedbackPhase.NEAR_MATCH, score=72),
            frame=frame,
            template="hello",
        )
        out = draw_overlay(frame, result, sign="hello")
        assert out is frame
        assert frame.any()

    def test_overlay_without_hand(self):
        frame = np.zeros((120, 160, 3), dtype=np.uint8)
        result = FrameResult(
            sample=ConfidenceSample(0, 0, 0.0, False),
            keypoints=None,
            feedback=FeedbackState(phase=FeedbackPhase.IDLE),
        )
        draw_overlay(frame, result)
        assert not frame.any()

    def test_draw_hand_marks_joints(self):
        frame = np.zeros((240, 320, 3), dtype=np.uint8)
        hand = make_hand(offset=(60, 40))
        assert draw_hand(frame, hand) is frame
        x, y = hand[0].astype(int)
        assert tuple(frame[y, x]) == SKELETON_COLOR

    def test_draw_text_outlined(self):
        frame = np.full((60, 200, 3), 128, dtype=np.uint8)
        draw_text(frame, "hello", (10, 40))
        assert (frame < 30).all(axis=2).any()
        assert (frame > 220).all(axis=2).any()
