"""OpenCV overlay for the practice window.

Draws the tracked hand skeleton, a confidence badge coloured by score band
and the feedback line for the current phase onto a BGR frame in place.
"""

from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

from sign_practice.feedback import FeedbackPhase
from sign_practice.keypoints import HAND_CONNECTIONS

# BGR
SKELETON_COLOR = (233, 165, 14)
HIGH_COLOR = (128, 222, 74)
MID_COLOR = (21, 204, 250)
LOW_COLOR = (113, 113, 248)

PHASE_LABELS = {
    FeedbackPhase.IDLE: "",
    FeedbackPhase.NO_HAND: "Show your hand to the camera",
    FeedbackPhase.TRACKING: "Keep adjusting your hand",
    FeedbackPhase.NEAR_MATCH: "Almost there! Keep trying!",
    FeedbackPhase.MASTERED: "Excellent! Perfect form!",
}


def confidence_color(value: int) -> Tuple[int, int, int]:
    """Badge colour: green from 80, amber from 60, red below."""
    if value >= 80:
        return HIGH_COLOR
    if value >= 60:
        return MID_COLOR
    return LOW_COLOR


def draw_hand(frame: np.ndarray, keypoints: np.ndarray, color=SKELETON_COLOR, thickness: int = 2):
    """Draw bones and joints for pixel-space keypoints. Returns ``frame``."""
    pts = [(int(round(x)), int(round(y))) for x, y in keypoints[:, :2]]
    for a, b in HAND_CONNECTIONS:
        if a < len(pts) and b < len(pts):
            cv2.line(frame, pts[a], pts[b], color, thickness, cv2.LINE_AA)
    for pt in pts:
        cv2.circle(frame, pt, 4, color, -1, lineType=cv2.LINE_AA)
    return frame


def draw_text(frame, text: str, org: Tuple[int, int], color=(255, 255, 255), scale=0.6, thickness=2):
    """Text with a black outline so it stays readable on any background."""
    cv2.putText(frame, text, org, cv2.FONT_HERSHEY_SIMPLEX, scale, (0, 0, 0), thickness + 2, cv2.LINE_AA)
    cv2.putText(frame, text, org, cv2.FONT_HERSHEY_SIMPLEX, scale, color, thickness, cv2.LINE_AA)
    return frame


def draw_overlay(frame: np.ndarray, result, sign: Optional[str] = None) -> np.ndarray:
    """Draw skeleton, confidence badge and feedback line for one FrameResult."""
    if result.keypoints is not None:
        draw_hand(frame, result.keypoints)

    h, w = frame.shape[:2]
    value = result.sample.value
    if result.template and value > 0:
        draw_text(frame, f"{value}%", (w - 110, 40), confidence_color(value), scale=1.0)

    label = PHASE_LABELS.get(result.feedback.phase, "")
    if label:
        draw_text(frame, label, (12, h - 16))
    if sign:
        draw_text(frame, f"Sign: {sign}", (12, 28))
    return frame
