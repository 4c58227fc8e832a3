"""Landmark normalization and distance-based confidence scoring."""

from __future__ import annotations

import math

import numpy as np

from sign_practice.errors import MismatchedTopology

# Average normalized distance at which confidence reaches 0. Calibration
# constant, tunable through config.
D_MAX = 0.5


def normalize_keypoints(keypoints) -> np.ndarray:
    """Map keypoints into their own bounding box.

    Each point becomes ``(p - box_min) / max(box_width, box_height)``, which
    removes translation and uniform scale. Only x/y are used; the result has
    shape (N, 2).

    An empty set is returned unchanged. A set with zero extent is only
    translated (scale treated as 1).
    """
    points = np.asarray(keypoints, dtype=np.float64)
    if points.size == 0:
        return points

    xy = points[:, :2]
    box_min = xy.min(axis=0)
    extent = xy.max(axis=0) - box_min
    scale = float(np.max(extent))
    if not scale > 0:
        scale = 1.0

    return (xy - box_min) / scale


def score_confidence(current, target, d_max: float = D_MAX) -> int:
    """Confidence in [0, 100] that two normalized keypoint sets match.

    Computed as ``round((1 - avg_distance / d_max) * 100)`` clamped to
    [0, 100], where avg_distance is the mean per-index Euclidean distance.

    Raises:
        MismatchedTopology: if either set is empty or the lengths differ.
    """
    current = np.asarray(current, dtype=np.float64)
    target = np.asarray(target, dtype=np.float64)

    if len(current) == 0 or len(target) == 0:
        raise MismatchedTopology("Cannot score an empty keypoint set")
    if len(current) != len(target):
        raise MismatchedTopology(
            f"Keypoint count mismatch: live hand has {len(current)}, template has {len(target)}"
        )

    distances = np.linalg.norm(current[:, :2] - target[:, :2], axis=1)
    avg_distance = float(np.mean(distances))
    if not math.isfinite(avg_distance):
        return 0

    # Half-up rounding
    raw = math.floor((1.0 - avg_distance / d_max) * 100.0 + 0.5)
    return max(0, min(100, raw))


def match_confidence(current, target, d_max: float = D_MAX) -> int:
    """Normalize two raw keypoint sets and score them against each other."""
    return score_confidence(normalize_keypoints(current), normalize_keypoints(target), d_max)
