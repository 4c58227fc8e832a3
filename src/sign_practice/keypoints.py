"""Hand keypoint layout and sign templates.

A keypoint set is a float array of shape (21, 2) or (21, 3) in MediaPipe
hand order. x/y are frame pixels; z, when present, is model space.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

import numpy as np

from sign_practice.errors import MismatchedTopology

# MediaPipe hand landmark indices
WRIST = 0
THUMB_CMC, THUMB_MCP, THUMB_IP, THUMB_TIP = 1, 2, 3, 4
INDEX_MCP, INDEX_PIP, INDEX_DIP, INDEX_TIP = 5, 6, 7, 8
MIDDLE_MCP, MIDDLE_PIP, MIDDLE_DIP, MIDDLE_TIP = 9, 10, 11, 12
RING_MCP, RING_PIP, RING_DIP, RING_TIP = 13, 14, 15, 16
PINKY_MCP, PINKY_PIP, PINKY_DIP, PINKY_TIP = 17, 18, 19, 20

NUM_KEYPOINTS = 21

HAND_CONNECTIONS: list[tuple[int, int]] = [
    # thumb
    (0, 1), (1, 2), (2, 3), (3, 4),
    # index
    (0, 5), (5, 6), (6, 7), (7, 8),
    # middle
    (0, 9), (9, 10), (10, 11), (11, 12),
    # ring
    (0, 13), (13, 14), (14, 15), (15, 16),
    # pinky
    (0, 17), (17, 18), (18, 19), (19, 20),
    # palm
    (5, 9), (9, 13), (13, 17),
]


def as_keypoints(data) -> np.ndarray:
    """Coerce nested lists or an array into a (N, 2|3) float array."""
    points = np.asarray(data, dtype=np.float64)
    if points.size == 0:
        return points.reshape(0, 2)
    if points.ndim != 2 or points.shape[1] < 2:
        raise ValueError(f"Keypoints must have shape (N, 2) or (N, 3), got {points.shape}")
    return points


@dataclass(frozen=True)
class SignTemplate:
    """Reference hand geometry for one sign.

    Supplied once per activation and never modified by the engine; the
    keypoint array is made read-only on construction.
    """

    name: str
    keypoints: np.ndarray
    description: str = ""
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        points = np.array(as_keypoints(self.keypoints), copy=True)
        if len(points) != NUM_KEYPOINTS:
            raise MismatchedTopology(
                f"Template '{self.name}' has {len(points)} keypoints, expected {NUM_KEYPOINTS}"
            )
        points.setflags(write=False)
        object.__setattr__(self, "keypoints", points)

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "keypoints": self.keypoints.tolist(),
        }
        if self.description:
            data["description"] = self.description
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: dict) -> SignTemplate:
        # Lesson content stores the geometry under "handLandmarks"
        keypoints = data.get("keypoints", data.get("handLandmarks"))
        if keypoints is None:
            raise ValueError(f"Template '{data.get('name')}' has no keypoints")
        return cls(
            name=data["name"],
            keypoints=keypoints,
            description=data.get("description", ""),
            metadata=data.get("metadata", {}),
        )


class TemplateLibrary:
    """Named collection of sign templates, loadable from JSON."""

    def __init__(self):
        self._templates: dict[str, SignTemplate] = {}

    def register(self, template: SignTemplate):
        self._templates[template.name] = template

    def get(self, name: str) -> Optional[SignTemplate]:
        return self._templates.get(name)

    def __getitem__(self, name: str) -> SignTemplate:
        try:
            return self._templates[name]
        except KeyError:
            raise KeyError(f"Unknown sign template: {name}") from None

    def __contains__(self, name: str) -> bool:
        return name in self._templates

    def load_from_file(self, path: str | Path):
        """Load templates from a JSON file."""
        with open(path) as f:
            data = json.load(f)

        for entry in data.get("templates", []):
            self.register(SignTemplate.from_dict(entry))

    def save_to_file(self, path: str | Path):
        data = {"templates": [t.to_dict() for t in self._templates.values()]}
        with open(path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def from_file(cls, path: str | Path) -> TemplateLibrary:
        library = cls()
        library.load_from_file(path)
        return library

    @property
    def names(self) -> list[str]:
        return list(self._templates)

    def __len__(self) -> int:
        return len(self._templates)

    def __iter__(self) -> Iterator[SignTemplate]:
        return iter(self._templates.values())
