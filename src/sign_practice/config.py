"""Engine configuration.

Loads a YAML file over built-in defaults. Example (config/engine.yaml):

    capture:
      facing: user
      width: 640
      height: 480
      fps: 30
    detector:
      min_detection_confidence: 0.7
    scoring:
      d_max: 0.5
    feedback:
      near_threshold: 60
      mastery_threshold: 85
      display_window: 3.0
    scheduler:
      stop_timeout: 1.0
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

from sign_practice.capture import CaptureConstraints
from sign_practice.detector import HandPoseEstimator
from sign_practice.feedback import FeedbackStateMachine
from sign_practice.scoring import D_MAX

logger = logging.getLogger("sign_practice.config")


@dataclass
class DetectorConfig:
    min_detection_confidence: float = 0.7
    min_tracking_confidence: float = 0.5
    model_complexity: int = 1
    tasks_model_path: str = "models/hand_landmarker.task"


@dataclass
class ScoringConfig:
    d_max: float = D_MAX


@dataclass
class FeedbackConfig:
    near_threshold: int = 60
    mastery_threshold: int = 85
    display_window: float = 3.0


@dataclass
class SchedulerConfig:
    stop_timeout: float = 1.0
    profiling: bool = True


@dataclass
class EngineConfig:
    capture: CaptureConstraints = field(default_factory=CaptureConstraints)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)

    @classmethod
    def from_dict(cls, data: dict) -> EngineConfig:
        sections = {f.name: f for f in fields(cls)}
        kwargs = {}
        for name, values in (data or {}).items():
            if name not in sections:
                logger.warning("Unknown config section '%s' ignored", name)
                continue
            if not isinstance(values, dict):
                logger.warning("Config section '%s' should be a mapping, got %s", name, type(values).__name__)
                continue
            section_cls = sections[name].default_factory
            known = {f.name for f in fields(section_cls)}
            for key in values.keys() - known:
                logger.warning("Unknown config key '%s.%s' ignored", name, key)
            kwargs[name] = section_cls(**{k: v for k, v in values.items() if k in known})
        return cls(**kwargs)

    def to_dict(self) -> dict:
        return asdict(self)

    def pose_estimator(self) -> HandPoseEstimator:
        return HandPoseEstimator(**asdict(self.detector))

    def feedback_machine(self) -> FeedbackStateMachine:
        return FeedbackStateMachine(**asdict(self.feedback))


def load_config(path: Optional[str | Path] = None) -> EngineConfig:
    """Load configuration from YAML. Missing file or None gives defaults."""
    if path is None:
        return EngineConfig()

    path = Path(path)
    if not path.exists():
        logger.warning("Config file not found: %s, using defaults", path)
        return EngineConfig()

    with open(path) as f:
        data = yaml.safe_load(f) or {}
    logger.info("Loaded config from %s", path)
    return EngineConfig.from_dict(data)
