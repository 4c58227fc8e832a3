"""sign-practice - live hand-sign matching with practice/mastery feedback."""

__version__ = "0.1.0"

from sign_practice.errors import (
    SignPracticeError,
    ResourceInitError,
    DeviceAccessDenied,
    DeviceUnavailable,
    MismatchedTopology,
    TransientEstimationError,
)
from sign_practice.keypoints import SignTemplate, TemplateLibrary, NUM_KEYPOINTS
from sign_practice.scoring import D_MAX, normalize_keypoints, score_confidence, match_confidence
from sign_practice.feedback import FeedbackPhase, FeedbackState, FeedbackStateMachine, MasteryEvent
from sign_practice.capture import CameraDevice, CaptureConstraints, DeviceHandle
from sign_practice.detector import HandPoseEstimator, PoseSource
from sign_practice.scheduler import FrameScheduler, PacedClock
from sign_practice.session import (
    CaptureSession,
    ConfidenceSample,
    FrameResult,
    SessionPhase,
    SessionState,
)
from sign_practice.profiler import PipelineProfiler
from sign_practice.config import EngineConfig, load_config
