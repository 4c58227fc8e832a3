"""Error taxonomy for the practice engine.

Only ResourceInitError, DeviceAccessDenied, DeviceUnavailable and
MismatchedTopology leave the engine. TransientEstimationError is absorbed
by the frame scheduler and degrades to "no hand detected".
"""

from __future__ import annotations


class SignPracticeError(Exception):
    """Base class for engine errors."""

    user_message = "Something went wrong with sign practice. Please try again."

    def __init__(self, message: str = "", user_message: str | None = None):
        super().__init__(message or self.user_message)
        if user_message:
            self.user_message = user_message


class ResourceInitError(SignPracticeError):
    """The pose-estimation backend could not be prepared."""

    user_message = "Failed to initialize hand detection. Please reload and try again."


class DeviceAccessDenied(SignPracticeError):
    """The camera exists but this process is not allowed to open it."""

    user_message = "Unable to access camera. Please check permissions."


class DeviceUnavailable(SignPracticeError):
    """No usable camera matches the requested constraints."""

    user_message = "No camera found. Please connect a camera and try again."


class MismatchedTopology(SignPracticeError):
    """Live keypoints and template have different (or zero) lengths."""

    user_message = "This sign cannot be checked right now."


class TransientEstimationError(SignPracticeError):
    """A single pose estimate failed."""
