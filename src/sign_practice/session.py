"""Capture session: owns one camera stream and one pose model.

Lifecycle:

    UNINITIALIZED -> INITIALIZING -> READY <-> CAPTURING
                                       \\-> STOPPED -> DISPOSED

Both resources sit behind an owning handle whose release runs exactly
once, whichever path ends the session: stop(), dispose(), a crash of
the frame loop, or leaving an ``async with`` block. Releases run in worker
threads, and the pose model is never closed while a blocking estimate is
still running; if one outlives ``stop_timeout`` the model closes as soon as
it returns.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import numpy as np

from sign_practice.capture import CameraDevice, CaptureConstraints
from sign_practice.errors import (
    DeviceAccessDenied,
    DeviceUnavailable,
    MismatchedTopology,
    ResourceInitError,
)
from sign_practice.feedback import FeedbackState, FeedbackStateMachine, MasteryEvent
from sign_practice.keypoints import SignTemplate
from sign_practice.profiler import PipelineProfiler
from sign_practice.scheduler import FrameClock, FrameScheduler, PacedClock, call_cooperatively
from sign_practice.scoring import D_MAX, normalize_keypoints, score_confidence

logger = logging.getLogger("sign_practice.session")


class SessionPhase(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CAPTURING = "capturing"
    STOPPED = "stopped"
    DISPOSED = "disposed"


@dataclass(frozen=True)
class SessionState:
    phase: SessionPhase
    last_error: Optional[Exception] = None


@dataclass(frozen=True)
class ConfidenceSample:
    """Confidence for one processed frame."""
    value: int
    frame_index: int
    timestamp: float
    hand_present: bool


@dataclass(frozen=True)
class FrameResult:
    """Everything a renderer needs for one frame."""
    sample: ConfidenceSample
    keypoints: Optional[np.ndarray]
    feedback: FeedbackState
    frame: Optional[np.ndarray] = None
    template: Optional[str] = None


class _ScopedResource:
    """Holds a resource and runs its release callback exactly once."""

    def __init__(self, value: Any, release: Callable[[Any], None]):
        self.value = value
        self._release = release
        self._released = False
        self._lock = threading.Lock()

    def release(self) -> bool:
        with self._lock:
            if self._released:
                return False
            self._released = True
        self._release(self.value)
        return True

    @property
    def released(self) -> bool:
        return self._released


class _EstimateGuard:
    """Serializes a blocking ``estimate()`` with ``close()`` on one pose source.

    Coroutine estimators manage their own concurrency and are handed to the
    frame loop unguarded.
    """

    def __init__(self, source):
        self._source = source
        self._lock = threading.Lock()

    def estimator(self):
        if inspect.iscoroutinefunction(self._source.estimate):
            return self._source
        return self

    def estimate(self, frame):
        with self._lock:
            return self._source.estimate(frame)

    def close(self):
        with self._lock:
            self._source.close()


class CaptureSession:
    """Live practice session against one target sign at a time.

    Usage:
        async with CaptureSession(HandPoseEstimator()) as session:
            session.on_frame(render)
            session.on_mastery(record_progress)
            session.activate(library["hello"])
            await session.start()
            ...
            await session.stop()

    Callers only read snapshots (``state``, ``feedback``); all mutation goes
    through activate/deactivate/start/stop/dispose.
    """

    def __init__(
        self,
        pose_source,
        device: Optional[CameraDevice] = None,
        constraints: Optional[CaptureConstraints] = None,
        clock: Optional[FrameClock] = None,
        feedback: Optional[FeedbackStateMachine] = None,
        d_max: float = D_MAX,
        stop_timeout: float = 1.0,
        profiler: Optional[PipelineProfiler] = None,
    ):
        self._pose_source = pose_source
        self._device = device or CameraDevice()
        self._constraints = constraints or CaptureConstraints()
        self._clock = clock
        self._feedback = feedback or FeedbackStateMachine()
        self._d_max = d_max
        self._stop_timeout = stop_timeout
        self.profiler = profiler or PipelineProfiler()
        self._estimates = _EstimateGuard(pose_source)

        self._phase = SessionPhase.UNINITIALIZED
        self._last_error: Optional[Exception] = None
        self._init_error: Optional[ResourceInitError] = None
        self._lock = asyncio.Lock()

        self._pose: Optional[_ScopedResource] = None
        self._stream: Optional[_ScopedResource] = None
        self._scheduler: Optional[FrameScheduler] = None
        self._loop_task: Optional[asyncio.Task] = None
        # Loop tasks and deferred releases that may outlive stop()
        self._background: set[asyncio.Task] = set()

        self._template: Optional[SignTemplate] = None
        self._target: Optional[np.ndarray] = None
        self._epoch = 0
        self.frames_emitted = 0

        self._frame_listeners: list[Callable[[FrameResult], None]] = []
        self._mastery_listeners: list[Callable[[MasteryEvent], None]] = []
        self._error_listeners: list[Callable[[Exception], None]] = []

    # --- Listeners ---

    def on_frame(self, callback: Callable[[FrameResult], None]):
        """Register a per-frame callback (renderer)."""
        self._frame_listeners.append(callback)
        return callback

    def on_mastery(self, callback: Callable[[MasteryEvent], None]):
        """Register a mastery callback (progress recording)."""
        self._mastery_listeners.append(callback)
        return callback

    def on_error(self, callback: Callable[[Exception], None]):
        """Register a callback for errors raised inside the frame loop."""
        self._error_listeners.append(callback)
        return callback

    # --- Lifecycle ---

    async def initialize(self):
        """Load the pose model. Returns the cached handle when already loaded.

        Raises:
            ResourceInitError: if the backend cannot be prepared. A failed
                session does not retry; later calls raise the same error.
        """
        self._check_not_disposed()
        async with self._lock:
            if self._pose is not None:
                return self._pose.value
            if self._init_error is not None:
                raise self._init_error

            self._phase = SessionPhase.INITIALIZING
            logger.info("Initializing pose estimator")
            try:
                handle = await call_cooperatively(self._pose_source.open)
            except ResourceInitError as e:
                self._fail_initialization(e)
                raise
            except Exception as e:
                error = ResourceInitError(f"Pose backend failed to initialize: {e}")
                self._fail_initialization(error)
                raise error from e

            self._pose = _ScopedResource(
                handle if handle is not None else self._pose_source,
                lambda _: self._estimates.close(),
            )
            self._phase = SessionPhase.READY
            logger.info("Pose estimator ready")
            return self._pose.value

    def _fail_initialization(self, error: ResourceInitError):
        self._init_error = error
        self._last_error = error
        self._phase = SessionPhase.UNINITIALIZED
        logger.error("Pose estimator unavailable: %s", error)

    async def start(self):
        """Open the camera and begin the frame loop.

        Starting an already capturing session is a no-op.

        Raises:
            ResourceInitError: if the pose model cannot be loaded.
            DeviceAccessDenied, DeviceUnavailable: if the camera cannot be
                opened. The session stays READY.
        """
        await self.initialize()
        async with self._lock:
            self._check_not_disposed()
            if self._phase is SessionPhase.CAPTURING:
                logger.debug("start() while capturing: ignored")
                return

            try:
                handle = await call_cooperatively(self._device.acquire, self._constraints)
            except (DeviceAccessDenied, DeviceUnavailable) as e:
                self._last_error = e
                logger.warning("Camera not started: %s", e)
                raise

            self._stream = _ScopedResource(handle, self._device.release)
            self._last_error = None
            self._scheduler = FrameScheduler(
                device=handle,
                pose_source=self._estimates.estimator(),
                on_result=self._handle_result,
                clock=self._clock or PacedClock(self._constraints.fps),
                epoch=lambda: self._epoch,
                profiler=self.profiler,
            )
            self._phase = SessionPhase.CAPTURING
            self._loop_task = self._track(asyncio.create_task(self._drive(self._scheduler, self._stream)))
            logger.info("Capture started")

    async def stop(self):
        """Halt the frame loop and release the camera. Safe in any state."""
        async with self._lock:
            await self._stop_locked()

    async def _stop_locked(self):
        scheduler, stream = self._scheduler, self._stream
        self._scheduler = None
        self._loop_task = None
        self._stream = None

        if scheduler is None and stream is None:
            return

        if scheduler is not None:
            scheduler.cancel()
            if not await scheduler.join(self._stop_timeout):
                logger.warning(
                    "Frame loop still busy after %.1fs; releasing camera, late results are dropped",
                    self._stop_timeout,
                )
        if stream is not None:
            await call_cooperatively(stream.release)

        if self._phase is SessionPhase.CAPTURING:
            self._phase = SessionPhase.READY
        logger.info("Capture stopped")

    async def dispose(self):
        """Stop capturing and release the pose model. Idempotent."""
        if self._phase is SessionPhase.DISPOSED:
            return
        async with self._lock:
            if self._phase is SessionPhase.DISPOSED:
                return
            try:
                await self._stop_locked()
            finally:
                self._phase = SessionPhase.STOPPED
                pose, self._pose = self._pose, None
                if pose is not None:
                    await self._release_pose(pose)
                self._template = None
                self._target = None
                self._feedback.reset()
                self._phase = SessionPhase.DISPOSED
                logger.info("Session disposed")

    async def _drive(self, scheduler: FrameScheduler, stream: _ScopedResource):
        try:
            await scheduler.run()
        except Exception as e:
            logger.exception("Frame loop crashed")
            self._last_error = e
            self._notify(self._error_listeners, e, "error")
        finally:
            try:
                await call_cooperatively(stream.release)
            except Exception as e:
                logger.error("Error releasing camera: %s", e)
            # A loop that ended without stop() still owns the session state
            if self._scheduler is scheduler:
                self._scheduler = None
                self._loop_task = None
                self._stream = None
                if self._phase is SessionPhase.CAPTURING:
                    self._phase = SessionPhase.READY

    async def _release_pose(self, pose: _ScopedResource):
        closing = self._track(asyncio.ensure_future(call_cooperatively(self._close_pose, pose)))
        done, _ = await asyncio.wait({closing}, timeout=self._stop_timeout)
        if not done:
            logger.warning(
                "Pose estimate still running after %.1fs; model closes when it returns",
                self._stop_timeout,
            )

    def _close_pose(self, pose: _ScopedResource):
        # Worker thread: blocks on the estimate guard, never on the loop
        try:
            pose.release()
        except Exception as e:
            logger.error("Error closing pose estimator: %s", e)

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_released(self, timeout: Optional[float] = None) -> bool:
        """After stop()/dispose(), wait for work that outlived them.

        A frame loop stuck in a blocking read or estimate, and a model close
        deferred behind it, finish in the background. Returns False if they
        are still running after ``timeout``.
        """
        pending = {t for t in self._background if not t.done()}
        if not pending:
            return True
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        return not still_running

    # --- Activation ---

    def activate(self, template: SignTemplate):
        """Practice against ``template``. Resets all feedback state."""
        self._check_not_disposed()
        self._target = normalize_keypoints(template.keypoints)
        self._template = template
        self._epoch += 1
        self._feedback.reset(template.name)
        logger.info("Activated sign '%s'", template.name)

    def deactivate(self):
        """End the current activation."""
        if self._template is not None:
            logger.info("Deactivated sign '%s'", self._template.name)
        self._template = None
        self._target = None
        self._epoch += 1
        self._feedback.reset()

    def _fail_activation(self, error: MismatchedTopology):
        name = self._template.name if self._template else None
        logger.error("Activation of '%s' failed: %s", name, error)
        self._last_error = error
        self.deactivate()
        self._notify(self._error_listeners, error, "error")

    # --- Frame handling ---

    def _handle_result(self, frame_index: int, frame: np.ndarray, keypoints: Optional[np.ndarray]):
        now = time.monotonic()
        template = self._template

        if keypoints is None or len(keypoints) == 0:
            with self.profiler.stage("feedback"):
                state = self._feedback.observe_absent() if template else self._feedback.state
            sample = ConfidenceSample(0, frame_index, now, hand_present=False)
            self._emit_frame(sample, None, state, frame, template)
            return

        keypoints = np.asarray(keypoints, dtype=np.float64)
        event = None
        if template is None:
            value = 0
            state = self._feedback.state
        else:
            try:
                with self.profiler.stage("score"):
                    value = score_confidence(normalize_keypoints(keypoints), self._target, self._d_max)
            except MismatchedTopology as e:
                self._fail_activation(e)
                return
            with self.profiler.stage("feedback"):
                state, event = self._feedback.observe(value)

        sample = ConfidenceSample(value, frame_index, now, hand_present=True)
        self._emit_frame(sample, keypoints, state, frame, template)
        if event is not None:
            self._notify(self._mastery_listeners, event, "mastery")

    def _emit_frame(self, sample, keypoints, state, frame, template):
        result = FrameResult(
            sample=sample,
            keypoints=keypoints,
            feedback=state,
            frame=frame,
            template=template.name if template else None,
        )
        self.frames_emitted += 1
        self._notify(self._frame_listeners, result, "frame")

    def _notify(self, listeners: list, payload, kind: str):
        for callback in listeners:
            try:
                callback(payload)
            except Exception as e:
                logger.error("%s listener %r failed: %s", kind, callback, e)

    # --- Snapshots ---

    @property
    def state(self) -> SessionState:
        return SessionState(phase=self._phase, last_error=self._last_error)

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def feedback(self) -> FeedbackState:
        return self._feedback.state

    @property
    def template(self) -> Optional[SignTemplate]:
        return self._template

    @property
    def is_capturing(self) -> bool:
        return self._phase is SessionPhase.CAPTURING

    def _check_not_disposed(self):
        if self._phase is SessionPhase.DISPOSED:
            raise RuntimeError("CaptureSession has been disposed")

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, *args):
        await self.dispose()
