"""Cooperative frame loop: acquire -> estimate -> report.

The loop runs on the host's asyncio event loop, one iteration per frame
tick. Blocking work (device reads, synchronous estimators) is pushed to a
worker thread so the host loop keeps painting. Iterations never overlap.

Cancellation is a single flag write. It is checked at loop entry and after
every suspension point, so a result that arrives after ``cancel()`` is
dropped instead of applied.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Callable, Optional, Protocol

import numpy as np

from sign_practice.profiler import PipelineProfiler

logger = logging.getLogger("sign_practice.scheduler")

ResultHandler = Callable[[int, np.ndarray, Optional[np.ndarray]], None]


async def call_cooperatively(fn, *args):
    """Await ``fn`` if it is a coroutine function, else run it in a worker thread."""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    return await asyncio.to_thread(fn, *args)


class FrameClock(Protocol):
    async def tick(self) -> None: ...


class PacedClock:
    """Ticks at most ``fps`` times per second.

    An iteration that overruns its slot gets a bare yield instead of a
    burst of catch-up ticks, so the loop slows down under load rather than
    starving the host.
    """

    def __init__(self, fps: float = 30.0):
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        self.period = 1.0 / fps
        self._next: Optional[float] = None

    async def tick(self):
        now = time.monotonic()
        if self._next is None or now >= self._next:
            self._next = now + self.period
            await asyncio.sleep(0)
            return

        delay = self._next - now
        self._next += self.period
        await asyncio.sleep(delay)


class FrameScheduler:
    """Drives one capture session's frame loop.

    Args:
        device: Object with a ``read()`` returning a frame or None.
        pose_source: Object with ``estimate(frame)``, plain or async.
        on_result: Called as ``on_result(frame_index, frame, keypoints)``
            for every frame that was estimated and not cancelled.
        clock: Frame cadence; defaults to 30 FPS pacing.
        epoch: Returns the current activation number. A result whose
            activation changed while it was in flight is dropped.
        profiler: Stage timer and frame outcome counters. The counters
            below read from it, so a shared profiler accumulates them.
    """

    def __init__(
        self,
        device,
        pose_source,
        on_result: ResultHandler,
        clock: Optional[FrameClock] = None,
        epoch: Optional[Callable[[], int]] = None,
        profiler: Optional[PipelineProfiler] = None,
    ):
        self._device = device
        self._pose_source = pose_source
        self._on_result = on_result
        self._clock = clock or PacedClock()
        self._epoch = epoch or (lambda: 0)
        self._profiler = profiler or PipelineProfiler()

        self._cancelled = False
        self._started = False
        self._done = asyncio.Event()
        self._frame_index = 0

    def cancel(self):
        """Request the loop to stop. No iteration starts afterwards."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def frames_processed(self) -> int:
        return self._profiler.outcomes["processed"]

    @property
    def frames_dropped(self) -> int:
        return self._profiler.outcomes["dropped"]

    @property
    def estimate_failures(self) -> int:
        return self._profiler.outcomes["estimate_failure"]

    @property
    def running(self) -> bool:
        return self._started and not self._done.is_set()

    async def run(self):
        """Run iterations until cancelled."""
        if self._started:
            raise RuntimeError("FrameScheduler can only run once")
        self._started = True
        logger.debug("Frame loop started")

        try:
            while not self._cancelled:
                await self._clock.tick()
                if self._cancelled:
                    break
                await self._iterate()
        finally:
            self._done.set()
            logger.debug(
                "Frame loop stopped (%d processed, %d dropped, %d estimate failures)",
                self.frames_processed, self.frames_dropped, self.estimate_failures,
            )

    async def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the loop to finish. Returns False on timeout."""
        if not self._started:
            return True
        try:
            await asyncio.wait_for(self._done.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _iterate(self):
        epoch = self._epoch()

        with self._profiler.stage("acquire"):
            frame = await call_cooperatively(self._device.read)
        if self._cancelled:
            return
        if frame is None:
            # No decodable frame yet: try again next tick
            self._profiler.count("no_frame")
            return

        try:
            with self._profiler.stage("estimate"):
                keypoints = await call_cooperatively(self._pose_source.estimate, frame)
        except Exception as e:
            self._profiler.count("estimate_failure")
            logger.debug("Frame %d: estimation failed, treating as no hand: %s", self._frame_index, e)
            keypoints = None

        if self._cancelled:
            self._profiler.count("dropped")
            logger.debug("Frame %d: discarding estimate resolved after stop", self._frame_index)
            return
        if self._epoch() != epoch:
            self._profiler.count("dropped")
            logger.debug("Frame %d: discarding estimate from previous activation", self._frame_index)
            return

        index = self._frame_index
        self._frame_index += 1
        self._profiler.count("processed")
        self._on_result(index, frame, keypoints)
