"""Frame-loop accounting.

Two kinds of numbers come out of a practice session:

- Stage timings for each iteration (``acquire``, ``estimate``, ``score``,
  ``feedback``), kept over a rolling window of recent frames.
- Frame outcomes: how many frames were ``processed``, ``dropped`` because
  they resolved after stop() or after a re-activation, hit an
  ``estimate_failure``, or found ``no_frame`` ready on the device.

Outcome counters are always on. Timing can be switched off with
``enabled = False``; the loop then pays nothing for it.
"""

from __future__ import annotations

import time
from collections import Counter, deque
from contextlib import contextmanager
from typing import Iterator, Optional

import numpy as np

LOOP_STAGES = ("acquire", "estimate", "score", "feedback")
FRAME_OUTCOMES = ("processed", "dropped", "estimate_failure", "no_frame")


class PipelineProfiler:
    """Rolling stage timings plus frame outcome counters for one session.

    Usage:
        profiler = PipelineProfiler()

        with profiler.stage("estimate"):
            keypoints = source.estimate(frame)
        profiler.count("processed")

        print(profiler.summary())
    """

    def __init__(self, window: int = 120):
        self._window = window
        self._timings: dict[str, deque[float]] = {}
        self.outcomes: Counter[str] = Counter()
        self.enabled = True

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time the enclosed block under ``name``, even if it raises."""
        if not self.enabled:
            yield
            return

        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            self._timings.setdefault(name, deque(maxlen=self._window)).append(elapsed_ms)

    def count(self, outcome: str, n: int = 1):
        self.outcomes[outcome] += n

    def stage_timing(self, name: str) -> Optional[dict]:
        """avg/p95/max over the window for one stage, or None without data."""
        timings = self._timings.get(name)
        if not timings:
            return None
        ms = np.fromiter(timings, dtype=np.float64)
        return {
            "avg_ms": round(float(ms.mean()), 3),
            "p95_ms": round(float(np.percentile(ms, 95)), 3),
            "max_ms": round(float(ms.max()), 3),
            "window": len(ms),
        }

    def summary(self) -> dict:
        """``{"stages": {...}, "frames": {...}}``, loop stages first."""
        names = list(LOOP_STAGES) + [n for n in self._timings if n not in LOOP_STAGES]
        stages = {}
        for name in names:
            timing = self.stage_timing(name)
            if timing is not None:
                stages[name] = timing
        frames = {outcome: self.outcomes[outcome] for outcome in FRAME_OUTCOMES}
        frames.update((k, v) for k, v in self.outcomes.items() if k not in frames)
        return {"stages": stages, "frames": frames}

    def reset(self):
        self._timings.clear()
        self.outcomes.clear()
