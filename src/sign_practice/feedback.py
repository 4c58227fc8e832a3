"""Practice/mastery feedback state machine.

Turns per-frame confidence into a user-facing phase:

    IDLE -> TRACKING <-> NEAR_MATCH -> MASTERED

NO_HAND is entered whenever a frame has no hand and left as soon as one
reappears. Mastery fires once per activation; the fired flag is the only
debounce. MASTERED is shown for a short display window, after which the
phase follows the score again with NEAR_MATCH as its ceiling.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger("sign_practice.feedback")


class FeedbackPhase(Enum):
    IDLE = "idle"
    NO_HAND = "no_hand"
    TRACKING = "tracking"
    NEAR_MATCH = "near_match"
    MASTERED = "mastered"


@dataclass(frozen=True)
class FeedbackState:
    """Read-only snapshot of the feedback machine."""
    phase: FeedbackPhase = FeedbackPhase.IDLE
    score: int = 0
    best_score: int = 0
    attempts: int = 0
    mastery_fired: bool = False

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "score": self.score,
            "best_score": self.best_score,
            "attempts": self.attempts,
            "mastery_fired": self.mastery_fired,
        }


@dataclass(frozen=True)
class MasteryEvent:
    """One-shot signal that the target sign was matched."""
    template: str
    score: int
    best_score: int
    attempts: int
    timestamp: float

    def to_progress(self) -> dict:
        """Payload for the progress-recording collaborator."""
        return {"bestScore": self.best_score, "attempts": self.attempts}


class FeedbackStateMachine:
    """Consumes confidence samples for one activation at a time."""

    def __init__(
        self,
        near_threshold: int = 60,
        mastery_threshold: int = 85,
        display_window: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not 0 <= near_threshold <= mastery_threshold <= 100:
            raise ValueError(
                f"Thresholds must satisfy 0 <= near ({near_threshold}) "
                f"<= mastery ({mastery_threshold}) <= 100"
            )
        self.near_threshold = near_threshold
        self.mastery_threshold = mastery_threshold
        self.display_window = display_window
        self._clock = clock
        self._template = ""
        self.reset()

    def reset(self, template: str = ""):
        """Start a fresh activation."""
        self._template = template
        self._phase = FeedbackPhase.IDLE
        self._score = 0
        self._best_score = 0
        self._attempts = 0
        self._mastery_fired = False
        self._mastered_at: Optional[float] = None

    def observe(self, score: int) -> tuple[FeedbackState, Optional[MasteryEvent]]:
        """Feed one frame's confidence. Returns the new state and, at most
        once per activation, a mastery event."""
        now = self._clock()
        self._score = score
        self._best_score = max(self._best_score, score)
        event = None

        if score >= self.mastery_threshold and not self._mastery_fired:
            self._mastery_fired = True
            self._mastered_at = now
            self._attempts += 1
            self._phase = FeedbackPhase.MASTERED
            event = MasteryEvent(
                template=self._template,
                score=score,
                best_score=self._best_score,
                attempts=self._attempts,
                timestamp=now,
            )
            logger.info(
                "Mastered '%s' (score=%d, best=%d, attempts=%d)",
                self._template, score, self._best_score, self._attempts,
            )
        elif not self._showing_mastery(now):
            self._phase = self._phase_for(score)

        return self.state, event

    def observe_absent(self) -> FeedbackState:
        """Feed a frame without a detected hand."""
        self._score = 0
        if not self._showing_mastery(self._clock()):
            self._phase = FeedbackPhase.NO_HAND
        return self.state

    def _showing_mastery(self, now: float) -> bool:
        if self._mastered_at is None:
            return False
        if now - self._mastered_at < self.display_window:
            return True
        self._mastered_at = None
        return False

    def _phase_for(self, score: int) -> FeedbackPhase:
        if score >= self.near_threshold:
            # Scores past the mastery line settle on NEAR_MATCH once the
            # one-shot event has fired.
            return FeedbackPhase.NEAR_MATCH
        return FeedbackPhase.TRACKING

    @property
    def state(self) -> FeedbackState:
        return FeedbackState(
            phase=self._phase,
            score=self._score,
            best_score=self._best_score,
            attempts=self._attempts,
            mastery_fired=self._mastery_fired,
        )

    @property
    def template(self) -> str:
        return self._template
