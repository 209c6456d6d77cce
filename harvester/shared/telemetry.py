"""
harvester/shared/telemetry.py
─────────────────────────────
ActionProfile: a rolling statistical summary of what the scheduler dispatched.

Why this is a separate file from models.py
------------------------------------------
models.py defines the *instantaneous* state of the world (a worker right
now, an in-flight action right now). telemetry.py defines the *history*
the scheduler accumulates while it runs.

  models.py    → "What is happening right now?"
  telemetry.py → "What have we been doing?"

How ActionProfile gets populated
--------------------------------
1. The dispatcher confirms a launch.
2. It builds an ActionSample from the in-flight action.
3. It appends the sample to the profile for that action kind.

The control loop exposes the profiles through get_scheduling_metrics().
Nothing here feeds back into planning decisions.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from harvester.shared.config import HISTORY_SIZE
from harvester.shared.models import ActionKind, InFlightAction


class ActionSample(BaseModel):
    """
    One confirmed dispatch.

    Fields:
        dispatched_at   → Clock reading (ms) at dispatch.
        target_id       → Which target the action ran against.
        worker_id       → Which worker ran it.
        threads         → Granted thread count.
        duration_ms     → Expected duration.
        expected_effect → magnitude × threads.
    """
    dispatched_at: float
    target_id: str
    worker_id: str
    threads: int = Field(..., ge=0)
    duration_ms: float = Field(..., ge=0)
    expected_effect: float = Field(..., ge=0)

    @classmethod
    def from_action(cls, action: InFlightAction) -> "ActionSample":
        return cls(
            dispatched_at=action.dispatched_at,
            target_id=action.target_id,
            worker_id=action.worker_id,
            threads=action.threads,
            duration_ms=max(0.0, action.finishes_at - action.dispatched_at),
            expected_effect=action.total_effect,
        )


class ActionProfile(BaseModel):
    """
    A rolling profile for one action kind.

    Fields:
        kind            → Action kind this profile tracks.
        sample_count    → Total dispatches ever recorded (not capped).
        max_samples     → Cap on stored samples. Oldest are dropped first.
        samples         → Raw samples, oldest first.
        avg_threads     → Mean threads over the current window.
        avg_duration_ms → Mean expected duration over the current window.
        total_effect    → Sum of expected effect over the current window.
    """
    kind: ActionKind
    sample_count: int = Field(0, ge=0)
    max_samples: int = Field(HISTORY_SIZE, ge=1)
    samples: List[ActionSample] = Field(default_factory=list)

    avg_threads: float = Field(0.0, ge=0)
    avg_duration_ms: float = Field(0.0, ge=0)
    total_effect: float = Field(0.0, ge=0)

    def add_sample(self, sample: ActionSample) -> None:
        """
        Append a sample, trim to the cap, and recompute the window statistics.

        Statistics are recomputed from the raw window (not incrementally) so
        that dropping old samples adjusts the averages automatically.
        """
        self.samples.append(sample)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        self.sample_count += 1
        n = len(self.samples)

        self.avg_threads = sum(s.threads for s in self.samples) / n
        self.avg_duration_ms = sum(s.duration_ms for s in self.samples) / n
        self.total_effect = sum(s.expected_effect for s in self.samples)

    @property
    def last_sample(self):
        return self.samples[-1] if self.samples else None

    @property
    def threads_history(self) -> List[int]:
        """Granted thread counts, oldest first."""
        return [s.threads for s in self.samples]
