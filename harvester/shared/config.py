"""
harvester/shared/config.py
──────────────────────────
Scheduler configuration.

Defaults live as module-level constants so tests can import and assert
against them directly. SchedulerConfig gathers them into one validated
value that is passed explicitly into the Allocator, Dispatcher and
ControlLoop at construction. Nothing reads these constants at call time.
"""

from __future__ import annotations

from typing import Dict

from pydantic import BaseModel, Field

# ── Defaults ──────────────────────────────────────────────────────────────────

COST_PER_UNIT: float = 1.75
"""Capacity consumed by one execution unit ("thread").

Real deployments read this from the payload's footprint once at startup and
pass it in; 1.75 matches the size of the stock worker payload.
"""

TICK_INTERVAL_S: float = 0.5
"""Sleep between two ticks when at least one worker was eligible."""

IDLE_SLEEP_S: float = 1.0
"""Sleep when no worker had free capacity. Never busy-loop."""

FULL_REFRESH_EVERY: int = 10
"""Every N-th tick re-discovers the topology instead of re-reading known nodes."""

EXPIRY_GRACE_MS: float = 0.0
"""Extra lifetime given to in-flight actions after their completion time."""

REPLENISH_THRESHOLD: float = 0.5
"""Yield fraction at or below which replenish wins over extract."""

HISTORY_SIZE: int = 200
"""Dispatch samples retained per action kind in the dispatch ledger."""

DEFAULT_RESERVATIONS: Dict[str, float] = {
    "home": 64.0,
}
"""Per-worker capacity kept free no matter what."""


class SchedulerConfig(BaseModel):
    """
    Validated scheduler settings.

    Example:
        config = SchedulerConfig(cost_per_unit=2.0, full_refresh_every=5)
        allocator = Allocator(config)
    """
    cost_per_unit: float = Field(COST_PER_UNIT, gt=0.0)
    tick_interval_s: float = Field(TICK_INTERVAL_S, ge=0.0)
    idle_sleep_s: float = Field(IDLE_SLEEP_S, gt=0.0)
    full_refresh_every: int = Field(FULL_REFRESH_EVERY, ge=1)
    expiry_grace_ms: float = Field(EXPIRY_GRACE_MS, ge=0.0)
    replenish_threshold: float = Field(REPLENISH_THRESHOLD, ge=0.0, le=1.0)
    history_size: int = Field(HISTORY_SIZE, ge=1)
    reserved_capacity: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_RESERVATIONS),
        description="worker id → capacity never offered to the scheduler",
    )

    def reservation_for(self, worker_id: str) -> float:
        return self.reserved_capacity.get(worker_id, 0.0)
