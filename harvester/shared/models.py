"""
harvester/shared/models.py
──────────────────────────
The single source of truth for every data structure the scheduler touches.

Design philosophy
-----------------
Every model answers one question: "What does the scheduler *need to know*
about this thing in order to decide what to run next?"

Workers and targets are addressed by stable string id, never by object
identity. In-flight actions are plain values owned by the in-flight set;
nothing else holds a reference to them.

Reading guide
-------------
Read top-to-bottom. Each model builds on the ones above it.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 1: ENUMERATIONS
# ─────────────────────────────────────────────────────────────────────────────

class ActionKind(str, Enum):
    """
    The three actions a worker can run against a target.

    STABILIZE  → lowers the target's stability toward its floor.
    REPLENISH  → multiplies the target's yield balance up toward capacity.
    EXTRACT    → removes a fraction of the target's yield balance.
    """
    STABILIZE = "stabilize"
    REPLENISH = "replenish"
    EXTRACT = "extract"


class LoopState(str, Enum):
    """
    States of the control loop. There is no terminal state.

    IDLE → REFRESHING_INVENTORY → FORECASTING → PLANNING_AND_DISPATCHING
         → SLEEPING → REFRESHING_INVENTORY → ...
    """
    IDLE = "idle"
    REFRESHING_INVENTORY = "refreshing-inventory"
    FORECASTING = "forecasting"
    PLANNING_AND_DISPATCHING = "planning-and-dispatching"
    SLEEPING = "sleeping"


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 2: NODES
# What inventory reports about workers and targets.
# ─────────────────────────────────────────────────────────────────────────────

class WorkerNode(BaseModel):
    """
    A node that can run actions.

    Fields:
        node_id           → Stable identity.
        total_capacity    → Capacity units the node has in total.
        used_capacity     → Units consumed by running payloads. Refreshed from
                            inventory, bumped optimistically on dispatch.
        reserved_capacity → Units never offered to the scheduler (e.g. the
                            operator's own machine keeps some room free).
        has_admin_rights  → We may execute on this node at all.
        blocked           → Manually cordoned. No new actions.
    """
    node_id: str = Field(..., description="Unique identifier for this worker")
    total_capacity: float = Field(..., ge=0.0, description="Total capacity units")
    used_capacity: float = Field(0.0, ge=0.0, description="Units consumed by running payloads")
    reserved_capacity: float = Field(0.0, ge=0.0, description="Units never offered to the scheduler")
    has_admin_rights: bool = Field(True, description="Execution is permitted on this node")
    blocked: bool = Field(False, description="Operator cordon")

    @property
    def free_capacity(self) -> float:
        """Units still on offer: total − used − reservation, never negative."""
        return max(0.0, self.total_capacity - self.used_capacity - self.reserved_capacity)

    @property
    def is_usable(self) -> bool:
        """Administratively usable: admin rights and not cordoned."""
        return self.has_admin_rights and not self.blocked


class TargetResource(BaseModel):
    """
    A resource the scheduler acts upon.

    Two state dimensions drift over time and respond to actions:

      stability     → current value and its floor (min_stability).
                      Only STABILIZE lowers it.
      yield balance → current amount and its maximum (yield_capacity).
                      REPLENISH raises it, EXTRACT lowers it.

    required_skill is informational; whether extraction is authorised is
    decided by the oracle (is_extraction_eligible).
    """
    node_id: str = Field(..., description="Unique identifier for this target")
    stability: float = Field(..., ge=0.0)
    min_stability: float = Field(..., ge=0.0)
    yield_balance: float = Field(..., ge=0.0)
    yield_capacity: float = Field(..., ge=0.0)
    has_admin_rights: bool = Field(True)
    required_skill: int = Field(0, ge=0)

    @property
    def is_schedulable(self) -> bool:
        """Targets with no yield left or no access are never planned."""
        return self.has_admin_rights and self.yield_balance > 0


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 3: ACTIONS
# From the oracle's figures to a dispatched, tracked unit of work.
# ─────────────────────────────────────────────────────────────────────────────

class ActionEffect(BaseModel):
    """Oracle output for one (action, target, threads) triple."""
    magnitude: float
    duration_ms: float = Field(..., ge=0.0)


class PlannedAction(BaseModel):
    """
    What the planner wants to run against one target.

    magnitude is the per-thread effect:
        STABILIZE → stability removed per thread
        REPLENISH → fractional growth of current yield per thread
        EXTRACT   → fraction of yield capacity removed per thread
    """
    target_id: str
    kind: ActionKind
    threads: int = Field(..., ge=0)
    magnitude: float = Field(..., ge=0.0)
    duration_ms: float = Field(..., ge=0.0)
    comment: Optional[str] = None


class InFlightAction(BaseModel):
    """
    A dispatched action that has not yet expired.

    Created at successful dispatch and owned exclusively by the in-flight
    set. It carries its own expiry timestamp; eviction happens when a sweep
    observes now ≥ expires_at.
    """
    action_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    target_id: str
    worker_id: str
    kind: ActionKind
    threads: int = Field(..., ge=0)
    magnitude: float = Field(..., ge=0.0)
    dispatched_at: float = Field(..., description="Clock reading (ms) at dispatch")
    finishes_at: float = Field(..., description="dispatched_at + duration (ms)")
    expires_at: float = Field(..., description="finishes_at + grace (ms)")

    @property
    def total_effect(self) -> float:
        return self.magnitude * self.threads

    def is_active(self, now: float) -> bool:
        return now < self.expires_at


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 4: DERIVED VIEWS
# Recomputed every tick, never stored.
# ─────────────────────────────────────────────────────────────────────────────

class EffectiveView(BaseModel):
    """
    A target's state as forecast by combining the last measurement with the
    projected effect of every in-flight action against it.

    extracted / replenished are absolute yield amounts; stabilized is the
    absolute stability reduction. They are kept for reporting.
    """
    target_id: str
    measured_stability: float
    effective_stability: float
    min_stability: float
    measured_yield: float
    effective_yield: float
    yield_capacity: float
    extracted: float = 0.0
    replenished: float = 0.0
    stabilized: float = 0.0
    actions_running: int = 0
    extraction_eligible: bool = True


class TickReport(BaseModel):
    """Outcome of one control loop tick."""
    tick: int
    full_refresh: bool = False
    idle: bool = False
    dispatched: List[str] = Field(default_factory=list, description="target ids dispatched")
    failed: List[str] = Field(default_factory=list, description="target ids whose dispatch failed")
    skipped: List[str] = Field(default_factory=list, description="target ids not dispatched")


class SchedulerSnapshot(BaseModel):
    """
    Read-only view for the presentation layer, polled once per tick.

    The scheduler does not care whether or how this is rendered.
    """
    tick: int
    state: LoopState
    cost_per_unit: float
    targets: List[EffectiveView] = Field(default_factory=list)
    workers: List[WorkerNode] = Field(default_factory=list)
    in_flight: List[InFlightAction] = Field(default_factory=list)

    @property
    def total_threads(self) -> int:
        return sum(a.threads for a in self.in_flight)

    def summary(self) -> str:
        """One status line: targets, runners, tasks, threads, used and free capacity."""
        free = sum(w.free_capacity for w in self.workers)
        used = self.total_threads * self.cost_per_unit
        return (
            f"targets={len(self.targets):03d} runners={len(self.workers):03d} "
            f"tasks={len(self.in_flight)} threads={self.total_threads} "
            f"used={used:.2f} free={free:.2f}"
        )
