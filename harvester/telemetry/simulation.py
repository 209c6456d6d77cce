"""
harvester/telemetry/simulation.py
─────────────────────────────────
SimulatedCluster: an in-memory world the control loop can run against.

What this is
─────────────
The scheduler talks to three external collaborators: an inventory
provider, an effect oracle and an executor. In production those are the
host environment. Here they are one object holding workers, targets and
running jobs, so the loop can be driven end-to-end in tests and local
experiments without any host.

Behaviour
──────────
  - Each advance() first completes jobs whose finish time has passed,
    applying their effect to the target and releasing worker capacity,
    then lets every target drift with Gaussian noise.
  - Extract and replenish raise stability as a side effect
    (STABILITY_RISE_* per thread), so stabilize keeps being needed.
  - Oracle figures are simple closed forms of the current target state.

The Gaussian noise is drawn from a seeded random.Random so a run is
reproducible.

Integration contract
─────────────────────
    clock = ManualClock()
    cluster = SimulatedCluster(workers, targets, clock=clock, seed=7)
    loop = ControlLoop(Inventory(cluster), cluster, cluster, clock=clock)
    await loop.tick(); clock.advance(500); cluster.advance()
"""

from __future__ import annotations

import itertools
import logging
import math
import random
from dataclasses import dataclass
from typing import Dict, List, Optional

from harvester.shared.config import COST_PER_UNIT
from harvester.shared.interfaces import Clock, NodeUnavailableError
from harvester.shared.models import (
    ActionEffect,
    ActionKind,
    PlannedAction,
    TargetResource,
    WorkerNode,
)

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────────────────

STABILIZE_PER_THREAD: float = 0.05
"""Stability removed by one stabilize thread."""

EXTRACT_FRACTION_PER_THREAD: float = 0.002
"""Fraction of yield capacity removed by one extract thread."""

GROWTH_PER_THREAD: float = 0.0035
"""Fractional balance growth from one replenish thread (compounded)."""

STABILITY_RISE_EXTRACT: float = 0.002
"""Stability added per extract thread on completion."""

STABILITY_RISE_REPLENISH: float = 0.004
"""Stability added per replenish thread on completion."""

BASE_EXTRACT_MS: float = 2_000.0
"""Extract duration for a target sitting exactly at its stability floor."""

STABILITY_NOISE_STD: float = 0.1
YIELD_NOISE_FRACTION: float = 0.001
"""Drift per advance(): Gaussian std for stability and, as a fraction of capacity, for yield."""


@dataclass
class _Job:
    pid: int
    worker_id: str
    target_id: str
    kind: ActionKind
    threads: int
    magnitude: float
    capacity: float
    finishes_at: float


class ManualClock:
    """A clock (ms) that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now


class SimulatedCluster:
    """
    In-memory InventoryProvider + Oracle + Executor.

    Args:
        workers:       Initial workers. Copied; callers keep their objects.
        targets:       Initial targets. Copied.
        clock:         Shared clock (ms). The control loop should use the same one.
        cost_per_unit: Capacity per thread, as configured on the scheduler.
        skill_level:   Targets with required_skill above this are not eligible
                       for extraction.
        seed:          Seed for the drift noise.
    """

    def __init__(
        self,
        workers: List[WorkerNode],
        targets: List[TargetResource],
        clock: Clock,
        cost_per_unit: float = COST_PER_UNIT,
        skill_level: int = 0,
        seed: Optional[int] = None,
    ) -> None:
        self._workers: Dict[str, WorkerNode] = {w.node_id: w.model_copy() for w in workers}
        self._targets: Dict[str, TargetResource] = {t.node_id: t.model_copy() for t in targets}
        self._clock = clock
        self._cost = cost_per_unit
        self._rng = random.Random(seed)
        self._pids = itertools.count(1)
        self._jobs: Dict[int, _Job] = {}
        self._advance_count = 0
        self.skill_level = skill_level

    # ── InventoryProvider ─────────────────────────────────────────────────────

    def list_workers(self) -> List[WorkerNode]:
        return [w.model_copy() for w in self._workers.values()]

    def list_targets(self) -> List[TargetResource]:
        return [t.model_copy() for t in self._targets.values()]

    def refresh_worker(self, node_id: str) -> WorkerNode:
        if node_id not in self._workers:
            raise NodeUnavailableError(node_id)
        return self._workers[node_id].model_copy()

    def refresh_target(self, node_id: str) -> TargetResource:
        if node_id not in self._targets:
            raise NodeUnavailableError(node_id)
        return self._targets[node_id].model_copy()

    # ── Oracle ────────────────────────────────────────────────────────────────

    def effect_of(self, kind: ActionKind, target: TargetResource, threads: int) -> ActionEffect:
        extract_ms = BASE_EXTRACT_MS * (1.0 + max(0.0, target.stability - target.min_stability) / 10.0)
        if kind == ActionKind.STABILIZE:
            return ActionEffect(magnitude=STABILIZE_PER_THREAD, duration_ms=extract_ms * 4.0)
        if kind == ActionKind.REPLENISH:
            doublings = self.doublings_to_max(target)
            return ActionEffect(magnitude=1.0 / doublings, duration_ms=extract_ms * 3.2)
        return ActionEffect(magnitude=EXTRACT_FRACTION_PER_THREAD, duration_ms=extract_ms)

    def doublings_to_max(self, target: TargetResource) -> float:
        return math.log(2.0) / math.log1p(GROWTH_PER_THREAD)

    def is_extraction_eligible(self, target: TargetResource) -> bool:
        return target.has_admin_rights and target.required_skill <= self.skill_level

    # ── Executor ──────────────────────────────────────────────────────────────

    async def execute(self, worker_id: str, action: PlannedAction, threads: int) -> Optional[int]:
        worker = self._workers.get(worker_id)
        if worker is None or action.target_id not in self._targets:
            return None
        capacity = threads * self._cost
        if worker.total_capacity - worker.used_capacity < capacity:
            logger.debug("SimulatedCluster: %s refused %d threads", worker_id, threads)
            return None

        pid = next(self._pids)
        worker.used_capacity += capacity
        self._jobs[pid] = _Job(
            pid=pid,
            worker_id=worker_id,
            target_id=action.target_id,
            kind=action.kind,
            threads=threads,
            magnitude=action.magnitude,
            capacity=capacity,
            finishes_at=self._clock() + action.duration_ms,
        )
        return pid

    # ── World evolution ───────────────────────────────────────────────────────

    def advance(self) -> int:
        """Complete due jobs, then drift every target. Returns jobs completed."""
        self._advance_count += 1
        now = self._clock()
        done = [job for job in self._jobs.values() if job.finishes_at <= now]
        for job in done:
            del self._jobs[job.pid]
            self._complete(job)

        for target in self._targets.values():
            target.stability = max(
                target.min_stability,
                target.stability + self._rng.gauss(0.0, STABILITY_NOISE_STD),
            )
            target.yield_balance = _clamp(
                target.yield_balance
                + self._rng.gauss(0.0, YIELD_NOISE_FRACTION * target.yield_capacity),
                0.0, target.yield_capacity,
            )
        return len(done)

    def _complete(self, job: _Job) -> None:
        worker = self._workers.get(job.worker_id)
        if worker is not None:
            worker.used_capacity = max(0.0, worker.used_capacity - job.capacity)

        target = self._targets.get(job.target_id)
        if target is None:
            return
        effect = job.magnitude * job.threads
        if job.kind == ActionKind.STABILIZE:
            target.stability = max(target.min_stability, target.stability - effect)
        elif job.kind == ActionKind.EXTRACT:
            target.yield_balance = max(0.0, target.yield_balance - target.yield_capacity * effect)
            target.stability += STABILITY_RISE_EXTRACT * job.threads
        elif job.kind == ActionKind.REPLENISH:
            target.yield_balance = min(target.yield_capacity, target.yield_balance * (1.0 + effect))
            target.stability += STABILITY_RISE_REPLENISH * job.threads

    # ── Test hooks ────────────────────────────────────────────────────────────

    def remove_node(self, node_id: str) -> None:
        """Make a worker and/or target vanish, as if it went offline."""
        self._workers.pop(node_id, None)
        self._targets.pop(node_id, None)

    def add_worker(self, worker: WorkerNode) -> None:
        self._workers[worker.node_id] = worker.model_copy()

    def target(self, node_id: str) -> Optional[TargetResource]:
        return self._targets.get(node_id)

    @property
    def running_jobs(self) -> int:
        return len(self._jobs)

    def __repr__(self) -> str:
        return (
            f"SimulatedCluster(workers={len(self._workers)}, "
            f"targets={len(self._targets)}, jobs={len(self._jobs)}, "
            f"advances={self._advance_count})"
        )


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
