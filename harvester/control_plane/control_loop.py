"""
harvester/control_plane/control_loop.py
───────────────────────────────────────
ControlLoop: the scheduling state machine.

One tick
─────────
  REFRESHING_INVENTORY      inventory.refresh(full = tick % N == 0)
                            in_flight.sweep(now)
  FORECASTING               forecast_all(targets, in_flight)
                            → views ordered by ascending effective yield
  PLANNING_AND_DISPATCHING  per view, in order:
                              plan → select_worker → granted_threads → dispatch
  SLEEPING                  tick_interval_s, or idle_sleep_s when no worker
                            had room (planning is skipped entirely then)

There is no terminal state. run() loops until the task is cancelled from
outside, or for max_ticks ticks when given (tests).

Concurrency
────────────
Targets are processed sequentially within a tick; there is no parallel
planning, so the worker and target maps need no locks. Actions run on the
workers independently of the loop. Suspension points are exactly the sleep
and the awaited dispatch call.

Error isolation
────────────────
A failed inventory refresh is logged and the tick carries on with the
previous maps. Every target is wrapped on its own:
  DispatchFailedError → warning, target retried from scratch next tick
  any other Exception → logged with traceback, next target
A planning impossibility (plan() → None) is logged once per target until
that target plans again.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Set

from harvester.control_plane.allocator import Allocator
from harvester.control_plane.dispatcher import DispatchFailedError, Dispatcher
from harvester.control_plane.forecaster import forecast_all
from harvester.control_plane.in_flight import InFlightSet
from harvester.control_plane.inventory import Inventory
from harvester.control_plane.planner import plan
from harvester.shared.config import SchedulerConfig
from harvester.shared.interfaces import Clock, Executor, Oracle
from harvester.shared.models import (
    EffectiveView,
    LoopState,
    SchedulerSnapshot,
    TargetResource,
    TickReport,
)

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class ControlLoop:
    """
    Owns the inventory, the in-flight set and the per-tick pipeline.

    Public API:
        start()                    → initial full inventory refresh
        tick()                     → one pass, returns TickReport (no sleep)
        run(max_ticks=None)        → tick + sleep, forever by default
        snapshot()                 → SchedulerSnapshot for presentation
        get_scheduling_metrics()   → Dict of counters

    Attributes:
        inventory : Inventory
        in_flight : InFlightSet
        state     : LoopState
    """

    def __init__(
        self,
        inventory: Inventory,
        oracle: Oracle,
        executor: Executor,
        config: Optional[SchedulerConfig] = None,
        clock: Clock = monotonic_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config or SchedulerConfig()
        self._oracle = oracle
        self._clock = clock
        self._sleep = sleep

        self.inventory = inventory
        self.in_flight = InFlightSet()
        self.state = LoopState.IDLE

        self._allocator = Allocator(self._config)
        self._dispatcher = Dispatcher(
            executor, inventory, self.in_flight, clock, self._config,
        )

        self._tick = 0
        self._started = False
        self._views: List[EffectiveView] = []
        self._unplannable: Set[str] = set()
        self._dispatched_total = 0
        self._failed_total = 0

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        self._started = True
        try:
            self.inventory.refresh(full=True)
        except Exception:
            logger.exception("ControlLoop start: initial inventory refresh failed")
        logger.info(
            "ControlLoop started: %d workers, %d targets, cost/unit=%.2f",
            len(self.inventory.workers), len(self.inventory.targets),
            self._config.cost_per_unit,
        )

    async def run(self, max_ticks: Optional[int] = None) -> None:
        if not self._started:
            self.start()
        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            report = await self.tick()
            ticks += 1
            self.state = LoopState.SLEEPING
            await self._sleep(
                self._config.idle_sleep_s if report.idle else self._config.tick_interval_s
            )

    # ── One tick ──────────────────────────────────────────────────────────────

    async def tick(self) -> TickReport:
        self._tick += 1
        full = self._tick % self._config.full_refresh_every == 0
        report = TickReport(tick=self._tick, full_refresh=full)

        self.state = LoopState.REFRESHING_INVENTORY
        try:
            self.inventory.refresh(full=full)
        except Exception:
            # maps stay as they were; the next tick tries again
            logger.exception("tick %d: inventory refresh failed", self._tick)
        now = self._clock()
        self.in_flight.sweep(now)

        self.state = LoopState.FORECASTING
        targets = self.inventory.available_targets()
        eligibility = {t.node_id: self._extraction_eligible(t) for t in targets}
        self._views = forecast_all(targets, self.in_flight.active(now), eligibility)

        if not self._allocator.eligible_workers(self.inventory.workers.values()):
            report.idle = True
            logger.debug("tick %d: no eligible workers, skipping planning", self._tick)
            logger.info("tick %d: %s", self._tick, self.snapshot().summary())
            return report

        self.state = LoopState.PLANNING_AND_DISPATCHING
        for view in self._views:
            target = self.inventory.targets.get(view.target_id)
            if target is None:
                report.skipped.append(view.target_id)
                continue
            try:
                if await self._service_target(view, target):
                    report.dispatched.append(view.target_id)
                else:
                    report.skipped.append(view.target_id)
            except DispatchFailedError as exc:
                self._failed_total += 1
                report.failed.append(view.target_id)
                logger.warning("tick %d: %s", self._tick, exc)
            except Exception:
                self._failed_total += 1
                report.failed.append(view.target_id)
                logger.exception("tick %d: failed servicing %s", self._tick, view.target_id)

        logger.info("tick %d: %s", self._tick, self.snapshot().summary())
        return report

    async def _service_target(self, view: EffectiveView, target: TargetResource) -> bool:
        action = plan(view, self._oracle, target, self._config.replenish_threshold)
        if action is None:
            if view.target_id not in self._unplannable:
                self._unplannable.add(view.target_id)
                logger.info("No applicable action for %s, skipping", view.target_id)
            return False
        self._unplannable.discard(view.target_id)

        worker = self._allocator.select_worker(self.inventory.workers.values(), action.threads)
        if worker is None:
            logger.debug("No capacity for %s this tick", view.target_id)
            return False

        threads = self._allocator.granted_threads(worker, action.threads)
        if threads <= 0:
            return False

        await self._dispatcher.dispatch(action, worker, threads)
        self._dispatched_total += 1
        return True

    def _extraction_eligible(self, target: TargetResource) -> bool:
        try:
            return bool(self._oracle.is_extraction_eligible(target))
        except Exception:
            logger.exception("Extraction eligibility check failed for %s", target.node_id)
            return False

    # ── Reporting ─────────────────────────────────────────────────────────────

    def snapshot(self) -> SchedulerSnapshot:
        """Read-only copy of the current targets, workers and in-flight set."""
        return SchedulerSnapshot(
            tick=self._tick,
            state=self.state,
            cost_per_unit=self._config.cost_per_unit,
            targets=[v.model_copy() for v in self._views],
            workers=[w.model_copy() for w in self._allocator.eligible_workers(
                self.inventory.workers.values()
            )],
            in_flight=[
                a.model_copy() for a in sorted(self.in_flight, key=lambda a: a.finishes_at)
            ],
        )

    def get_scheduling_metrics(self) -> Dict[str, object]:
        actions = list(self.in_flight)
        return {
            "tick": self._tick,
            "state": self.state.value,
            "in_flight": len(actions),
            "in_flight_threads": sum(a.threads for a in actions),
            "dispatched_total": self._dispatched_total,
            "failed_total": self._failed_total,
            "free_capacity": round(
                sum(w.free_capacity for w in self.inventory.workers.values()), 2
            ),
            "profile_sample_counts": {
                kind.value: profile.sample_count
                for kind, profile in self._dispatcher.profiles.items()
            },
        }

    @property
    def tick_count(self) -> int:
        return self._tick

    @property
    def profiles(self):
        return self._dispatcher.profiles

    def __repr__(self) -> str:
        return (
            f"ControlLoop(workers={len(self.inventory.workers)}, "
            f"targets={len(self.inventory.targets)}, ticks={self._tick}, "
            f"in_flight={len(self.in_flight)})"
        )
