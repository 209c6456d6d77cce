"""
harvester/control_plane/dispatcher.py
─────────────────────────────────────
Dispatcher: hands a resolved action to the executor and tracks it.

Sequence for one dispatch
──────────────────────────
  1. finishes_at = now + action.duration_ms
  2. await executor.execute(worker_id, action, threads)
  3. On a truthy handle:
       a. inventory.record_usage(worker, threads × cost)  (optimistic)
       b. in_flight.add(InFlightAction(..., expires_at=finishes_at + grace))
       c. ledger[kind].add_sample(...)
  4. Otherwise raise DispatchFailedError. Nothing was registered.

The handle is not kept. The scheduler only remembers "dispatched at T for
duration D"; eviction at expires_at is the only way an action leaves the
in-flight set.

Error handling contract
────────────────────────
  DispatchFailedError: the executor refused (falsy handle) or raised.
                       The control loop catches it, logs it, and moves on
                       to the next target. No retry within the tick.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from harvester.control_plane.in_flight import InFlightSet
from harvester.control_plane.inventory import Inventory
from harvester.shared.config import SchedulerConfig
from harvester.shared.interfaces import Clock, Executor
from harvester.shared.models import ActionKind, InFlightAction, PlannedAction, WorkerNode
from harvester.shared.telemetry import ActionProfile, ActionSample

logger = logging.getLogger(__name__)


class DispatchFailedError(Exception):
    """
    Raised when the executor did not confirm a launch.

    Attributes:
        target_id: Target the action was meant for.
        worker_id: Worker it was offered to.
        reason:    Human-readable cause.
    """

    def __init__(self, target_id: str, worker_id: str, reason: str) -> None:
        self.target_id = target_id
        self.worker_id = worker_id
        self.reason = reason
        super().__init__(f"dispatch of {target_id!r} on {worker_id!r} failed: {reason}")


class Dispatcher:
    def __init__(
        self,
        executor: Executor,
        inventory: Inventory,
        in_flight: InFlightSet,
        clock: Clock,
        config: Optional[SchedulerConfig] = None,
        profiles: Optional[Dict[ActionKind, ActionProfile]] = None,
    ) -> None:
        self._executor = executor
        self._inventory = inventory
        self._in_flight = in_flight
        self._clock = clock
        self._config = config or SchedulerConfig()
        self.profiles: Dict[ActionKind, ActionProfile] = profiles if profiles is not None else {
            kind: ActionProfile(kind=kind, max_samples=self._config.history_size)
            for kind in ActionKind
        }

    async def dispatch(
        self,
        action: PlannedAction,
        worker: WorkerNode,
        threads: int,
    ) -> InFlightAction:
        """
        Launch `threads` units of `action` on `worker` and register it.

        Returns:
            The registered InFlightAction.

        Raises:
            DispatchFailedError: launch refused or executor raised.
        """
        now = self._clock()
        finishes_at = now + action.duration_ms

        try:
            handle = await self._executor.execute(worker.node_id, action, threads)
        except Exception as exc:
            raise DispatchFailedError(
                action.target_id, worker.node_id, f"{exc.__class__.__name__}: {exc}"
            ) from exc

        if not handle:
            raise DispatchFailedError(action.target_id, worker.node_id, "launch refused")

        self._inventory.record_usage(worker.node_id, threads * self._config.cost_per_unit)

        scheduled = InFlightAction(
            target_id=action.target_id,
            worker_id=worker.node_id,
            kind=action.kind,
            threads=threads,
            magnitude=action.magnitude,
            dispatched_at=now,
            finishes_at=finishes_at,
            expires_at=finishes_at + self._config.expiry_grace_ms,
        )
        self._in_flight.add(scheduled)

        profile = self.profiles.get(action.kind)
        if profile is not None:
            profile.add_sample(ActionSample.from_action(scheduled))

        logger.info(
            "Dispatched %s x%d → %s on %s (%.0fms)",
            action.kind.value, threads, action.target_id, worker.node_id, action.duration_ms,
        )
        return scheduled
