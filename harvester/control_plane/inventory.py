"""
harvester/control_plane/inventory.py
────────────────────────────────────
Inventory: the scheduler's snapshot of workers and targets.

The control loop owns exactly one Inventory and passes it into each tick.
Nodes are addressed by stable string id.

Two refresh modes
──────────────────
  full        → provider.list_workers() / list_targets(). Re-discovers the
                topology: new nodes appear, vanished nodes drop out.
                Expensive, so the loop only does it every N ticks.
  incremental → provider.refresh_worker(id) / refresh_target(id) for each
                id we already know. Cheap. Never discovers new nodes.

Discovery failures
───────────────────
A node that raises NodeUnavailableError (or KeyError) or comes back as None
during an incremental refresh is dropped from the maps. It is "not currently
available", not an error. The next full refresh brings it back if it returns.
Any other provider error propagates, and the maps are left as they were.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from harvester.shared.config import SchedulerConfig
from harvester.shared.interfaces import InventoryProvider, NodeUnavailableError
from harvester.shared.models import TargetResource, WorkerNode

logger = logging.getLogger(__name__)


class Inventory:
    """
    Live maps of workers and targets, refreshed on demand.

    Attributes:
        workers : Dict[str, WorkerNode]
        targets : Dict[str, TargetResource]
    """

    def __init__(self, provider: InventoryProvider, config: Optional[SchedulerConfig] = None) -> None:
        self._provider = provider
        self._config = config or SchedulerConfig()
        self.workers: Dict[str, WorkerNode] = {}
        self.targets: Dict[str, TargetResource] = {}

    # ── Refresh ───────────────────────────────────────────────────────────────

    def refresh(self, full: bool = False) -> None:
        if full:
            self._refresh_full()
        else:
            self._refresh_incremental()

    def _refresh_full(self) -> None:
        workers = self._provider.list_workers()
        targets = self._provider.list_targets()

        self.workers = {w.node_id: self._apply_reservation(w) for w in workers}
        self.targets = {t.node_id: t for t in targets}
        logger.debug(
            "Inventory full refresh: %d workers, %d targets",
            len(self.workers), len(self.targets),
        )

    def _refresh_incremental(self) -> None:
        # Built aside and swapped in, so a provider error leaves the old maps.
        workers: Dict[str, WorkerNode] = {}
        for node_id in self.workers:
            worker = self._read(self._provider.refresh_worker, node_id)
            if worker is not None:
                workers[node_id] = self._apply_reservation(worker)

        targets: Dict[str, TargetResource] = {}
        for node_id in self.targets:
            target = self._read(self._provider.refresh_target, node_id)
            if target is not None:
                targets[node_id] = target

        self.workers = workers
        self.targets = targets

    def _read(self, reader, node_id: str):
        try:
            return reader(node_id)
        except (NodeUnavailableError, KeyError):
            logger.debug("Inventory: node %s unavailable, dropping", node_id)
            return None

    def _apply_reservation(self, worker: WorkerNode) -> WorkerNode:
        reserved = self._config.reservation_for(worker.node_id)
        if reserved and reserved > worker.reserved_capacity:
            return worker.model_copy(update={"reserved_capacity": reserved})
        return worker

    # ── Queries ───────────────────────────────────────────────────────────────

    def available_targets(self) -> List[TargetResource]:
        """Schedulable targets (admin rights, yield > 0), ordered by id."""
        return sorted(
            (t for t in self.targets.values() if t.is_schedulable),
            key=lambda t: t.node_id,
        )

    # ── Optimistic updates ────────────────────────────────────────────────────

    def record_usage(self, worker_id: str, capacity: float) -> None:
        """
        Add `capacity` to a worker's used figure right after a dispatch, so
        later allocations in the same tick see the reduced free capacity.
        The next refresh overwrites it with the measured value.
        """
        worker = self.workers.get(worker_id)
        if worker is None:
            logger.warning("record_usage: unknown worker %s", worker_id)
            return
        worker.used_capacity += capacity
