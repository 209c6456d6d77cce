"""
harvester/control_plane/allocator.py
────────────────────────────────────
Allocator: decides WHICH worker runs an action and how many threads fit.

Policy
───────
1. Eligible workers: administratively usable (admin rights, not blocked)
   and free capacity ≥ cost of one execution unit.

2. Pick the worker with the LARGEST free capacity (best-fit-by-size, not
   first fit). Small workers stay whole for small actions. Ties go to the
   first worker in id order, so the choice is reproducible.

3. Granted threads = max(0, min(floor(requested), floor(free / cost))).
   The allocator clamps to what fits rather than failing.

No eligible worker → None. The caller treats that as "no capacity this
tick" and moves on to the next target.

Cost per unit comes from SchedulerConfig at construction.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, List, Optional

import numpy as np

from harvester.shared.config import SchedulerConfig
from harvester.shared.models import WorkerNode

logger = logging.getLogger(__name__)


class Allocator:
    def __init__(self, config: Optional[SchedulerConfig] = None) -> None:
        self._config = config or SchedulerConfig()

    @property
    def cost_per_unit(self) -> float:
        return self._config.cost_per_unit

    def eligible_workers(self, workers: Iterable[WorkerNode]) -> List[WorkerNode]:
        """Usable workers that can host at least one unit, ordered by id."""
        return sorted(
            (
                w for w in workers
                if w.is_usable and w.free_capacity >= self.cost_per_unit
            ),
            key=lambda w: w.node_id,
        )

    def select_worker(
        self,
        workers: Iterable[WorkerNode],
        required_units: int = 1,
    ) -> Optional[WorkerNode]:
        """
        Pick the eligible worker with the most free capacity.

        Args:
            workers:        Candidate workers (any order).
            required_units: Requested thread count. Only logged: the winner
                            is chosen by size and the grant is clamped.

        Returns:
            The selected WorkerNode, or None if nothing is eligible.
        """
        candidates = self.eligible_workers(workers)
        if not candidates:
            logger.debug("select_worker: no eligible worker for %d units", required_units)
            return None

        free = np.array([w.free_capacity for w in candidates], dtype=np.float64)
        # argmax returns the first maximum: ties resolve by id order
        best = candidates[int(np.argmax(free))]

        logger.debug(
            "select_worker: %s (free=%.2f) for %d units out of %d candidates",
            best.node_id, best.free_capacity, required_units, len(candidates),
        )
        return best

    def granted_threads(self, worker: WorkerNode, requested: float) -> int:
        """max(0, min(floor(requested), floor(free / cost)))."""
        if math.isnan(requested) or requested <= 0:
            return 0
        possible = math.floor(worker.free_capacity / self.cost_per_unit)
        if math.isinf(requested):
            return possible
        return max(0, min(math.floor(requested), possible))
