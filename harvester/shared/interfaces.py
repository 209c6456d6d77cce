"""
harvester/shared/interfaces.py
──────────────────────────────
Boundaries to the collaborators the scheduler does not own.

  Oracle            → effect figures for (action, target, threads)
  Executor          → launches an action on a worker
  InventoryProvider → discovers and re-reads nodes

All three are structural (typing.Protocol): any object with the right
methods plugs in. The in-memory SimulatedCluster implements all of them.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Protocol, runtime_checkable

from harvester.shared.models import (
    ActionEffect,
    ActionKind,
    PlannedAction,
    TargetResource,
    WorkerNode,
)

# Milliseconds, monotonic enough for expiry bookkeeping.
Clock = Callable[[], float]


class NodeUnavailableError(Exception):
    """
    Raised by an InventoryProvider when a node disappeared between reads.

    Not fatal: the inventory drops the node from its maps and carries on.
    """

    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"node {node_id!r} is not available")


@runtime_checkable
class Oracle(Protocol):
    """Authoritative effect figures. Pure functions of observable target state."""

    def effect_of(self, kind: ActionKind, target: TargetResource, threads: int) -> ActionEffect:
        """Per-thread effect magnitude and wall-clock duration of an action."""
        ...

    def doublings_to_max(self, target: TargetResource) -> float:
        """How many replenish threads double the target's current balance."""
        ...

    def is_extraction_eligible(self, target: TargetResource) -> bool:
        ...


@runtime_checkable
class Executor(Protocol):
    async def execute(self, worker_id: str, action: PlannedAction, threads: int) -> Optional[int]:
        """
        Launch `threads` units of `action` on `worker_id`.

        Returns a process handle; a falsy handle means the launch was refused.
        May also raise. The scheduler keeps no reference to the handle.
        """
        ...


@runtime_checkable
class InventoryProvider(Protocol):
    def list_workers(self) -> List[WorkerNode]:
        ...

    def list_targets(self) -> List[TargetResource]:
        ...

    # A host can be both a worker and a target, so re-reads are per role.

    def refresh_worker(self, node_id: str) -> Optional[WorkerNode]:
        """Re-read one known worker. Raises NodeUnavailableError if it is gone."""
        ...

    def refresh_target(self, node_id: str) -> Optional[TargetResource]:
        """Re-read one known target. Raises NodeUnavailableError if it is gone."""
        ...
