"""
tests/test_inventory.py
───────────────────────
Test suite for harvester/control_plane/inventory.py

Group 1: refresh modes      — full discovery vs incremental re-read
Group 2: discovery failures — vanished nodes drop, provider errors change nothing
Group 3: queries & updates  — schedulable targets, reservations, usage
"""

from __future__ import annotations

import pytest

from harvester.control_plane.inventory import Inventory
from harvester.shared.config import SchedulerConfig
from harvester.shared.interfaces import InventoryProvider, NodeUnavailableError
from harvester.shared.models import TargetResource, WorkerNode
from harvester.telemetry.simulation import ManualClock, SimulatedCluster


def _make_target(node_id: str, yield_balance: float = 100.0, admin: bool = True) -> TargetResource:
    return TargetResource(
        node_id=node_id, stability=10.0, min_stability=5.0,
        yield_balance=yield_balance, yield_capacity=1_000.0, has_admin_rights=admin,
    )


def _cluster() -> SimulatedCluster:
    return SimulatedCluster(
        workers=[
            WorkerNode(node_id="home", total_capacity=128.0),
            WorkerNode(node_id="w-01", total_capacity=32.0),
        ],
        targets=[_make_target("t-01"), _make_target("t-02")],
        clock=ManualClock(),
        seed=1,
    )


class _FlakyProvider:
    """Provider whose incremental reads fail in different ways."""

    def __init__(self) -> None:
        self.workers = [WorkerNode(node_id="w-ok", total_capacity=8.0),
                        WorkerNode(node_id="w-none", total_capacity=8.0),
                        WorkerNode(node_id="w-key", total_capacity=8.0)]

    def list_workers(self):
        return [w.model_copy() for w in self.workers]

    def list_targets(self):
        return []

    def refresh_worker(self, node_id):
        if node_id == "w-none":
            return None
        if node_id == "w-key":
            raise KeyError(node_id)
        return WorkerNode(node_id=node_id, total_capacity=8.0, used_capacity=2.0)

    def refresh_target(self, node_id):
        raise NodeUnavailableError(node_id)


class _BrokenTargetReads(SimulatedCluster):
    def refresh_target(self, node_id):
        raise RuntimeError("provider offline")


# ─────────────────────────────────────────────────────────────────────────────
# Group 1: refresh modes
# ─────────────────────────────────────────────────────────────────────────────

class TestRefreshModes:

    def test_simulated_cluster_is_a_provider(self) -> None:
        assert isinstance(_cluster(), InventoryProvider)

    def test_full_refresh_discovers_everything(self) -> None:
        inventory = Inventory(_cluster())
        inventory.refresh(full=True)
        assert set(inventory.workers) == {"home", "w-01"}
        assert set(inventory.targets) == {"t-01", "t-02"}

    def test_incremental_refresh_does_not_discover(self) -> None:
        cluster = _cluster()
        inventory = Inventory(cluster)
        inventory.refresh(full=True)

        cluster.add_worker(WorkerNode(node_id="w-new", total_capacity=16.0))
        inventory.refresh(full=False)
        assert "w-new" not in inventory.workers

        inventory.refresh(full=True)
        assert "w-new" in inventory.workers

    def test_incremental_refresh_rereads_known_nodes(self) -> None:
        inventory = Inventory(_FlakyProvider())
        inventory.refresh(full=True)
        inventory.refresh(full=False)
        assert inventory.workers["w-ok"].used_capacity == 2.0

    def test_refresh_overwrites_optimistic_usage(self) -> None:
        inventory = Inventory(_cluster())
        inventory.refresh(full=True)
        inventory.record_usage("w-01", 10.0)
        inventory.refresh(full=False)
        assert inventory.workers["w-01"].used_capacity == 0.0


# ─────────────────────────────────────────────────────────────────────────────
# Group 2: discovery failures
# ─────────────────────────────────────────────────────────────────────────────

class TestDiscoveryFailures:

    def test_vanished_node_dropped(self) -> None:
        cluster = _cluster()
        inventory = Inventory(cluster)
        inventory.refresh(full=True)

        cluster.remove_node("t-02")
        cluster.remove_node("w-01")
        inventory.refresh(full=False)

        assert "t-02" not in inventory.targets
        assert "w-01" not in inventory.workers
        assert "t-01" in inventory.targets

    def test_none_and_key_error_treated_as_unavailable(self) -> None:
        inventory = Inventory(_FlakyProvider())
        inventory.refresh(full=True)
        inventory.refresh(full=False)
        assert set(inventory.workers) == {"w-ok"}

    def test_provider_error_leaves_maps_untouched(self) -> None:
        cluster = _BrokenTargetReads(
            workers=[WorkerNode(node_id="w-01", total_capacity=32.0)],
            targets=[_make_target("t-01")],
            clock=ManualClock(),
        )
        inventory = Inventory(cluster)
        inventory.refresh(full=True)
        inventory.record_usage("w-01", 10.0)

        with pytest.raises(RuntimeError):
            inventory.refresh(full=False)

        assert inventory.workers["w-01"].used_capacity == 10.0
        assert set(inventory.targets) == {"t-01"}


# ─────────────────────────────────────────────────────────────────────────────
# Group 3: queries & updates
# ─────────────────────────────────────────────────────────────────────────────

class TestQueries:

    def test_configured_reservation_applied(self) -> None:
        inventory = Inventory(_cluster(), SchedulerConfig(reserved_capacity={"home": 64.0}))
        inventory.refresh(full=True)
        assert inventory.workers["home"].reserved_capacity == 64.0
        assert inventory.workers["home"].free_capacity == 64.0
        assert inventory.workers["w-01"].reserved_capacity == 0.0

    def test_reservation_survives_incremental_refresh(self) -> None:
        inventory = Inventory(_cluster())
        inventory.refresh(full=True)
        inventory.refresh(full=False)
        assert inventory.workers["home"].reserved_capacity == 64.0

    def test_available_targets_filters_and_sorts(self) -> None:
        cluster = SimulatedCluster(
            workers=[],
            targets=[
                _make_target("t-c"),
                _make_target("t-empty", yield_balance=0.0),
                _make_target("t-locked", admin=False),
                _make_target("t-a"),
            ],
            clock=ManualClock(),
        )
        inventory = Inventory(cluster)
        inventory.refresh(full=True)
        assert [t.node_id for t in inventory.available_targets()] == ["t-a", "t-c"]

    def test_record_usage(self) -> None:
        inventory = Inventory(_cluster())
        inventory.refresh(full=True)
        inventory.record_usage("w-01", 12.5)
        assert inventory.workers["w-01"].free_capacity == 19.5

    def test_record_usage_unknown_worker_ignored(self) -> None:
        inventory = Inventory(_cluster())
        inventory.refresh(full=True)
        inventory.record_usage("w-ghost", 12.5)
        assert "w-ghost" not in inventory.workers
