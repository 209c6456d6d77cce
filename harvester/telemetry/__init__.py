"""
harvester/telemetry — in-memory stand-ins for the external collaborators.

Public API:
    SimulatedCluster  — drifting targets + workers; implements
                        InventoryProvider, Oracle and Executor
"""

from harvester.telemetry.simulation import SimulatedCluster

__all__ = ["SimulatedCluster"]
