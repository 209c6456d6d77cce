"""
harvester/control_plane — the scheduling brain.

Public API:

    Inventory            — worker/target maps, full vs incremental refresh
    InFlightSet          — identity-keyed in-flight actions with pull expiry
    forecast()           — effective view of one target
    forecast_all()       — effective views ordered least-funded first
    plan()               — stabilize → replenish → extract priority chain
    Allocator            — largest-free-capacity worker, clamped grant
    Dispatcher           — executor hand-off and in-flight registration
    DispatchFailedError  — raised when a launch is not confirmed
    ControlLoop          — refresh → forecast → plan/dispatch → sleep
"""

from harvester.control_plane.inventory import Inventory
from harvester.control_plane.in_flight import InFlightSet
from harvester.control_plane.forecaster import forecast, forecast_all
from harvester.control_plane.planner import plan
from harvester.control_plane.allocator import Allocator
from harvester.control_plane.dispatcher import DispatchFailedError, Dispatcher
from harvester.control_plane.control_loop import ControlLoop

__all__ = [
    "Inventory",
    "InFlightSet",
    "forecast",
    "forecast_all",
    "plan",
    "Allocator",
    "Dispatcher",
    "DispatchFailedError",
    "ControlLoop",
]
