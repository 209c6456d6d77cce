"""
harvester/control_plane/forecaster.py
─────────────────────────────────────
Forecaster: the effective view of a target, ahead of actual completion.

What this is
─────────────
Measured target state lags behind what the scheduler has already set in
motion. If a stabilize action with 40 threads is running against a target,
planning another 40 threads of stabilize next tick would double-count the
work. The forecaster folds every still-in-flight action into the measured
state so the planner sees where the target *will* be.

The formulas
─────────────
Per target, over in-flight actions whose target_id matches:

  stabilized   = Σ magnitude × threads                  (STABILIZE)
  extracted    = Σ capacity × magnitude × threads       (EXTRACT)
  replenished  = Σ measured_yield × magnitude × threads (REPLENISH)

  effective_stability = measured_stability − stabilized
  effective_yield     = clamp(measured_yield − extracted + replenished,
                              0, capacity)

Extract magnitudes are fractions of capacity; replenish magnitudes are
fractional growth of the current balance. Stability is not clamped: it may
dip below the floor only through forecast error.

Purity
───────
forecast() reads its inputs and returns a new EffectiveView. It never
mutates the target or the in-flight collection. With no matching actions
the effective values equal the measured values exactly.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from harvester.shared.models import (
    ActionKind,
    EffectiveView,
    InFlightAction,
    TargetResource,
)


def forecast(
    target: TargetResource,
    in_flight: Iterable[InFlightAction],
    extraction_eligible: bool = True,
) -> EffectiveView:
    """
    Combine a target's measured state with its in-flight actions.

    Args:
        target:              The measured target.
        in_flight:           Active in-flight actions (any target). Only
                             entries whose target_id matches are summed.
        extraction_eligible: Carried through to the view for the planner.

    Returns:
        EffectiveView for this target.
    """
    measured_yield = target.yield_balance
    capacity = target.yield_capacity

    stabilized = 0.0
    extracted = 0.0
    replenished = 0.0
    running = 0

    for action in in_flight:
        if action.target_id != target.node_id:
            continue
        running += 1
        if action.kind == ActionKind.STABILIZE:
            stabilized += action.total_effect
        elif action.kind == ActionKind.EXTRACT:
            extracted += capacity * action.total_effect
        elif action.kind == ActionKind.REPLENISH:
            replenished += measured_yield * action.total_effect

    if running == 0:
        effective_yield = measured_yield
    else:
        effective_yield = _clamp(measured_yield - extracted + replenished, 0.0, capacity)

    return EffectiveView(
        target_id=target.node_id,
        measured_stability=target.stability,
        effective_stability=target.stability - stabilized,
        min_stability=target.min_stability,
        measured_yield=measured_yield,
        effective_yield=effective_yield,
        yield_capacity=capacity,
        extracted=extracted,
        replenished=replenished,
        stabilized=stabilized,
        actions_running=running,
        extraction_eligible=extraction_eligible,
    )


def forecast_all(
    targets: Iterable[TargetResource],
    in_flight: Iterable[InFlightAction],
    eligibility: Optional[Dict[str, bool]] = None,
) -> List[EffectiveView]:
    """
    Forecast every target and order them for servicing.

    Order: ascending effective yield (least-funded first), ties broken by
    target id so a tick is reproducible.

    Args:
        eligibility: target_id → extraction eligibility. Missing ids default
                     to eligible.
    """
    actions = list(in_flight)
    eligibility = eligibility or {}
    views = [
        forecast(t, actions, eligibility.get(t.node_id, True))
        for t in targets
    ]
    return sorted(views, key=lambda v: (v.effective_yield, v.target_id))


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
