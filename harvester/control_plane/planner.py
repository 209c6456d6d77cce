"""
harvester/control_plane/planner.py
──────────────────────────────────
Planner: decides WHAT to run against a target and with how many threads.

The decision is a strict priority chain. First match wins:

  1. STABILIZE  if effective_stability − unit_effect ≥ floor
                threads = ceil((effective_stability − floor) / unit_effect)
                i.e. stability is still at least one unit above its floor.

  2. REPLENISH  if effective_yield ≤ threshold × capacity, or the view says
                the target is not eligible for extraction. Eligibility is
                decided once per tick by the control loop, not here.
                threads = ceil(doublings_to_max), magnitude = 1 / doublings.

  3. EXTRACT    otherwise.
                threads = floor(yield / (yield × fraction_per_thread))

The extract bound is kept in exactly this form even though it reduces to
floor(1 / fraction); the intent of tying it to the available yield is not
settled, so the expression stays literal.

Oracle inconsistencies
───────────────────────
Negative, zero, NaN or infinite figures never propagate:
  - a non-positive stabilize unit makes STABILIZE inapplicable (fall through)
  - every other bad figure clamps the thread count to 0
A plan that ends with 0 threads is returned as None ("nothing useful to do").

plan() is pure: it reads the view and asks the oracle, nothing else.
"""

from __future__ import annotations

import math
from typing import Optional

from harvester.shared.config import REPLENISH_THRESHOLD
from harvester.shared.interfaces import Oracle
from harvester.shared.models import (
    ActionKind,
    EffectiveView,
    PlannedAction,
    TargetResource,
)


def plan(
    view: EffectiveView,
    oracle: Oracle,
    target: TargetResource,
    replenish_threshold: float = REPLENISH_THRESHOLD,
) -> Optional[PlannedAction]:
    """
    Choose exactly one action for a target.

    Args:
        view:                Effective (forecast) state of the target.
        oracle:              Effect figures; consulted fresh on every call.
        target:              The measured target the view was built from.
        replenish_threshold: Yield fraction at or below which to replenish.

    Returns:
        PlannedAction with threads ≥ 1, or None if no action is applicable.
    """
    stabilize = oracle.effect_of(ActionKind.STABILIZE, target, 1)
    unit = stabilize.magnitude

    if _positive(unit) and view.effective_stability - unit >= view.min_stability:
        gap = view.effective_stability - view.min_stability
        return _action(
            view, ActionKind.STABILIZE,
            threads=_ceil(gap / unit),
            magnitude=unit,
            duration_ms=stabilize.duration_ms,
        )

    eligible = view.extraction_eligible
    should_replenish = view.effective_yield <= view.yield_capacity * replenish_threshold

    if should_replenish or not eligible:
        doublings = oracle.doublings_to_max(target)
        replenish = oracle.effect_of(ActionKind.REPLENISH, target, 1)
        return _action(
            view, ActionKind.REPLENISH,
            threads=_ceil(doublings),
            magnitude=1.0 / doublings if _positive(doublings) else 0.0,
            duration_ms=replenish.duration_ms,
            comment=None if eligible else "not eligible for extraction",
        )

    extract = oracle.effect_of(ActionKind.EXTRACT, target, 1)
    fraction = extract.magnitude
    current = view.effective_yield
    per_thread = current * fraction
    threads = _floor(current / per_thread) if _positive(per_thread) else 0
    return _action(
        view, ActionKind.EXTRACT,
        threads=threads,
        magnitude=fraction,
        duration_ms=extract.duration_ms,
    )


# ── Helpers ───────────────────────────────────────────────────────────────────

def _action(
    view: EffectiveView,
    kind: ActionKind,
    threads: int,
    magnitude: float,
    duration_ms: float,
    comment: Optional[str] = None,
) -> Optional[PlannedAction]:
    if threads <= 0:
        return None
    return PlannedAction(
        target_id=view.target_id,
        kind=kind,
        threads=threads,
        magnitude=max(0.0, magnitude) if math.isfinite(magnitude) else 0.0,
        duration_ms=max(0.0, duration_ms) if math.isfinite(duration_ms) else 0.0,
        comment=comment,
    )


def _positive(value: float) -> bool:
    return math.isfinite(value) and value > 0


def _ceil(value: float) -> int:
    if not math.isfinite(value) or value <= 0:
        return 0
    return math.ceil(value)


def _floor(value: float) -> int:
    if not math.isfinite(value) or value <= 0:
        return 0
    return math.floor(value)
