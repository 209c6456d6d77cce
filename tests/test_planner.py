"""
tests/test_planner.py
─────────────────────
Test suite for harvester/control_plane/planner.py

What we are testing
────────────────────
plan() is a strict priority chain: stabilize → replenish → extract.
Given fixed effective state and fixed oracle figures, the chosen action and
its thread count must be reproducible.

Test groups
────────────
Group 1: stabilize branch   — gap sizing, the one-unit boundary
Group 2: replenish branch   — yield threshold, extraction eligibility
Group 3: extract branch     — literal thread bound, effective yield input
Group 4: oracle inconsistencies — clamping, None results
"""

from __future__ import annotations

import math

import pytest

from harvester.control_plane.forecaster import forecast
from harvester.control_plane.planner import plan
from harvester.shared.models import (
    ActionEffect,
    ActionKind,
    EffectiveView,
    InFlightAction,
    TargetResource,
)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

class FakeOracle:
    def __init__(
        self,
        stabilize: float = 5.0,
        extract: float = 0.01,
        doublings: float = 12.0,
        eligible: bool = True,
        duration_ms: float = 1_000.0,
    ) -> None:
        self.stabilize = stabilize
        self.extract = extract
        self.doublings = doublings
        self.eligible = eligible
        self.duration_ms = duration_ms

    def effect_of(self, kind, target, threads):
        if kind == ActionKind.STABILIZE:
            return ActionEffect(magnitude=self.stabilize, duration_ms=self.duration_ms * 4)
        if kind == ActionKind.EXTRACT:
            return ActionEffect(magnitude=self.extract, duration_ms=self.duration_ms)
        return ActionEffect(magnitude=0.0, duration_ms=self.duration_ms * 3)

    def doublings_to_max(self, target):
        return self.doublings

    def is_extraction_eligible(self, target):
        return self.eligible


def _make_target(
    node_id: str = "t-test",
    stability: float = 30.0,
    min_stability: float = 30.0,
    yield_balance: float = 90.0,
    yield_capacity: float = 100.0,
) -> TargetResource:
    return TargetResource(
        node_id=node_id,
        stability=stability,
        min_stability=min_stability,
        yield_balance=yield_balance,
        yield_capacity=yield_capacity,
    )


def _view(target: TargetResource, eligible: bool = True) -> EffectiveView:
    return forecast(target, [], extraction_eligible=eligible)


# ─────────────────────────────────────────────────────────────────────────────
# Group 1: stabilize
# ─────────────────────────────────────────────────────────────────────────────

class TestStabilize:

    def test_gap_sized_in_whole_units(self) -> None:
        """stability=50, floor=30, 5/thread → stabilize x4 (ceil(20/5))."""
        target = _make_target(stability=50.0, min_stability=30.0)
        action = plan(_view(target), FakeOracle(stabilize=5.0), target)

        assert action is not None
        assert action.kind == ActionKind.STABILIZE
        assert action.threads == 4
        assert action.magnitude == 5.0
        assert action.target_id == "t-test"

    def test_partial_unit_rounds_up(self) -> None:
        target = _make_target(stability=41.0, min_stability=30.0)
        action = plan(_view(target), FakeOracle(stabilize=5.0), target)
        assert action.kind == ActionKind.STABILIZE
        assert action.threads == 3

    def test_exactly_one_unit_above_floor_still_stabilizes(self) -> None:
        target = _make_target(stability=35.0, min_stability=30.0)
        action = plan(_view(target), FakeOracle(stabilize=5.0), target)
        assert action.kind == ActionKind.STABILIZE
        assert action.threads == 1

    def test_within_one_unit_of_floor_falls_through(self) -> None:
        """34 − 5 < 30 → skip stabilize; yield is 90% so extract wins."""
        target = _make_target(stability=34.0, min_stability=30.0)
        action = plan(_view(target), FakeOracle(stabilize=5.0), target)
        assert action.kind == ActionKind.EXTRACT

    def test_stabilize_wins_over_low_yield(self) -> None:
        target = _make_target(stability=60.0, yield_balance=1.0)
        action = plan(_view(target), FakeOracle(), target)
        assert action.kind == ActionKind.STABILIZE

    def test_uses_effective_stability(self) -> None:
        """In-flight stabilize work already covering the gap suppresses a second stabilize."""
        target = _make_target(stability=50.0, min_stability=30.0, yield_balance=40.0)
        running = InFlightAction(
            target_id="t-test", worker_id="w", kind=ActionKind.STABILIZE,
            threads=4, magnitude=5.0, dispatched_at=0.0, finishes_at=10.0, expires_at=10.0,
        )
        view = forecast(target, [running])
        action = plan(view, FakeOracle(stabilize=5.0), target)
        assert action.kind == ActionKind.REPLENISH

    def test_duration_taken_from_oracle(self) -> None:
        target = _make_target(stability=50.0)
        action = plan(_view(target), FakeOracle(duration_ms=250.0), target)
        assert action.duration_ms == 1_000.0


# ─────────────────────────────────────────────────────────────────────────────
# Group 2: replenish
# ─────────────────────────────────────────────────────────────────────────────

class TestReplenish:

    def test_low_yield_replenishes_with_doublings(self) -> None:
        """yield=40, capacity=100 (≤50%) → replenish x doublings_to_max."""
        target = _make_target(yield_balance=40.0)
        action = plan(_view(target), FakeOracle(doublings=12.0), target)

        assert action.kind == ActionKind.REPLENISH
        assert action.threads == 12
        assert action.magnitude == pytest.approx(1.0 / 12.0)

    def test_exactly_half_capacity_replenishes(self) -> None:
        target = _make_target(yield_balance=50.0)
        action = plan(_view(target), FakeOracle(), target)
        assert action.kind == ActionKind.REPLENISH

    def test_fractional_doublings_round_up(self) -> None:
        target = _make_target(yield_balance=10.0)
        action = plan(_view(target), FakeOracle(doublings=7.2), target)
        assert action.threads == 8

    def test_not_eligible_never_extracts(self) -> None:
        target = _make_target(yield_balance=95.0)
        action = plan(_view(target, eligible=False), FakeOracle(eligible=False), target)
        assert action.kind == ActionKind.REPLENISH
        assert action.comment == "not eligible for extraction"

    def test_eligibility_taken_from_view_not_oracle(self) -> None:
        """The view says ineligible, the oracle says eligible: the view wins."""
        target = _make_target(yield_balance=90.0)
        action = plan(_view(target, eligible=False), FakeOracle(eligible=True), target)
        assert action.kind == ActionKind.REPLENISH
        assert action.comment == "not eligible for extraction"

    def test_eligible_view_extracts_even_if_oracle_disagrees(self) -> None:
        target = _make_target(yield_balance=90.0)
        action = plan(_view(target), FakeOracle(eligible=False), target)
        assert action.kind == ActionKind.EXTRACT

    def test_custom_threshold(self) -> None:
        target = _make_target(yield_balance=70.0)
        action = plan(_view(target), FakeOracle(), target, replenish_threshold=0.75)
        assert action.kind == ActionKind.REPLENISH


# ─────────────────────────────────────────────────────────────────────────────
# Group 3: extract
# ─────────────────────────────────────────────────────────────────────────────

class TestExtract:

    def test_thread_bound_by_available_yield(self) -> None:
        """yield=90, capacity=100, 0.01/thread → floor(90 / (90 × 0.01)) = 100."""
        target = _make_target(yield_balance=90.0)
        action = plan(_view(target), FakeOracle(extract=0.01), target)

        assert action.kind == ActionKind.EXTRACT
        assert action.threads == 100
        assert action.magnitude == 0.01

    def test_coarse_fraction(self) -> None:
        target = _make_target(yield_balance=80.0)
        action = plan(_view(target), FakeOracle(extract=0.25), target)
        assert action.threads == 4

    def test_deterministic(self) -> None:
        target = _make_target(yield_balance=77.0)
        oracle = FakeOracle(extract=0.03)
        first = plan(_view(target), oracle, target)
        second = plan(_view(target), oracle, target)
        assert first == second


# ─────────────────────────────────────────────────────────────────────────────
# Group 4: oracle inconsistencies
# ─────────────────────────────────────────────────────────────────────────────

class TestOracleInconsistency:

    def test_zero_extract_fraction_plans_nothing(self) -> None:
        target = _make_target(yield_balance=90.0)
        assert plan(_view(target), FakeOracle(extract=0.0), target) is None

    def test_negative_extract_fraction_plans_nothing(self) -> None:
        target = _make_target(yield_balance=90.0)
        assert plan(_view(target), FakeOracle(extract=-0.5), target) is None

    def test_nan_doublings_plans_nothing(self) -> None:
        target = _make_target(yield_balance=10.0)
        assert plan(_view(target), FakeOracle(doublings=math.nan), target) is None

    def test_zero_doublings_plans_nothing(self) -> None:
        target = _make_target(yield_balance=10.0)
        assert plan(_view(target), FakeOracle(doublings=0.0), target) is None

    def test_non_positive_stabilize_unit_falls_through(self) -> None:
        target = _make_target(stability=80.0, yield_balance=10.0)
        action = plan(_view(target), FakeOracle(stabilize=0.0), target)
        assert action.kind == ActionKind.REPLENISH

    def test_threads_never_negative(self) -> None:
        target = _make_target(stability=80.0, yield_balance=10.0)
        action = plan(_view(target), FakeOracle(stabilize=-3.0, doublings=-4.0), target)
        assert action is None
