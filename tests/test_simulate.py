from __future__ import annotations

import math

import numpy as np
import pytest

from conftest import MERCHANT, OTHER, PLAN, build_dataset, make_plan, make_price_events
from price_impact.data import PlanInterval, PlanNotFoundError
from price_impact.scenarios import DEFAULT_PRICE_POLICY
from price_impact.simulate import (
    SimulationInput,
    evidence_lift,
    extreme_multiplier,
    heuristic_lift,
    price_shock_weight,
    similarity_scores,
    simulate,
    weigh_events,
)
from price_impact.utils import Confidence


def _run(dataset, price, use_global=False, merchant_id=MERCHANT, plan_id=PLAN):
    return simulate(dataset, SimulationInput(
        merchant_id=merchant_id,
        plan_id=plan_id,
        new_price_monthly=price,
        use_global_benchmarks=use_global,
    ))


# -----------------------
# Heuristic branch
# -----------------------
def test_unchanged_price_has_no_impact(sparse_dataset):
    res = _run(sparse_dataset, 20.0)
    assert res.pct_change == 0
    assert res.used_heuristic
    assert res.churn_lift == pytest.approx(0.0)
    assert res.expected_churn_90d == pytest.approx(0.05)
    assert res.net_arr_delta == pytest.approx(0.0)
    assert not res.applied_price_shock


def test_twenty_percent_increase_uses_heuristic(sparse_dataset):
    res = _run(sparse_dataset, 24.0)

    assert res.used_heuristic
    assert res.evidence_count == 0
    assert res.confidence == Confidence.LOW
    assert res.pct_change == pytest.approx(0.20)
    assert res.churn_lift == pytest.approx(0.024)
    assert res.expected_churn_90d == pytest.approx(0.074)
    assert not res.applied_price_shock
    assert res.price_shock_weight is None
    assert res.price_shock_note is None

    # 24 incremental churners, 976 retained at $24
    assert res.baseline_mrr == pytest.approx(20000.0)
    assert res.new_mrr == pytest.approx(976 * 24.0)
    assert res.net_arr_delta == pytest.approx((976 * 24.0 - 20000.0) * 12)

    band = abs(res.net_arr_delta) * 0.20
    assert res.range_low == pytest.approx(res.net_arr_delta - band)
    assert res.range_high == pytest.approx(res.net_arr_delta + band)


def test_sixty_percent_increase_applies_price_shock(sparse_dataset):
    res = _run(sparse_dataset, 32.0)

    assert res.applied_price_shock
    assert res.price_shock_weight > 0
    assert res.price_shock_note == DEFAULT_PRICE_POLICY.shock_note

    # heuristic lift with the extreme multiplier: 0.012 * 6 * 1.04
    assert res.churn_lift == pytest.approx(0.012 * 6 * 1.04)
    data_driven = 0.05 + res.churn_lift
    expected = data_driven + res.price_shock_weight * (0.90 - data_driven)
    assert res.expected_churn_90d == pytest.approx(expected)
    assert res.expected_churn_90d > data_driven


def test_price_decrease_reduces_churn_but_not_below_retained_base(sparse_dataset):
    res = _run(sparse_dataset, 18.0)

    assert res.churn_lift == pytest.approx(-0.006)
    assert res.expected_churn_90d == pytest.approx(0.044)
    # lower churn than baseline does not add subscribers
    assert res.net_arr_delta == pytest.approx((18000.0 - 20000.0) * 12)


def test_unknown_plan_raises(sparse_dataset):
    with pytest.raises(PlanNotFoundError) as exc:
        _run(sparse_dataset, 20.0, plan_id="nope")
    assert exc.value.plan_id == "nope"


def test_heuristic_lift_caps():
    # +30%: 3.6pp linear, cap 0.06 + 0.2 * 0.2 = 0.10
    assert heuristic_lift(0.30) == pytest.approx(0.036)
    # +200%: multiplier 1 + 3^2 = 10 -> 2.4 linear * 10, capped at 0.40
    assert heuristic_lift(2.0) == pytest.approx(0.40)
    # -90%: -5.4pp * (1 + 0.8^2), inside the 0.14 reduction cap
    assert heuristic_lift(-0.90) == pytest.approx(-0.054 * 1.64)


def test_extreme_multiplier():
    assert extreme_multiplier(0.5) == 1.0
    assert extreme_multiplier(-0.3) == 1.0
    assert extreme_multiplier(1.0) == pytest.approx(2.0)
    assert extreme_multiplier(-1.5) == pytest.approx(5.0)


@pytest.mark.parametrize("pct", [-0.9, -0.5, -0.2, -0.05, 0.0, 0.05, 0.2, 0.4, 0.8, 1.5, 3.0])
def test_heuristic_lift_within_regime_caps(pct):
    lift = heuristic_lift(pct)
    abs_pct = abs(pct)
    if pct > 0:
        assert 0 <= lift <= min(0.40, 0.06 + (abs_pct - 0.10) * 0.20) + 1e-12
    else:
        assert -min(0.20, 0.06 + (abs_pct - 0.10) * 0.10) - 1e-12 <= lift <= 0


@pytest.mark.parametrize("price", [1.0, 5.0, 10.0, 19.0, 20.0, 23.0, 26.0, 30.0, 40.0, 80.0, 200.0])
def test_expected_churn_is_bounded(sparse_dataset, evidence_dataset, price):
    for ds in (sparse_dataset, evidence_dataset):
        res = _run(ds, price)
        assert 0.0 <= res.expected_churn_90d <= 0.90


# -----------------------
# Price shock
# -----------------------
def test_price_shock_weight_ramp():
    assert price_shock_weight(0.25) == 0.0
    assert price_shock_weight(0.70) == pytest.approx(1.0)
    assert price_shock_weight(2.0) == pytest.approx(1.0)
    # midpoint of the ramp
    assert price_shock_weight(0.25 + 0.225) == pytest.approx(0.5)


def test_expected_churn_monotonic_above_safe_increase(sparse_dataset, evidence_dataset):
    prices = np.linspace(20 * 1.26, 20 * 3.0, 40)
    for ds in (sparse_dataset, evidence_dataset):
        churns = [_run(ds, float(p)).expected_churn_90d for p in prices]
        assert all(b >= a - 1e-12 for a, b in zip(churns, churns[1:]))


def test_safe_increase_boundary_is_not_shocked(sparse_dataset):
    assert not _run(sparse_dataset, 25.0).applied_price_shock
    assert _run(sparse_dataset, 25.2).applied_price_shock


# -----------------------
# Evidence branch
# -----------------------
def test_evidence_branch_uses_weighted_mean(evidence_dataset):
    res = _run(evidence_dataset, 22.0)

    assert not res.used_heuristic
    assert res.evidence_count == 30
    assert res.confidence == Confidence.HIGH
    assert res.churn_lift == pytest.approx(0.012)
    assert res.expected_churn_90d == pytest.approx(0.062)
    assert len(res.top_comparable_events) == 6
    assert all(ce.similarity == pytest.approx(1.0) for ce in res.top_comparable_events)
    assert all(not ce.is_global for ce in res.top_comparable_events)


def test_evidence_range_brackets_point_estimate(evidence_dataset):
    res = _run(evidence_dataset, 22.0)
    assert res.range_low < res.net_arr_delta < res.range_high
    # churn 0.042 is below baseline: full base retained at $22
    assert res.range_high == pytest.approx((22000.0 - 20000.0) * 12)
    # churn 0.082: 32 incremental churners
    assert res.range_low == pytest.approx((968 * 22.0 - 20000.0) * 12)


def test_evidence_lift_is_clamped_for_small_increases():
    events = make_price_events(10, pct=0.10, lift=0.20)
    weighted = weigh_events(events, [], 0.20, 20.0)
    # cap: 0.15 + (0.20 - 0.25) * 0.70 = 0.115
    assert evidence_lift(weighted, 0.20) == pytest.approx(0.115)


def test_evidence_lift_extrapolates_beyond_history():
    events = make_price_events(10, pct=0.10, lift=0.012)
    weighted = weigh_events(events, [], 1.0, 20.0)
    # ratio 10 -> 1 + (10 - 1.5) * 0.3 = 3.55
    assert evidence_lift(weighted, 1.0) == pytest.approx(0.012 * 3.55)


def test_evidence_lift_zero_total_weight():
    events = make_price_events(6, pct=0.10, lift=0.05, old_price=40.0)
    weighted = weigh_events([], events, 0.10, 20.0)
    assert all(ce.weight == 0 for ce in weighted)
    assert evidence_lift(weighted, 0.10) == 0.0


@pytest.mark.parametrize("n,expected", [
    (25, Confidence.HIGH),
    (24, Confidence.MED),
    (10, Confidence.MED),
    (9, Confidence.LOW),
])
def test_confidence_boundaries(n, expected):
    ds = build_dataset(events=make_price_events(n, pct=0.10, lift=0.012))
    assert _run(ds, 22.0).confidence == expected


# -----------------------
# Evidence pools
# -----------------------
def test_same_plan_events_narrow_the_pool():
    plans = [make_plan(), make_plan(plan_id="m_test_plan_2")]
    events = (
        make_price_events(3, pct=0.10, lift=0.01)
        + make_price_events(4, pct=0.10, lift=0.01, plan_id="m_test_plan_2", prefix="p2")
    )
    res = _run(build_dataset(plans=plans, events=events), 22.0)
    assert res.evidence_count == 3
    assert res.used_heuristic


def test_sibling_plans_fill_the_pool_when_target_plan_is_thin():
    plans = [make_plan(), make_plan(plan_id="m_test_plan_2")]
    events = (
        make_price_events(2, pct=0.10, lift=0.01)
        + make_price_events(4, pct=0.10, lift=0.01, plan_id="m_test_plan_2", prefix="p2")
    )
    res = _run(build_dataset(plans=plans, events=events), 22.0)
    assert res.evidence_count == 6
    assert not res.used_heuristic


def test_other_interval_events_are_ignored():
    plans = [make_plan(), make_plan(plan_id="m_test_plan_2", interval=PlanInterval.ANNUAL)]
    events = make_price_events(10, pct=0.10, lift=0.01, plan_id="m_test_plan_2")
    res = _run(build_dataset(plans=plans, events=events), 22.0)
    assert res.evidence_count == 0


def test_global_benchmarks_are_opt_in():
    plans = [make_plan(), make_plan(plan_id="m_other_plan_1", merchant_id=OTHER)]
    events = make_price_events(8, pct=0.10, lift=0.02, merchant_id=OTHER, plan_id="m_other_plan_1")
    ds = build_dataset(plans=plans, events=events)

    assert _run(ds, 22.0).evidence_count == 0

    res = _run(ds, 22.0, use_global=True)
    assert res.evidence_count == 8
    assert not res.used_heuristic
    assert all(ce.is_global for ce in res.top_comparable_events)
    assert res.churn_lift == pytest.approx(0.02)


def test_global_events_outside_price_band_count_but_weigh_nothing():
    plans = [make_plan(), make_plan(plan_id="m_other_plan_1", merchant_id=OTHER, price=30.0)]
    far = make_price_events(5, pct=0.10, lift=0.02, merchant_id=OTHER, plan_id="m_other_plan_1", old_price=30.0)
    ds = build_dataset(plans=plans, events=far)

    res = _run(ds, 22.0, use_global=True)
    assert res.evidence_count == 5
    assert all(ce.weight == 0 for ce in res.top_comparable_events)
    # zero total weight: no lift
    assert res.churn_lift == 0.0


def test_merchant_and_global_weights_split_by_pool_size():
    merchant_events = make_price_events(2, pct=0.10, lift=0.01)
    global_events = make_price_events(6, pct=0.10, lift=0.01, merchant_id=OTHER, prefix="g")
    weighted = weigh_events(merchant_events, global_events, 0.10, 20.0)

    assert all(ce.weight == pytest.approx(0.25) for ce in weighted if not ce.is_global)
    assert all(ce.weight == pytest.approx(0.75) for ce in weighted if ce.is_global)
    # heaviest first
    assert weighted[0].is_global


# -----------------------
# Similarity
# -----------------------
def test_similarity_normal_regime():
    sims = similarity_scores(
        np.array([0.10, 0.20]), np.array([20.0, 20.0]), np.array([False, False]), 0.10, 20.0
    )
    assert sims[0] == pytest.approx(1.0)
    assert sims[1] == pytest.approx(math.exp(-1.0))


def test_similarity_extreme_regime_uses_relative_difference():
    sims = similarity_scores(
        np.array([0.80]), np.array([20.0]), np.array([False]), 1.0, 20.0
    )
    # |0.2| / max(1.0, 0.8, 0.1) * 5
    assert sims[0] == pytest.approx(math.exp(-1.0))


def test_similarity_price_proximity_for_global_events():
    sims = similarity_scores(
        np.array([0.10, 0.10, 0.10]),
        np.array([23.0, 23.0, 26.0]),
        np.array([False, True, True]),
        0.10,
        20.0,
    )
    assert sims[0] == pytest.approx(1.0)
    assert sims[1] == pytest.approx(0.5)
    assert sims[2] == pytest.approx(0.0)
