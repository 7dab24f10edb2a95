# price_impact/simulate.py
from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel

from .data import Dataset, Plan, PriceChangeEvent
from .scenarios import DEFAULT_PRICE_POLICY, PricePolicy
from .utils import Confidence, clamp, confidence_from_count, smoothstep

logger = logging.getLogger(__name__)


# -----------------------
# Schemas
# -----------------------
class SimulationInput(BaseModel):
    merchant_id: str
    plan_id: str
    new_price_monthly: float
    use_global_benchmarks: bool = False


class ComparableEvent(BaseModel):
    event: PriceChangeEvent
    weight: float
    similarity: float
    is_global: bool


class SimulationResult(BaseModel):
    inputs: SimulationInput
    pct_change: float
    evidence_count: int
    confidence: Confidence
    baseline_churn_90d: float
    expected_churn_90d: float
    churn_lift: float
    baseline_mrr: float
    new_mrr: float
    net_mrr_delta: float
    net_arr_delta: float
    range_low: float
    range_high: float
    top_comparable_events: List[ComparableEvent]
    used_heuristic: bool
    applied_price_shock: bool = False
    price_shock_weight: Optional[float] = None
    price_shock_note: Optional[str] = None


# -----------------------
# Evidence
# -----------------------
def collect_evidence(
    dataset: Dataset,
    plan: Plan,
    merchant_id: str,
    use_global_benchmarks: bool,
) -> Tuple[List[PriceChangeEvent], List[PriceChangeEvent]]:
    """
    Return (merchant_pool, global_pool).

    merchant_pool: this merchant's events on plans with the same billing
    interval, narrowed to the exact plan when it has at least 3 events.
    global_pool: other merchants' events with the same interval (empty unless
    use_global_benchmarks).
    """
    intervals = dataset.plan_intervals()

    merchant_pool = [
        e for e in dataset.events
        if e.merchant_id == merchant_id and intervals.get(e.plan_id) == plan.interval
    ]
    same_plan = [e for e in merchant_pool if e.plan_id == plan.id]
    if len(same_plan) >= 3:
        merchant_pool = same_plan

    global_pool: List[PriceChangeEvent] = []
    if use_global_benchmarks:
        global_pool = [
            e for e in dataset.events
            if e.merchant_id != merchant_id and intervals.get(e.plan_id) == plan.interval
        ]

    return merchant_pool, global_pool


def similarity_scores(
    event_pcts: np.ndarray,
    event_old_prices: np.ndarray,
    is_global: np.ndarray,
    pct_change: float,
    old_price: float,
    policy: PricePolicy = DEFAULT_PRICE_POLICY,
) -> np.ndarray:
    """
    Per-event similarity in [0, 1].

    Normal regime (both |pct| <= 0.50):  exp(-10 * |dpct|)
    Extreme regime (either side > 0.50): exp(-5 * |dpct| / max(|pct|, |event pct|, 0.10))
    Global events are additionally scaled by price proximity:
        max(0, 1 - |event old price - old price| / (0.30 * old price))
    """
    pct_diff = np.abs(event_pcts - pct_change)
    abs_query = abs(pct_change)
    abs_events = np.abs(event_pcts)

    extreme = (abs_query > policy.extreme_pct) | (abs_events > policy.extreme_pct)
    scale = np.maximum(np.maximum(abs_events, abs_query), policy.relative_diff_floor)
    w_normal = np.exp(-pct_diff * policy.normal_decay)
    w_extreme = np.exp(-(pct_diff / scale) * policy.extreme_decay)
    w_pct = np.where(extreme, w_extreme, w_normal)

    price_band = old_price * policy.global_price_band
    proximity = np.maximum(0.0, 1 - np.abs(event_old_prices - old_price) / price_band)
    w_price = np.where(is_global, proximity, 1.0)

    return w_pct * w_price


def weigh_events(
    merchant_pool: Sequence[PriceChangeEvent],
    global_pool: Sequence[PriceChangeEvent],
    pct_change: float,
    old_price: float,
    policy: PricePolicy = DEFAULT_PRICE_POLICY,
) -> List[ComparableEvent]:
    """Score both pools and return them sorted by weight, heaviest first."""
    merchant_count = len(merchant_pool)
    global_count = len(global_pool)
    total = merchant_count + global_count

    merchant_weight, global_weight = 1.0, 0.0
    if total > 0:
        merchant_weight = merchant_count / total
        global_weight = global_count / total

    pool = [(e, False) for e in merchant_pool] + [(e, True) for e in global_pool]
    if not pool:
        return []

    sims = similarity_scores(
        np.array([e.pct_change for e, _ in pool], dtype=float),
        np.array([e.old_price_monthly for e, _ in pool], dtype=float),
        np.array([g for _, g in pool], dtype=bool),
        pct_change,
        old_price,
        policy=policy,
    )

    weighted = [
        ComparableEvent(
            event=event,
            weight=float(sim) * (global_weight if is_global else merchant_weight),
            similarity=float(sim),
            is_global=is_global,
        )
        for (event, is_global), sim in zip(pool, sims)
    ]
    # stable: equal weights keep merchant-first pool order
    weighted.sort(key=lambda ce: ce.weight, reverse=True)
    return weighted


# -----------------------
# Churn lift
# -----------------------
def extreme_multiplier(pct_change: float, policy: PricePolicy = DEFAULT_PRICE_POLICY) -> float:
    """1 + ((|pct| - 0.5) / 0.5)^2 beyond the extreme threshold, else 1."""
    abs_pct = abs(pct_change)
    if abs_pct <= policy.extreme_pct:
        return 1.0
    excess = (abs_pct - policy.extreme_pct) / policy.extreme_pct
    return 1 + excess * excess


def heuristic_lift(pct_change: float, policy: PricePolicy = DEFAULT_PRICE_POLICY) -> float:
    """
    Sparse-evidence fallback:
      increases: +1.2pp per +10%, capped at min(0.40, 0.06 + (|pct| - 0.10) * 0.20)
      decreases: -0.6pp per -10%, reduction capped at min(0.20, 0.06 + (|pct| - 0.10) * 0.10)
    Both scaled by the extreme multiplier before capping.
    """
    abs_pct = abs(pct_change)
    mult = extreme_multiplier(pct_change, policy)
    if pct_change > 0:
        lift = policy.heuristic_increase_lift * (pct_change / 0.10) * mult
        max_lift = min(0.40, 0.06 + (abs_pct - 0.10) * 0.20)
        return clamp(lift, 0.0, max_lift)

    lift = policy.heuristic_decrease_lift * (pct_change / 0.10) * mult
    max_lift = min(0.20, 0.06 + (abs_pct - 0.10) * 0.10)
    return clamp(lift, -max_lift, 0.0)


def evidence_lift(
    weighted: Sequence[ComparableEvent],
    pct_change: float,
    policy: PricePolicy = DEFAULT_PRICE_POLICY,
) -> float:
    """
    Weighted mean of (treatment - control) churn over comparable events.

    For extreme changes beyond 1.5x the weighted-average historical |pct|,
    the lift is scaled by 1 + (ratio - 1.5) * 0.3. Final clamp depends on
    direction:
      increases: +/- min(0.50, 0.15 + (|pct| - 0.25) * 0.70)
      decreases: +/- min(0.30, 0.15 + (|pct| - 0.25) * 0.30)
    """
    abs_pct = abs(pct_change)
    weights = np.array([ce.weight for ce in weighted], dtype=float)
    total_weight = float(weights.sum())

    lift = 0.0
    if total_weight > 0:
        lifts = np.array([ce.event.lift for ce in weighted], dtype=float)
        lift = float(np.dot(lifts, weights) / total_weight)

        if abs_pct > policy.extreme_pct:
            hist_pcts = np.abs(np.array([ce.event.pct_change for ce in weighted], dtype=float))
            avg_hist = float(np.dot(hist_pcts, weights) / total_weight)
            if avg_hist > 0 and abs_pct > avg_hist * policy.extrapolation_ratio:
                ratio = abs_pct / avg_hist
                adjustment = (ratio - policy.extrapolation_ratio) * policy.extrapolation_slope
                lift *= 1 + max(0.0, adjustment)

    if pct_change > 0:
        max_lift = min(0.50, 0.15 + (abs_pct - 0.25) * 0.70)
    else:
        max_lift = min(0.30, 0.15 + (abs_pct - 0.25) * 0.30)
    return clamp(lift, -max_lift, max_lift)


def price_shock_weight(pct_change: float, policy: PricePolicy = DEFAULT_PRICE_POLICY) -> float:
    """Smoothstep ramp over 3 * 0.15 beyond the +25% safe increase."""
    excess = pct_change - policy.safe_increase_pct
    ramp = policy.shock_ramp_factor * policy.shock_ramp_pct
    return smoothstep(clamp(excess / ramp, 0.0, 1.0))


def apply_price_shock(churn: float, weight: float, policy: PricePolicy = DEFAULT_PRICE_POLICY) -> float:
    shocked = churn + weight * (policy.max_churn_90d - churn)
    return clamp(shocked, 0.0, policy.max_churn_90d)


# -----------------------
# Revenue
# -----------------------
def _mrr_at(plan: Plan, price: float, churn: float) -> float:
    """MRR after incremental churn above baseline, at the given price."""
    subs = plan.active_subs
    incremental = subs * max(churn - plan.baseline_churn_90d, 0.0)
    retained = subs - incremental
    return retained * price + retained * plan.arpu_addons_monthly


def simulate(
    dataset: Dataset,
    inp: SimulationInput,
    policy: PricePolicy = DEFAULT_PRICE_POLICY,
) -> SimulationResult:
    """
    Estimate 90-day churn and ARR impact of moving a plan to a new monthly price.

    Raises PlanNotFoundError if inp.plan_id is not in the dataset.
    """
    plan = dataset.get_plan(inp.plan_id)

    old_price = plan.current_price_monthly
    new_price = inp.new_price_monthly
    pct_change = (new_price - old_price) / old_price

    merchant_pool, global_pool = collect_evidence(
        dataset, plan, inp.merchant_id, inp.use_global_benchmarks
    )
    weighted = weigh_events(merchant_pool, global_pool, pct_change, old_price, policy)
    evidence_count = len(weighted)

    used_heuristic = evidence_count < policy.min_evidence
    if used_heuristic:
        churn_lift = heuristic_lift(pct_change, policy)
    else:
        churn_lift = evidence_lift(weighted, pct_change, policy)

    baseline_churn = plan.baseline_churn_90d
    data_driven_churn = clamp(baseline_churn + churn_lift, 0.0, policy.data_driven_churn_cap)

    expected_churn = data_driven_churn
    applied_shock = pct_change > policy.safe_increase_pct
    shock_weight = 0.0
    if applied_shock:
        shock_weight = price_shock_weight(pct_change, policy)
        expected_churn = apply_price_shock(data_driven_churn, shock_weight, policy)

    baseline_mrr = plan.active_subs * old_price + plan.active_subs * plan.arpu_addons_monthly
    new_mrr = _mrr_at(plan, new_price, expected_churn)
    net_mrr_delta = new_mrr - baseline_mrr
    net_arr_delta = net_mrr_delta * 12

    if not used_heuristic:
        cap = policy.data_driven_churn_cap
        low_churn = clamp(baseline_churn + churn_lift - policy.range_lift, 0.0, cap)
        high_churn = clamp(baseline_churn + churn_lift + policy.range_lift, 0.0, cap)
        if applied_shock:
            low_churn = apply_price_shock(low_churn, shock_weight, policy)
            high_churn = apply_price_shock(high_churn, shock_weight, policy)
        # higher churn retains less revenue, so it bounds ARR from below
        range_low = (_mrr_at(plan, new_price, high_churn) - baseline_mrr) * 12
        range_high = (_mrr_at(plan, new_price, low_churn) - baseline_mrr) * 12
    else:
        band = abs(net_arr_delta) * policy.heuristic_range
        range_low = net_arr_delta - band
        range_high = net_arr_delta + band

    confidence = confidence_from_count(
        evidence_count, policy.high_confidence_events, policy.med_confidence_events
    )

    logger.debug(
        "simulate plan=%s pct=%.4f evidence=%d heuristic=%s lift=%.4f shock=%.3f",
        plan.id, pct_change, evidence_count, used_heuristic, churn_lift, shock_weight,
    )

    return SimulationResult(
        inputs=inp,
        pct_change=pct_change,
        evidence_count=evidence_count,
        confidence=confidence,
        baseline_churn_90d=baseline_churn,
        expected_churn_90d=expected_churn,
        churn_lift=churn_lift,
        baseline_mrr=baseline_mrr,
        new_mrr=new_mrr,
        net_mrr_delta=net_mrr_delta,
        net_arr_delta=net_arr_delta,
        range_low=range_low,
        range_high=range_high,
        top_comparable_events=weighted[: policy.top_events],
        used_heuristic=used_heuristic,
        applied_price_shock=applied_shock,
        price_shock_weight=shock_weight if applied_shock else None,
        price_shock_note=policy.shock_note if applied_shock else None,
    )
