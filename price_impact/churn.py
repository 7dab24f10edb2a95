# price_impact/churn.py
from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

from pydantic import BaseModel

from .data import (
    CancellationEvent,
    Dataset,
    IncentiveStrength,
    InterventionType,
    PauseEvent,
    PaymentFailureEvent,
    Plan,
)
from .scenarios import (
    DEFAULT_CHURN_POLICY,
    ChurnPolicy,
    LeverA,
    LeverB,
    LeverC,
    NoIntervention,
    incentive_strength,
)
from .utils import Confidence, clamp, confidence_from_count

logger = logging.getLogger(__name__)


# -----------------------
# Schemas
# -----------------------
class ChurnSimulationInput(BaseModel):
    merchant_id: str
    plan_id: str
    lever_a: LeverA = NoIntervention()
    lever_b: LeverB = LeverB()
    lever_c: LeverC = LeverC()


class ChurnEvidence(BaseModel):
    comparable_cancellation_events: int
    comparable_payment_events: int
    comparable_pause_events: int
    merchant_cancellation_events: int
    merchant_payment_events: int
    merchant_pause_events: int
    global_cancellation_events: int
    global_payment_events: int
    global_pause_events: int

    @property
    def total(self) -> int:
        return (
            self.comparable_cancellation_events
            + self.comparable_payment_events
            + self.comparable_pause_events
        )


class LeverSaves(BaseModel):
    """Subscribers saved per lever, before the fatigue discount."""
    cancellation: float
    dunning: float
    pause: float


class ChurnSimulationResult(BaseModel):
    recovered_arr: float
    recovered_mrr: float
    saved_subs: float
    churn_reduction_pp: float
    confidence: Confidence
    warnings: List[str]
    evidence: ChurnEvidence
    range_low: float
    range_high: float
    fatigue_factor: float
    lever_saves: LeverSaves


# -----------------------
# Event matching
# -----------------------
def _split_pools(events: Sequence, merchant_id: str, plan_id: str) -> Tuple[list, list]:
    """Same-plan events of this merchant, and of every other merchant."""
    merchant = [e for e in events if e.merchant_id == merchant_id and e.plan_id == plan_id]
    others = [e for e in events if e.merchant_id != merchant_id and e.plan_id == plan_id]
    return merchant, others


def _matches_intervention(event: CancellationEvent, lever_a: LeverA) -> bool:
    if event.intervention_type != lever_a.type:
        return False
    if lever_a.type == InterventionType.INCENTIVE:
        return event.incentive_strength == incentive_strength(lever_a)
    return True


def _matches_dunning(event: PaymentFailureEvent, lever_b: LeverB) -> bool:
    return (
        event.retries == lever_b.retries
        and event.retry_window_days == lever_b.retry_window_days
        and event.fallback_enabled == lever_b.fallback_enabled
    )


def _matches_pause(event: PauseEvent, lever_c: LeverC) -> bool:
    return event.pause_enabled and event.pause_cycles <= lever_c.max_pause_cycles


def _rate(hits: int, total: int, default: float) -> float:
    return hits / total if total > 0 else default


# -----------------------
# Levers
# -----------------------
def cancellation_save_lift(
    events: Sequence[CancellationEvent],
    lever_a: LeverA,
    policy: ChurnPolicy = DEFAULT_CHURN_POLICY,
) -> Tuple[float, List[CancellationEvent]]:
    """
    Save rate of the configured intervention minus save rate with no
    intervention. Returns (unclamped lift, matching events).
    """
    baseline = [e for e in events if e.intervention_type == InterventionType.NONE]
    baseline_rate = _rate(sum(e.saved for e in baseline), len(baseline), policy.default_none_save_rate)

    matching = [e for e in events if _matches_intervention(e, lever_a)]
    configured_rate = _rate(sum(e.saved for e in matching), len(matching), baseline_rate)

    return configured_rate - baseline_rate, matching


def dunning_recovery_lift(
    events: Sequence[PaymentFailureEvent],
    lever_b: LeverB,
    plan: Plan,
    policy: ChurnPolicy = DEFAULT_CHURN_POLICY,
) -> Tuple[float, List[PaymentFailureEvent]]:
    """
    Recovery rate of the configured retry policy minus recovery rate of the
    baseline policy (3 retries over 7 days, no fallback). Falls back to the
    plan's static recovery rate when no baseline events exist.
    """
    baseline_lever = LeverB(
        retries=policy.baseline_retries,
        retry_window_days=policy.baseline_retry_window_days,
        fallback_enabled=policy.baseline_fallback_enabled,
    )
    baseline = [e for e in events if _matches_dunning(e, baseline_lever)]
    baseline_rate = _rate(
        sum(e.recovered for e in baseline), len(baseline), plan.baseline_dunning_recovery_rate
    )

    matching = [e for e in events if _matches_dunning(e, lever_b)]
    configured_rate = _rate(sum(e.recovered for e in matching), len(matching), baseline_rate)

    return configured_rate - baseline_rate, matching


def pause_resume_lift(
    events: Sequence[PauseEvent],
    lever_c: LeverC,
) -> Tuple[float, List[PauseEvent]]:
    """
    Share of matching pause events that resumed and did not churn within
    90 days. Without a pause offer nobody can resume, so the baseline is 0
    and the lift equals the configured rate.
    """
    if not lever_c.pause_enabled:
        return 0.0, []

    matching = [e for e in events if _matches_pause(e, lever_c)]
    stayed = sum(1 for e in matching if e.resumed and e.churned_within_90d is False)
    return _rate(stayed, len(matching), 0.0), matching


def fatigue_factor(
    lever_a: LeverA,
    lever_b: LeverB,
    lever_c: LeverC,
    policy: ChurnPolicy = DEFAULT_CHURN_POLICY,
) -> float:
    fatigue = 0.0
    if incentive_strength(lever_a) == IncentiveStrength.HEAVY:
        fatigue += policy.heavy_incentive_fatigue
    if lever_b.retries >= policy.retries_fatigue_at:
        fatigue += policy.retries_fatigue
    if lever_b.retry_window_days >= policy.window_fatigue_at:
        fatigue += policy.window_fatigue
    if lever_b.fallback_enabled:
        fatigue += policy.fallback_fatigue
    if lever_c.max_pause_cycles >= policy.pause_cycles_fatigue_at:
        fatigue += policy.pause_cycles_fatigue
    return clamp(fatigue, 0.0, policy.max_fatigue)


def is_aggressive(
    lever_a: LeverA,
    lever_b: LeverB,
    lever_c: LeverC,
    policy: ChurnPolicy = DEFAULT_CHURN_POLICY,
) -> bool:
    return (
        incentive_strength(lever_a) == IncentiveStrength.HEAVY
        or lever_b.retries >= policy.aggressive_retries
        or lever_b.retry_window_days >= policy.aggressive_window_days
        or lever_c.max_pause_cycles >= policy.aggressive_pause_cycles
    )


def _range_multiplier(confidence: Confidence, policy: ChurnPolicy) -> float:
    if confidence == Confidence.HIGH:
        return policy.range_high
    if confidence == Confidence.MED:
        return policy.range_med
    return policy.range_low


def simulate_churn(
    dataset: Dataset,
    inp: ChurnSimulationInput,
    policy: ChurnPolicy = DEFAULT_CHURN_POLICY,
) -> ChurnSimulationResult:
    """
    Estimate subscribers and ARR recovered by a combination of retention levers.

    Evidence is always the target plan's events from this merchant plus the
    same plan's events from every other merchant.

      saved_A = expected_cancels * clamp(save_lift, -0.05, 0.35)
      saved_B = expected_dunning_losses * clamp(recovery_lift, -0.10, 0.60)
      saved_C = expected_cancels * pause_adoption * clamp(pause_lift, -0.10, 0.50)
      effective = (saved_A + saved_B + saved_C) * (1 - fatigue)

    Savings can be negative when a lever underperforms its baseline; they are
    not floored at zero.

    Raises PlanNotFoundError if inp.plan_id is not in the dataset.
    """
    plan = dataset.get_plan(inp.plan_id)
    lever_a, lever_b, lever_c = inp.lever_a, inp.lever_b, inp.lever_c

    m_cancel, g_cancel = _split_pools(dataset.cancellation_events, inp.merchant_id, plan.id)
    m_payment, g_payment = _split_pools(dataset.payment_failure_events, inp.merchant_id, plan.id)
    m_pause, g_pause = _split_pools(dataset.pause_events, inp.merchant_id, plan.id)

    # Baselines
    subs = plan.active_subs
    expected_cancels = subs * plan.baseline_cancel_rate_90d
    expected_payment_failures = subs * plan.payment_failure_rate_90d
    expected_dunning_losses = expected_payment_failures * (1 - plan.baseline_dunning_recovery_rate)

    # Lever A
    save_lift, matching_cancel = cancellation_save_lift(m_cancel + g_cancel, lever_a, policy)
    saved_a = expected_cancels * clamp(save_lift, *policy.save_lift_bounds)

    # Lever B
    recovery_lift, matching_payment = dunning_recovery_lift(m_payment + g_payment, lever_b, plan, policy)
    saved_b = expected_dunning_losses * clamp(recovery_lift, *policy.recovery_lift_bounds)

    # Lever C
    saved_c = 0.0
    pause_lift, matching_pause = pause_resume_lift(m_pause + g_pause, lever_c)
    if lever_c.pause_enabled:
        saved_c = expected_cancels * plan.baseline_pause_adoption_rate * clamp(pause_lift, *policy.pause_lift_bounds)

    fatigue = fatigue_factor(lever_a, lever_b, lever_c, policy)
    effective_saved = (saved_a + saved_b + saved_c) * (1 - fatigue)

    recovered_mrr = effective_saved * plan.monthly_equivalent
    recovered_arr = recovered_mrr * 12

    merchant_cancel_count = sum(1 for e in m_cancel if _matches_intervention(e, lever_a))
    merchant_payment_count = sum(1 for e in m_payment if _matches_dunning(e, lever_b))
    merchant_pause_count = (
        sum(1 for e in m_pause if _matches_pause(e, lever_c)) if lever_c.pause_enabled else 0
    )
    evidence = ChurnEvidence(
        comparable_cancellation_events=len(matching_cancel),
        comparable_payment_events=len(matching_payment),
        comparable_pause_events=len(matching_pause),
        merchant_cancellation_events=merchant_cancel_count,
        merchant_payment_events=merchant_payment_count,
        merchant_pause_events=merchant_pause_count,
        global_cancellation_events=len(matching_cancel) - merchant_cancel_count,
        global_payment_events=len(matching_payment) - merchant_payment_count,
        global_pause_events=len(matching_pause) - merchant_pause_count,
    )

    confidence = confidence_from_count(
        evidence.total, policy.high_confidence_events, policy.med_confidence_events
    )
    spread = _range_multiplier(confidence, policy)
    range_low, range_high = sorted((recovered_arr * (1 - spread), recovered_arr * (1 + spread)))

    total_expected_churn = expected_cancels + expected_dunning_losses
    saved_share = effective_saved / total_expected_churn if total_expected_churn > 0 else 0.0
    churn_reduction_pp = saved_share * plan.baseline_churn_90d * 100

    warnings: List[str] = []
    if saved_share > policy.aggressive_saved_share or is_aggressive(lever_a, lever_b, lever_c, policy):
        warnings.append(policy.aggressive_warning)

    logger.debug(
        "simulate_churn plan=%s saved=(%.2f, %.2f, %.2f) fatigue=%.2f evidence=%d",
        plan.id, saved_a, saved_b, saved_c, fatigue, evidence.total,
    )

    return ChurnSimulationResult(
        recovered_arr=recovered_arr,
        recovered_mrr=recovered_mrr,
        saved_subs=effective_saved,
        churn_reduction_pp=churn_reduction_pp,
        confidence=confidence,
        warnings=warnings,
        evidence=evidence,
        range_low=range_low,
        range_high=range_high,
        fatigue_factor=fatigue,
        lever_saves=LeverSaves(cancellation=saved_a, dunning=saved_b, pause=saved_c),
    )
