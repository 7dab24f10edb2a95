# price_impact/generate.py
from __future__ import annotations

import math
from datetime import date, timedelta
from typing import List, Optional

import pandas as pd

from .data import (
    VERTICAL,
    CancellationEvent,
    CancellationOutcome,
    Dataset,
    IncentiveStrength,
    InterventionType,
    Merchant,
    PauseEvent,
    PaymentFailureEvent,
    Plan,
    PlanInterval,
    PriceChangeEvent,
)
from .rng import SeededRNG
from .utils import clamp

DEFAULT_SEED = 42
TEST_MERCHANT_ID = "m_test"

MERCHANT_NAMES = [
    "StreamFlix",
    "VideoHub",
    "CinemaNow",
    "WatchMax",
    "ScreenTime",
    "MediaStream",
    "EntertainmentPlus",
]

PLAN_NAME_PREFIXES = ["Basic", "Standard", "Premium", "Pro", "Ultra", "Family"]
PLAN_NAME_SUFFIXES = ["Plan", "Tier", "Package"]

# Weighted toward +10% and +15%
PRICE_CHANGE_PCTS = [-0.10, 0.05, 0.10, 0.15, 0.25]
PRICE_CHANGE_WEIGHTS = [0.05, 0.15, 0.35, 0.35, 0.10]

EVENT_NOTES = [
    "Grandfathered cohort excluded",
    "Seasonal promo period",
    "Competitive response",
    "Feature expansion included",
    "Limited time offer",
    "Annual plan discount",
    "Regional pricing test",
    None,
    None,
    None,
]

INTERVENTION_SAVE_RATES = {
    (InterventionType.NONE, IncentiveStrength.NONE): 0.05,
    (InterventionType.SURVEY, IncentiveStrength.NONE): 0.08,
    (InterventionType.PAUSE, IncentiveStrength.NONE): 0.10,
    (InterventionType.INCENTIVE, IncentiveStrength.LIGHT): 0.12,
    (InterventionType.INCENTIVE, IncentiveStrength.MEDIUM): 0.18,
    (InterventionType.INCENTIVE, IncentiveStrength.HEAVY): 0.25,
}


def _round_cents(value: float) -> float:
    # half-up, not banker's rounding
    return math.floor(value * 100 + 0.5) / 100


def _weighted_pct(rng: SeededRNG) -> float:
    r = rng.next()
    cum = 0.0
    for pct, weight in zip(PRICE_CHANGE_PCTS, PRICE_CHANGE_WEIGHTS):
        cum += weight
        if r <= cum:
            return pct
    return PRICE_CHANGE_PCTS[0]


def _synthetic_lift(pct_change: float) -> float:
    """+1.2pp per +10% (cap 15pp); -0.6pp per -10% (cap 10pp)."""
    if pct_change > 0:
        return clamp(0.012 * (pct_change / 0.10), 0.0, 0.15)
    return clamp(0.006 * (pct_change / 0.10), -0.10, 0.0)


def _generate_plans(rng: SeededRNG, merchant_id: str, today: date) -> List[Plan]:
    plans = []
    for p in range(rng.int(3, 6)):
        interval = rng.choice([PlanInterval.MONTHLY, PlanInterval.ANNUAL])
        name = f"{rng.choice(PLAN_NAME_PREFIXES)} {rng.choice(PLAN_NAME_SUFFIXES)}"

        current_price = _round_cents(rng.float(7.99, 29.99))
        active_subs = rng.int(200, 12000)
        baseline_churn = clamp(rng.float(0.02, 0.10), 0, 0.35)

        cancel_rate = clamp(rng.float(0.02, 0.08), 0, 0.15)
        failure_rate = clamp(rng.float(0.01, 0.06), 0, 0.10)
        dunning_recovery = clamp(rng.float(0.30, 0.65), 0.20, 0.80)
        pause_adoption = clamp(rng.float(0.02, 0.15), 0, 0.25)

        addons = _round_cents(rng.float(0, 5))

        months_ago = rng.int(6, 24)
        created_at = (pd.Timestamp(today) - pd.DateOffset(months=months_ago)).date()

        plans.append(Plan(
            id=f"{merchant_id}_plan_{p + 1}",
            merchant_id=merchant_id,
            name=name,
            interval=interval,
            current_price_monthly=current_price,
            active_subs=active_subs,
            baseline_churn_90d=baseline_churn,
            arpu_addons_monthly=addons,
            created_at=created_at,
            baseline_cancel_rate_90d=cancel_rate,
            payment_failure_rate_90d=failure_rate,
            baseline_dunning_recovery_rate=dunning_recovery,
            baseline_pause_adoption_rate=pause_adoption,
        ))
    return plans


def _generate_price_events(
    rng: SeededRNG, merchant: Merchant, plans: List[Plan], today: date
) -> List[PriceChangeEvent]:
    events = []
    for e in range(rng.int(5, 20)):
        plan = rng.choice(plans)
        pct_change = _weighted_pct(rng)

        old_price = plan.current_price_monthly
        new_price = _round_cents(old_price * (1 + pct_change))

        # at least 30 days after plan creation
        days_since_creation = (today - plan.created_at).days
        days_ago = rng.int(0, max(0, days_since_creation - 30))

        churn_control = clamp(plan.baseline_churn_90d + rng.float(-0.02, 0.02), 0, 0.35)
        churn_treatment = clamp(churn_control + _synthetic_lift(pct_change), 0, 0.35)

        events.append(PriceChangeEvent(
            id=f"{merchant.id}_event_{e + 1}",
            merchant_id=merchant.id,
            plan_id=plan.id,
            effective_date=today - timedelta(days=days_ago),
            old_price_monthly=old_price,
            new_price_monthly=new_price,
            pct_change=pct_change,
            churn_90d_treatment=churn_treatment,
            churn_90d_control=churn_control,
            notes=rng.choice(EVENT_NOTES),
        ))
    return events


def _generate_cancellations(rng: SeededRNG, plan: Plan, today: date) -> List[CancellationEvent]:
    interventions = list(InterventionType)
    strengths = [s for s in IncentiveStrength if s != IncentiveStrength.NONE]

    events = []
    for i in range(rng.int(200, 800)):
        intervention = rng.choice(interventions)
        strength = rng.choice(strengths) if intervention == InterventionType.INCENTIVE else IncentiveStrength.NONE

        base_rate = INTERVENTION_SAVE_RATES[(intervention, strength)]
        save_rate = clamp(base_rate + rng.float(-0.03, 0.03), 0.02, 0.35)
        saved = rng.next() < save_rate

        event_date = today - timedelta(days=rng.int(0, 365))
        lifetime = rng.int(30, 365) if saved else None

        events.append(CancellationEvent(
            id=f"{plan.id}_cancel_{i + 1}",
            merchant_id=plan.merchant_id,
            plan_id=plan.id,
            event_date=event_date,
            intervention_type=intervention,
            incentive_strength=strength,
            outcome=CancellationOutcome.SAVED if saved else CancellationOutcome.CANCELED,
            post_event_lifetime_days=lifetime,
        ))
    return events


def _generate_payment_failures(rng: SeededRNG, plan: Plan, today: date) -> List[PaymentFailureEvent]:
    events = []
    for i in range(rng.int(150, 600)):
        retries = rng.int(3, 8)
        window = rng.int(7, 30)
        fallback = rng.next() < 0.4

        # +5% per retry above 3, +1% per day above 7, +15% with fallback
        base_rate = 0.30 + (retries - 3) * 0.05 + (window - 7) * 0.01
        if fallback:
            base_rate += 0.15
        recovery_rate = clamp(base_rate + rng.float(-0.10, 0.10), 0.20, 0.80)
        recovered = rng.next() < recovery_rate

        event_date = today - timedelta(days=rng.int(0, 365))
        recovery_days = rng.int(1, window) if recovered else None

        events.append(PaymentFailureEvent(
            id=f"{plan.id}_payment_{i + 1}",
            merchant_id=plan.merchant_id,
            plan_id=plan.id,
            event_date=event_date,
            retries=retries,
            retry_window_days=window,
            fallback_enabled=fallback,
            recovered=recovered,
            recovery_days=recovery_days,
        ))
    return events


def _generate_pauses(rng: SeededRNG, plan: Plan, today: date) -> List[PauseEvent]:
    events = []
    for i in range(rng.int(100, 500)):
        pause_enabled = rng.next() < 0.7
        cycles = rng.int(1, 6) if pause_enabled else 0

        resume_rate = rng.float(0.55, 0.80)
        if cycles > 3:
            resume_rate -= 0.10
        resume_rate = clamp(resume_rate, 0.40, 0.85)

        resumed = pause_enabled and rng.next() < resume_rate

        churned = None
        if resumed:
            churn_rate = rng.float(0.10, 0.25)
            churned = rng.next() < churn_rate

        event_date = today - timedelta(days=rng.int(0, 365))

        events.append(PauseEvent(
            id=f"{plan.id}_pause_{i + 1}",
            merchant_id=plan.merchant_id,
            plan_id=plan.id,
            event_date=event_date,
            pause_enabled=pause_enabled,
            pause_cycles=cycles,
            resumed=resumed,
            churned_within_90d=churned,
        ))
    return events


def generate_dataset(seed: int = DEFAULT_SEED, now: Optional[date] = None) -> Dataset:
    """
    Build a synthetic streaming-subscription dataset.

    Same seed and same `now` give an identical dataset. The test merchant
    (TEST_MERCHANT_ID) is always first, followed by six named merchants.
    All event collections are sorted newest first.
    """
    rng = SeededRNG(seed)
    today = now or date.today()

    merchants = [Merchant(id=TEST_MERCHANT_ID, name="Test Merchant", vertical=VERTICAL)]
    available = list(MERCHANT_NAMES)
    for i in range(1, 7):
        name = rng.choice(available)
        available.remove(name)
        merchants.append(Merchant(id=f"m_{i}", name=name, vertical=VERTICAL))

    plans: List[Plan] = []
    for merchant in merchants:
        plans.extend(_generate_plans(rng, merchant.id, today))

    events: List[PriceChangeEvent] = []
    for merchant in merchants:
        merchant_plans = [p for p in plans if p.merchant_id == merchant.id]
        events.extend(_generate_price_events(rng, merchant, merchant_plans, today))
    events.sort(key=lambda e: e.effective_date, reverse=True)

    cancellations: List[CancellationEvent] = []
    payments: List[PaymentFailureEvent] = []
    pauses: List[PauseEvent] = []
    for plan in plans:
        cancellations.extend(_generate_cancellations(rng, plan, today))
        payments.extend(_generate_payment_failures(rng, plan, today))
        pauses.extend(_generate_pauses(rng, plan, today))

    cancellations.sort(key=lambda e: e.event_date, reverse=True)
    payments.sort(key=lambda e: e.event_date, reverse=True)
    pauses.sort(key=lambda e: e.event_date, reverse=True)

    return Dataset(
        merchants=merchants,
        plans=plans,
        events=events,
        cancellation_events=cancellations,
        payment_failure_events=payments,
        pause_events=pauses,
    )
