from __future__ import annotations

import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).resolve().parents[1]
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from price_impact.data import (
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

TODAY = date(2025, 6, 1)

MERCHANT = "m_test"
OTHER = "m_other"
PLAN = "m_test_plan_1"


def make_plan(
    plan_id: str = PLAN,
    merchant_id: str = MERCHANT,
    interval: PlanInterval = PlanInterval.MONTHLY,
    price: float = 20.0,
    subs: int = 1000,
    churn: float = 0.05,
    addons: float = 0.0,
) -> Plan:
    return Plan(
        id=plan_id,
        merchant_id=merchant_id,
        name="Standard Plan",
        interval=interval,
        current_price_monthly=price,
        active_subs=subs,
        baseline_churn_90d=churn,
        arpu_addons_monthly=addons,
        created_at=date(2024, 1, 1),
        baseline_cancel_rate_90d=0.05,
        payment_failure_rate_90d=0.04,
        baseline_dunning_recovery_rate=0.50,
        baseline_pause_adoption_rate=0.10,
    )


def make_price_events(
    n: int,
    pct: float,
    lift: float,
    merchant_id: str = MERCHANT,
    plan_id: str = PLAN,
    old_price: float = 20.0,
    control: float = 0.05,
    prefix: str = "ev",
) -> list:
    return [
        PriceChangeEvent(
            id=f"{prefix}_{merchant_id}_{i}",
            merchant_id=merchant_id,
            plan_id=plan_id,
            effective_date=TODAY - timedelta(days=i),
            old_price_monthly=old_price,
            new_price_monthly=old_price * (1 + pct),
            pct_change=pct,
            churn_90d_treatment=control + lift,
            churn_90d_control=control,
        )
        for i in range(n)
    ]


def make_cancellations(
    n: int,
    saved: int,
    intervention: InterventionType,
    strength: IncentiveStrength = IncentiveStrength.NONE,
    merchant_id: str = MERCHANT,
    plan_id: str = PLAN,
    prefix: str = "c",
) -> list:
    return [
        CancellationEvent(
            id=f"{prefix}_{intervention.value}_{strength.value}_{merchant_id}_{i}",
            merchant_id=merchant_id,
            plan_id=plan_id,
            event_date=TODAY,
            intervention_type=intervention,
            incentive_strength=strength,
            outcome=CancellationOutcome.SAVED if i < saved else CancellationOutcome.CANCELED,
            post_event_lifetime_days=90 if i < saved else None,
        )
        for i in range(n)
    ]


def make_payments(
    n: int,
    recovered: int,
    retries: int,
    window: int,
    fallback: bool,
    merchant_id: str = MERCHANT,
    plan_id: str = PLAN,
) -> list:
    return [
        PaymentFailureEvent(
            id=f"p_{retries}_{window}_{fallback}_{merchant_id}_{i}",
            merchant_id=merchant_id,
            plan_id=plan_id,
            event_date=TODAY,
            retries=retries,
            retry_window_days=window,
            fallback_enabled=fallback,
            recovered=i < recovered,
            recovery_days=3 if i < recovered else None,
        )
        for i in range(n)
    ]


def make_pauses(
    cycles: int,
    stayed: int,
    churned: int,
    not_resumed: int,
    enabled: bool = True,
    merchant_id: str = MERCHANT,
    plan_id: str = PLAN,
) -> list:
    events = []
    outcomes = [(True, False)] * stayed + [(True, True)] * churned + [(False, None)] * not_resumed
    for i, (resumed, churned_flag) in enumerate(outcomes):
        events.append(PauseEvent(
            id=f"pz_{cycles}_{enabled}_{merchant_id}_{i}",
            merchant_id=merchant_id,
            plan_id=plan_id,
            event_date=TODAY,
            pause_enabled=enabled,
            pause_cycles=cycles if enabled else 0,
            resumed=resumed,
            churned_within_90d=churned_flag,
        ))
    return events


def build_dataset(plans=None, events=(), cancellations=(), payments=(), pauses=()) -> Dataset:
    plans = plans or [make_plan()]
    merchant_ids = sorted({p.merchant_id for p in plans} | {MERCHANT, OTHER})
    return Dataset(
        merchants=[Merchant(id=m, name=m) for m in merchant_ids],
        plans=plans,
        events=events,
        cancellation_events=cancellations,
        payment_failure_events=payments,
        pause_events=pauses,
    )


@pytest.fixture
def sparse_dataset() -> Dataset:
    """One plan (1000 subs at $20, 5% churn) and no historical events."""
    return build_dataset()


@pytest.fixture
def evidence_dataset() -> Dataset:
    """30 merchant events at +10% with a 1.2pp lift on the target plan."""
    return build_dataset(events=make_price_events(30, pct=0.10, lift=0.012))
