# price_impact/data.py
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import date
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

import pandas as pd


VERTICAL = "Streaming Service"


class PlanInterval(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class InterventionType(str, Enum):
    NONE = "none"
    SURVEY = "survey"
    PAUSE = "pause"
    INCENTIVE = "incentive"


class IncentiveStrength(str, Enum):
    NONE = "none"
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"


class CancellationOutcome(str, Enum):
    SAVED = "saved"
    CANCELED = "canceled"


class PlanNotFoundError(LookupError):
    """Raised when a plan id does not resolve in the dataset."""

    def __init__(self, plan_id: str) -> None:
        super().__init__(f"Plan not found: {plan_id}")
        self.plan_id = plan_id


# -----------------------
# Records
# -----------------------
@dataclass(frozen=True)
class Merchant:
    id: str
    name: str
    vertical: str = VERTICAL


@dataclass(frozen=True)
class Plan:
    id: str
    merchant_id: str
    name: str
    interval: PlanInterval
    current_price_monthly: float
    active_subs: int
    baseline_churn_90d: float
    arpu_addons_monthly: float
    created_at: date
    # churn-lever baselines
    baseline_cancel_rate_90d: float = 0.0
    payment_failure_rate_90d: float = 0.0
    baseline_dunning_recovery_rate: float = 0.0
    baseline_pause_adoption_rate: float = 0.0

    @property
    def monthly_equivalent(self) -> float:
        """Monthly revenue per subscriber: plan price plus add-ons."""
        return self.current_price_monthly + self.arpu_addons_monthly


@dataclass(frozen=True)
class PriceChangeEvent:
    id: str
    merchant_id: str
    plan_id: str
    effective_date: date
    old_price_monthly: float
    new_price_monthly: float
    pct_change: float
    churn_90d_treatment: float
    churn_90d_control: float
    notes: Optional[str] = None

    @property
    def lift(self) -> float:
        return self.churn_90d_treatment - self.churn_90d_control


@dataclass(frozen=True)
class CancellationEvent:
    id: str
    merchant_id: str
    plan_id: str
    event_date: date
    intervention_type: InterventionType
    incentive_strength: IncentiveStrength
    outcome: CancellationOutcome
    post_event_lifetime_days: Optional[int] = None

    @property
    def saved(self) -> bool:
        return self.outcome == CancellationOutcome.SAVED


@dataclass(frozen=True)
class PaymentFailureEvent:
    id: str
    merchant_id: str
    plan_id: str
    event_date: date
    retries: int
    retry_window_days: int
    fallback_enabled: bool
    recovered: bool
    recovery_days: Optional[int] = None


@dataclass(frozen=True)
class PauseEvent:
    id: str
    merchant_id: str
    plan_id: str
    event_date: date
    pause_enabled: bool
    pause_cycles: int
    resumed: bool
    churned_within_90d: Optional[bool] = None


@dataclass(frozen=True)
class Dataset:
    """
    Read-only evidence store.

    Built once (see generate.generate_dataset or a test fixture) and passed
    to every estimator. Collections are tuples so the snapshot can be shared
    between concurrent readers.
    """
    merchants: Tuple[Merchant, ...] = ()
    plans: Tuple[Plan, ...] = ()
    events: Tuple[PriceChangeEvent, ...] = ()
    cancellation_events: Tuple[CancellationEvent, ...] = ()
    payment_failure_events: Tuple[PaymentFailureEvent, ...] = ()
    pause_events: Tuple[PauseEvent, ...] = ()

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, tuple):
                object.__setattr__(self, f.name, tuple(value))

    def get_plan(self, plan_id: str) -> Plan:
        for plan in self.plans:
            if plan.id == plan_id:
                return plan
        raise PlanNotFoundError(plan_id)

    def find_merchant(self, merchant_id: str) -> Optional[Merchant]:
        return next((m for m in self.merchants if m.id == merchant_id), None)

    def plans_for(self, merchant_id: str) -> Tuple[Plan, ...]:
        return tuple(p for p in self.plans if p.merchant_id == merchant_id)

    def plan_intervals(self) -> Dict[str, PlanInterval]:
        return {p.id: p.interval for p in self.plans}


# -----------------------
# Tabular views
# -----------------------
# table name -> (Dataset attribute, record type)
TABLES = {
    "merchants": ("merchants", Merchant),
    "plans": ("plans", Plan),
    "price_change_events": ("events", PriceChangeEvent),
    "cancellation_events": ("cancellation_events", CancellationEvent),
    "payment_failure_events": ("payment_failure_events", PaymentFailureEvent),
    "pause_events": ("pause_events", PauseEvent),
}


def _to_frame(records: Sequence, columns: Sequence[str]) -> pd.DataFrame:
    df = pd.DataFrame([asdict(r) for r in records], columns=list(columns))
    # Enum members -> plain values for display
    for col in df.columns:
        if len(df) and isinstance(df[col].iloc[0], Enum):
            df[col] = df[col].map(lambda v: v.value)
    return df


def dataset_tables(dataset: Dataset, merchant_id: Optional[str] = None) -> Dict[str, pd.DataFrame]:
    """
    One DataFrame per collection, optionally restricted to a single merchant.
    Column order follows the record field order.
    """
    tables: Dict[str, pd.DataFrame] = {}
    for name, (attr, record_type) in TABLES.items():
        records = getattr(dataset, attr)
        if merchant_id is not None:
            key = "id" if name == "merchants" else "merchant_id"
            records = [r for r in records if getattr(r, key) == merchant_id]
        columns = [f.name for f in fields(record_type)]
        tables[name] = _to_frame(records, columns)
    return tables


def dataset_counts(dataset: Dataset, merchant_id: Optional[str] = None) -> pd.DataFrame:
    tables = dataset_tables(dataset, merchant_id=merchant_id)
    return pd.DataFrame(
        [{"table": name, "rows": len(df)} for name, df in tables.items()]
    )
