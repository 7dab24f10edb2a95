# price_impact/scenarios.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Dict, Literal, Union

from pydantic import BaseModel, Field, field_validator

from .data import IncentiveStrength


# -----------------------
# Numeric policies
# -----------------------
@dataclass(frozen=True)
class PricePolicy:
    # price shock
    safe_increase_pct: float = 0.25
    shock_ramp_pct: float = 0.15
    shock_ramp_factor: float = 3.0
    max_churn_90d: float = 0.90
    data_driven_churn_cap: float = 0.50
    shock_note: str = (
        "Extreme price increase detected; applied non-linear price shock "
        "adjustment to prevent unrealistic retention assumptions."
    )

    # similarity
    extreme_pct: float = 0.50
    normal_decay: float = 10.0
    extreme_decay: float = 5.0
    relative_diff_floor: float = 0.10
    global_price_band: float = 0.30

    # lift
    min_evidence: int = 5
    heuristic_increase_lift: float = 0.012  # per +10%
    heuristic_decrease_lift: float = 0.006  # per -10%
    extrapolation_ratio: float = 1.5
    extrapolation_slope: float = 0.3

    # outputs
    top_events: int = 6
    range_lift: float = 0.02
    heuristic_range: float = 0.20
    high_confidence_events: int = 25
    med_confidence_events: int = 10

    # optimisation sweep
    min_price_ratio: float = 0.5
    max_arr_loss_ratio: float = 0.10
    fallback_window: tuple = (0.5, 1.5)


@dataclass(frozen=True)
class ChurnPolicy:
    default_none_save_rate: float = 0.05
    save_lift_bounds: tuple = (-0.05, 0.35)
    recovery_lift_bounds: tuple = (-0.10, 0.60)
    pause_lift_bounds: tuple = (-0.10, 0.50)

    # dunning configuration the lever B lift is measured against
    baseline_retries: int = 3
    baseline_retry_window_days: int = 7
    baseline_fallback_enabled: bool = False

    # fatigue
    heavy_incentive_fatigue: float = 0.20
    retries_fatigue_at: int = 7
    retries_fatigue: float = 0.10
    window_fatigue_at: int = 21
    window_fatigue: float = 0.10
    fallback_fatigue: float = 0.05
    pause_cycles_fatigue_at: int = 4
    pause_cycles_fatigue: float = 0.10
    max_fatigue: float = 0.50

    # aggressive predicate
    aggressive_retries: int = 7
    aggressive_window_days: int = 25
    aggressive_pause_cycles: int = 5
    aggressive_saved_share: float = 0.30
    aggressive_warning: str = (
        "This configuration is unusually aggressive; estimated recovery may be "
        "overstated and could introduce customer experience risk."
    )

    high_confidence_events: int = 100
    med_confidence_events: int = 30
    range_high: float = 0.15
    range_med: float = 0.30
    range_low: float = 0.50


DEFAULT_PRICE_POLICY = PricePolicy()
DEFAULT_CHURN_POLICY = ChurnPolicy()


# -----------------------
# Lever configuration
# -----------------------
class NoIntervention(BaseModel):
    type: Literal["none"] = "none"


class SurveyIntervention(BaseModel):
    type: Literal["survey"] = "survey"


class PauseIntervention(BaseModel):
    type: Literal["pause"] = "pause"


class IncentiveIntervention(BaseModel):
    type: Literal["incentive"] = "incentive"
    strength: IncentiveStrength

    @field_validator("strength")
    @classmethod
    def _strength_required(cls, v: IncentiveStrength) -> IncentiveStrength:
        if v == IncentiveStrength.NONE:
            raise ValueError("incentive strength must be light, medium or heavy")
        return v


LeverA = Annotated[
    Union[NoIntervention, SurveyIntervention, PauseIntervention, IncentiveIntervention],
    Field(discriminator="type"),
]


class LeverB(BaseModel):
    """Dunning: failed-payment retry policy."""
    retries: int = Field(default=3, ge=0)
    retry_window_days: int = Field(default=7, ge=0)
    fallback_enabled: bool = False


class LeverC(BaseModel):
    """Subscription pause offered at cancellation."""
    pause_enabled: bool = False
    max_pause_cycles: int = Field(default=0, ge=0)


def incentive_strength(lever_a: LeverA) -> IncentiveStrength:
    if isinstance(lever_a, IncentiveIntervention):
        return lever_a.strength
    return IncentiveStrength.NONE


@dataclass(frozen=True)
class LeverPreset:
    name: str
    lever_a: LeverA
    lever_b: LeverB
    lever_c: LeverC


LEVER_PRESETS: Dict[str, LeverPreset] = {
    "conservative": LeverPreset(
        "conservative",
        lever_a=SurveyIntervention(),
        lever_b=LeverB(retries=4, retry_window_days=10, fallback_enabled=False),
        lever_c=LeverC(pause_enabled=True, max_pause_cycles=1),
    ),
    "balanced": LeverPreset(
        "balanced",
        lever_a=IncentiveIntervention(strength=IncentiveStrength.MEDIUM),
        lever_b=LeverB(retries=5, retry_window_days=14, fallback_enabled=True),
        lever_c=LeverC(pause_enabled=True, max_pause_cycles=2),
    ),
    "aggressive": LeverPreset(
        "aggressive",
        lever_a=IncentiveIntervention(strength=IncentiveStrength.HEAVY),
        lever_b=LeverB(retries=8, retry_window_days=28, fallback_enabled=True),
        lever_c=LeverC(pause_enabled=True, max_pause_cycles=5),
    ),
}
