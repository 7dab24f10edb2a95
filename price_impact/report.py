# price_impact/report.py
from __future__ import annotations

import pandas as pd

from .churn import ChurnSimulationResult
from .optimize import PriceOptimizationResult
from .simulate import SimulationResult
from .utils import (
    format_currency,
    format_currency_with_cents,
    format_percent,
    format_percent_change,
)


def simulation_summary_table(result: SimulationResult) -> pd.DataFrame:
    rows = [
        ("pct_change", format_percent_change(result.pct_change)),
        ("baseline_churn_90d", format_percent(result.baseline_churn_90d)),
        ("expected_churn_90d", format_percent(result.expected_churn_90d)),
        ("churn_lift_pp", f"{result.churn_lift * 100:.2f}"),
        ("net_arr_delta", format_currency(result.net_arr_delta)),
        ("arr_range", f"{format_currency(result.range_low)} .. {format_currency(result.range_high)}"),
        ("confidence", result.confidence.value),
        ("evidence_count", str(result.evidence_count)),
        ("used_heuristic", str(result.used_heuristic)),
        ("applied_price_shock", str(result.applied_price_shock)),
    ]
    return pd.DataFrame(rows, columns=["metric", "value"])


def comparables_table(result: SimulationResult) -> pd.DataFrame:
    """Top comparable events, heaviest first."""
    columns = ["event_id", "merchant_id", "plan_id", "pct_change", "lift", "similarity", "weight", "source"]
    rows = [
        {
            "event_id": ce.event.id,
            "merchant_id": ce.event.merchant_id,
            "plan_id": ce.event.plan_id,
            "pct_change": ce.event.pct_change,
            "lift": ce.event.lift,
            "similarity": round(ce.similarity, 4),
            "weight": round(ce.weight, 4),
            "source": "global" if ce.is_global else "merchant",
        }
        for ce in result.top_comparable_events
    ]
    return pd.DataFrame(rows, columns=columns)


def sweep_table(result: PriceOptimizationResult) -> pd.DataFrame:
    """One row per swept price, flagged where it is one of the summary points."""
    df = pd.DataFrame(
        [p.model_dump() for p in result.data_points],
        columns=["price", "arr_impact", "expected_churn_90d"],
    )
    df["arr_optimal"] = df["price"] == result.optimal_price
    df["churn_optimal"] = df["price"] == result.optimal_churn_price
    return df


def optimization_summary_table(result: PriceOptimizationResult) -> pd.DataFrame:
    rows = [
        {
            "point": "current",
            "price": format_currency_with_cents(result.current_price),
            "arr_impact": format_currency(result.current_arr_impact),
            "expected_churn_90d": format_percent(result.current_churn_90d),
        },
        {
            "point": "max_arr",
            "price": format_currency_with_cents(result.optimal_price),
            "arr_impact": format_currency(result.optimal_arr_impact),
            "expected_churn_90d": "",
        },
        {
            "point": "min_churn",
            "price": format_currency_with_cents(result.optimal_churn_price),
            "arr_impact": format_currency(result.optimal_churn_arr_impact),
            "expected_churn_90d": format_percent(result.optimal_churn_90d),
        },
    ]
    return pd.DataFrame(rows)


def churn_summary_table(result: ChurnSimulationResult) -> pd.DataFrame:
    ev = result.evidence
    rows = [
        ("recovered_arr", format_currency(result.recovered_arr)),
        ("arr_range", f"{format_currency(result.range_low)} .. {format_currency(result.range_high)}"),
        ("saved_subs", f"{result.saved_subs:.1f}"),
        ("churn_reduction_pp", f"{result.churn_reduction_pp:.2f}"),
        ("fatigue_factor", format_percent(result.fatigue_factor, 0)),
        ("confidence", result.confidence.value),
        ("cancellation_events", f"{ev.comparable_cancellation_events} ({ev.merchant_cancellation_events} merchant)"),
        ("payment_events", f"{ev.comparable_payment_events} ({ev.merchant_payment_events} merchant)"),
        ("pause_events", f"{ev.comparable_pause_events} ({ev.merchant_pause_events} merchant)"),
    ]
    return pd.DataFrame(rows, columns=["metric", "value"])
