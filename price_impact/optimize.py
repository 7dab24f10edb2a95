# price_impact/optimize.py
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from pydantic import BaseModel

from .data import Dataset
from .scenarios import DEFAULT_PRICE_POLICY, PricePolicy
from .simulate import SimulationInput, simulate

logger = logging.getLogger(__name__)


class PricePoint(BaseModel):
    price: float
    arr_impact: float
    expected_churn_90d: float


class PriceOptimizationResult(BaseModel):
    data_points: List[PricePoint]
    optimal_price: float
    optimal_arr_impact: float
    optimal_churn_price: float
    optimal_churn_90d: float
    optimal_churn_arr_impact: float
    current_price: float
    current_arr_impact: float
    current_churn_90d: float
    baseline_arr: float
    skipped_prices: List[float] = []
    used_churn_fallback: bool = False


def _closest_point(points: List[PricePoint], price: float) -> Optional[PricePoint]:
    if not points:
        return None
    return min(points, key=lambda p: abs(p.price - price))


def find_optimal_price(
    dataset: Dataset,
    merchant_id: str,
    plan_id: str,
    use_global_benchmarks: bool,
    price_range: Tuple[float, float] = (-0.5, 1.0),
    steps: int = 50,
    policy: PricePolicy = DEFAULT_PRICE_POLICY,
) -> PriceOptimizationResult:
    """
    Sweep steps + 1 evenly spaced prices between current * (1 + price_range[0])
    and current * (1 + price_range[1]) and simulate each one.

    Tracks:
    - ARR-optimal price: largest net ARR delta (strictly greater than 0 and
      than any earlier point; otherwise the current price is kept)
    - churn-optimal price: lowest expected churn among points that lose no
      more than 10% of baseline ARR and sit at or above 50% of the current
      price. If no point qualifies, the lowest churn within 50%-150% of the
      current price is used instead.
    - current-price snapshot: the swept point within half a step of the
      current price, else a direct simulation, else the nearest swept point.

    A price whose simulation raises is logged and skipped.
    Raises PlanNotFoundError for an unknown plan and ValueError for steps < 1.
    """
    if steps < 1:
        raise ValueError(f"steps must be >= 1, got {steps}")

    plan = dataset.get_plan(plan_id)

    current_price = plan.current_price_monthly
    baseline_arr = (plan.active_subs * current_price + plan.active_subs * plan.arpu_addons_monthly) * 12
    min_price = current_price * (1 + price_range[0])
    max_price = current_price * (1 + price_range[1])
    price_step = (max_price - min_price) / steps

    min_allowed_price = current_price * policy.min_price_ratio
    max_arr_loss = baseline_arr * -policy.max_arr_loss_ratio

    def _run(price: float):
        return simulate(
            dataset,
            SimulationInput(
                merchant_id=merchant_id,
                plan_id=plan_id,
                new_price_monthly=price,
                use_global_benchmarks=use_global_benchmarks,
            ),
            policy=policy,
        )

    data_points: List[PricePoint] = []
    skipped: List[float] = []

    optimal_price = current_price
    optimal_arr_impact = 0.0
    optimal_churn_price = current_price
    optimal_churn_90d = plan.baseline_churn_90d
    optimal_churn_arr_impact = 0.0
    found_constrained = False

    current_point: Optional[PricePoint] = None

    for i in range(steps + 1):
        test_price = min_price + price_step * i
        if test_price <= 0 or test_price < min_allowed_price:
            continue

        try:
            result = _run(test_price)
        except Exception:
            logger.warning("Simulation failed for price %.4f; skipping", test_price, exc_info=True)
            skipped.append(test_price)
            continue

        point = PricePoint(
            price=test_price,
            arr_impact=result.net_arr_delta,
            expected_churn_90d=result.expected_churn_90d,
        )
        data_points.append(point)

        if point.arr_impact > optimal_arr_impact:
            optimal_arr_impact = point.arr_impact
            optimal_price = test_price

        meets_arr = point.arr_impact >= max_arr_loss
        meets_price = test_price >= min_allowed_price
        if meets_arr and meets_price and point.expected_churn_90d < optimal_churn_90d:
            optimal_churn_90d = point.expected_churn_90d
            optimal_churn_price = test_price
            optimal_churn_arr_impact = point.arr_impact
            found_constrained = True

        if abs(test_price - current_price) < price_step / 2:
            current_point = point

    if current_point is not None:
        current_arr_impact = current_point.arr_impact
        current_churn_90d = current_point.expected_churn_90d
    else:
        current_arr_impact = 0.0
        current_churn_90d = plan.baseline_churn_90d
        if data_points:
            try:
                current = _run(current_price)
                current_arr_impact = current.net_arr_delta
                current_churn_90d = current.expected_churn_90d
            except Exception:
                logger.warning(
                    "Simulation failed at current price %.4f; using nearest swept point",
                    current_price, exc_info=True,
                )
                closest = _closest_point(data_points, current_price)
                current_arr_impact = closest.arr_impact
                current_churn_90d = closest.expected_churn_90d

    used_churn_fallback = False
    if not found_constrained:
        used_churn_fallback = True
        lo = current_price * policy.fallback_window[0]
        hi = current_price * policy.fallback_window[1]
        for point in data_points:
            if lo <= point.price <= hi and point.expected_churn_90d < optimal_churn_90d:
                optimal_churn_90d = point.expected_churn_90d
                optimal_churn_price = point.price
                optimal_churn_arr_impact = point.arr_impact

    data_points.sort(key=lambda p: p.price)

    logger.debug(
        "sweep plan=%s points=%d skipped=%d optimal=%.2f churn_optimal=%.2f",
        plan_id, len(data_points), len(skipped), optimal_price, optimal_churn_price,
    )

    return PriceOptimizationResult(
        data_points=data_points,
        optimal_price=optimal_price,
        optimal_arr_impact=optimal_arr_impact,
        optimal_churn_price=optimal_churn_price,
        optimal_churn_90d=optimal_churn_90d,
        optimal_churn_arr_impact=optimal_churn_arr_impact,
        current_price=current_price,
        current_arr_impact=current_arr_impact,
        current_churn_90d=current_churn_90d,
        baseline_arr=baseline_arr,
        skipped_prices=skipped,
        used_churn_fallback=used_churn_fallback,
    )
