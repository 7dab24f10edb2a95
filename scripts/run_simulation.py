# scripts/run_simulation.py
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).resolve().parents[1]
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from price_impact.churn import ChurnSimulationInput, simulate_churn
from price_impact.data import Dataset, PlanNotFoundError, dataset_counts, dataset_tables
from price_impact.generate import DEFAULT_SEED, TEST_MERCHANT_ID, generate_dataset
from price_impact.optimize import find_optimal_price
from price_impact.report import (
    churn_summary_table,
    comparables_table,
    optimization_summary_table,
    simulation_summary_table,
    sweep_table,
)
from price_impact.scenarios import LEVER_PRESETS
from price_impact.simulate import SimulationInput, simulate


def _default_plan(dataset: Dataset, merchant_id: str) -> str:
    plans = dataset.plans_for(merchant_id)
    if not plans:
        raise PlanNotFoundError(f"<any plan of {merchant_id}>")
    return plans[0].id


def cmd_data(dataset: Dataset, args: argparse.Namespace) -> None:
    print("\n=== ROW COUNTS ===")
    print(dataset_counts(dataset, merchant_id=args.merchant).to_string(index=False))

    tables = dataset_tables(dataset, merchant_id=args.merchant)
    print("\n=== PLANS ===")
    print(tables["plans"].to_string(index=False))
    print("\n=== PRICE CHANGE EVENTS (latest 10) ===")
    print(tables["price_change_events"].head(10).to_string(index=False))


def cmd_simulate(dataset: Dataset, args: argparse.Namespace) -> None:
    plan_id = args.plan or _default_plan(dataset, args.merchant)
    plan = dataset.get_plan(plan_id)
    new_price = args.price if args.price is not None else plan.current_price_monthly

    result = simulate(dataset, SimulationInput(
        merchant_id=args.merchant,
        plan_id=plan_id,
        new_price_monthly=new_price,
        use_global_benchmarks=args.use_global,
    ))

    print(f"\n=== SIMULATION | {plan_id} | {plan.current_price_monthly:.2f} -> {new_price:.2f} ===")
    print(simulation_summary_table(result).to_string(index=False))
    if result.price_shock_note:
        print(f"\n[WARN] {result.price_shock_note}")
    print("\n=== TOP COMPARABLE EVENTS ===")
    print(comparables_table(result).to_string(index=False))


def cmd_optimize(dataset: Dataset, args: argparse.Namespace) -> None:
    plan_id = args.plan or _default_plan(dataset, args.merchant)
    result = find_optimal_price(
        dataset,
        merchant_id=args.merchant,
        plan_id=plan_id,
        use_global_benchmarks=args.use_global,
        price_range=(args.range_low, args.range_high),
        steps=args.steps,
    )

    print(f"\n=== PRICE SWEEP | {plan_id} ===")
    print(sweep_table(result).to_string(index=False))
    print("\n=== SUMMARY ===")
    print(optimization_summary_table(result).to_string(index=False))
    if result.skipped_prices:
        print(f"\n[WARN] {len(result.skipped_prices)} price points failed and were skipped")


def cmd_churn(dataset: Dataset, args: argparse.Namespace) -> None:
    plan_id = args.plan or _default_plan(dataset, args.merchant)
    preset = LEVER_PRESETS[args.preset]
    result = simulate_churn(dataset, ChurnSimulationInput(
        merchant_id=args.merchant,
        plan_id=plan_id,
        lever_a=preset.lever_a,
        lever_b=preset.lever_b,
        lever_c=preset.lever_c,
    ))

    print(f"\n=== CHURN LEVERS | {plan_id} | preset={preset.name} ===")
    print(churn_summary_table(result).to_string(index=False))
    for w in result.warnings:
        print(f"\n[WARN] {w}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Price and churn impact simulator.")
    parser.add_argument("--seed", type=int, default=DEFAULT_SEED)
    parser.add_argument("--merchant", default=TEST_MERCHANT_ID)
    parser.add_argument("--plan", default=None, help="Plan id (default: merchant's first plan)")
    parser.add_argument("--log-level", default="WARNING")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("data", help="Show dataset tables")

    p_sim = sub.add_parser("simulate", help="Simulate a single price change")
    p_sim.add_argument("--price", type=float, default=None)
    p_sim.add_argument("--use-global", action="store_true")

    p_opt = sub.add_parser("optimize", help="Sweep prices for ARR and churn optima")
    p_opt.add_argument("--use-global", action="store_true")
    p_opt.add_argument("--range-low", type=float, default=-0.5)
    p_opt.add_argument("--range-high", type=float, default=1.0)
    p_opt.add_argument("--steps", type=int, default=50)

    p_churn = sub.add_parser("churn", help="Simulate retention levers")
    p_churn.add_argument("--preset", choices=sorted(LEVER_PRESETS), default="balanced")

    return parser


COMMANDS = {
    "data": cmd_data,
    "simulate": cmd_simulate,
    "optimize": cmd_optimize,
    "churn": cmd_churn,
}


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print(f"[info] Generating dataset (seed={args.seed})")
    dataset = generate_dataset(args.seed)

    try:
        COMMANDS[args.command](dataset, args)
    except PlanNotFoundError as e:
        print(f"[error] {e}")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
