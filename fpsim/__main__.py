"""CLI entry point for fpsim."""

from __future__ import annotations

import argparse
from dataclasses import asdict
import json
import logging
from pathlib import Path
import sys
import threading

from .aggregate import AggregatedResult, aggregate
from .engine import EngineConfig
from .errors import DataAvailabilityError, ScenarioValidationError
from .explore import SweepResult, parse_sweep, sweep_1d, sweep_2d
from .rmd import RMDTableProvider, builtin_loader, json_file_loader
from .schema import Scenario, SchemaError, load_scenario
from .simulation import resolve_seed, run_trajectories
from .tax import load_tax_dataset
from .validate import validate_scenario


def _build_parser() -> argparse.ArgumentParser:
    defaults = EngineConfig()
    parser = argparse.ArgumentParser(description="Monte Carlo household financial plan simulator")
    parser.add_argument("scenario", help="Path to scenario JSON file")
    parser.add_argument("-o", "--output", help="Write aggregated results as JSON to this path")
    parser.add_argument("--runs", type=int, default=1000, help="Number of trajectories (default: 1000)")
    parser.add_argument("--seed", type=int, help="Random seed for reproducibility")
    parser.add_argument("--workers", type=int, default=1, help="Worker processes (default: 1)")
    parser.add_argument("--tax-data", help="Tax bracket dataset JSON (default: bundled tables)")
    parser.add_argument("--rmd-table", help="RMD distribution factor JSON (default: IRS Uniform Lifetime Table)")
    parser.add_argument("--rmd-start-age", type=int, default=defaults.rmd_start_age, help="Age required distributions begin")
    parser.add_argument(
        "--early-withdrawal-age",
        type=float,
        default=defaults.early_withdrawal_age,
        help="Age below which retirement withdrawals are penalized",
    )
    parser.add_argument(
        "--sweep",
        action="append",
        default=[],
        metavar="TYPE[:EVENT]=LOWER:UPPER:STEP",
        help="Re-run over a parameter range with one seed; give twice for a 2D grid",
    )
    parser.add_argument("--raw", action="store_true", help="Include every trajectory's year series in the output")
    parser.add_argument("--validate", action="store_true", help="Validate JSON only")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _print_validation(errors: list[str], warnings: list[str]) -> None:
    for warning in warnings:
        print(f"WARNING: {warning}")
    for error in errors:
        print(f"ERROR: {error}", file=sys.stderr)


def _print_summary(result: AggregatedResult) -> None:
    if not result.years:
        print("No simulated years.")
        return
    first = result.years[0]
    last = result.years[-1]
    print(f"Scenario: {result.scenario}")
    print(f"Trajectories: {result.num_trajectories}")
    print(f"Years: {first.year}-{last.year}")
    print(f"Success probability ({first.year}): {first.success_probability:.1%}")
    print(f"Success probability ({last.year}): {last.success_probability:.1%}")
    print(f"Median ending investments: ${last.total_investments.median:,.0f}")
    print(f"Seed: {result.seed}")


def _print_sweep(sweep: SweepResult) -> None:
    labels = ", ".join(parameter.label for parameter in sweep.parameters)
    print(f"Sweep: {labels} ({len(sweep.points)} points, {sweep.num_trajectories} trajectories each)")
    for point in sweep.points:
        values = ", ".join(f"{value:g}" for value in point.values)
        if point.result is None:
            print(f"  [{values}] invalid: {point.error}")
        elif not point.result.years:
            print(f"  [{values}] no simulated years")
        else:
            last = point.result.years[-1]
            print(
                f"  [{values}] success {last.success_probability:.1%}, "
                f"median ending investments ${last.total_investments.median:,.0f}"
            )
    print(f"Seed: {sweep.seed}")


def _run_sweep(scenario: Scenario, specs: list[str], args: argparse.Namespace, **kwargs) -> SweepResult | None:
    parsed = [parse_sweep(text) for text in specs]
    if len(parsed) == 1:
        parameter, values = parsed[0]
        return sweep_1d(scenario, parameter, values, args.runs, **kwargs)
    (first, first_values), (second, second_values) = parsed
    return sweep_2d(scenario, first, first_values, second, second_values, args.runs, **kwargs)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if len(args.sweep) > 2:
        print("At most two --sweep parameters are supported.", file=sys.stderr)
        return 2

    try:
        scenario = load_scenario(args.scenario)
        tax_dataset = load_tax_dataset(args.tax_data)
    except (SchemaError, OSError, ValueError) as exc:
        print(f"Failed to load scenario: {exc}", file=sys.stderr)
        return 2

    validation = validate_scenario(scenario)
    _print_validation(validation.errors, validation.warnings)
    if not validation.is_valid:
        return 1

    if args.validate:
        print("Scenario is valid.")
        return 0

    config = EngineConfig(rmd_start_age=args.rmd_start_age, early_withdrawal_age=args.early_withdrawal_age)
    provider = RMDTableProvider(
        json_file_loader(args.rmd_table) if args.rmd_table else builtin_loader,
        ttl_seconds=config.rmd_table_ttl_seconds,
        start_age=config.rmd_start_age,
    )
    seed = resolve_seed(args.seed)
    cancel_event = threading.Event()
    run_options = dict(
        seed=seed,
        workers=args.workers,
        cancel_event=cancel_event,
        config=config,
        tax_dataset=tax_dataset,
        rmd_provider=provider,
    )
    try:
        if args.sweep:
            outcome = _run_sweep(scenario, args.sweep, args, **run_options)
        else:
            outcome = run_trajectories(scenario, args.runs, **run_options)
    except KeyboardInterrupt:
        cancel_event.set()
        print("Simulation cancelled; no result.", file=sys.stderr)
        return 130
    except ScenarioValidationError as exc:
        _print_validation(exc.errors, [])
        return 1
    except DataAvailabilityError as exc:
        print(f"Missing reference data: {exc}", file=sys.stderr)
        return 3
    except (OSError, ValueError) as exc:
        print(f"Failed to run simulation: {exc}", file=sys.stderr)
        return 2

    if outcome is None:
        print("Simulation cancelled; no result.", file=sys.stderr)
        return 130

    if args.sweep:
        _print_sweep(outcome)
        if args.output:
            Path(args.output).write_text(json.dumps(asdict(outcome), indent=2), encoding="utf-8")
            print(f"Wrote sweep results to {Path(args.output)}")
        return 0

    trajectories = outcome
    result = aggregate((trajectory.years for trajectory in trajectories), scenario=scenario.name, seed=seed)
    _print_summary(result)

    if args.output:
        payload = asdict(result)
        if args.raw:
            payload["trajectories"] = [asdict(trajectory) for trajectory in trajectories]
        Path(args.output).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print(f"Wrote results to {Path(args.output)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
