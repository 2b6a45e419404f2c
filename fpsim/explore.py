"""Scenario exploration: re-run one scenario over a range (or grid) of parameter values."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import itertools
import logging
import math
import threading
from typing import Any

from .aggregate import AggregatedResult
from .distributions import Distribution
from .engine import EngineConfig
from .errors import ScenarioValidationError
from .rmd import RMDTableProvider
from .schema import EventSeries, Scenario, StartRule
from .simulation import resolve_seed, run_simulation
from .tax import TaxDataset, load_tax_dataset

logger = logging.getLogger(__name__)

PARAMETER_TYPES = ("start_year", "duration", "initial_amount", "investment_percentage", "roth_optimizer")
EVENT_PARAMETERS = ("start_year", "duration", "initial_amount", "investment_percentage")


@dataclass(slots=True, frozen=True)
class SweepParameter:
    type: str
    event_series: str | None = None

    @property
    def label(self) -> str:
        if self.event_series is None:
            return self.type
        return f"{self.type}({self.event_series})"


@dataclass(slots=True)
class SweepPoint:
    values: tuple[float, ...]
    result: AggregatedResult | None = None
    error: str | None = None


@dataclass(slots=True)
class SweepResult:
    parameters: list[SweepParameter]
    seed: int
    num_trajectories: int
    points: list[SweepPoint] = field(default_factory=list)


def sweep_values(lower: float, upper: float, step: float) -> list[float]:
    """``lower``, ``lower + step``, ... up to and including ``upper``."""
    if step <= 0:
        raise ValueError(f"sweep step must be > 0, got {step:g}")
    if lower > upper:
        raise ValueError(f"sweep lower ({lower:g}) must be <= upper ({upper:g})")
    # Tolerance keeps an upper bound that is an exact multiple of a fractional step.
    count = math.floor((upper - lower) / step + 1e-9) + 1
    return [lower + idx * step for idx in range(count)]


def _with_series(scenario: Scenario, name: str, **changes: Any) -> Scenario:
    return replace(
        scenario,
        event_series=[replace(series, **changes) if series.name == name else series for series in scenario.event_series],
    )


def _target_series(scenario: Scenario, parameter: SweepParameter) -> EventSeries:
    if parameter.event_series is None:
        raise ValueError(f"{parameter.type}: an event series name is required")
    series = scenario.series_by_name().get(parameter.event_series)
    if series is None:
        raise ValueError(f"{parameter.label}: unknown event series '{parameter.event_series}'")
    if parameter.type == "initial_amount" and series.type not in ("income", "expense"):
        raise ValueError(f"{parameter.label}: initial_amount applies to income and expense series")
    if parameter.type == "investment_percentage":
        if series.type != "invest":
            raise ValueError(f"{parameter.label}: investment_percentage applies to invest series")
        if len(series.asset_allocation) != 2:
            raise ValueError(f"{parameter.label}: investment_percentage needs exactly two allocation targets")
    return series


def apply_parameter(scenario: Scenario, parameter: SweepParameter, value: float) -> Scenario:
    """Copy of ``scenario`` with one parameter set to ``value``; the input is not modified."""
    if parameter.type not in PARAMETER_TYPES:
        raise ValueError(f"unknown sweep parameter '{parameter.type}'")
    if parameter.type == "roth_optimizer":
        return replace(scenario, roth_conversion=replace(scenario.roth_conversion, enabled=bool(value)))

    series = _target_series(scenario, parameter)
    if parameter.type == "start_year":
        return _with_series(scenario, series.name, start=StartRule(distribution=Distribution.fixed(value)))
    if parameter.type == "duration":
        return _with_series(scenario, series.name, duration=Distribution.fixed(value))
    if parameter.type == "initial_amount":
        return _with_series(scenario, series.name, initial_amount=float(value))
    # investment_percentage: the first target gets ``value`` percent, the second the rest.
    first, second = series.asset_allocation
    return _with_series(scenario, series.name, asset_allocation={first: float(value), second: 100.0 - value})


def _run_points(
    scenario: Scenario,
    parameters: list[SweepParameter],
    grid: list[tuple[float, ...]],
    num_trajectories: int,
    *,
    seed: int | None,
    workers: int,
    cancel_event: threading.Event | None,
    config: EngineConfig | None,
    tax_dataset: TaxDataset | None,
    rmd_provider: RMDTableProvider | None,
) -> SweepResult | None:
    if not grid:
        raise ValueError("sweep needs at least one value per parameter")
    # Reject bad parameters before any simulation runs.
    for parameter, value in zip(parameters, grid[0]):
        apply_parameter(scenario, parameter, value)

    seed = resolve_seed(seed)
    # Every point shares the same reference data.
    config = config or EngineConfig()
    tax_dataset = tax_dataset or load_tax_dataset()
    rmd_provider = rmd_provider or RMDTableProvider(ttl_seconds=config.rmd_table_ttl_seconds, start_age=config.rmd_start_age)
    labels = ", ".join(parameter.label for parameter in parameters)
    logger.info("Sweeping %s over %d points (seed %d)", labels, len(grid), seed)
    sweep = SweepResult(parameters=list(parameters), seed=seed, num_trajectories=num_trajectories)
    for values in grid:
        modified = scenario
        for parameter, value in zip(parameters, values):
            modified = apply_parameter(modified, parameter, value)
        try:
            result = run_simulation(
                modified,
                num_trajectories,
                seed=seed,
                workers=workers,
                cancel_event=cancel_event,
                config=config,
                tax_dataset=tax_dataset,
                rmd_provider=rmd_provider,
            )
        except ScenarioValidationError as exc:
            logger.warning("Sweep point %s is invalid: %s", values, exc)
            sweep.points.append(SweepPoint(values=values, error=str(exc)))
            continue
        if result is None:
            logger.info("Sweep cancelled after %d points", len(sweep.points))
            return None
        sweep.points.append(SweepPoint(values=values, result=result))
    return sweep


def sweep_1d(
    scenario: Scenario,
    parameter: SweepParameter,
    values: list[float],
    num_trajectories: int,
    *,
    seed: int | None = None,
    workers: int = 1,
    cancel_event: threading.Event | None = None,
    config: EngineConfig | None = None,
    tax_dataset: TaxDataset | None = None,
    rmd_provider: RMDTableProvider | None = None,
) -> SweepResult | None:
    """Simulate ``scenario`` once per value with a shared seed; None when cancelled.

    A value that makes the scenario invalid is recorded as an error point and
    the sweep continues.
    """
    return _run_points(
        scenario,
        [parameter],
        [(value,) for value in values],
        num_trajectories,
        seed=seed,
        workers=workers,
        cancel_event=cancel_event,
        config=config,
        tax_dataset=tax_dataset,
        rmd_provider=rmd_provider,
    )


def sweep_2d(
    scenario: Scenario,
    first: SweepParameter,
    first_values: list[float],
    second: SweepParameter,
    second_values: list[float],
    num_trajectories: int,
    *,
    seed: int | None = None,
    workers: int = 1,
    cancel_event: threading.Event | None = None,
    config: EngineConfig | None = None,
    tax_dataset: TaxDataset | None = None,
    rmd_provider: RMDTableProvider | None = None,
) -> SweepResult | None:
    """Grid version of ``sweep_1d``; points are ordered by ``first`` then ``second``."""
    if first == second:
        raise ValueError(f"{first.label}: cannot sweep the same parameter twice")
    return _run_points(
        scenario,
        [first, second],
        list(itertools.product(first_values, second_values)),
        num_trajectories,
        seed=seed,
        workers=workers,
        cancel_event=cancel_event,
        config=config,
        tax_dataset=tax_dataset,
        rmd_provider=rmd_provider,
    )


def parse_sweep(text: str) -> tuple[SweepParameter, list[float]]:
    """Parse ``TYPE[:EVENT]=LOWER:UPPER:STEP``, e.g. ``initial_amount:food=4000:6000:500``."""
    target, sep, bounds = text.partition("=")
    if not sep:
        raise ValueError(f"sweep '{text}': expected TYPE[:EVENT]=LOWER:UPPER:STEP")
    kind, _, event = target.partition(":")
    kind = kind.strip()
    if kind not in PARAMETER_TYPES:
        raise ValueError(f"sweep '{text}': unknown parameter '{kind}'")
    event = event.strip() or None
    if kind in EVENT_PARAMETERS and event is None:
        raise ValueError(f"sweep '{text}': {kind} needs an event series name")
    parts = bounds.split(":")
    if len(parts) != 3:
        raise ValueError(f"sweep '{text}': expected LOWER:UPPER:STEP")
    try:
        lower, upper, step = (float(part) for part in parts)
    except ValueError as exc:
        raise ValueError(f"sweep '{text}': bounds must be numbers") from exc
    return SweepParameter(type=kind, event_series=event if kind in EVENT_PARAMETERS else None), sweep_values(lower, upper, step)
