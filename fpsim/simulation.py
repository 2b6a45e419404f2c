"""Monte Carlo orchestration: fan trajectories out to workers and fan results back in."""

from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from dataclasses import dataclass
import logging
import math
import multiprocessing
import random
import threading
from typing import Callable

from .aggregate import AggregatedResult, aggregate
from .engine import EngineConfig, StepContext, YearRecord, step_year
from .errors import RMDTableError
from .ledger import TaxYear, UserTaxData
from .rmd import RMDTableProvider
from .schema import Scenario
from .state import create_simulation_state
from .tax import TaxDataset, load_tax_dataset
from .validate import series_resolution_order, validate_scenario

logger = logging.getLogger(__name__)

CANCEL_POLL_SECONDS = 0.05


@dataclass(slots=True)
class TrajectoryResult:
    index: int
    seed: int
    years: list[YearRecord]


def _check_trajectory_count(num_trajectories: int) -> None:
    if isinstance(num_trajectories, bool) or not isinstance(num_trajectories, int) or num_trajectories <= 0:
        raise ValueError(f"num_trajectories must be a positive integer, got {num_trajectories!r}")


def resolve_seed(seed: int | None) -> int:
    if seed is None:
        return random.randint(1, 2**31 - 1)
    return seed


def prepare_run(
    scenario: Scenario,
    *,
    config: EngineConfig | None = None,
    tax_dataset: TaxDataset | None = None,
    rmd_provider: RMDTableProvider | None = None,
) -> tuple[StepContext, list[str]]:
    """Validate the scenario and resolve the external tables once, before any trajectory runs."""
    config = config or EngineConfig()
    config_errors = config.validate()
    if config_errors:
        raise ValueError("; ".join(config_errors))

    validation = validate_scenario(scenario)
    for warning in validation.warnings:
        logger.warning("%s", warning)
    validation.raise_for_errors()
    order = series_resolution_order(scenario)

    dataset = tax_dataset or load_tax_dataset()
    tables = dataset.tables_for(scenario.residence_state)

    provider = rmd_provider or RMDTableProvider(ttl_seconds=config.rmd_table_ttl_seconds, start_age=config.rmd_start_age)
    rmd_table = provider.table()
    if rmd_table.first_age > config.rmd_start_age:
        raise RMDTableError(f"RMD table starts at age {rmd_table.first_age}, distributions begin at {config.rmd_start_age}")
    return StepContext(tables=tables, rmd_table=rmd_table, config=config), order


def run_trajectory(
    scenario: Scenario,
    context: StepContext,
    order: list[str],
    *,
    index: int,
    seed: int,
    should_stop: Callable[[], bool] | None = None,
) -> TrajectoryResult | None:
    """Simulate one trajectory until nobody is alive; None when stopped early."""
    rng = random.Random(seed)
    state = create_simulation_state(scenario, rng, order)
    ledger = UserTaxData(
        current=TaxYear(filing_status=state.filing_status),
        previous=TaxYear(filing_status=state.filing_status),
    )
    years: list[YearRecord] = []
    while state.is_alive:
        if should_stop is not None and should_stop():
            return None
        record, ledger = step_year(state, ledger, context)
        years.append(record)
    return TrajectoryResult(index=index, seed=seed, years=years)


_worker_stop = None


def _init_worker(stop) -> None:
    global _worker_stop
    _worker_stop = stop


def _run_chunk(
    scenario: Scenario,
    context: StepContext,
    order: list[str],
    indices: list[int],
    base_seed: int,
) -> list[TrajectoryResult]:
    should_stop = _worker_stop.is_set if _worker_stop is not None else None
    results = []
    for index in indices:
        result = run_trajectory(scenario, context, order, index=index, seed=base_seed + index, should_stop=should_stop)
        if result is None:
            break
        results.append(result)
    return results


def _chunks(num_trajectories: int, workers: int) -> list[list[int]]:
    size = max(1, math.ceil(num_trajectories / (workers * 4)))
    return [list(range(start, min(start + size, num_trajectories))) for start in range(0, num_trajectories, size)]


def _run_parallel(
    scenario: Scenario,
    context: StepContext,
    order: list[str],
    *,
    num_trajectories: int,
    seed: int,
    workers: int,
    cancel_event: threading.Event | None,
) -> list[TrajectoryResult] | None:
    mp_context = multiprocessing.get_context()
    # Shared with every worker so in-flight trajectories stop at their next year.
    stop = mp_context.Event()
    executor = ProcessPoolExecutor(
        max_workers=workers,
        mp_context=mp_context,
        initializer=_init_worker,
        initargs=(stop,),
    )
    cancelled = False
    results: list[TrajectoryResult] = []
    try:
        pending: set[Future] = {
            executor.submit(_run_chunk, scenario, context, order, indices, seed)
            for indices in _chunks(num_trajectories, workers)
        }
        while pending:
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break
            done, pending = wait(pending, timeout=CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED)
            for future in done:
                results.extend(future.result())
    finally:
        stop.set()
        executor.shutdown(wait=True, cancel_futures=True)

    if cancelled:
        return None
    return sorted(results, key=lambda result: result.index)


def run_trajectories(
    scenario: Scenario,
    num_trajectories: int,
    *,
    seed: int | None = None,
    workers: int = 1,
    cancel_event: threading.Event | None = None,
    config: EngineConfig | None = None,
    tax_dataset: TaxDataset | None = None,
    rmd_provider: RMDTableProvider | None = None,
) -> list[TrajectoryResult] | None:
    """Run ``num_trajectories`` independent trajectories.

    Trajectory ``i`` is seeded with ``seed + i`` so results do not depend on
    the worker count. Returns None when ``cancel_event`` is set before every
    trajectory has finished.
    """
    _check_trajectory_count(num_trajectories)
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")
    context, order = prepare_run(scenario, config=config, tax_dataset=tax_dataset, rmd_provider=rmd_provider)
    seed = resolve_seed(seed)
    logger.info("Running %d trajectories of '%s' (seed %d, %d workers)", num_trajectories, scenario.name, seed, workers)

    if workers == 1:
        should_stop = cancel_event.is_set if cancel_event is not None else None
        results: list[TrajectoryResult] = []
        for index in range(num_trajectories):
            result = run_trajectory(scenario, context, order, index=index, seed=seed + index, should_stop=should_stop)
            if result is None:
                logger.info("Simulation cancelled after %d trajectories", len(results))
                return None
            results.append(result)
        return results

    results_or_none = _run_parallel(
        scenario,
        context,
        order,
        num_trajectories=num_trajectories,
        seed=seed,
        workers=workers,
        cancel_event=cancel_event,
    )
    if results_or_none is None:
        logger.info("Simulation cancelled")
    return results_or_none


def run_simulation(
    scenario: Scenario,
    num_trajectories: int,
    *,
    seed: int | None = None,
    workers: int = 1,
    cancel_event: threading.Event | None = None,
    config: EngineConfig | None = None,
    tax_dataset: TaxDataset | None = None,
    rmd_provider: RMDTableProvider | None = None,
) -> AggregatedResult | None:
    """Run and aggregate; None when cancelled."""
    seed = resolve_seed(seed)
    trajectories = run_trajectories(
        scenario,
        num_trajectories,
        seed=seed,
        workers=workers,
        cancel_event=cancel_event,
        config=config,
        tax_dataset=tax_dataset,
        rmd_provider=rmd_provider,
    )
    if trajectories is None:
        return None
    result = aggregate((trajectory.years for trajectory in trajectories), scenario=scenario.name, seed=seed)
    logger.info("Aggregated %d years across %d trajectories", len(result.years), result.num_trajectories)
    return result
