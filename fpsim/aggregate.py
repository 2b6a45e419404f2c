"""Reduce trajectory result series into year-indexed percentile statistics."""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Callable, Iterable

from .engine import YearRecord

BANDS: dict[str, tuple[float, float]] = {
    "range10_90": (0.10, 0.90),
    "range20_80": (0.20, 0.80),
    "range30_70": (0.30, 0.70),
    "range40_60": (0.40, 0.60),
}


@dataclass(slots=True)
class QuantityStats:
    median: float
    average: float
    range10_90: tuple[float, float]
    range20_80: tuple[float, float]
    range30_70: tuple[float, float]
    range40_60: tuple[float, float]


@dataclass(slots=True)
class NamedStats:
    mean: float
    median: float


@dataclass(slots=True)
class YearSummary:
    year: int
    trajectories: int
    success_probability: float
    total_investments: QuantityStats
    total_income: QuantityStats
    total_expenses: QuantityStats
    early_withdrawal_tax: QuantityStats
    discretionary_pct: QuantityStats
    investments: dict[str, NamedStats] = field(default_factory=dict)
    income: dict[str, NamedStats] = field(default_factory=dict)
    expenses: dict[str, NamedStats] = field(default_factory=dict)


@dataclass(slots=True)
class AggregatedResult:
    scenario: str
    seed: int | None
    num_trajectories: int
    years: list[YearSummary]


def percentile(values: list[float], pct: float) -> float:
    """Linear interpolation between the order statistics around rank ``pct``."""
    ordered = sorted(values)
    if not ordered:
        return 0.0
    if len(ordered) == 1:
        return ordered[0]
    position = (len(ordered) - 1) * pct
    low = int(math.floor(position))
    high = int(math.ceil(position))
    if low == high or ordered[low] == ordered[high]:
        return ordered[low]
    weight = position - low
    return ordered[low] + (ordered[high] - ordered[low]) * weight


def quantity_stats(values: list[float]) -> QuantityStats:
    bands = {name: (percentile(values, low), percentile(values, high)) for name, (low, high) in BANDS.items()}
    return QuantityStats(
        median=percentile(values, 0.5),
        average=math.fsum(values) / len(values) if values else 0.0,
        **bands,
    )


def _named_stats(records: list[YearRecord], getter: Callable[[YearRecord], dict[str, float]]) -> dict[str, NamedStats]:
    names: list[str] = []
    for record in records:
        names.extend(name for name in getter(record) if name not in names)
    stats: dict[str, NamedStats] = {}
    for name in names:
        # A trajectory without the entry that year contributes zero.
        values = [getter(record).get(name, 0.0) for record in records]
        stats[name] = NamedStats(mean=math.fsum(values) / len(values), median=percentile(values, 0.5))
    return stats


def summarize_year(year: int, records: list[YearRecord]) -> YearSummary:
    return YearSummary(
        year=year,
        trajectories=len(records),
        success_probability=sum(1 for record in records if record.goal_met) / len(records),
        total_investments=quantity_stats([record.total_value for record in records]),
        total_income=quantity_stats([record.income for record in records]),
        total_expenses=quantity_stats([record.total_expenses for record in records]),
        early_withdrawal_tax=quantity_stats([record.early_withdrawal_tax for record in records]),
        discretionary_pct=quantity_stats([record.discretionary_pct for record in records]),
        investments=_named_stats(records, lambda record: record.investments),
        income=_named_stats(records, lambda record: record.income_breakdown),
        expenses=_named_stats(records, lambda record: record.expense_breakdown),
    )


def aggregate(
    series: Iterable[list[YearRecord]],
    *,
    scenario: str = "",
    seed: int | None = None,
) -> AggregatedResult:
    """Aggregate per-trajectory year series; each year uses only trajectories still simulated then."""
    by_year: dict[int, list[YearRecord]] = {}
    count = 0
    for years in series:
        count += 1
        for record in years:
            by_year.setdefault(record.year, []).append(record)
    return AggregatedResult(
        scenario=scenario,
        seed=seed,
        num_trajectories=count,
        years=[summarize_year(year, by_year[year]) for year in sorted(by_year)],
    )
