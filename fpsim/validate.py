"""Semantic and cross-reference validation for scenarios."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
import math

from .distributions import Distribution, distribution_errors
from .errors import ScenarioValidationError
from .schema import AMT_OR_PCT, CASH_TYPE, MARITAL_STATUSES, TAX_STATUSES, EventSeries, Scenario

PERCENT_TOLERANCE = 1e-6


@dataclass(slots=True)
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise ScenarioValidationError(self.errors)


def _check_enum(value: str, allowed: tuple[str, ...], path: str, errors: list[str]) -> None:
    if value not in allowed:
        errors.append(f"{path}: invalid value '{value}'")


def _check_distribution(dist: Distribution, path: str, errors: list[str]) -> None:
    errors.extend(distribution_errors(dist, path))


def _check_allocation(
    allocation: dict[str, float],
    path: str,
    investments: dict[str, str],
    errors: list[str],
) -> None:
    if not allocation:
        errors.append(f"{path}: allocation must not be empty")
        return
    for investment_id, pct in allocation.items():
        if investment_id not in investments:
            errors.append(f"{path}.{investment_id}: unknown investment")
        if pct < 0:
            errors.append(f"{path}.{investment_id}: percentage must be >= 0")
    total = sum(allocation.values())
    if not math.isclose(total, 100.0, abs_tol=PERCENT_TOLERANCE):
        errors.append(f"{path}: percentages must sum to 100 (got {total:g})")


def series_resolution_order(scenario: Scenario) -> list[str]:
    """Topologically order event series so every start_with/start_after target comes first.

    Raises ScenarioValidationError for dangling references or cycles.
    """
    by_name = scenario.series_by_name()
    dependents: dict[str, list[str]] = {name: [] for name in by_name}
    indegree = {name: 0 for name in by_name}
    errors: list[str] = []
    for series in scenario.event_series:
        target = series.start.depends_on
        if target is None:
            continue
        if target not in by_name:
            errors.append(f"event_series.{series.name}.start: references unknown series '{target}'")
            continue
        if target == series.name:
            errors.append(f"event_series.{series.name}.start: series cannot reference itself")
            continue
        dependents[target].append(series.name)
        indegree[series.name] += 1
    if errors:
        raise ScenarioValidationError(errors)

    queue = deque(name for name in by_name if indegree[name] == 0)
    order: list[str] = []
    while queue:
        name = queue.popleft()
        order.append(name)
        for dependent in dependents[name]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                queue.append(dependent)

    if len(order) != len(by_name):
        cyclic = sorted(name for name, degree in indegree.items() if degree > 0)
        raise ScenarioValidationError([f"event_series: start references form a cycle among {', '.join(cyclic)}"])
    return order


def _validate_series(
    series: EventSeries,
    scenario: Scenario,
    investments: dict[str, str],
    errors: list[str],
    warnings: list[str],
) -> None:
    base = f"event_series.{series.name}"
    if series.start.distribution is not None:
        _check_distribution(series.start.distribution, f"{base}.start", errors)
    _check_distribution(series.duration, f"{base}.duration", errors)

    if series.type in ("income", "expense"):
        if series.initial_amount < 0:
            errors.append(f"{base}.initial_amount: must be >= 0")
        _check_enum(series.change_amt_or_pct, AMT_OR_PCT, f"{base}.change_amt_or_pct", errors)
        _check_distribution(series.change_distribution, f"{base}.change_distribution", errors)
        for label, pct in (("user_percent", series.user_percent), ("spouse_percent", series.spouse_percent)):
            if not 0 <= pct <= 100:
                errors.append(f"{base}.{label}: must be between 0 and 100")
        if not math.isclose(series.user_percent + series.spouse_percent, 100.0, abs_tol=PERCENT_TOLERANCE):
            errors.append(f"{base}: user_percent and spouse_percent must sum to 100")
        if not scenario.is_couple and series.spouse_percent > 0:
            warnings.append(f"{base}.spouse_percent: ignored for an individual scenario")
        if series.type == "expense" and series.discretionary and series.name not in scenario.spending_strategy:
            warnings.append(f"{base}: discretionary expense missing from spending_strategy, paid last")
        return

    allocations = [("asset_allocation", series.asset_allocation)]
    if series.glide_path:
        allocations.append(("asset_allocation2", series.asset_allocation2))
    for label, allocation in allocations:
        _check_allocation(allocation, f"{base}.{label}", investments, errors)

    if series.glide_path and set(series.asset_allocation) != set(series.asset_allocation2):
        warnings.append(f"{base}: glide path allocations name different investments")

    targets = {investment_id for _, allocation in allocations for investment_id in allocation if investment_id in investments}
    if series.type == "invest":
        if series.max_cash < 0:
            errors.append(f"{base}.max_cash: must be >= 0")
        for investment_id in sorted(targets):
            if investments[investment_id] == "pre-tax":
                errors.append(f"{base}.asset_allocation.{investment_id}: cannot invest into pre-tax investments")
    else:
        statuses = {investments[investment_id] for investment_id in targets}
        if len(statuses) > 1:
            errors.append(f"{base}.asset_allocation: rebalance targets must share one tax status")


def _check_strategy(
    names: list[str],
    path: str,
    known: dict[str, str],
    errors: list[str],
    required_status: str | None = None,
) -> None:
    seen: set[str] = set()
    for idx, name in enumerate(names):
        if name in seen:
            errors.append(f"{path}[{idx}]: duplicate entry '{name}'")
        seen.add(name)
        if name not in known:
            errors.append(f"{path}[{idx}]: unknown investment '{name}'")
        elif required_status is not None and known[name] != required_status:
            errors.append(f"{path}[{idx}]: '{name}' must be a {required_status} investment")


def validate_scenario(scenario: Scenario) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []

    _check_enum(scenario.marital_status, MARITAL_STATUSES, "marital_status", errors)
    members = 2 if scenario.is_couple else 1
    if len(scenario.birth_years) != members:
        errors.append(f"birth_years: expected {members} entries for marital_status '{scenario.marital_status}'")
    if len(scenario.life_expectancy) != members:
        errors.append(f"life_expectancy: expected {members} entries for marital_status '{scenario.marital_status}'")
    for idx, dist in enumerate(scenario.life_expectancy):
        _check_distribution(dist, f"life_expectancy[{idx}]", errors)
    for idx, birth_year in enumerate(scenario.birth_years):
        if birth_year > scenario.start_year:
            errors.append(f"birth_years[{idx}]: must not be after start_year")

    if scenario.financial_goal < 0:
        errors.append("financial_goal: must be >= 0")
    if scenario.after_tax_contribution_limit < 0:
        errors.append("after_tax_contribution_limit: must be >= 0")
    if not scenario.residence_state:
        errors.append("residence_state: must not be empty")
    _check_distribution(scenario.inflation_assumption, "inflation_assumption", errors)

    type_names: set[str] = set()
    for item in scenario.investment_types:
        base = f"investment_types.{item.name}"
        if item.name in type_names:
            errors.append(f"{base}: duplicate investment type name")
        type_names.add(item.name)
        _check_enum(item.return_amt_or_pct, AMT_OR_PCT, f"{base}.return_amt_or_pct", errors)
        _check_enum(item.income_amt_or_pct, AMT_OR_PCT, f"{base}.income_amt_or_pct", errors)
        _check_distribution(item.return_distribution, f"{base}.return_distribution", errors)
        _check_distribution(item.income_distribution, f"{base}.income_distribution", errors)
        if item.expense_ratio < 0:
            errors.append(f"{base}.expense_ratio: must be >= 0")

    investments: dict[str, str] = {}
    for item in scenario.investments:
        base = f"investments.{item.id}"
        if item.id in investments:
            errors.append(f"{base}: duplicate investment id")
        _check_enum(item.tax_status, TAX_STATUSES, f"{base}.tax_status", errors)
        if item.investment_type not in type_names:
            errors.append(f"{base}.investment_type: unknown investment type '{item.investment_type}'")
        if item.value < 0:
            errors.append(f"{base}.value: must be >= 0")
        if item.cost_basis is not None and item.cost_basis < 0:
            errors.append(f"{base}.cost_basis: must be >= 0")
        if item.investment_type == CASH_TYPE:
            continue
        investments[item.id] = item.tax_status

    names: set[str] = set()
    for series in scenario.event_series:
        if series.name in names:
            errors.append(f"event_series.{series.name}: duplicate series name")
        names.add(series.name)
        _validate_series(series, scenario, investments, errors, warnings)

    try:
        series_resolution_order(scenario)
    except ScenarioValidationError as exc:
        errors.extend(exc.errors)

    by_name = scenario.series_by_name()
    for idx, name in enumerate(scenario.spending_strategy):
        series = by_name.get(name)
        if series is None:
            errors.append(f"spending_strategy[{idx}]: unknown event series '{name}'")
        elif series.type != "expense" or not series.discretionary:
            errors.append(f"spending_strategy[{idx}]: '{name}' is not a discretionary expense")

    _check_strategy(scenario.expense_withdrawal_strategy, "expense_withdrawal_strategy", investments, errors)
    _check_strategy(scenario.rmd_strategy, "rmd_strategy", investments, errors, required_status="pre-tax")
    pre_tax = [investment_id for investment_id, status in investments.items() if status == "pre-tax"]
    missing_rmd = [investment_id for investment_id in pre_tax if investment_id not in scenario.rmd_strategy]
    if missing_rmd:
        warnings.append(f"rmd_strategy: pre-tax investments not listed are distributed last: {', '.join(missing_rmd)}")

    roth = scenario.roth_conversion
    if roth.enabled:
        if roth.start_year > roth.end_year:
            errors.append("roth_conversion: start_year must be <= end_year")
        if not roth.strategy:
            errors.append("roth_conversion.strategy: must list at least one pre-tax investment")
        _check_strategy(roth.strategy, "roth_conversion.strategy", investments, errors, required_status="pre-tax")

    return ValidationResult(errors=errors, warnings=warnings)
