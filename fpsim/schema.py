"""Scenario schema dataclasses and JSON loading."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from pathlib import Path
from typing import Any

from .distributions import DISTRIBUTION_TYPES, Distribution

TAX_STATUSES = ("non-retirement", "pre-tax", "after-tax")
EVENT_TYPES = ("income", "expense", "invest", "rebalance")
AMT_OR_PCT = ("amount", "percent")
MARITAL_STATUSES = ("individual", "couple")
START_RELATIONS = ("start_with", "start_after")
CASH_TYPE = "cash"


class SchemaError(ValueError):
    """Raised when raw JSON cannot be parsed into schema objects."""


def _expect_dict(value: Any, path: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise SchemaError(f"{path}: expected object")
    return value


def _expect_list(value: Any, path: str) -> list[Any]:
    if not isinstance(value, list):
        raise SchemaError(f"{path}: expected array")
    return value


def _require(data: dict[str, Any], key: str, path: str) -> Any:
    if key not in data:
        raise SchemaError(f"{path}.{key}: missing required field")
    return data[key]


def _optional(data: dict[str, Any], key: str, default: Any = None) -> Any:
    return data.get(key, default)


def _number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SchemaError(f"{path}: expected number")
    return float(value)


def parse_distribution(value: Any, path: str) -> Distribution:
    data = _expect_dict(value, path)
    kind = _require(data, "type", path)
    if kind not in DISTRIBUTION_TYPES:
        raise SchemaError(f"{path}.type: unknown distribution '{kind}'")
    if kind == "fixed":
        return Distribution.fixed(_number(_require(data, "value", path), f"{path}.value"))
    if kind == "uniform":
        return Distribution.uniform(
            _number(_require(data, "lower", path), f"{path}.lower"),
            _number(_require(data, "upper", path), f"{path}.upper"),
        )
    return Distribution.normal(
        _number(_require(data, "mean", path), f"{path}.mean"),
        _number(_require(data, "stdev", path), f"{path}.stdev"),
    )


def _allocation(value: Any, path: str) -> dict[str, float]:
    data = _expect_dict(value, path)
    return {str(key): _number(pct, f"{path}.{key}") for key, pct in data.items()}


def _names(value: Any, path: str) -> list[str]:
    return [str(item) for item in _expect_list(value, path)]


@dataclass(slots=True)
class InvestmentType:
    name: str
    return_amt_or_pct: str
    return_distribution: Distribution
    expense_ratio: float
    income_amt_or_pct: str
    income_distribution: Distribution
    taxability: bool
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "InvestmentType":
        return cls(
            name=_require(data, "name", path),
            description=_optional(data, "description", ""),
            return_amt_or_pct=_optional(data, "return_amt_or_pct", "percent"),
            return_distribution=parse_distribution(
                _require(data, "return_distribution", path), f"{path}.return_distribution"
            ),
            expense_ratio=_number(_optional(data, "expense_ratio", 0.0), f"{path}.expense_ratio"),
            income_amt_or_pct=_optional(data, "income_amt_or_pct", "percent"),
            income_distribution=parse_distribution(
                _optional(data, "income_distribution", {"type": "fixed", "value": 0}), f"{path}.income_distribution"
            ),
            taxability=bool(_optional(data, "taxability", True)),
        )


@dataclass(slots=True)
class Investment:
    id: str
    investment_type: str
    value: float
    tax_status: str
    cost_basis: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "Investment":
        cost_basis = _optional(data, "cost_basis")
        return cls(
            id=_require(data, "id", path),
            investment_type=_require(data, "investment_type", path),
            value=_number(_require(data, "value", path), f"{path}.value"),
            tax_status=_require(data, "tax_status", path),
            cost_basis=None if cost_basis is None else _number(cost_basis, f"{path}.cost_basis"),
        )


@dataclass(slots=True)
class StartRule:
    """A series start year: sampled from a distribution or tied to another series."""

    distribution: Distribution | None = None
    relation: str | None = None
    event_series: str | None = None

    @property
    def depends_on(self) -> str | None:
        return self.event_series if self.relation is not None else None

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "StartRule":
        kind = _require(data, "type", path)
        if kind in START_RELATIONS:
            return cls(relation=kind, event_series=str(_require(data, "event_series", path)))
        return cls(distribution=parse_distribution(data, path))


@dataclass(slots=True)
class EventSeries:
    name: str
    type: str
    start: StartRule
    duration: Distribution
    description: str = ""
    # income / expense
    initial_amount: float = 0.0
    change_amt_or_pct: str = "amount"
    change_distribution: Distribution = field(default_factory=lambda: Distribution.fixed(0.0))
    inflation_adjusted: bool = False
    user_percent: float = 100.0
    spouse_percent: float = 0.0
    social_security: bool = False
    discretionary: bool = False
    # invest / rebalance
    asset_allocation: dict[str, float] = field(default_factory=dict)
    glide_path: bool = False
    asset_allocation2: dict[str, float] = field(default_factory=dict)
    max_cash: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str) -> "EventSeries":
        kind = _require(data, "type", path)
        if kind not in EVENT_TYPES:
            raise SchemaError(f"{path}.type: unknown event type '{kind}'")
        series = cls(
            name=_require(data, "name", path),
            type=kind,
            description=_optional(data, "description", ""),
            start=StartRule.from_dict(_expect_dict(_require(data, "start", path), f"{path}.start"), f"{path}.start"),
            duration=parse_distribution(_require(data, "duration", path), f"{path}.duration"),
        )
        if kind in ("income", "expense"):
            series.initial_amount = _number(_require(data, "initial_amount", path), f"{path}.initial_amount")
            series.change_amt_or_pct = _optional(data, "change_amt_or_pct", "amount")
            series.change_distribution = parse_distribution(
                _optional(data, "change_distribution", {"type": "fixed", "value": 0}), f"{path}.change_distribution"
            )
            series.inflation_adjusted = bool(_optional(data, "inflation_adjusted", False))
            series.user_percent = _number(_optional(data, "user_percent", 100), f"{path}.user_percent")
            series.spouse_percent = _number(
                _optional(data, "spouse_percent", 100 - series.user_percent), f"{path}.spouse_percent"
            )
            series.social_security = bool(_optional(data, "social_security", False))
            series.discretionary = bool(_optional(data, "discretionary", False))
        else:
            series.asset_allocation = _allocation(_require(data, "asset_allocation", path), f"{path}.asset_allocation")
            series.glide_path = bool(_optional(data, "glide_path", False))
            if series.glide_path:
                series.asset_allocation2 = _allocation(
                    _require(data, "asset_allocation2", path), f"{path}.asset_allocation2"
                )
            if kind == "invest":
                series.max_cash = _number(_optional(data, "max_cash", 0), f"{path}.max_cash")
        return series


@dataclass(slots=True)
class RothConversion:
    enabled: bool = False
    start_year: int = 0
    end_year: int = 0
    strategy: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str = "roth_conversion") -> "RothConversion":
        enabled = bool(_optional(data, "enabled", False))
        if not enabled:
            return cls()
        return cls(
            enabled=True,
            start_year=int(_require(data, "start_year", path)),
            end_year=int(_require(data, "end_year", path)),
            strategy=_names(_optional(data, "strategy", []), f"{path}.strategy"),
        )


@dataclass(slots=True)
class Scenario:
    name: str
    marital_status: str
    birth_years: list[int]
    life_expectancy: list[Distribution]
    start_year: int
    financial_goal: float
    residence_state: str
    inflation_assumption: Distribution
    after_tax_contribution_limit: float
    investment_types: list[InvestmentType]
    investments: list[Investment]
    event_series: list[EventSeries]
    spending_strategy: list[str] = field(default_factory=list)
    expense_withdrawal_strategy: list[str] = field(default_factory=list)
    rmd_strategy: list[str] = field(default_factory=list)
    roth_conversion: RothConversion = field(default_factory=RothConversion)

    @property
    def is_couple(self) -> bool:
        return self.marital_status == "couple"

    def series_by_name(self) -> dict[str, EventSeries]:
        return {series.name: series for series in self.event_series}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Scenario":
        life_expectancy = _expect_list(_require(data, "life_expectancy", "scenario"), "life_expectancy")
        return cls(
            name=_optional(data, "name", "Scenario"),
            marital_status=_require(data, "marital_status", "scenario"),
            birth_years=[
                int(_number(item, f"birth_years[{idx}]"))
                for idx, item in enumerate(_expect_list(_require(data, "birth_years", "scenario"), "birth_years"))
            ],
            life_expectancy=[
                parse_distribution(item, f"life_expectancy[{idx}]") for idx, item in enumerate(life_expectancy)
            ],
            start_year=int(_number(_require(data, "start_year", "scenario"), "start_year")),
            financial_goal=_number(_optional(data, "financial_goal", 0), "financial_goal"),
            residence_state=str(_require(data, "residence_state", "scenario")),
            inflation_assumption=parse_distribution(
                _optional(data, "inflation_assumption", {"type": "fixed", "value": 0}), "inflation_assumption"
            ),
            after_tax_contribution_limit=_number(
                _optional(data, "after_tax_contribution_limit", 0), "after_tax_contribution_limit"
            ),
            investment_types=[
                InvestmentType.from_dict(_expect_dict(item, f"investment_types[{idx}]"), f"investment_types[{idx}]")
                for idx, item in enumerate(
                    _expect_list(_require(data, "investment_types", "scenario"), "investment_types")
                )
            ],
            investments=[
                Investment.from_dict(_expect_dict(item, f"investments[{idx}]"), f"investments[{idx}]")
                for idx, item in enumerate(_expect_list(_require(data, "investments", "scenario"), "investments"))
            ],
            event_series=[
                EventSeries.from_dict(_expect_dict(item, f"event_series[{idx}]"), f"event_series[{idx}]")
                for idx, item in enumerate(_expect_list(_optional(data, "event_series", []), "event_series"))
            ],
            spending_strategy=_names(_optional(data, "spending_strategy", []), "spending_strategy"),
            expense_withdrawal_strategy=_names(
                _optional(data, "expense_withdrawal_strategy", []), "expense_withdrawal_strategy"
            ),
            rmd_strategy=_names(_optional(data, "rmd_strategy", []), "rmd_strategy"),
            roth_conversion=RothConversion.from_dict(
                _expect_dict(_optional(data, "roth_conversion", {}), "roth_conversion")
            ),
        )


def load_scenario(path: str | Path) -> Scenario:
    """Load scenario JSON into strongly-typed dataclasses."""
    source = Path(path)
    raw = json.loads(source.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise SchemaError("scenario: root must be a JSON object")
    return Scenario.from_dict(raw)
