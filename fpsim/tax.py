"""Progressive bracket validation and tax evaluation."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import Any

from .errors import MissingTaxTableError, ScenarioValidationError
from .schema import SchemaError, _expect_dict, _expect_list, _number, _require
from .tax_data import FILING_STATUSES, default_dataset

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TaxBracket:
    min: float
    max: float | None
    rate: float
    filing_status: str


@dataclass(slots=True)
class BracketIssue:
    rule: str
    table: str
    filing_status: str
    message: str
    index: int | None = None
    expected: float | None = None
    actual: float | None = None


class BracketTableError(ScenarioValidationError):
    """Raised when a bracket table breaks the ordering rules; carries every issue found."""

    def __init__(self, issues: list[BracketIssue]):
        self.issues = list(issues)
        super().__init__([issue.message for issue in self.issues])


def parse_brackets(rows: Any, path: str) -> list[TaxBracket]:
    brackets: list[TaxBracket] = []
    for idx, item in enumerate(_expect_list(rows, path)):
        row_path = f"{path}[{idx}]"
        row = _expect_dict(item, row_path)
        upper = row.get("max")
        brackets.append(
            TaxBracket(
                min=_number(_require(row, "min", row_path), f"{row_path}.min"),
                max=None if upper is None else _number(upper, f"{row_path}.max"),
                rate=_number(_require(row, "rate", row_path), f"{row_path}.rate"),
                filing_status=str(_require(row, "filing_status", row_path)),
            )
        )
    return brackets


def validate_brackets(brackets: list[TaxBracket], table: str) -> list[BracketIssue]:
    """Check each filing-status partition starts at 0, is contiguous and has only a terminal unbounded bracket."""
    issues: list[BracketIssue] = []
    for bracket in brackets:
        if bracket.filing_status not in FILING_STATUSES:
            issues.append(
                BracketIssue(
                    rule="unknown_filing_status",
                    table=table,
                    filing_status=bracket.filing_status,
                    message=f"{table}: unknown filing status '{bracket.filing_status}'",
                )
            )

    for status in FILING_STATUSES:
        partition = [bracket for bracket in brackets if bracket.filing_status == status]
        base = f"{table}[{status}]"
        if not partition:
            issues.append(
                BracketIssue(
                    rule="missing_filing_status",
                    table=table,
                    filing_status=status,
                    message=f"{base}: no brackets for filing status",
                )
            )
            continue

        if partition[0].min != 0:
            issues.append(
                BracketIssue(
                    rule="nonzero_start",
                    table=table,
                    filing_status=status,
                    index=0,
                    expected=0.0,
                    actual=partition[0].min,
                    message=f"{base}[0]: first bracket must start at 0, starts at {partition[0].min:g}",
                )
            )

        last = len(partition) - 1
        for idx, bracket in enumerate(partition):
            if not 0.0 <= bracket.rate <= 1.0:
                issues.append(
                    BracketIssue(
                        rule="invalid_rate",
                        table=table,
                        filing_status=status,
                        index=idx,
                        actual=bracket.rate,
                        message=f"{base}[{idx}].rate: must be between 0 and 1, got {bracket.rate:g}",
                    )
                )
            if bracket.max is not None and bracket.max < bracket.min:
                issues.append(
                    BracketIssue(
                        rule="inverted_bracket",
                        table=table,
                        filing_status=status,
                        index=idx,
                        message=f"{base}[{idx}]: max {bracket.max:g} is below min {bracket.min:g}",
                    )
                )
            if bracket.max is None and idx != last:
                issues.append(
                    BracketIssue(
                        rule="unbounded_not_last",
                        table=table,
                        filing_status=status,
                        index=idx,
                        message=f"{base}[{idx}]: only the last bracket may be unbounded",
                    )
                )
            if idx == 0:
                continue
            previous = partition[idx - 1]
            if previous.max is None:
                continue
            expected = previous.max + 1
            if bracket.min != expected:
                issues.append(
                    BracketIssue(
                        rule="discontinuity",
                        table=table,
                        filing_status=status,
                        index=idx,
                        expected=expected,
                        actual=bracket.min,
                        message=(
                            f"{base}[{idx}]: discontinuity after {previous.max:g}, "
                            f"expected min {expected:g} but got {bracket.min:g}"
                        ),
                    )
                )
    return issues


def progressive_tax(income: float, brackets: list[TaxBracket] | tuple[TaxBracket, ...], scale: float = 1.0) -> float:
    """Marginal tax on ``income``; thresholds are multiplied by ``scale`` for inflation indexing."""
    if income <= 0:
        return 0.0

    tax = 0.0
    lower = 0.0
    for bracket in brackets:
        upper = None if bracket.max is None else bracket.max * scale
        top = income if upper is None else min(income, upper)
        if top > lower:
            tax += (top - lower) * bracket.rate
        if upper is None or income <= upper:
            break
        # Income between this max and the next min is taxed with the next bracket.
        lower = upper
    return tax


@dataclass(slots=True)
class BracketTable:
    name: str
    partitions: dict[str, tuple[TaxBracket, ...]]

    @classmethod
    def from_brackets(cls, brackets: list[TaxBracket], name: str) -> "BracketTable":
        issues = validate_brackets(brackets, name)
        if issues:
            raise BracketTableError(issues)
        return cls(
            name=name,
            partitions={
                status: tuple(bracket for bracket in brackets if bracket.filing_status == status)
                for status in FILING_STATUSES
            },
        )

    @classmethod
    def from_rows(cls, rows: Any, name: str) -> "BracketTable":
        return cls.from_brackets(parse_brackets(rows, name), name)

    def tax(self, income: float, filing_status: str, scale: float = 1.0) -> float:
        return progressive_tax(income, self.partitions[filing_status], scale)

    def bracket_top(self, income: float, filing_status: str, scale: float = 1.0) -> float | None:
        """Upper threshold of the bracket ``income`` falls in; None in the unbounded bracket."""
        for bracket in self.partitions[filing_status]:
            if bracket.max is None:
                return None
            upper = bracket.max * scale
            if income < upper:
                return upper
        return None


@dataclass(slots=True)
class TaxTables:
    """Validated tables for one jurisdiction, resolved once per run."""

    jurisdiction: str
    federal: BracketTable
    capital_gains: BracketTable
    state: BracketTable
    standard_deduction: dict[str, float]

    def deduction(self, filing_status: str, scale: float = 1.0) -> float:
        return self.standard_deduction[filing_status] * scale


@dataclass(slots=True)
class TaxDataset:
    tax_year: int | None
    federal_rows: list[Any]
    capital_gains_rows: list[Any]
    standard_deduction: dict[str, float]
    state_rows: dict[str, list[Any]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any], path: str = "tax_data") -> "TaxDataset":
        deduction_raw = _expect_dict(_require(data, "standard_deduction", path), f"{path}.standard_deduction")
        state_raw = _expect_dict(data.get("state", {}), f"{path}.state")
        return cls(
            tax_year=data.get("tax_year"),
            federal_rows=_expect_list(_require(data, "federal", path), f"{path}.federal"),
            capital_gains_rows=_expect_list(_require(data, "capital_gains", path), f"{path}.capital_gains"),
            standard_deduction={
                str(status): _number(amount, f"{path}.standard_deduction.{status}")
                for status, amount in deduction_raw.items()
            },
            state_rows={str(code).upper(): _expect_list(rows, f"{path}.state.{code}") for code, rows in state_raw.items()},
        )

    def tables_for(self, jurisdiction: str) -> TaxTables:
        """Validate and resolve the tables a scenario living in ``jurisdiction`` needs."""
        code = jurisdiction.upper()
        if code not in self.state_rows:
            raise MissingTaxTableError(jurisdiction)

        missing = [status for status in FILING_STATUSES if status not in self.standard_deduction]
        if missing:
            raise ScenarioValidationError([f"standard_deduction: missing filing status '{status}'" for status in missing])

        issues: list[BracketIssue] = []
        tables: dict[str, BracketTable] = {}
        for name, rows in (("federal", self.federal_rows), ("capital_gains", self.capital_gains_rows), (f"state.{code}", self.state_rows[code])):
            try:
                tables[name] = BracketTable.from_rows(rows, name)
            except BracketTableError as exc:
                issues.extend(exc.issues)
        if issues:
            raise BracketTableError(issues)

        logger.debug("Resolved tax tables for %s (tax year %s)", code, self.tax_year)
        return TaxTables(
            jurisdiction=code,
            federal=tables["federal"],
            capital_gains=tables["capital_gains"],
            state=tables[f"state.{code}"],
            standard_deduction=dict(self.standard_deduction),
        )


def load_tax_dataset(path: str | Path | None = None) -> TaxDataset:
    """Load a tax dataset from JSON, or the curated default when ``path`` is None."""
    if path is None:
        return TaxDataset.from_dict(default_dataset())
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise SchemaError("tax_data: root must be a JSON object")
    return TaxDataset.from_dict(raw)


@dataclass(slots=True)
class TaxLiability:
    federal: float
    capital_gains: float
    state: float
    early_withdrawal_penalty: float

    @property
    def total(self) -> float:
        return self.federal + self.capital_gains + self.state + self.early_withdrawal_penalty


def compute_tax_liability(
    tables: TaxTables,
    *,
    filing_status: str,
    federal_income: float,
    state_income: float,
    capital_gains: float,
    early_withdrawals: float,
    inflation_factor: float = 1.0,
    early_withdrawal_penalty_rate: float = 0.10,
) -> TaxLiability:
    """Tax owed for one ledger year.

    ``federal_income`` is ordinary income with the Social Security exclusion
    already applied. Capital gains are stacked on top of ordinary taxable
    income when evaluating the capital-gains brackets.
    """
    ordinary_taxable = max(0.0, federal_income - tables.deduction(filing_status, inflation_factor))
    federal = tables.federal.tax(ordinary_taxable, filing_status, inflation_factor)

    gains = max(0.0, capital_gains)
    gains_tax = tables.capital_gains.tax(ordinary_taxable + gains, filing_status, inflation_factor) - tables.capital_gains.tax(
        ordinary_taxable, filing_status, inflation_factor
    )

    state = tables.state.tax(max(0.0, state_income + gains), filing_status, inflation_factor)
    penalty = max(0.0, early_withdrawals) * early_withdrawal_penalty_rate
    return TaxLiability(
        federal=federal,
        capital_gains=max(0.0, gains_tax),
        state=state,
        early_withdrawal_penalty=penalty,
    )
