import json

import pytest

from fpsim.errors import DataAvailabilityError, MissingTaxTableError, ScenarioValidationError
from fpsim.tax import (
    BracketTable,
    BracketTableError,
    TaxBracket,
    TaxDataset,
    compute_tax_liability,
    load_tax_dataset,
    progressive_tax,
    validate_brackets,
)
from fpsim.tax_data import default_dataset


def _rows(status: str, *brackets) -> list[dict]:
    return [{"min": low, "max": high, "rate": rate, "filing_status": status} for low, high, rate in brackets]


def _valid_couple_rows() -> list[dict]:
    return _rows("couple", (0, 20000, 0.1), (20001, None, 0.2))


def test_default_dataset_tables_are_valid():
    dataset = load_tax_dataset()
    for jurisdiction in ("NY", "NJ", "CT", "CA", "TX"):
        tables = dataset.tables_for(jurisdiction)
        assert tables.jurisdiction == jurisdiction
        assert tables.federal.partitions["individual"][0].min == 0


def test_gap_between_brackets_is_rejected():
    rows = _rows("individual", (0, 5000, 0.1), (6000, 10000, 0.2), (10001, None, 0.3)) + _valid_couple_rows()
    with pytest.raises(BracketTableError) as excinfo:
        BracketTable.from_rows(rows, "state.XX")

    issues = excinfo.value.issues
    assert len(issues) == 1
    assert issues[0].rule == "discontinuity"
    assert issues[0].filing_status == "individual"
    assert issues[0].expected == 5001
    assert issues[0].actual == 6000
    assert "discontinuity after 5000" in str(excinfo.value)
    assert isinstance(excinfo.value, ScenarioValidationError)


def test_missing_filing_status_partition():
    issues = validate_brackets(
        [TaxBracket(min=0, max=None, rate=0.1, filing_status="individual")],
        "federal",
    )
    assert [(issue.rule, issue.filing_status) for issue in issues] == [("missing_filing_status", "couple")]


def test_nonzero_start():
    rows = _rows("individual", (100, None, 0.1)) + _valid_couple_rows()
    with pytest.raises(BracketTableError) as excinfo:
        BracketTable.from_rows(rows, "federal")
    assert excinfo.value.issues[0].rule == "nonzero_start"
    assert excinfo.value.issues[0].actual == 100


def test_unbounded_bracket_must_be_last():
    rows = _rows("individual", (0, None, 0.1), (1, None, 0.2)) + _valid_couple_rows()
    with pytest.raises(BracketTableError) as excinfo:
        BracketTable.from_rows(rows, "federal")
    assert [issue.rule for issue in excinfo.value.issues] == ["unbounded_not_last"]


def test_rate_out_of_range():
    rows = _rows("individual", (0, None, 1.5)) + _valid_couple_rows()
    with pytest.raises(BracketTableError, match="rate: must be between 0 and 1"):
        BracketTable.from_rows(rows, "federal")


def test_progressive_tax_is_marginal():
    brackets = [
        TaxBracket(min=0, max=10000, rate=0.1, filing_status="individual"),
        TaxBracket(min=10001, max=None, rate=0.2, filing_status="individual"),
    ]
    assert progressive_tax(0, brackets) == 0
    assert round(progressive_tax(5000, brackets), 2) == 500.00
    assert round(progressive_tax(15000, brackets), 2) == 2000.00
    assert round(progressive_tax(30000, brackets, scale=2.0), 2) == 4000.00


def test_progressive_tax_is_monotonic(ny_tables):
    for table in (ny_tables.federal, ny_tables.capital_gains, ny_tables.state):
        for status in ("individual", "couple"):
            previous = table.tax(0, status)
            assert previous == 0
            for income in range(0, 1_500_000, 2_500):
                current = table.tax(income, status)
                assert current >= previous
                previous = current


def test_federal_tax_on_100k(ny_tables):
    tax = ny_tables.federal.tax(100_000, "individual")
    assert 16_000 < tax < 18_000


def test_bracket_top(ny_tables):
    assert ny_tables.federal.bracket_top(10_000, "individual") == 12_400
    assert ny_tables.federal.bracket_top(10_000, "individual", scale=2.0) == 24_800
    assert ny_tables.federal.bracket_top(1_000_000, "individual") is None


def test_unknown_jurisdiction_is_a_data_availability_error():
    with pytest.raises(MissingTaxTableError) as excinfo:
        load_tax_dataset().tables_for("ZZ")
    assert isinstance(excinfo.value, DataAvailabilityError)
    assert not isinstance(excinfo.value, ScenarioValidationError)


def test_invalid_state_table_is_reported_with_federal_issues():
    data = default_dataset()
    data["state"]["XX"] = _rows("individual", (0, 5000, 0.1), (6000, None, 0.2))
    with pytest.raises(BracketTableError) as excinfo:
        TaxDataset.from_dict(data).tables_for("XX")
    rules = sorted(issue.rule for issue in excinfo.value.issues)
    assert rules == ["discontinuity", "missing_filing_status"]


def test_load_dataset_from_json(tmp_path):
    path = tmp_path / "tax.json"
    path.write_text(json.dumps(default_dataset()), encoding="utf-8")
    tables = load_tax_dataset(path).tables_for("nj")
    assert tables.jurisdiction == "NJ"
    assert tables.deduction("couple") == 32_200


def test_zero_income_owes_nothing(ny_tables):
    liability = compute_tax_liability(
        ny_tables,
        filing_status="individual",
        federal_income=0,
        state_income=0,
        capital_gains=0,
        early_withdrawals=0,
    )
    assert liability.total == 0


def test_early_withdrawal_penalty_is_ten_percent(ny_tables):
    liability = compute_tax_liability(
        ny_tables,
        filing_status="individual",
        federal_income=0,
        state_income=0,
        capital_gains=0,
        early_withdrawals=10_000,
    )
    assert liability.early_withdrawal_penalty == 1_000
    assert liability.total == 1_000


def test_standard_deduction_shelters_income(ny_tables):
    liability = compute_tax_liability(
        ny_tables,
        filing_status="individual",
        federal_income=16_000,
        state_income=0,
        capital_gains=0,
        early_withdrawals=0,
    )
    assert liability.federal == 0


def test_capital_gains_stack_on_ordinary_income(ny_tables):
    def gains_tax(ordinary: float) -> float:
        return compute_tax_liability(
            ny_tables,
            filing_status="individual",
            federal_income=ordinary,
            state_income=0,
            capital_gains=50_000,
            early_withdrawals=0,
        ).capital_gains

    assert gains_tax(10_000) == 0
    assert gains_tax(150_000) == pytest.approx(7_500)


def test_inflation_factor_scales_thresholds(ny_tables):
    base = compute_tax_liability(
        ny_tables, filing_status="couple", federal_income=80_000, state_income=80_000, capital_gains=0, early_withdrawals=0
    )
    indexed = compute_tax_liability(
        ny_tables,
        filing_status="couple",
        federal_income=80_000,
        state_income=80_000,
        capital_gains=0,
        early_withdrawals=0,
        inflation_factor=1.5,
    )
    assert indexed.federal < base.federal
    assert indexed.state < base.state
