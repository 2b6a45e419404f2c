import copy
import json
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
SAMPLE_SCENARIO = ROOT / "sample_scenario.json"


def write_scenario(tmp_path: Path, data: dict, filename: str = "scenario.json") -> Path:
    path = tmp_path / filename
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def clone_scenario(data: dict) -> dict:
    return copy.deepcopy(data)


def fixed(value: float) -> dict:
    return {"type": "fixed", "value": value}


def single_investment_scenario(
    *,
    value: float = 100_000,
    annual_return: float = 0.05,
    tax_status: str = "non-retirement",
    start_year: int = 2025,
    birth_year: int = 1960,
    life_expectancy: float = 75,
) -> dict:
    """One person, one fixed-return investment, no events, a zero goal."""
    return {
        "name": "Single investor",
        "marital_status": "individual",
        "birth_years": [birth_year],
        "life_expectancy": [fixed(life_expectancy)],
        "start_year": start_year,
        "financial_goal": 0,
        "residence_state": "NY",
        "inflation_assumption": fixed(0),
        "after_tax_contribution_limit": 7000,
        "investment_types": [
            {
                "name": "index fund",
                "return_amt_or_pct": "percent",
                "return_distribution": fixed(annual_return),
                "expense_ratio": 0,
                "income_amt_or_pct": "percent",
                "income_distribution": fixed(0),
                "taxability": True,
            }
        ],
        "investments": [
            {"id": "index fund", "investment_type": "index fund", "value": value, "tax_status": tax_status}
        ],
        "event_series": [],
        "spending_strategy": [],
        "expense_withdrawal_strategy": ["index fund"],
        "rmd_strategy": ["index fund"] if tax_status == "pre-tax" else [],
    }


def expense_event(name: str, amount: float, *, discretionary: bool = False, start: int = 2025, duration: int = 50) -> dict:
    return {
        "name": name,
        "type": "expense",
        "start": fixed(start),
        "duration": fixed(duration),
        "initial_amount": amount,
        "change_amt_or_pct": "amount",
        "change_distribution": fixed(0),
        "inflation_adjusted": False,
        "user_percent": 100,
        "spouse_percent": 0,
        "discretionary": discretionary,
    }


def income_event(name: str, amount: float, *, social_security: bool = False, start: int = 2025, duration: int = 50) -> dict:
    return {
        "name": name,
        "type": "income",
        "start": fixed(start),
        "duration": fixed(duration),
        "initial_amount": amount,
        "change_amt_or_pct": "amount",
        "change_distribution": fixed(0),
        "inflation_adjusted": False,
        "user_percent": 100,
        "spouse_percent": 0,
        "social_security": social_security,
    }
