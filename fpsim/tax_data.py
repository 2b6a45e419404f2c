"""Curated tax bracket reference data used when no external dataset is supplied."""

from __future__ import annotations

from typing import Any, Final

BASE_TAX_YEAR: Final[int] = 2026

FILING_STATUSES: Final[tuple[str, ...]] = ("individual", "couple")

# Schedules are (upper_bound, marginal_rate) in whole dollars. Upper bound None means unbounded.
FEDERAL_SCHEDULES: Final[dict[str, list[tuple[int | None, float]]]] = {
    "individual": [
        (12_400, 0.10),
        (50_400, 0.12),
        (105_700, 0.22),
        (201_775, 0.24),
        (256_225, 0.32),
        (640_600, 0.35),
        (None, 0.37),
    ],
    "couple": [
        (24_800, 0.10),
        (100_800, 0.12),
        (211_400, 0.22),
        (403_550, 0.24),
        (512_450, 0.32),
        (768_700, 0.35),
        (None, 0.37),
    ],
}

CAPITAL_GAINS_SCHEDULES: Final[dict[str, list[tuple[int | None, float]]]] = {
    "individual": [(50_800, 0.00), (557_000, 0.15), (None, 0.20)],
    "couple": [(101_600, 0.00), (626_350, 0.15), (None, 0.20)],
}

STANDARD_DEDUCTIONS: Final[dict[str, float]] = {
    "individual": 16_100.0,
    "couple": 32_200.0,
}

STATE_SCHEDULES: Final[dict[str, dict[str, list[tuple[int | None, float]]]]] = {
    "NY": {
        "individual": [
            (8_500, 0.04),
            (11_700, 0.045),
            (13_900, 0.0525),
            (80_650, 0.0585),
            (215_400, 0.0625),
            (1_077_550, 0.0685),
            (5_000_000, 0.0965),
            (25_000_000, 0.103),
            (None, 0.109),
        ],
        "couple": [
            (17_150, 0.04),
            (23_600, 0.045),
            (27_900, 0.0525),
            (161_550, 0.0585),
            (323_200, 0.0625),
            (2_155_350, 0.0685),
            (5_000_000, 0.0965),
            (25_000_000, 0.103),
            (None, 0.109),
        ],
    },
    "NJ": {
        "individual": [
            (20_000, 0.014),
            (35_000, 0.0175),
            (40_000, 0.035),
            (75_000, 0.05525),
            (500_000, 0.0637),
            (1_000_000, 0.0897),
            (None, 0.1075),
        ],
        "couple": [
            (20_000, 0.014),
            (50_000, 0.0175),
            (70_000, 0.0245),
            (80_000, 0.035),
            (150_000, 0.05525),
            (500_000, 0.0637),
            (1_000_000, 0.0897),
            (None, 0.1075),
        ],
    },
    "CT": {
        "individual": [
            (10_000, 0.02),
            (50_000, 0.045),
            (100_000, 0.055),
            (200_000, 0.06),
            (250_000, 0.065),
            (500_000, 0.069),
            (None, 0.0699),
        ],
        "couple": [
            (20_000, 0.02),
            (100_000, 0.045),
            (200_000, 0.055),
            (400_000, 0.06),
            (500_000, 0.065),
            (1_000_000, 0.069),
            (None, 0.0699),
        ],
    },
    "CA": {
        "individual": [
            (10_756, 0.01),
            (25_499, 0.02),
            (40_245, 0.04),
            (55_866, 0.06),
            (70_606, 0.08),
            (360_659, 0.093),
            (None, 0.103),
        ],
        "couple": [
            (21_512, 0.01),
            (50_998, 0.02),
            (80_490, 0.04),
            (111_732, 0.06),
            (141_212, 0.08),
            (721_318, 0.093),
            (None, 0.103),
        ],
    },
}

# Jurisdictions taxing all income at one rate regardless of filing status.
FLAT_STATE_RATES: Final[dict[str, float]] = {
    "AK": 0.0,
    "AZ": 0.025,
    "CO": 0.044,
    "FL": 0.0,
    "IL": 0.0495,
    "IN": 0.03,
    "MI": 0.0425,
    "NC": 0.0475,
    "NH": 0.0,
    "NV": 0.0,
    "PA": 0.0307,
    "SD": 0.0,
    "TN": 0.0,
    "TX": 0.0,
    "UT": 0.048,
    "WA": 0.0,
    "WY": 0.0,
}


def schedule_rows(schedules: dict[str, list[tuple[int | None, float]]]) -> list[dict[str, Any]]:
    """Expand (upper, rate) schedules into contiguous min/max bracket rows."""
    rows: list[dict[str, Any]] = []
    for status, schedule in schedules.items():
        lower = 0
        for upper, rate in schedule:
            rows.append({"min": lower, "max": upper, "rate": rate, "filing_status": status})
            if upper is not None:
                lower = upper + 1
    return rows


def default_dataset() -> dict[str, Any]:
    """The curated dataset in the same JSON shape accepted by ``load_tax_dataset``."""
    state = {code: schedule_rows(schedules) for code, schedules in STATE_SCHEDULES.items()}
    for code, rate in FLAT_STATE_RATES.items():
        state[code] = schedule_rows({status: [(None, rate)] for status in FILING_STATUSES})
    return {
        "tax_year": BASE_TAX_YEAR,
        "federal": schedule_rows(FEDERAL_SCHEDULES),
        "capital_gains": schedule_rows(CAPITAL_GAINS_SCHEDULES),
        "standard_deduction": dict(STANDARD_DEDUCTIONS),
        "state": state,
    }
