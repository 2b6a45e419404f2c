"""Required Minimum Distribution table lookup and caching."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
import threading
import time
from typing import Callable, Final

from .errors import RMDFactorNotFoundError, RMDTableError

logger = logging.getLogger(__name__)

RMD_START_AGE: Final[int] = 73
RMD_TABLE_TTL_SECONDS: Final[float] = 24 * 60 * 60

# IRS Uniform Lifetime Table (Pub. 590-B, Table III).
UNIFORM_LIFETIME_DIVISORS: Final[dict[int, float]] = {
    72: 27.4,
    73: 26.5,
    74: 25.5,
    75: 24.6,
    76: 23.7,
    77: 22.9,
    78: 22.0,
    79: 21.1,
    80: 20.2,
    81: 19.4,
    82: 18.5,
    83: 17.7,
    84: 16.8,
    85: 16.0,
    86: 15.2,
    87: 14.4,
    88: 13.7,
    89: 12.9,
    90: 12.2,
    91: 11.5,
    92: 10.8,
    93: 10.1,
    94: 9.5,
    95: 8.9,
    96: 8.4,
    97: 7.8,
    98: 7.3,
    99: 6.8,
    100: 6.4,
    101: 6.0,
    102: 5.6,
    103: 5.2,
    104: 4.9,
    105: 4.6,
    106: 4.3,
    107: 4.1,
    108: 3.9,
    109: 3.7,
    110: 3.5,
    111: 3.4,
    112: 3.3,
    113: 3.1,
    114: 3.0,
    115: 2.9,
    116: 2.8,
    117: 2.7,
    118: 2.5,
    119: 2.3,
    120: 2.0,
}


@dataclass(slots=True, frozen=True)
class RMDTable:
    divisors: dict[int, float]
    first_age: int
    last_age: int

    @classmethod
    def build(cls, divisors: dict[int, float], start_age: int) -> "RMDTable":
        """Validate that ``divisors`` covers every age from ``start_age`` to its oldest entry."""
        if not divisors:
            raise RMDTableError("RMD table is empty")
        last_age = max(divisors)
        missing = [age for age in range(start_age, last_age + 1) if age not in divisors]
        if start_age > last_age or missing:
            raise RMDTableError(
                f"RMD table does not cover ages {start_age}-{last_age}; missing {missing or [start_age]}"
            )
        bad = [age for age in range(start_age, last_age + 1) if divisors[age] <= 0]
        if bad:
            raise RMDTableError(f"RMD table has non-positive factors for ages {bad}")
        covered = {age: factor for age, factor in divisors.items() if age >= start_age}
        return cls(divisors=covered, first_age=start_age, last_age=last_age)

    def factor_for_age(self, age: int) -> float:
        factor = self.divisors.get(int(age))
        if factor is None:
            raise RMDFactorNotFoundError(int(age), self.first_age, self.last_age)
        return factor


def builtin_loader() -> dict[int, float]:
    return dict(UNIFORM_LIFETIME_DIVISORS)


def json_file_loader(path: str | Path) -> Callable[[], dict[int, float]]:
    """Loader reading ``{"73": 26.5, ...}`` or ``[{"age": 73, "factor": 26.5}, ...]`` from disk."""

    def _load() -> dict[int, float]:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        try:
            if isinstance(raw, dict):
                return {int(age): float(factor) for age, factor in raw.items()}
            if isinstance(raw, list):
                return {int(row["age"]): float(row["factor"]) for row in raw}
        except (KeyError, TypeError, ValueError) as exc:
            raise RMDTableError(f"{path}: malformed RMD table ({exc})") from exc
        raise RMDTableError(f"{path}: expected an object or array of age factors")

    return _load


class RMDTableProvider:
    """Process-wide cache of the distribution table, refreshed after ``ttl_seconds``."""

    def __init__(
        self,
        loader: Callable[[], dict[int, float]] = builtin_loader,
        *,
        ttl_seconds: float = RMD_TABLE_TTL_SECONDS,
        start_age: int = RMD_START_AGE,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._loader = loader
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._table: RMDTable | None = None
        self._loaded_at = 0.0
        self.start_age = start_age

    def table(self) -> RMDTable:
        with self._lock:
            now = self._clock()
            if self._table is None or now - self._loaded_at >= self._ttl_seconds:
                logger.info("Loading RMD table (start age %d)", self.start_age)
                self._table = RMDTable.build(self._loader(), self.start_age)
                self._loaded_at = now
            return self._table

    def factor_for_age(self, age: int) -> float:
        return self.table().factor_for_age(age)


def rmd_amount(balance: float, factor: float) -> float:
    """Distribution for one account, never more than the balance."""
    if balance <= 0:
        return 0.0
    return min(balance, balance / factor)
