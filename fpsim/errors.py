"""Error types shared across the engine."""

from __future__ import annotations


class ScenarioValidationError(ValueError):
    """Raised when a scenario (or the tax data it needs) breaks a structural invariant."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) if self.errors else "scenario is invalid")


class DataAvailabilityError(LookupError):
    """Raised when external reference data needed by a run is missing or incomplete."""


class MissingTaxTableError(DataAvailabilityError):
    def __init__(self, jurisdiction: str):
        self.jurisdiction = jurisdiction
        super().__init__(f"no state tax table for jurisdiction '{jurisdiction}'")


class RMDTableError(DataAvailabilityError):
    """Raised when a loaded RMD table does not cover the required ages."""


class RMDFactorNotFoundError(DataAvailabilityError):
    def __init__(self, age: int, first_age: int, last_age: int):
        self.age = age
        super().__init__(f"no RMD distribution factor for age {age} (table covers {first_age}-{last_age})")
