"""Two-slot (current/previous year) tax accumulator for one trajectory."""

from __future__ import annotations

from dataclasses import dataclass, field

SOCIAL_SECURITY_TAXABLE_FRACTION = 0.85


@dataclass(slots=True)
class TaxYear:
    ordinary_income: float = 0.0
    capital_gains: float = 0.0
    social_security: float = 0.0
    after_tax_contributions: float = 0.0
    early_withdrawals: float = 0.0
    filing_status: str = "individual"

    def federal_taxable_income(self, taxable_fraction: float = SOCIAL_SECURITY_TAXABLE_FRACTION) -> float:
        """Ordinary income with only ``taxable_fraction`` of Social Security counted."""
        return self.ordinary_income - (1.0 - taxable_fraction) * self.social_security


@dataclass(slots=True)
class UserTaxData:
    current: TaxYear = field(default_factory=TaxYear)
    previous: TaxYear = field(default_factory=TaxYear)

    def add_ordinary_income(self, amount: float) -> None:
        self.current.ordinary_income += amount

    def add_capital_gains(self, amount: float) -> None:
        self.current.capital_gains += amount

    def add_social_security(self, amount: float) -> None:
        # Social Security is ordinary income; the separate total drives the partial exclusion.
        self.current.ordinary_income += amount
        self.current.social_security += amount

    def add_early_withdrawal(self, amount: float) -> None:
        self.current.early_withdrawals += amount

    def add_after_tax_contribution(self, amount: float) -> None:
        self.current.after_tax_contributions += amount

    def federal_taxable_income(self, taxable_fraction: float = SOCIAL_SECURITY_TAXABLE_FRACTION) -> float:
        return self.current.federal_taxable_income(taxable_fraction)

    def advance_year(self, filing_status: str | None = None) -> "UserTaxData":
        """Archive the current year and start an empty one."""
        status = filing_status or self.current.filing_status
        return UserTaxData(current=TaxYear(filing_status=status), previous=self.current)
