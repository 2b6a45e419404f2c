"""Roth conversion optimizer: fill the current federal bracket with pre-tax conversions."""

from __future__ import annotations

import logging

from .ledger import UserTaxData
from .state import SimulationState
from .tax import TaxTables

logger = logging.getLogger(__name__)


def conversion_room(
    tables: TaxTables,
    *,
    filing_status: str,
    federal_income: float,
    inflation_factor: float = 1.0,
) -> float:
    """Income that can be added before crossing into the next federal bracket."""
    taxable = max(0.0, federal_income - tables.deduction(filing_status, inflation_factor))
    upper = tables.federal.bracket_top(taxable, filing_status, inflation_factor)
    if upper is None:
        return 0.0
    return max(0.0, upper - taxable)


def execute_roth_conversion(
    state: SimulationState,
    ledger: UserTaxData,
    tables: TaxTables,
    *,
    social_security_taxable_fraction: float,
) -> float:
    """Move pre-tax value to after-tax investments in strategy order; returns the converted total."""
    settings = state.scenario.roth_conversion
    if not settings.enabled or not settings.start_year <= state.year <= settings.end_year:
        return 0.0

    room = conversion_room(
        tables,
        filing_status=state.filing_status,
        federal_income=ledger.federal_taxable_income(social_security_taxable_fraction),
        inflation_factor=state.inflation_factor,
    )
    converted = 0.0
    for investment_id in settings.strategy:
        if room <= 0:
            break
        source = state.investments.get(investment_id)
        if source is None or source.value <= 0:
            continue
        amount = min(room, source.value)
        source.sell(amount)
        state.counterpart(source, "after-tax").buy(amount)
        ledger.add_ordinary_income(amount)
        converted += amount
        room -= amount

    if converted:
        logger.debug("Roth conversion of %.2f in %d", converted, state.year)
    return converted
