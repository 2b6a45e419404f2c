"""Withdrawal strategy logic."""

from __future__ import annotations

from dataclasses import dataclass
import logging

from .ledger import UserTaxData
from .state import InvestmentState

logger = logging.getLogger(__name__)

EARLY_WITHDRAWAL_AGE = 59.5
PENALTY_TAX_STATUSES = {"pre-tax", "after-tax"}


@dataclass(slots=True)
class WithdrawalEvent:
    investment: str
    amount: float
    realized_gain: float
    early: bool = False


def record_sale(
    investment: InvestmentState,
    amount: float,
    *,
    ledger: UserTaxData,
    holder_age: float,
    early_withdrawal_age: float = EARLY_WITHDRAWAL_AGE,
) -> WithdrawalEvent:
    """Sell ``amount`` from ``investment`` and book its tax consequences for the current year."""
    gain = investment.sell(amount)
    early = False
    if investment.tax_status == "non-retirement":
        ledger.add_capital_gains(gain)
    else:
        if investment.tax_status == "pre-tax":
            ledger.add_ordinary_income(amount)
        gain = 0.0
        if investment.tax_status in PENALTY_TAX_STATUSES and holder_age < early_withdrawal_age:
            ledger.add_early_withdrawal(amount)
            early = True
    return WithdrawalEvent(investment=investment.id, amount=amount, realized_gain=gain, early=early)


def cover_shortfall(
    *,
    shortfall: float,
    investments: dict[str, InvestmentState],
    order: list[str],
    ledger: UserTaxData,
    holder_age: float,
    early_withdrawal_age: float = EARLY_WITHDRAWAL_AGE,
) -> tuple[float, list[WithdrawalEvent]]:
    """Sell investments in ``order`` until ``shortfall`` is raised.

    Returns the remaining (unfunded) shortfall and the sales made.
    """
    if shortfall <= 0:
        return 0.0, []

    events: list[WithdrawalEvent] = []
    for investment_id in order:
        if shortfall <= 0:
            break
        investment = investments.get(investment_id)
        if investment is None or investment.value <= 0:
            continue
        amount = min(investment.value, shortfall)
        events.append(
            record_sale(
                investment,
                amount,
                ledger=ledger,
                holder_age=holder_age,
                early_withdrawal_age=early_withdrawal_age,
            )
        )
        shortfall -= amount

    return max(0.0, shortfall), events


def pay_expense(
    amount: float,
    *,
    cash: float,
    investments: dict[str, InvestmentState],
    order: list[str],
    ledger: UserTaxData,
    holder_age: float,
    early_withdrawal_age: float = EARLY_WITHDRAWAL_AGE,
) -> tuple[float, float, list[WithdrawalEvent]]:
    """Pay ``amount`` from cash first, then by selling investments.

    Returns (cash_after, unpaid, events).
    """
    if amount <= 0:
        return cash, 0.0, []
    from_cash = min(max(0.0, cash), amount)
    cash -= from_cash
    unpaid, events = cover_shortfall(
        shortfall=amount - from_cash,
        investments=investments,
        order=order,
        ledger=ledger,
        holder_age=holder_age,
        early_withdrawal_age=early_withdrawal_age,
    )
    if events:
        logger.debug("Sold %.2f across %d investments", sum(event.amount for event in events), len(events))
    return cash, unpaid, events
