"""Yearly step function: advances one trajectory's state by one calendar year."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging

from .distributions import sample
from .ledger import SOCIAL_SECURITY_TAXABLE_FRACTION, UserTaxData
from .rmd import RMD_START_AGE, RMD_TABLE_TTL_SECONDS, RMDTable, rmd_amount
from .roth import execute_roth_conversion
from .state import ScheduledSeries, SimulationState
from .tax import TaxLiability, TaxTables, compute_tax_liability
from .withdrawals import EARLY_WITHDRAWAL_AGE, pay_expense

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EngineConfig:
    rmd_start_age: int = RMD_START_AGE
    rmd_table_ttl_seconds: float = RMD_TABLE_TTL_SECONDS
    early_withdrawal_age: float = EARLY_WITHDRAWAL_AGE
    early_withdrawal_penalty_rate: float = 0.10
    social_security_taxable_fraction: float = SOCIAL_SECURITY_TAXABLE_FRACTION

    def validate(self) -> list[str]:
        errors: list[str] = []
        if self.rmd_start_age <= 0:
            errors.append("rmd_start_age: must be > 0")
        if self.rmd_table_ttl_seconds <= 0:
            errors.append("rmd_table_ttl_seconds: must be > 0")
        if self.early_withdrawal_age < 0:
            errors.append("early_withdrawal_age: must be >= 0")
        if not 0 <= self.early_withdrawal_penalty_rate <= 1:
            errors.append("early_withdrawal_penalty_rate: must be between 0 and 1")
        if not 0 <= self.social_security_taxable_fraction <= 1:
            errors.append("social_security_taxable_fraction: must be between 0 and 1")
        return errors


@dataclass(slots=True)
class StepContext:
    """Read-only inputs resolved once per run and shared by every trajectory."""

    tables: TaxTables
    rmd_table: RMDTable
    config: EngineConfig = field(default_factory=EngineConfig)


@dataclass(slots=True)
class YearRecord:
    year: int
    ages: list[int]
    cash: float
    investments: dict[str, float]
    total_non_retirement: float
    total_pre_tax: float
    total_after_tax: float
    total_value: float
    income: float
    income_breakdown: dict[str, float]
    mandatory_expenses: float
    discretionary_expenses: float
    discretionary_scheduled: float
    discretionary_pct: float
    expense_breakdown: dict[str, float]
    taxes: float
    tax_breakdown: dict[str, float]
    total_expenses: float
    early_withdrawal_tax: float
    ordinary_income: float
    capital_gains: float
    social_security: float
    after_tax_contributions: float
    early_withdrawals: float
    rmd: float
    roth_conversion: float
    unpaid_mandatory: float
    goal_met: bool


def _household_share(scheduled: ScheduledSeries, state: SimulationState) -> float:
    """Fraction of a series amount that still applies given who is alive."""
    spouse = state.spouse
    if spouse is None:
        return 1.0
    share = 0.0
    if state.user.alive:
        share += scheduled.series.user_percent
    if spouse.alive:
        share += scheduled.series.spouse_percent
    return share / 100.0


def _current_amount(scheduled: ScheduledSeries, state: SimulationState) -> float:
    """This year's nominal amount for an income or expense series, before the household split."""
    series = scheduled.series
    if scheduled.amount_year is None:
        scheduled.amount = series.initial_amount
    elif scheduled.amount_year < state.year:
        change = sample(series.change_distribution, state.rng)
        if series.change_amt_or_pct == "percent":
            scheduled.amount *= 1.0 + change
        else:
            scheduled.amount += change
        scheduled.amount = max(0.0, scheduled.amount)
    scheduled.amount_year = state.year
    factor = state.inflation_factor if series.inflation_adjusted else 1.0
    return scheduled.amount * factor


def _active(state: SimulationState, event_type: str) -> list[ScheduledSeries]:
    return [item for item in state.schedule.values() if item.series.type == event_type and item.is_active(state.year)]


def _household_amount(scheduled: ScheduledSeries, state: SimulationState) -> float:
    return _current_amount(scheduled, state) * _household_share(scheduled, state)


def _run_income(state: SimulationState, ledger: UserTaxData) -> dict[str, float]:
    breakdown: dict[str, float] = {}
    for scheduled in _active(state, "income"):
        amount = _household_amount(scheduled, state)
        state.cash += amount
        if scheduled.series.social_security:
            ledger.add_social_security(amount)
        else:
            ledger.add_ordinary_income(amount)
        breakdown[scheduled.series.name] = amount
    return breakdown


def _run_rmds(state: SimulationState, ledger: UserTaxData, context: StepContext) -> float:
    ages = state.living_ages()
    if not ages or max(ages) < context.config.rmd_start_age:
        return 0.0

    table = context.rmd_table
    # Ages past the end of the table use its final factor.
    factor = table.factor_for_age(min(max(ages), table.last_age))
    total = 0.0
    for investment_id in list(state.rmd_order):
        source = state.investments.get(investment_id)
        if source is None or source.value <= 0:
            continue
        amount = rmd_amount(source.value, factor)
        source.sell(amount)
        state.counterpart(source, "non-retirement").buy(amount)
        ledger.add_ordinary_income(amount)
        total += amount
    if total:
        logger.debug("RMD of %.2f at age %d (factor %.1f)", total, max(ages), factor)
    return total


def _run_growth(state: SimulationState, ledger: UserTaxData) -> None:
    for investment in state.investments.values():
        investment_type = state.investment_types[investment.investment_type]
        begin = investment.value

        sampled_return = sample(investment_type.return_distribution, state.rng)
        growth = sampled_return if investment_type.return_amt_or_pct == "amount" else begin * sampled_return
        sampled_income = sample(investment_type.income_distribution, state.rng)
        income = sampled_income if investment_type.income_amt_or_pct == "amount" else begin * sampled_income
        income = max(0.0, income)

        end = max(0.0, begin + growth + income)
        expenses = (begin + end) / 2.0 * investment_type.expense_ratio
        investment.value = max(0.0, end - expenses)
        # Income is reinvested, so it adds to basis.
        investment.cost_basis += income

        if investment.tax_status == "non-retirement" and investment_type.taxability and income > 0:
            ledger.add_ordinary_income(income)


def _prior_year_tax(state: SimulationState, ledger: UserTaxData, context: StepContext) -> TaxLiability:
    previous = ledger.previous
    return compute_tax_liability(
        context.tables,
        filing_status=previous.filing_status,
        federal_income=previous.federal_taxable_income(context.config.social_security_taxable_fraction),
        state_income=previous.ordinary_income,
        capital_gains=previous.capital_gains,
        early_withdrawals=previous.early_withdrawals,
        inflation_factor=state.previous_inflation_factor,
        early_withdrawal_penalty_rate=context.config.early_withdrawal_penalty_rate,
    )


def _pay(state: SimulationState, ledger: UserTaxData, context: StepContext, amount: float) -> float:
    """Pay from cash, then by selling in withdrawal order; returns the unpaid remainder."""
    state.cash, unpaid, _ = pay_expense(
        amount,
        cash=state.cash,
        investments=state.investments,
        order=state.withdrawal_order,
        ledger=ledger,
        holder_age=state.holder_age(),
        early_withdrawal_age=context.config.early_withdrawal_age,
    )
    return unpaid


def _run_mandatory(
    state: SimulationState,
    ledger: UserTaxData,
    context: StepContext,
) -> tuple[TaxLiability, dict[str, float], float]:
    """Prior-year taxes and this year's mandatory expenses, paid as one combined shortfall."""
    liability = _prior_year_tax(state, ledger, context)
    breakdown: dict[str, float] = {}
    for scheduled in _active(state, "expense"):
        if scheduled.series.discretionary:
            continue
        breakdown[scheduled.series.name] = _household_amount(scheduled, state)

    unpaid = _pay(state, ledger, context, liability.total + sum(breakdown.values()))
    if unpaid > 0:
        logger.warning("Year %d: %.2f of taxes and mandatory expenses could not be paid", state.year, unpaid)
    return liability, breakdown, unpaid


def _spending_order(state: SimulationState) -> list[ScheduledSeries]:
    active = {item.series.name: item for item in _active(state, "expense") if item.series.discretionary}
    ordered = [active[name] for name in state.scenario.spending_strategy if name in active]
    ordered.extend(item for name, item in active.items() if name not in state.scenario.spending_strategy)
    return ordered


def _run_discretionary(
    state: SimulationState,
    ledger: UserTaxData,
    context: StepContext,
) -> tuple[dict[str, float], float, bool]:
    """Pay discretionary expenses by priority while net worth stays at or above the goal.

    The expense that would breach the goal is paid only down to the goal and
    every lower-priority expense is skipped.
    """
    goal = state.scenario.financial_goal
    breakdown: dict[str, float] = {}
    scheduled_total = 0.0
    curtailed = False
    for scheduled in _spending_order(state):
        amount = _household_amount(scheduled, state)
        scheduled_total += amount
        if curtailed:
            continue
        payable = min(amount, max(0.0, state.net_worth - goal))
        if payable < amount:
            curtailed = True
        if payable <= 0:
            continue
        unpaid = _pay(state, ledger, context, payable)
        breakdown[scheduled.series.name] = payable - unpaid
        if unpaid > 0:
            curtailed = True
    return breakdown, scheduled_total, curtailed


def _allocation_for(scheduled: ScheduledSeries, year: int) -> dict[str, float]:
    series = scheduled.series
    if not series.glide_path:
        return dict(series.asset_allocation)
    if scheduled.duration <= 1:
        progress = 0.0
    else:
        progress = min(1.0, max(0.0, (year - scheduled.start) / (scheduled.duration - 1)))
    names = list(series.asset_allocation)
    names.extend(name for name in series.asset_allocation2 if name not in series.asset_allocation)
    return {
        name: series.asset_allocation.get(name, 0.0) * (1.0 - progress) + series.asset_allocation2.get(name, 0.0) * progress
        for name in names
    }


def _run_invest(state: SimulationState, ledger: UserTaxData) -> None:
    limit = state.scenario.after_tax_contribution_limit * state.inflation_factor
    for scheduled in _active(state, "invest"):
        excess = state.cash - scheduled.series.max_cash
        if excess <= 0:
            continue
        allocation = {
            investment_id: pct
            for investment_id, pct in _allocation_for(scheduled, state.year).items()
            if investment_id in state.investments and pct > 0
        }
        if not allocation:
            continue
        purchases = {investment_id: excess * pct / 100.0 for investment_id, pct in allocation.items()}

        after_tax = [investment_id for investment_id in purchases if state.investments[investment_id].tax_status == "after-tax"]
        after_tax_total = sum(purchases[investment_id] for investment_id in after_tax)
        room = max(0.0, limit - ledger.current.after_tax_contributions)
        if after_tax_total > room:
            leftover = after_tax_total - room
            for investment_id in after_tax:
                purchases[investment_id] *= room / after_tax_total
            others = [investment_id for investment_id in purchases if investment_id not in after_tax]
            others_total = sum(purchases[investment_id] for investment_id in others)
            # Without other targets the capped amount stays in cash.
            for investment_id in others:
                purchases[investment_id] += leftover * purchases[investment_id] / others_total

        for investment_id, amount in purchases.items():
            if amount <= 0:
                continue
            state.investments[investment_id].buy(amount)
            state.cash -= amount
            if investment_id in after_tax:
                ledger.add_after_tax_contribution(amount)


def _run_rebalance(state: SimulationState, ledger: UserTaxData) -> None:
    for scheduled in _active(state, "rebalance"):
        allocation = {
            investment_id: pct
            for investment_id, pct in _allocation_for(scheduled, state.year).items()
            if investment_id in state.investments
        }
        total = sum(state.investments[investment_id].value for investment_id in allocation)
        if total <= 0:
            continue
        targets = {investment_id: total * pct / 100.0 for investment_id, pct in allocation.items()}

        for investment_id, target in targets.items():
            investment = state.investments[investment_id]
            if investment.value > target:
                gain = investment.sell(investment.value - target)
                if investment.tax_status == "non-retirement":
                    ledger.add_capital_gains(gain)
        for investment_id, target in targets.items():
            investment = state.investments[investment_id]
            if investment.value < target:
                investment.buy(target - investment.value)


def _close_out(state: SimulationState) -> None:
    state.previous_inflation_factor = state.inflation_factor
    state.inflation_factor *= 1.0 + sample(state.scenario.inflation_assumption, state.rng)
    state.year += 1
    for member in state.members:
        if member.alive and member.age(state.year) >= member.life_expectancy:
            member.alive = False


def step_year(state: SimulationState, ledger: UserTaxData, context: StepContext) -> tuple[YearRecord, UserTaxData]:
    """Run every phase for ``state.year``; returns the year's record and the advanced ledger."""
    year = state.year
    ledger.current.filing_status = state.filing_status

    income = _run_income(state, ledger)
    rmd = _run_rmds(state, ledger, context)
    _run_growth(state, ledger)
    roth = execute_roth_conversion(
        state,
        ledger,
        context.tables,
        social_security_taxable_fraction=context.config.social_security_taxable_fraction,
    )
    liability, mandatory, unpaid = _run_mandatory(state, ledger, context)
    discretionary, discretionary_scheduled, curtailed = _run_discretionary(state, ledger, context)
    _run_invest(state, ledger)
    _run_rebalance(state, ledger)

    totals = state.totals_by_status()
    net_worth = state.net_worth
    mandatory_total = sum(mandatory.values())
    discretionary_total = sum(discretionary.values())
    current = ledger.current
    record = YearRecord(
        year=year,
        ages=[member.age(year) for member in state.members],
        cash=state.cash,
        investments={investment_id: item.value for investment_id, item in state.investments.items()},
        total_non_retirement=totals["non-retirement"],
        total_pre_tax=totals["pre-tax"],
        total_after_tax=totals["after-tax"],
        total_value=net_worth,
        income=sum(income.values()),
        income_breakdown=income,
        mandatory_expenses=mandatory_total,
        discretionary_expenses=discretionary_total,
        discretionary_scheduled=discretionary_scheduled,
        discretionary_pct=100.0 if discretionary_scheduled <= 0 else 100.0 * discretionary_total / discretionary_scheduled,
        expense_breakdown={**mandatory, **discretionary},
        taxes=liability.total,
        tax_breakdown={
            "federal": liability.federal,
            "capital_gains": liability.capital_gains,
            "state": liability.state,
            "early_withdrawal_penalty": liability.early_withdrawal_penalty,
        },
        total_expenses=mandatory_total + discretionary_total + liability.total,
        early_withdrawal_tax=liability.early_withdrawal_penalty,
        ordinary_income=current.ordinary_income,
        capital_gains=current.capital_gains,
        social_security=current.social_security,
        after_tax_contributions=current.after_tax_contributions,
        early_withdrawals=current.early_withdrawals,
        rmd=rmd,
        roth_conversion=roth,
        unpaid_mandatory=unpaid,
        goal_met=not curtailed and unpaid <= 0 and net_worth >= state.scenario.financial_goal,
    )

    next_ledger = ledger.advance_year()
    _close_out(state)
    return record, next_ledger
