"""Per-trajectory mutable simulation state and event schedule resolution."""

from __future__ import annotations

from dataclasses import dataclass
import random

from .distributions import sample
from .schema import CASH_TYPE, EventSeries, InvestmentType, Scenario
from .validate import series_resolution_order

# Oldest age a trajectory is simulated to, whatever the sampled life expectancy.
MAX_AGE = 130


@dataclass(slots=True)
class InvestmentState:
    id: str
    investment_type: str
    tax_status: str
    value: float
    cost_basis: float

    def buy(self, amount: float) -> None:
        if amount <= 0:
            return
        self.value += amount
        self.cost_basis += amount

    def sell(self, amount: float) -> float:
        """Remove ``amount`` at average cost and return the realized gain (negative for a loss)."""
        amount = min(amount, self.value)
        if amount <= 0:
            return 0.0
        basis_reduction = self.cost_basis * (amount / self.value)
        self.value -= amount
        self.cost_basis = max(0.0, self.cost_basis - basis_reduction)
        return amount - basis_reduction


@dataclass(slots=True)
class MemberState:
    birth_year: int
    life_expectancy: float
    alive: bool = True

    def age(self, year: int) -> int:
        return year - self.birth_year


@dataclass(slots=True)
class ScheduledSeries:
    series: EventSeries
    start: int
    duration: int
    amount: float = 0.0
    amount_year: int | None = None

    @property
    def end(self) -> int:
        """First year after the series stops."""
        return self.start + self.duration

    def is_active(self, year: int) -> bool:
        return self.start <= year < self.end


@dataclass(slots=True)
class SimulationState:
    scenario: Scenario
    rng: random.Random
    year: int
    members: list[MemberState]
    cash: float
    investments: dict[str, InvestmentState]
    investment_types: dict[str, InvestmentType]
    schedule: dict[str, ScheduledSeries]
    withdrawal_order: list[str]
    rmd_order: list[str]
    inflation_factor: float = 1.0
    previous_inflation_factor: float = 1.0

    @property
    def user(self) -> MemberState:
        return self.members[0]

    @property
    def spouse(self) -> MemberState | None:
        return self.members[1] if len(self.members) > 1 else None

    @property
    def is_alive(self) -> bool:
        return any(member.alive for member in self.members)

    @property
    def filing_status(self) -> str:
        return "couple" if len(self.members) > 1 and all(member.alive for member in self.members) else "individual"

    @property
    def net_worth(self) -> float:
        return self.cash + sum(item.value for item in self.investments.values())

    def living_ages(self) -> list[int]:
        return [member.age(self.year) for member in self.members if member.alive]

    def holder_age(self) -> int:
        """Age of the member withdrawing funds: the user while alive, otherwise the spouse."""
        for member in self.members:
            if member.alive:
                return member.age(self.year)
        return self.user.age(self.year)

    def totals_by_status(self) -> dict[str, float]:
        totals = {"non-retirement": 0.0, "pre-tax": 0.0, "after-tax": 0.0}
        for item in self.investments.values():
            totals[item.tax_status] = totals.get(item.tax_status, 0.0) + item.value
        return totals

    def add_investment(self, investment_type: str, tax_status: str) -> InvestmentState:
        """Create an empty investment, used when a transfer has no destination yet."""
        base = f"{investment_type} {tax_status}"
        new_id = base
        suffix = 2
        while new_id in self.investments:
            new_id = f"{base} {suffix}"
            suffix += 1
        created = InvestmentState(id=new_id, investment_type=investment_type, tax_status=tax_status, value=0.0, cost_basis=0.0)
        self.investments[new_id] = created
        return created

    def counterpart(self, source: InvestmentState, tax_status: str) -> InvestmentState:
        """Investment of the same type under ``tax_status``, created when missing."""
        for item in self.investments.values():
            if item.investment_type == source.investment_type and item.tax_status == tax_status:
                return item
        created = self.add_investment(source.investment_type, tax_status)
        if tax_status != "pre-tax":
            self.withdrawal_order.append(created.id)
        return created


def _round_year(value: float) -> int:
    return int(round(value))


def resolve_schedule(scenario: Scenario, order: list[str], rng: random.Random) -> dict[str, ScheduledSeries]:
    """Sample concrete (start, duration) pairs, visiting series in dependency order."""
    by_name = scenario.series_by_name()
    resolved: dict[str, ScheduledSeries] = {}
    for name in order:
        series = by_name[name]
        rule = series.start
        if rule.distribution is not None:
            start = _round_year(sample(rule.distribution, rng))
        elif rule.relation == "start_with":
            start = resolved[rule.event_series].start
        else:
            start = resolved[rule.event_series].end
        # A negative sampled duration means the series never runs.
        duration = max(0, _round_year(sample(series.duration, rng)))
        resolved[name] = ScheduledSeries(series=series, start=start, duration=duration)
    return {series.name: resolved[series.name] for series in scenario.event_series}


def create_simulation_state(
    scenario: Scenario,
    rng: random.Random,
    order: list[str] | None = None,
) -> SimulationState:
    if order is None:
        order = series_resolution_order(scenario)

    members = []
    for birth_year, expectancy in zip(scenario.birth_years, scenario.life_expectancy):
        current_age = scenario.start_year - birth_year
        # Every member lives through at least the start year.
        sampled = min(float(MAX_AGE), max(float(current_age + 1), sample(expectancy, rng)))
        members.append(MemberState(birth_year=birth_year, life_expectancy=sampled))

    cash = 0.0
    investments: dict[str, InvestmentState] = {}
    for item in scenario.investments:
        if item.investment_type == CASH_TYPE:
            cash += item.value
            continue
        investments[item.id] = InvestmentState(
            id=item.id,
            investment_type=item.investment_type,
            tax_status=item.tax_status,
            value=item.value,
            cost_basis=item.value if item.cost_basis is None else item.cost_basis,
        )

    rmd_order = [investment_id for investment_id in scenario.rmd_strategy if investment_id in investments]
    rmd_order.extend(
        investment_id
        for investment_id, item in investments.items()
        if item.tax_status == "pre-tax" and investment_id not in rmd_order
    )

    return SimulationState(
        scenario=scenario,
        rng=rng,
        year=scenario.start_year,
        members=members,
        cash=cash,
        investments=investments,
        investment_types={item.name: item for item in scenario.investment_types},
        schedule=resolve_schedule(scenario, order, rng),
        withdrawal_order=[investment_id for investment_id in scenario.expense_withdrawal_strategy if investment_id in investments],
        rmd_order=rmd_order,
    )
