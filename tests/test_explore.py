from dataclasses import asdict
import json
import threading

import pytest

from fpsim.explore import SweepParameter, apply_parameter, parse_sweep, sweep_1d, sweep_2d, sweep_values
from fpsim.schema import Scenario, load_scenario
from fpsim.simulation import run_simulation
from tests.helpers import SAMPLE_SCENARIO, expense_event, single_investment_scenario


def _single_with_food(amount: float = 5000) -> Scenario:
    data = single_investment_scenario()
    data["event_series"] = [expense_event("food", amount)]
    return Scenario.from_dict(data)


def _ending_median(point) -> float:
    return point.result.years[-1].total_investments.median


def test_sweep_values_include_upper_bound():
    assert sweep_values(1000, 3000, 1000) == [1000, 2000, 3000]
    assert sweep_values(0, 1, 0.25) == [0, 0.25, 0.5, 0.75, 1.0]
    assert sweep_values(5, 6, 10) == [5]


@pytest.mark.parametrize("lower, upper, step", [(0, 10, 0), (0, 10, -1), (10, 0, 1)])
def test_sweep_values_rejects_bad_ranges(lower, upper, step):
    with pytest.raises(ValueError, match="sweep"):
        sweep_values(lower, upper, step)


def test_apply_parameter_leaves_input_untouched():
    scenario = load_scenario(SAMPLE_SCENARIO)
    changed = apply_parameter(scenario, SweepParameter("initial_amount", "food"), 9999)

    assert changed.series_by_name()["food"].initial_amount == 9999
    assert scenario.series_by_name()["food"].initial_amount != 9999
    assert changed.series_by_name()["vacation"] is scenario.series_by_name()["vacation"]


def test_apply_start_year_and_duration_fix_the_distribution():
    scenario = load_scenario(SAMPLE_SCENARIO)
    changed = apply_parameter(scenario, SweepParameter("start_year", "food"), 2030)
    changed = apply_parameter(changed, SweepParameter("duration", "food"), 7)

    food = changed.series_by_name()["food"]
    assert food.start.relation is None
    assert food.start.distribution.type == "fixed"
    assert food.start.distribution.value == 2030
    assert food.duration.value == 7


def test_investment_percentage_splits_two_targets():
    scenario = load_scenario(SAMPLE_SCENARIO)
    changed = apply_parameter(scenario, SweepParameter("investment_percentage", "invest in stocks"), 30)

    assert changed.series_by_name()["invest in stocks"].asset_allocation == {
        "S&P 500 non-retirement": 30.0,
        "S&P 500 after-tax": 70.0,
    }


def test_roth_optimizer_toggle():
    scenario = load_scenario(SAMPLE_SCENARIO)
    assert scenario.roth_conversion.enabled

    changed = apply_parameter(scenario, SweepParameter("roth_optimizer"), 0)
    assert not changed.roth_conversion.enabled
    assert changed.roth_conversion.strategy == scenario.roth_conversion.strategy
    assert scenario.roth_conversion.enabled


@pytest.mark.parametrize(
    "parameter, match",
    [
        (SweepParameter("initial_amount", "missing"), "unknown event series"),
        (SweepParameter("initial_amount", "invest in stocks"), "income and expense"),
        (SweepParameter("investment_percentage", "food"), "invest series"),
        (SweepParameter("duration"), "event series name is required"),
        (SweepParameter("inflation"), "unknown sweep parameter"),
    ],
)
def test_apply_parameter_rejects_bad_targets(parameter, match):
    with pytest.raises(ValueError, match=match):
        apply_parameter(load_scenario(SAMPLE_SCENARIO), parameter, 1)


def test_bad_parameter_fails_before_any_run():
    with pytest.raises(ValueError, match="unknown event series"):
        sweep_1d(load_scenario(SAMPLE_SCENARIO), SweepParameter("duration", "missing"), [1, 2], 1, seed=1)


def test_sweep_shares_one_seed_across_values():
    scenario = _single_with_food()
    sweep = sweep_1d(scenario, SweepParameter("initial_amount", "food"), [2000, 5000, 8000], 3, seed=11)

    assert sweep.seed == 11
    assert [point.values for point in sweep.points] == [(2000,), (5000,), (8000,)]
    assert all(point.result.seed == 11 for point in sweep.points)
    medians = [_ending_median(point) for point in sweep.points]
    assert medians[0] > medians[1] > medians[2]


def test_sweep_point_matches_direct_run():
    scenario = load_scenario(SAMPLE_SCENARIO)
    parameter = SweepParameter("initial_amount", "food")
    sweep = sweep_1d(scenario, parameter, [6000, 6000], 4, seed=5)

    direct = run_simulation(apply_parameter(scenario, parameter, 6000), 4, seed=5)
    first, second = (json.dumps(asdict(point.result), sort_keys=True) for point in sweep.points)
    assert first == second == json.dumps(asdict(direct), sort_keys=True)


def test_unseeded_sweep_records_the_seed_it_used():
    sweep = sweep_1d(_single_with_food(), SweepParameter("initial_amount", "food"), [1000, 1000], 2)

    assert sweep.seed > 0
    assert sweep.points[0].result.seed == sweep.points[1].result.seed == sweep.seed
    assert _ending_median(sweep.points[0]) == _ending_median(sweep.points[1])


def test_sweep_2d_grid_order():
    sweep = sweep_2d(
        _single_with_food(),
        SweepParameter("initial_amount", "food"),
        [1000, 4000],
        SweepParameter("duration", "food"),
        [2, 5, 8],
        1,
        seed=3,
    )

    assert [point.values for point in sweep.points] == [
        (1000, 2),
        (1000, 5),
        (1000, 8),
        (4000, 2),
        (4000, 5),
        (4000, 8),
    ]
    assert len(sweep.parameters) == 2
    # Larger and longer expenses leave less behind.
    assert _ending_median(sweep.points[0]) > _ending_median(sweep.points[2]) > _ending_median(sweep.points[5])


def test_sweep_2d_rejects_the_same_parameter_twice():
    parameter = SweepParameter("initial_amount", "food")
    with pytest.raises(ValueError, match="same parameter"):
        sweep_2d(_single_with_food(), parameter, [1], parameter, [2], 1, seed=1)


def test_invalid_point_is_recorded_and_sweep_continues(caplog):
    # Enabling Roth conversion without a strategy makes the scenario invalid.
    sweep = sweep_1d(_single_with_food(), SweepParameter("roth_optimizer"), [0, 1], 2, seed=4)

    valid, invalid = sweep.points
    assert valid.result is not None and valid.error is None
    assert invalid.result is None
    assert "roth_conversion.strategy" in invalid.error
    assert "is invalid" in caplog.text


def test_cancelled_sweep_returns_none():
    cancel = threading.Event()
    cancel.set()
    assert sweep_1d(_single_with_food(), SweepParameter("initial_amount", "food"), [1, 2], 2, seed=1, cancel_event=cancel) is None


def test_parse_sweep():
    parameter, values = parse_sweep("initial_amount:food=4000:6000:1000")
    assert parameter == SweepParameter("initial_amount", "food")
    assert values == [4000, 5000, 6000]

    parameter, values = parse_sweep("roth_optimizer=0:1:1")
    assert parameter == SweepParameter("roth_optimizer")
    assert values == [0, 1]


@pytest.mark.parametrize(
    "text",
    ["initial_amount:food", "bogus:food=1:2:1", "duration=1:2:1", "duration:food=1:2", "duration:food=a:b:c"],
)
def test_parse_sweep_rejects_malformed_text(text):
    with pytest.raises(ValueError, match="sweep"):
        parse_sweep(text)
