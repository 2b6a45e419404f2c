import json
import random

import pytest

from fpsim.engine import EngineConfig, StepContext
from fpsim.rmd import RMDTableProvider
from fpsim.schema import Scenario
from fpsim.state import create_simulation_state
from fpsim.tax import load_tax_dataset
from tests.helpers import SAMPLE_SCENARIO, single_investment_scenario


@pytest.fixture
def sample_scenario_dict() -> dict:
    return json.loads(SAMPLE_SCENARIO.read_text(encoding="utf-8"))


@pytest.fixture
def single_scenario_dict() -> dict:
    return single_investment_scenario()


@pytest.fixture
def ny_tables():
    return load_tax_dataset().tables_for("NY")


@pytest.fixture
def step_context(ny_tables) -> StepContext:
    return StepContext(tables=ny_tables, rmd_table=RMDTableProvider().table(), config=EngineConfig())


@pytest.fixture
def make_state():
    def _make(data: dict, seed: int = 1):
        return create_simulation_state(Scenario.from_dict(data), random.Random(seed))

    return _make
