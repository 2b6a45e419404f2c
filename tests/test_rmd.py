import json
import threading
import time

import pytest

from fpsim.errors import DataAvailabilityError, RMDFactorNotFoundError, RMDTableError
from fpsim.rmd import RMDTable, RMDTableProvider, UNIFORM_LIFETIME_DIVISORS, json_file_loader, rmd_amount


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_factor_at_start_age():
    provider = RMDTableProvider()
    assert provider.factor_for_age(73) == 26.5
    assert rmd_amount(265_000, provider.factor_for_age(73)) == pytest.approx(10_000)


def test_distribution_never_exceeds_balance():
    assert rmd_amount(1_000, 0.5) == 1_000
    assert rmd_amount(0, 26.5) == 0.0
    assert rmd_amount(-50, 26.5) == 0.0


def test_age_outside_table_raises():
    table = RMDTableProvider().table()
    assert table.first_age == 73
    assert table.last_age == 120
    with pytest.raises(RMDFactorNotFoundError, match="age 72"):
        table.factor_for_age(72)
    with pytest.raises(RMDFactorNotFoundError) as excinfo:
        table.factor_for_age(121)
    assert excinfo.value.age == 121
    assert isinstance(excinfo.value, DataAvailabilityError)


def test_table_with_gap_is_rejected():
    divisors = dict(UNIFORM_LIFETIME_DIVISORS)
    del divisors[80]
    with pytest.raises(RMDTableError, match="missing \\[80\\]"):
        RMDTable.build(divisors, 73)


def test_table_starting_after_start_age_is_rejected():
    divisors = {age: factor for age, factor in UNIFORM_LIFETIME_DIVISORS.items() if age >= 75}
    with pytest.raises(RMDTableError):
        RMDTable.build(divisors, 73)


def test_non_positive_factor_is_rejected():
    with pytest.raises(RMDTableError, match="non-positive"):
        RMDTable.build({73: 26.5, 74: 0.0}, 73)


def test_empty_table_is_rejected():
    with pytest.raises(RMDTableError, match="empty"):
        RMDTable.build({}, 73)


def test_provider_caches_until_ttl_expires():
    calls = []
    clock = FakeClock()

    def loader() -> dict[int, float]:
        calls.append(clock.now)
        return dict(UNIFORM_LIFETIME_DIVISORS)

    provider = RMDTableProvider(loader, ttl_seconds=100, clock=clock)
    first = provider.table()
    clock.now = 99
    assert provider.table() is first
    assert calls == [0.0]

    clock.now = 100
    refreshed = provider.table()
    assert refreshed is not first
    assert calls == [0.0, 100]


def test_provider_rejects_non_positive_ttl():
    with pytest.raises(ValueError, match="ttl_seconds"):
        RMDTableProvider(ttl_seconds=0)


def test_concurrent_requests_load_once():
    calls = []

    def slow_loader() -> dict[int, float]:
        calls.append(1)
        time.sleep(0.05)
        return dict(UNIFORM_LIFETIME_DIVISORS)

    provider = RMDTableProvider(slow_loader)
    tables = []
    threads = [threading.Thread(target=lambda: tables.append(provider.table())) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(calls) == 1
    assert len(tables) == 8
    assert all(table is tables[0] for table in tables)


def test_json_loader_accepts_mapping(tmp_path):
    path = tmp_path / "rmd.json"
    path.write_text(json.dumps({"73": 26.5, "74": 25.5}), encoding="utf-8")
    provider = RMDTableProvider(json_file_loader(path))
    assert provider.factor_for_age(74) == 25.5


def test_json_loader_accepts_rows(tmp_path):
    path = tmp_path / "rmd.json"
    path.write_text(json.dumps([{"age": 73, "factor": 26.5}, {"age": 74, "factor": 25.5}]), encoding="utf-8")
    assert json_file_loader(path)() == {73: 26.5, 74: 25.5}


def test_json_loader_rejects_malformed_rows(tmp_path):
    path = tmp_path / "rmd.json"
    path.write_text(json.dumps([{"age": 73}]), encoding="utf-8")
    with pytest.raises(RMDTableError, match="malformed"):
        json_file_loader(path)()


def test_json_loader_rejects_scalar(tmp_path):
    path = tmp_path / "rmd.json"
    path.write_text("42", encoding="utf-8")
    with pytest.raises(RMDTableError, match="expected an object"):
        json_file_loader(path)()
