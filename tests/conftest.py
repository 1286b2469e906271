from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

import pytest

from timetable_cache import CacheSettings, StorageGateway, TimetableEntry
from timetable_cache.timestamps import MSK


@pytest.fixture(autouse=True)
def reset_gateways():
    """テストごとに共有 StorageGateway を破棄する"""
    yield
    StorageGateway.reset_instances()


@pytest.fixture
def settings(tmp_path) -> CacheSettings:
    return CacheSettings(db_path=tmp_path / "timetable_cache.db")


@pytest.fixture
def make_entry() -> Callable[..., TimetableEntry]:
    def _make(**overrides: Any) -> TimetableEntry:
        values = dict(
            departure_station_id="1",
            departure_station_name="Moskva Oktyabrskaya",
            departure_time=datetime(2024, 5, 1, 10, 0, tzinfo=MSK),
            arrival_station_id="2",
            arrival_station_name="Sankt-Peterburg Glavn.",
            arrival_time=datetime(2024, 5, 1, 14, 0, tzinfo=MSK),
            train_route_id="752А",
            train_name="Sapsan",
            route_start_station_name="Moskva",
            route_end_station_name="Sankt-Peterburg",
        )
        values.update(overrides)
        return TimetableEntry(**values)

    return _make
