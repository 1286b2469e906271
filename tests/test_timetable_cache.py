from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import insert, inspect

from timetable_cache import (
    CacheMiss,
    DataSchemeVersion,
    StorageGateway,
    TimetableCache,
    WriteFailure,
)
from timetable_cache.config import TABLE_NAME
from timetable_cache.schema import TRAIN_NAME, get_codec
from timetable_cache.timestamps import MSK

MAY_1 = datetime(2024, 5, 1, tzinfo=MSK)


@pytest.fixture
def cache_v2(settings) -> TimetableCache:
    return TimetableCache(settings, DataSchemeVersion.V2)


@pytest.fixture
def cache_v1(settings) -> TimetableCache:
    return TimetableCache(settings, DataSchemeVersion.V1)


def test_put_then_get_returns_same_entries(cache_v2, make_entry):
    entries = [
        make_entry(),
        make_entry(
            departure_time=datetime(2024, 5, 1, 13, 30, tzinfo=MSK),
            arrival_time=datetime(2024, 5, 1, 17, 25, tzinfo=MSK),
            train_route_id="758А",
            train_name=None,
        ),
    ]
    cache_v2.put("1", "2", MAY_1, entries)

    assert cache_v2.get("1", "2", MAY_1) == entries


def test_sapsan_example_different_time_same_day(cache_v2, make_entry):
    entry = make_entry(train_name="Sapsan")
    cache_v2.put("1", "2", date(2024, 5, 1), [entry])

    result = cache_v2.get("1", "2", datetime(2024, 5, 1, 23, 59, tzinfo=MSK))

    assert result == [entry]
    assert result[0].train_name == "Sapsan"


def test_get_returns_storage_order(cache_v2, make_entry):
    late = make_entry(departure_time=datetime(2024, 5, 1, 21, 0, tzinfo=MSK), train_route_id="late")
    early = make_entry(departure_time=datetime(2024, 5, 1, 6, 0, tzinfo=MSK), train_route_id="early")
    cache_v2.put("1", "2", MAY_1, [late, early])

    assert [e.train_route_id for e in cache_v2.get("1", "2", MAY_1)] == ["late", "early"]


def test_utc_entries_round_trip_as_same_instant(cache_v2, make_entry):
    entry = make_entry(
        departure_time=datetime(2024, 5, 1, 7, 0, tzinfo=timezone.utc),
        arrival_time=datetime(2024, 5, 1, 11, 0, tzinfo=timezone.utc),
    )
    cache_v2.put("1", "2", MAY_1, [entry])

    (result,) = cache_v2.get("1", "2", MAY_1)
    assert result.departure_time == entry.departure_time
    assert result.departure_time.tzinfo is MSK
    assert result.departure_time.hour == 10


def test_get_without_put_is_cache_miss(cache_v2):
    with pytest.raises(CacheMiss) as exc_info:
        cache_v2.get("2000000", "2004000", MAY_1)

    err = exc_info.value
    assert err.from_station_id == "2000000"
    assert err.to_station_id == "2004000"
    assert err.date_msk == date(2024, 5, 1)
    assert "fromStationId=2000000" in str(err)
    assert "toStationId=2004000" in str(err)
    assert "dateMsk=2024-05-01" in str(err)


def test_cache_miss_is_lookup_error(cache_v2):
    with pytest.raises(LookupError):
        cache_v2.get("1", "2", MAY_1)


@pytest.mark.parametrize(
    "from_id, to_id, day",
    [
        ("2", "1", MAY_1),
        ("1", "3", MAY_1),
        ("1", "2", MAY_1 + timedelta(days=1)),
        ("1", "2", MAY_1 - timedelta(days=1)),
        ("1", "2", datetime(2025, 5, 1, tzinfo=MSK)),
    ],
)
def test_distinct_keys_do_not_collide(cache_v2, make_entry, from_id, to_id, day):
    cache_v2.put("1", "2", MAY_1, [make_entry()])

    with pytest.raises(CacheMiss):
        cache_v2.get(from_id, to_id, day)


def test_v2_absent_train_name_is_none(cache_v2, make_entry):
    cache_v2.put("1", "2", MAY_1, [make_entry(train_name=None)])

    (result,) = cache_v2.get("1", "2", MAY_1)
    assert result.train_name is None


def test_v2_empty_train_name_is_kept(cache_v2, make_entry):
    cache_v2.put("1", "2", MAY_1, [make_entry(train_name="")])

    (result,) = cache_v2.get("1", "2", MAY_1)
    assert result.train_name == ""


def test_v1_never_touches_train_name(cache_v1, settings, make_entry):
    cache_v1.put("1", "2", MAY_1, [make_entry(train_name="Sapsan")])

    (result,) = cache_v1.get("1", "2", MAY_1)
    assert result.train_name is None
    assert result == make_entry(train_name=None)

    with cache_v1.gateway.readable_handle() as conn:
        columns = [col["name"] for col in inspect(conn).get_columns(TABLE_NAME)]
    assert TRAIN_NAME not in columns


def test_v1_data_readable_after_upgrade(settings, make_entry):
    TimetableCache(settings, DataSchemeVersion.V1).put("1", "2", MAY_1, [make_entry()])

    StorageGateway.reset_instances()
    cache_v2 = TimetableCache(settings, DataSchemeVersion.V2)
    (result,) = cache_v2.get("1", "2", MAY_1)

    assert result == make_entry(train_name=None)


def test_failed_batch_leaves_no_rows(cache_v2, make_entry):
    entries = [
        make_entry(),
        make_entry(train_route_id="bad", departure_station_name=None),
        make_entry(train_route_id="never written"),
    ]

    with pytest.raises(WriteFailure):
        cache_v2.put("1", "2", MAY_1, entries)

    with pytest.raises(CacheMiss):
        cache_v2.get("1", "2", MAY_1)


def test_invalid_timestamp_in_entry_aborts_put(cache_v2, make_entry):
    entries = [make_entry(), make_entry(arrival_time=None)]

    with pytest.raises(WriteFailure):
        cache_v2.put("1", "2", MAY_1, entries)

    with pytest.raises(CacheMiss):
        cache_v2.get("1", "2", MAY_1)


def test_naive_times_are_rejected(cache_v2, make_entry):
    entries = [
        make_entry(),
        make_entry(
            departure_time=datetime(2024, 5, 1, 10, 0),
            arrival_time=datetime(2024, 5, 1, 14, 0),
        ),
    ]

    with pytest.raises(WriteFailure, match="timezone-aware"):
        cache_v2.put("1", "2", datetime(2024, 5, 1), entries)

    with pytest.raises(CacheMiss):
        cache_v2.get("1", "2", datetime(2024, 5, 1, 23, 59))


def test_naive_key_date_is_msk_day(cache_v2, make_entry):
    entry = make_entry()
    cache_v2.put("1", "2", datetime(2024, 5, 1), [entry])

    assert cache_v2.get("1", "2", datetime(2024, 5, 1, 23, 59)) == [entry]


def test_concurrent_mixed_version_puts(settings, make_entry):
    caches = [
        TimetableCache(settings, DataSchemeVersion.V1 if i % 2 == 0 else DataSchemeVersion.V2)
        for i in range(8)
    ]
    barrier = threading.Barrier(len(caches))
    errors = []

    def worker(i, cache):
        try:
            barrier.wait()
            cache.put("1", "2", MAY_1, [make_entry(train_route_id=f"train-{i}")])
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i, c)) for i, c in enumerate(caches)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    result = TimetableCache(settings, DataSchemeVersion.V2).get("1", "2", MAY_1)
    assert sorted(e.train_route_id for e in result) == [f"train-{i}" for i in range(8)]
    v1_names = {e.train_name for e in result if int(e.train_route_id.split("-")[1]) % 2 == 0}
    assert v1_names == {None}


def test_failed_put_does_not_affect_other_keys(cache_v2, make_entry):
    kept = make_entry(departure_station_id="5", arrival_station_id="6")
    cache_v2.put("5", "6", MAY_1, [kept])

    with pytest.raises(WriteFailure):
        cache_v2.put("1", "2", MAY_1, [make_entry(train_route_id=None)])

    assert cache_v2.get("5", "6", MAY_1) == [kept]


def test_empty_put_writes_nothing(cache_v2):
    cache_v2.put("1", "2", MAY_1, [])

    with pytest.raises(CacheMiss):
        cache_v2.get("1", "2", MAY_1)


def test_repeated_put_accumulates_rows(cache_v2, make_entry):
    entry = make_entry()
    cache_v2.put("1", "2", MAY_1, [entry])
    cache_v2.put("1", "2", MAY_1, [entry])

    assert cache_v2.get("1", "2", MAY_1) == [entry, entry]


def test_corrupt_row_is_skipped(cache_v2, make_entry, caplog):
    good = make_entry()
    cache_v2.put("1", "2", MAY_1, [good])

    corrupt = get_codec(DataSchemeVersion.V2).encode(make_entry())
    # departureTime は LIKE にマッチするが、arrivalTime が壊れている
    corrupt["arrivalTime"] = "not a timestamp"
    table = cache_v2.gateway.open(DataSchemeVersion.V2)
    with cache_v2.gateway.writable_handle() as conn:
        conn.execute(insert(table).values(corrupt))

    with caplog.at_level(logging.WARNING, logger="timetable_cache.cache"):
        assert cache_v2.get("1", "2", MAY_1) == [good]
    assert "Skipped 1 unreadable rows" in caplog.text


def test_only_corrupt_rows_is_cache_miss(cache_v2, make_entry, caplog):
    corrupt = get_codec(DataSchemeVersion.V2).encode(make_entry())
    corrupt["arrivalTime"] = "garbage"
    table = cache_v2.gateway.open(DataSchemeVersion.V2)
    with cache_v2.gateway.writable_handle() as conn:
        conn.execute(insert(table).values(corrupt))

    with caplog.at_level(logging.WARNING, logger="timetable_cache.cache"):
        with pytest.raises(CacheMiss):
            cache_v2.get("1", "2", MAY_1)
    assert "Skipped 1 unreadable rows" in caplog.text


def test_instances_share_one_gateway(settings, make_entry):
    writer = TimetableCache(settings, DataSchemeVersion.V2)
    reader = TimetableCache(settings, DataSchemeVersion.V2)
    assert writer.gateway is reader.gateway

    writer.put("1", "2", MAY_1, [make_entry()])
    assert reader.get("1", "2", MAY_1) == [make_entry()]


def test_construct_from_gateway(settings, make_entry):
    gateway = StorageGateway.from_settings(settings)
    cache = TimetableCache(gateway, 2)

    assert cache.version is DataSchemeVersion.V2
    assert cache.gateway is gateway


def test_construction_does_no_io(settings):
    TimetableCache(settings, DataSchemeVersion.V2)
    assert not settings.db_path.exists()
