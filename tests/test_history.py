from datetime import timedelta

import pytest

from aqi_backend.errors import InvalidCityError, InvalidRangeError
from aqi_backend.history import HistoryService, downsample, resolve_time_range
from aqi_backend.models import Reading
from tests.conftest import NOW


def series(count, city="Delhi"):
    return [Reading(city=city, timestamp=NOW + timedelta(minutes=i), aqi_value=i % 500) for i in range(count)]


def test_missing_bounds_default_to_last_90_days():
    start, end = resolve_time_range(None, None, now=NOW)
    assert end == NOW
    assert start == NOW - timedelta(days=90)


def test_missing_start_counts_back_from_given_end():
    end = NOW - timedelta(days=10)
    start, resolved_end = resolve_time_range(None, end)
    assert resolved_end == end
    assert start == end - timedelta(days=90)


def test_range_of_exactly_max_days_is_accepted():
    start, end = resolve_time_range(NOW - timedelta(days=1095), NOW)
    assert (end - start).days == 1095


def test_range_longer_than_max_days_is_rejected():
    with pytest.raises(InvalidRangeError):
        resolve_time_range(NOW - timedelta(days=1096), NOW)


def test_inverted_range_is_rejected():
    with pytest.raises(InvalidRangeError):
        resolve_time_range(NOW, NOW - timedelta(days=1))


def test_small_result_is_not_sampled():
    readings = series(100)
    data, sampled = downsample(readings, max_points=100)
    assert data == readings
    assert sampled is False


@pytest.mark.parametrize("count", [10001, 20000, 25000, 29999])
def test_large_result_is_sampled_keeping_both_ends(count):
    readings = series(count)
    data, sampled = downsample(readings, max_points=10000)
    assert sampled is True
    assert len(data) <= 10000
    assert data[0].timestamp == readings[0].timestamp
    assert data[-1].timestamp == readings[-1].timestamp
    assert [r.timestamp for r in data] == sorted(r.timestamp for r in data)


def test_history_service_query(engine, store, clock):
    store.save_many(series(50))
    service = HistoryService(engine, clock=clock)

    result = service.query("  delhi", NOW, NOW + timedelta(minutes=19))

    assert result.city == "Delhi"
    assert result.count == 20
    assert result.was_sampled is False
    assert result.days_covered == 0
    assert result.data[0].timestamp == NOW


def test_history_service_samples_large_results(engine, store, clock):
    store.save_many(series(300))
    service = HistoryService(engine, max_points=100, clock=clock)

    result = service.query("Delhi", NOW, NOW + timedelta(days=1))

    assert result.was_sampled is True
    assert result.count == len(result.data) <= 100
    assert result.data[-1].timestamp == NOW + timedelta(minutes=299)


def test_history_service_rejects_bad_input(engine, clock):
    service = HistoryService(engine, clock=clock)
    with pytest.raises(InvalidRangeError):
        service.query("Delhi", NOW - timedelta(days=2000), NOW)
    with pytest.raises(InvalidCityError):
        service.query("", NOW - timedelta(days=1), NOW)


@pytest.mark.parametrize("max_points", [0, 1])
def test_downsample_needs_room_for_both_ends(max_points):
    with pytest.raises(ValueError):
        downsample(series(10), max_points=max_points)


def test_downsample_to_two_points_keeps_first_and_last():
    readings = series(10)
    data, sampled = downsample(readings, max_points=2)
    assert sampled is True
    assert data == [readings[0], readings[-1]]
