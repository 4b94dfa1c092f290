import random
import threading
import time
from datetime import timedelta

import pytest

from aqi_backend.aqi import aqi_category, sub_index
from aqi_backend.database import InMemoryStore
from aqi_backend.engine import ResolutionEngine, normalize_city
from aqi_backend.errors import InvalidCityError, StoreUnavailableError
from aqi_backend.models import Reading
from aqi_backend.outcomes import Fetched, NotFound
from aqi_backend.synthetic import CITY_PROFILES, SyntheticGenerator
from tests.conftest import NOW, ScriptedProvider


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("new york", "New York"),
        ("  NEW   york  ", "New York"),
        ("delhi", "Delhi"),
        ("los\tangeles", "Los Angeles"),
        ("são paulo", "São Paulo"),
    ],
)
def test_normalize_city(raw, expected):
    assert normalize_city(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "123", "x" * 101, None])
def test_normalize_city_rejects_invalid_names(raw):
    with pytest.raises(InvalidCityError):
        normalize_city(raw)


def test_new_city_resolved_from_provider(engine, provider, store, alerts_received):
    provider.results["New York"] = Fetched({"pm25": 40.0})

    reading = engine.resolve("new york")

    assert reading.city == "New York"
    assert reading.aqi_value == sub_index("pm25", 40.0) == 111
    assert aqi_category(reading.aqi_value) == "Unhealthy for Sensitive Groups"
    assert reading.pm25 == 40.0
    assert reading.timestamp == NOW
    assert store.latest("New York") == reading
    assert provider.calls == ["New York"]
    assert alerts_received == [("New York", 111)]


def test_second_resolve_within_window_is_a_cache_hit(engine, provider):
    provider.results["Paris"] = Fetched({"pm10": 104.0})
    first = engine.resolve("Paris")
    second = engine.resolve(" paris ")
    assert second is first
    assert provider.calls == ["Paris"]


def test_recent_store_reading_is_served_and_cached(engine, provider, store, cache, clock):
    stored = Reading(city="London", timestamp=NOW - timedelta(hours=23), aqi_value=42)
    store.save(stored)

    assert engine.resolve("london") == stored
    assert provider.calls == []
    assert cache.get("London") == stored


def test_provider_consulted_once_store_reading_is_old(engine, provider, store):
    store.save(Reading(city="London", timestamp=NOW - timedelta(hours=25), aqi_value=42))
    provider.results["London"] = Fetched({"o3": 100.0})

    reading = engine.resolve("London")

    assert provider.calls == ["London"]
    assert reading.timestamp == NOW
    assert reading.aqi_value == sub_index("o3", 100.0)


def test_stale_reading_returned_when_provider_fails(engine, provider, store):
    stale = Reading(city="Delhi", timestamp=NOW - timedelta(days=10), aqi_value=180, pm25=90.0)
    store.save(stale)

    reading = engine.resolve("Delhi")

    assert reading == stale
    assert provider.calls == ["Delhi"]
    assert store.count() == 1


def test_provider_exception_is_a_soft_failure(engine, provider, store):
    stale = Reading(city="Delhi", timestamp=NOW - timedelta(days=2), aqi_value=180)
    store.save(stale)
    provider.results["Delhi"] = RuntimeError("boom")
    assert engine.resolve("Delhi") == stale


def test_synthetic_fallback_for_unknown_city(engine, provider, store):
    provider.results["Atlantis"] = NotFound("Atlantis")

    reading = engine.resolve("atlantis")

    assert reading.city == "Atlantis"
    assert 10 <= reading.aqi_value <= 500
    assert reading.timestamp == NOW
    assert store.latest("Atlantis") == reading


class RecordingGenerator(SyntheticGenerator):
    def __init__(self):
        super().__init__(random.Random(5))
        self.profiles = []

    def generate(self, profile, timestamp, rng=None):
        self.profiles.append(profile)
        return super().generate(profile, timestamp, rng)


def test_synthetic_fallback_uses_named_or_default_profile(store, provider, cache, clock):
    generator = RecordingGenerator()
    engine = ResolutionEngine(store, provider, cache, generator=generator, clock=clock)

    engine.resolve("Beijing")
    engine.resolve("Gotham")

    assert generator.profiles[0] == CITY_PROFILES["Beijing"]
    assert generator.profiles[1].name == "Gotham"
    assert generator.profiles[1].average_aqi == 75


def test_synthetic_reading_is_not_cached_but_is_found_in_store_next_time(engine, provider, cache):
    first = engine.resolve("Gotham")
    assert cache.get("Gotham") is None
    second = engine.resolve("Gotham")
    assert second == first
    assert provider.calls == ["Gotham"]


def test_no_pollutants_from_provider_gives_default_aqi(engine, provider):
    provider.results["Oslo"] = Fetched({"pm25": None})
    assert engine.resolve("Oslo").aqi_value == 50


def test_provider_measurement_time_is_kept(engine, provider):
    measured = NOW - timedelta(hours=2)
    provider.results["Oslo"] = Fetched({"pm25": 10.0}, measured_at=measured)
    assert engine.resolve("Oslo").timestamp == measured


class BrokenStore(InMemoryStore):
    def latest(self, city):
        raise StoreUnavailableError("down")


def test_store_outage_is_reported_distinctly(provider, cache, clock):
    engine = ResolutionEngine(BrokenStore(), provider, cache, clock=clock)
    with pytest.raises(StoreUnavailableError):
        engine.resolve("Delhi")


def test_invalid_city_is_rejected_before_the_cascade(engine, provider):
    with pytest.raises(InvalidCityError):
        engine.resolve("   ")
    assert provider.calls == []


def test_refresh_bypasses_cache(engine, provider, cache, alerts_received):
    provider.results["Paris"] = Fetched({"pm25": 12.0})
    engine.resolve("Paris")
    provider.results["Paris"] = Fetched({"pm25": 35.5})

    refreshed = engine.refresh("paris")

    assert refreshed.aqi_value == 100
    assert cache.get("Paris") == refreshed
    assert alerts_received == [("Paris", 50), ("Paris", 100)]


def test_refresh_returns_none_on_failure(engine, provider, store):
    assert engine.refresh("Paris") is None
    assert store.count() == 0


def test_failing_alert_sink_does_not_break_resolution(store, provider, cache, clock):
    def sink(city, aqi):
        raise RuntimeError("sms gateway down")

    engine = ResolutionEngine(store, provider, cache, clock=clock, alert_sink=sink)
    provider.results["Paris"] = Fetched({"pm25": 12.0})
    assert engine.resolve("Paris").aqi_value == 50


def test_add_city_discovers_and_invalidates_cache(engine, provider, cache):
    provider.results["Paris"] = Fetched({"pm25": 12.0})
    engine.resolve("Paris")
    assert len(cache) == 1

    assert engine.add_city("springfield") is True
    assert len(cache) == 0
    assert "Springfield" in engine.list_cities()


def test_list_cities_falls_back_to_profiles(engine):
    assert engine.list_cities() == sorted(CITY_PROFILES, key=str.casefold)


def test_list_cities_from_store_deduplicated_and_sorted(engine, store):
    for city in ("paris", "Paris", "beijing", "Zagreb", "amsterdam"):
        store.save(Reading(city=city, timestamp=NOW, aqi_value=10))
    assert engine.list_cities() == ["Amsterdam", "Beijing", "Paris", "Zagreb"]


def test_search_cities(engine):
    assert engine.search_cities("on") == ["London"]
    assert engine.search_cities("NEW") == ["New York"]
    assert engine.search_cities("  ") == []


def test_search_cities_is_capped(store, provider, cache, clock):
    engine = ResolutionEngine(store, provider, cache, clock=clock, search_limit=3)
    for index in range(10):
        store.save(Reading(city=f"Town {index}", timestamp=NOW, aqi_value=10))
    assert engine.search_cities("town") == ["Town 0", "Town 1", "Town 2"]


def test_historical_delegates_to_store_range(engine, store):
    for hours in (1, 5, 3):
        store.save(Reading(city="Delhi", timestamp=NOW - timedelta(hours=hours), aqi_value=100 + hours))

    ascending = engine.historical("delhi", NOW - timedelta(hours=4), NOW)
    descending = engine.historical("delhi", NOW - timedelta(hours=4), NOW, descending=True)

    assert [r.aqi_value for r in ascending] == [103, 101]
    assert [r.aqi_value for r in descending] == [101, 103]


def test_resolve_many_skips_invalid_names(engine, provider):
    provider.results["Paris"] = Fetched({"pm25": 12.0})
    resolved = engine.resolve_many(["paris", "   ", "Gotham"])
    assert set(resolved) == {"Paris", "Gotham"}


class SlowProvider(ScriptedProvider):
    def fetch_latest(self, city):
        time.sleep(0.05)
        return super().fetch_latest(city)


def test_concurrent_resolution_of_same_city(store, cache, clock):
    provider = SlowProvider({"Tokyo": Fetched({"pm25": 20.0})})
    engine = ResolutionEngine(store, provider, cache, clock=clock)
    results = []
    barrier = threading.Barrier(2)

    def worker():
        barrier.wait()
        results.append(engine.resolve("tokyo"))

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 2
    assert len(provider.calls) <= 2
    assert all(r.aqi_value == sub_index("pm25", 20.0) for r in results)
    cached = cache.get("Tokyo")
    assert cached is not None and cached.city == "Tokyo" and cached.pm25 == 20.0


@pytest.mark.parametrize("bad_value", [float("nan"), float("inf")])
def test_non_finite_provider_value_falls_back_to_stale_reading(engine, provider, store, bad_value):
    stale = Reading(city="Delhi", timestamp=NOW - timedelta(days=3), aqi_value=180)
    store.save(stale)
    provider.results["Delhi"] = Fetched({"pm25": bad_value})

    assert engine.resolve("Delhi") == stale
    assert store.count() == 1


def test_non_finite_provider_value_without_history_goes_synthetic(engine, provider, store, alerts_received):
    provider.results["Delhi"] = Fetched({"pm25": float("nan")})

    reading = engine.resolve("Delhi")

    assert 10 <= reading.aqi_value <= 500
    assert reading.pm25 is None or reading.pm25 >= 0
    assert alerts_received == []
    assert engine.refresh("Delhi") is None


def test_future_measurement_time_is_capped_at_now(engine, provider, store, clock):
    provider.results["Paris"] = Fetched({"pm25": 200.0}, measured_at=NOW.replace(year=2099))
    first = engine.resolve("Paris")
    assert first.timestamp == NOW

    clock.advance(days=3)
    provider.results["Paris"] = Fetched({"pm25": 5.0})
    refreshed = engine.refresh("Paris")
    clock.advance(minutes=10)

    assert store.latest("Paris") == refreshed
    assert engine.resolve("Paris") == refreshed
    assert engine.resolve("Paris").aqi_value == sub_index("pm25", 5.0)


def test_naive_measurement_time_is_read_as_utc(engine, provider):
    measured = NOW.replace(tzinfo=None) - timedelta(hours=1)
    provider.results["Oslo"] = Fetched({"pm25": 10.0}, measured_at=measured)
    assert engine.resolve("Oslo").timestamp == NOW - timedelta(hours=1)


def test_add_known_city_keeps_cache(engine, provider, cache):
    provider.results["Paris"] = Fetched({"pm25": 12.0})
    provider.results["London"] = Fetched({"pm25": 20.0})
    engine.resolve("Paris")
    engine.resolve("London")
    assert len(cache) == 2

    assert engine.add_city("paris") is True
    assert len(cache) == 2
