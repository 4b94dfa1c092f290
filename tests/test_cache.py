import threading
from datetime import timedelta

from aqi_backend.cache import ResolutionCache
from aqi_backend.models import Reading
from tests.conftest import NOW, FakeClock


def make_reading(city="Delhi", aqi=120):
    return Reading(city=city, timestamp=NOW, aqi_value=aqi, pm25=40.0)


def test_get_returns_what_was_put():
    cache = ResolutionCache(clock=FakeClock())
    reading = make_reading()
    cache.put("Delhi", reading)
    assert cache.get("Delhi") is reading
    assert cache.get("Mumbai") is None


def test_entry_expires_after_ttl_without_eviction():
    clock = FakeClock()
    cache = ResolutionCache(ttl=timedelta(minutes=5), clock=clock)
    cache.put("Delhi", make_reading())

    clock.advance(minutes=5)
    assert cache.get("Delhi") is not None

    clock.advance(seconds=1)
    assert cache.get("Delhi") is None
    assert len(cache) == 1


def test_put_replaces_entry_and_restarts_its_window():
    clock = FakeClock()
    cache = ResolutionCache(ttl=timedelta(minutes=5), clock=clock)
    cache.put("Delhi", make_reading(aqi=100))
    clock.advance(minutes=4)
    newer = make_reading(aqi=200)
    cache.put("Delhi", newer)
    clock.advance(minutes=4)
    assert cache.get("Delhi") is newer


def test_entries_expire_independently():
    clock = FakeClock()
    cache = ResolutionCache(ttl=timedelta(minutes=5), clock=clock)
    cache.put("Delhi", make_reading("Delhi"))
    clock.advance(minutes=3)
    cache.put("Paris", make_reading("Paris"))
    clock.advance(minutes=3)
    assert cache.get("Delhi") is None
    assert cache.get("Paris") is not None


def test_invalidate_all():
    cache = ResolutionCache(clock=FakeClock())
    cache.put("Delhi", make_reading("Delhi"))
    cache.put("Paris", make_reading("Paris"))
    cache.invalidate_all()
    assert cache.get("Delhi") is None
    assert len(cache) == 0


def test_concurrent_readers_and_writers_see_whole_entries():
    cache = ResolutionCache(clock=FakeClock())
    written = [make_reading("Delhi", aqi) for aqi in range(10, 210)]
    allowed = {id(r) for r in written}
    seen = []

    def writer():
        for reading in written:
            cache.put("Delhi", reading)

    def reader():
        for _ in range(500):
            value = cache.get("Delhi")
            if value is not None:
                seen.append(value)

    threads = [threading.Thread(target=writer) for _ in range(2)] + \
        [threading.Thread(target=reader) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert all(id(value) in allowed for value in seen)
    assert cache.get("Delhi") in written
