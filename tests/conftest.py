"""
Shared fixtures: a controllable clock, an in-memory store, a scripted
provider and a seeded engine. No test touches the network.
"""
import random
import threading
from datetime import datetime, timedelta, timezone

import pytest

from aqi_backend.cache import ResolutionCache
from aqi_backend.database import InMemoryStore
from aqi_backend.engine import ResolutionEngine
from aqi_backend.outcomes import TransientFailure
from aqi_backend.synthetic import SyntheticGenerator

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class ScriptedProvider:
    """Returns a fixed outcome per city; exceptions in the script are raised."""

    def __init__(self, results=None, default=None):
        self.results = dict(results or {})
        self.default = default if default is not None else TransientFailure("offline")
        self.calls = []
        self._lock = threading.Lock()

    def fetch_latest(self, city):
        with self._lock:
            self.calls.append(city)
        result = self.results.get(city, self.default)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def cache(clock):
    return ResolutionCache(ttl=timedelta(minutes=5), clock=clock)


@pytest.fixture
def alerts_received():
    return []


@pytest.fixture
def engine(store, provider, cache, clock, alerts_received):
    return ResolutionEngine(
        store,
        provider,
        cache,
        recent_threshold=timedelta(hours=24),
        generator=SyntheticGenerator(random.Random(1234)),
        clock=clock,
        alert_sink=lambda city, aqi: alerts_received.append((city, aqi)),
    )
