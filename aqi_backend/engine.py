"""
AQI resolution cascade.

For a city name the engine answers from, in order:
cache -> recent store reading -> provider -> stale store reading -> synthetic.
Provider problems never escape; a store outage does, as StoreUnavailableError.
"""

import logging
import random
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from pydantic import ValidationError

from aqi_backend.aqi import compute_aqi
from aqi_backend.cache import ResolutionCache
from aqi_backend.database import Store
from aqi_backend.errors import InvalidCityError
from aqi_backend.models import POLLUTANTS, CityProfile, Reading
from aqi_backend.outcomes import Fetched, Found, NotFound, ProviderResult, StoreLookup, TransientFailure
from aqi_backend.synthetic import CITY_PROFILES, SyntheticGenerator, profile_for
from aqi_backend.utils import ensure_utc, utc_now

MAX_CITY_LENGTH = 100

AlertSink = Callable[[str, int], None]


class Provider(Protocol):
    def fetch_latest(self, city: str) -> ProviderResult: ...


def normalize_city(city: str) -> str:
    """Trim, collapse whitespace and capitalize each word: ' new   YORK ' -> 'New York'."""
    if not isinstance(city, str):
        raise InvalidCityError("City must be a string")
    words = city.split()
    if not words:
        raise InvalidCityError("City name is empty")
    normalized = " ".join(word[:1].upper() + word[1:].lower() for word in words)
    if len(normalized) > MAX_CITY_LENGTH:
        raise InvalidCityError(f"City name longer than {MAX_CITY_LENGTH} characters")
    if not any(ch.isalpha() for ch in normalized):
        raise InvalidCityError(f"Not a city name: {city!r}")
    return normalized


class ResolutionEngine:
    def __init__(
        self,
        store: Store,
        provider: Provider,
        cache: Optional[ResolutionCache] = None,
        *,
        recent_threshold: timedelta = timedelta(hours=24),
        profiles: Optional[Dict[str, CityProfile]] = None,
        generator: Optional[SyntheticGenerator] = None,
        clock: Callable[[], datetime] = utc_now,
        alert_sink: Optional[AlertSink] = None,
        search_limit: int = 10,
    ) -> None:
        self.store = store
        self.provider = provider
        self.cache = cache if cache is not None else ResolutionCache(clock=clock)
        self.recent_threshold = recent_threshold
        self.profiles = CITY_PROFILES if profiles is None else profiles
        self.generator = generator if generator is not None else SyntheticGenerator(random.Random())
        self.clock = clock
        self.alert_sink = alert_sink
        self.search_limit = search_limit

    # -- tiers -------------------------------------------------------------

    def _lookup_store(self, city: str) -> StoreLookup:
        reading = self.store.latest(city)
        return NotFound(city) if reading is None else Found(reading)

    def _is_recent(self, reading: Reading) -> bool:
        return self.clock() - reading.timestamp <= self.recent_threshold

    def _call_provider(self, city: str) -> ProviderResult:
        try:
            return self.provider.fetch_latest(city)
        except Exception as e:
            logging.warning(f"Provider raised for {city}: {e}")
            return TransientFailure(str(e) or type(e).__name__)

    def _fetch(self, city: str) -> Optional[Reading]:
        """Provider tier: on success the reading is persisted, cached and reported."""
        result = self._call_provider(city)
        if isinstance(result, TransientFailure):
            logging.warning(f"Provider unavailable for {city}: {result.reason}")
            return None
        if isinstance(result, NotFound):
            logging.info(f"Provider has no data for {city}")
            return None

        try:
            reading = self._build_reading(city, result)
        except ValidationError as e:
            logging.warning(f"Provider data for {city} rejected: {e.error_count()} invalid field(s)")
            return None
        self.store.save(reading)
        self.cache.put(city, reading)
        self._notify(reading)
        return reading

    def _build_reading(self, city: str, fetched: Fetched) -> Reading:
        pollutants = {name: fetched.pollutants.get(name) for name in POLLUTANTS}
        now = self.clock()
        # a measurement time ahead of the clock would shadow every later reading
        timestamp = min(ensure_utc(fetched.measured_at), now) if fetched.measured_at else now
        return Reading(
            city=city,
            timestamp=timestamp,
            aqi_value=compute_aqi(pollutants),
            **pollutants,
        )

    def _synthesize(self, city: str) -> Reading:
        profile = profile_for(city, self.profiles)
        reading = self.generator.generate(profile, self.clock())
        self.store.save(reading)
        logging.warning(f"Degraded mode: serving synthetic AQI {reading.aqi_value} for {city}")
        return reading

    def _notify(self, reading: Reading) -> None:
        if self.alert_sink is None:
            return
        try:
            self.alert_sink(reading.city, reading.aqi_value)
        except Exception as e:
            logging.error(f"Alert sink failed for {reading.city}: {e}")

    def _cascade_from_store(self, city: str) -> Reading:
        stored = self._lookup_store(city)
        if isinstance(stored, Found) and self._is_recent(stored.reading):
            self.cache.put(city, stored.reading)
            return stored.reading

        fresh = self._fetch(city)
        if fresh is not None:
            return fresh

        if isinstance(stored, Found):
            logging.warning(f"Degraded mode: serving stale reading for {city} from {stored.reading.timestamp}")
            return stored.reading

        return self._synthesize(city)

    # -- public contract ---------------------------------------------------

    def resolve(self, city: str) -> Reading:
        key = normalize_city(city)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        return self._cascade_from_store(key)

    def resolve_many(self, cities: Iterable[str]) -> Dict[str, Reading]:
        resolved = {}
        for city in cities:
            try:
                key = normalize_city(city)
            except InvalidCityError:
                logging.warning(f"Skipping invalid city name {city!r}")
                continue
            resolved[key] = self.resolve(key)
        return resolved

    def refresh(self, city: str) -> Optional[Reading]:
        """Fetch straight from the provider; None when it cannot answer."""
        return self._fetch(normalize_city(city))

    def add_city(self, city: str) -> bool:
        key = normalize_city(city)
        known = self.store.exists(key)
        self._cascade_from_store(key)
        found = known or self.store.exists(key)
        if found and not known:
            self.cache.invalidate_all()
        return found

    def list_cities(self) -> List[str]:
        cities = self.store.distinct_cities() or list(self.profiles)
        unique = {}
        for city in cities:
            try:
                unique.setdefault(normalize_city(city), None)
            except InvalidCityError:
                continue
        return sorted(unique, key=str.casefold)

    def search_cities(self, query: str) -> List[str]:
        needle = " ".join(str(query).split()).casefold()
        if not needle:
            return []
        return [city for city in self.list_cities() if needle in city.casefold()][:self.search_limit]

    def historical(self, city: str, start: datetime, end: datetime,
                   descending: bool = False) -> List[Reading]:
        return self.store.range(normalize_city(city), start, end, descending=descending)
