#file: aqi_backend/cache.py

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from aqi_backend.models import Reading
from aqi_backend.utils import utc_now


@dataclass(frozen=True)
class CacheEntry:
    reading: Reading
    inserted_at: datetime


class ResolutionCache:
    """
    Normalized city name -> last resolved reading, each entry with its own
    freshness window. Expired entries read as absent but are not evicted.
    """

    def __init__(self, ttl: timedelta = timedelta(minutes=5),
                 clock: Callable[[], datetime] = utc_now) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, city: str) -> Optional[Reading]:
        with self._lock:
            entry = self._entries.get(city)
        if entry is None:
            logging.debug(f"Cache miss for {city}")
            return None
        if self._clock() - entry.inserted_at > self.ttl:
            logging.debug(f"Cache entry for {city} expired")
            return None
        logging.debug(f"Cache hit for {city}")
        return entry.reading

    def put(self, city: str, reading: Reading) -> None:
        entry = CacheEntry(reading=reading, inserted_at=self._clock())
        with self._lock:
            self._entries[city] = entry

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()
        logging.info("Resolution cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
