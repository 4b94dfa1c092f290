# file: aqi_backend/scheduler.py

import logging
import threading
from typing import Iterable, List, Optional

import schedule

from aqi_backend.engine import ResolutionEngine, normalize_city
from aqi_backend.errors import InvalidCityError


class RefreshScheduler:
    """Periodically refresh a monitored set of cities in a background thread."""

    def __init__(self, engine: ResolutionEngine, cities: Iterable[str],
                 interval_minutes: int = 5, delay_seconds: float = 1.0,
                 poll_seconds: float = 1.0) -> None:
        self.engine = engine
        self.interval_minutes = interval_minutes
        self.delay_seconds = delay_seconds
        self.poll_seconds = poll_seconds
        self._cities: List[str] = []
        self._cities_lock = threading.Lock()
        self._stop = threading.Event()
        self._scheduler = schedule.Scheduler()
        self._thread: Optional[threading.Thread] = None
        for city in cities:
            self.monitor(city)

    @property
    def cities(self) -> List[str]:
        with self._cities_lock:
            return list(self._cities)

    def monitor(self, city: str) -> bool:
        """Add a city to the monitored set; False if it was already there."""
        key = normalize_city(city)
        with self._cities_lock:
            if key in self._cities:
                return False
            self._cities.append(key)
        return True

    def refresh_all(self) -> int:
        """
        One refresh cycle. Stops early, skipping the remaining cities, once
        shutdown has been requested. Returns the number of cities refreshed.
        """
        cities = self.cities
        logging.info(f"Starting scheduled AQI refresh for {len(cities)} cities")
        refreshed = 0
        for index, city in enumerate(cities):
            if self._stop.is_set():
                logging.info(f"Shutdown requested, skipping {len(cities) - index} remaining cities")
                break
            try:
                if self.engine.refresh(city) is not None:
                    refreshed += 1
            except InvalidCityError as e:
                logging.warning(f"Skipping {city}: {e}")
            except Exception as e:
                logging.error(f"Scheduled refresh failed for {city}: {e}")
            # pause between provider calls
            self._stop.wait(self.delay_seconds)
        logging.info(f"Completed scheduled AQI refresh: {refreshed}/{len(cities)} cities updated")
        return refreshed

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._scheduler.every(self.interval_minutes).minutes.do(self.refresh_all)

        def run_continuously():
            while not self._stop.wait(self.poll_seconds):
                self._scheduler.run_pending()

        self._thread = threading.Thread(target=run_continuously, name="aqi-refresh", daemon=True)
        self._thread.start()
        logging.info("Scheduler started in background thread")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        self._scheduler.clear()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logging.info("Scheduler stopped")
