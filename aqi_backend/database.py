# file: aqi_backend/database.py

import bisect
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Protocol

from influxdb_client import InfluxDBClient, Point
from influxdb_client.client.write_api import SYNCHRONOUS

from aqi_backend.errors import StoreUnavailableError
from aqi_backend.models import POLLUTANTS, Reading
from aqi_backend.utils import ensure_utc, to_flux_time

MEASUREMENT = "aqi_readings"


class Store(Protocol):
    """Append-only history of readings per normalized city."""

    def save(self, reading: Reading) -> None: ...

    def save_many(self, readings: Iterable[Reading]) -> int: ...

    def latest(self, city: str) -> Optional[Reading]: ...

    def range(self, city: str, start: datetime, end: datetime,
              descending: bool = False) -> List[Reading]: ...

    def distinct_cities(self) -> List[str]: ...

    def exists(self, city: str) -> bool: ...

    def count(self) -> int: ...


def _flux_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class InfluxStore:
    """Readings persisted as InfluxDB points tagged by city."""

    def __init__(self, client: InfluxDBClient, bucket: str) -> None:
        self.client = client
        self.bucket = bucket
        self.query_api = client.query_api()
        self.write_api = client.write_api(write_options=SYNCHRONOUS)

    @classmethod
    def from_settings(cls, settings) -> "InfluxStore":
        values = [settings.influxdb_url, settings.influxdb_token, settings.influxdb_org, settings.influxdb_bucket]
        # Validate environment variables
        if not all(values):
            raise ValueError("Missing required InfluxDB environment variables")
        client = InfluxDBClient(url=settings.influxdb_url, token=settings.influxdb_token, org=settings.influxdb_org)
        return cls(client, settings.influxdb_bucket)

    def close(self) -> None:
        self.client.close()

    @staticmethod
    def _point(reading: Reading) -> Point:
        point = Point(MEASUREMENT) \
            .tag("city", reading.city) \
            .time(reading.timestamp) \
            .field("aqi_value", int(reading.aqi_value))
        for field in POLLUTANTS:
            value = getattr(reading, field)
            if value is not None:
                point.field(field, float(value))
        return point

    @staticmethod
    def _to_reading(values: Dict[str, Any], timestamp: datetime) -> Reading:
        return Reading(
            city=values["city"],
            timestamp=timestamp,
            aqi_value=int(values["aqi_value"]),
            **{field: values.get(field) for field in POLLUTANTS},
        )

    def save(self, reading: Reading) -> None:
        self.save_many([reading])

    def save_many(self, readings: Iterable[Reading]) -> int:
        """Write readings in a single synchronous request."""
        points = [self._point(reading) for reading in readings]
        if not points:
            logging.warning("No readings to save to InfluxDB")
            return 0
        try:
            self.write_api.write(bucket=self.bucket, record=points)
        except Exception as e:
            logging.error(f"Error saving readings to InfluxDB: {e}")
            raise StoreUnavailableError("InfluxDB write failed") from e
        return len(points)

    def _query_readings(self, query: str) -> List[Reading]:
        try:
            tables = self.query_api.query(query)
        except Exception as e:
            logging.error(f"Error querying readings from InfluxDB: {e}")
            raise StoreUnavailableError("InfluxDB query failed") from e
        return [
            self._to_reading(record.values, record.get_time())
            for table in tables
            for record in table.records
            if record.values.get("aqi_value") is not None
        ]

    def _query_values(self, query: str) -> List[Any]:
        try:
            tables = self.query_api.query(query)
        except Exception as e:
            logging.error(f"Error querying InfluxDB: {e}")
            raise StoreUnavailableError("InfluxDB query failed") from e
        return [record["_value"] for table in tables for record in table.records]

    def latest(self, city: str) -> Optional[Reading]:
        query = f'''
            from(bucket: "{self.bucket}")
            |> range(start: 0)
            |> filter(fn: (r) => r._measurement == "{MEASUREMENT}" and r.city == {_flux_string(city)})
            |> pivot(rowKey:["_time"], columnKey:["_field"], valueColumn:"_value")
            |> group()
            |> sort(columns: ["_time"], desc: true)
            |> limit(n: 1)
        '''
        readings = self._query_readings(query)
        return readings[0] if readings else None

    def range(self, city: str, start: datetime, end: datetime,
              descending: bool = False) -> List[Reading]:
        """Readings with start <= timestamp <= end, ordered by timestamp."""
        end = ensure_utc(end)
        desc = "true" if descending else "false"
        # stop is exclusive in Flux
        query = f'''
            from(bucket: "{self.bucket}")
            |> range(start: {to_flux_time(start)}, stop: {to_flux_time(end + timedelta(seconds=1))})
            |> filter(fn: (r) => r._measurement == "{MEASUREMENT}" and r.city == {_flux_string(city)})
            |> pivot(rowKey:["_time"], columnKey:["_field"], valueColumn:"_value")
            |> group()
            |> sort(columns: ["_time"], desc: {desc})
        '''
        return [reading for reading in self._query_readings(query) if reading.timestamp <= end]

    def distinct_cities(self) -> List[str]:
        query = f'''
            from(bucket: "{self.bucket}")
            |> range(start: 0)
            |> filter(fn: (r) => r._measurement == "{MEASUREMENT}" and r._field == "aqi_value")
            |> keep(columns: ["city"])
            |> group()
            |> distinct(column: "city")
        '''
        return [str(value) for value in self._query_values(query)]

    def exists(self, city: str) -> bool:
        query = f'''
            from(bucket: "{self.bucket}")
            |> range(start: 0)
            |> filter(fn: (r) => r._measurement == "{MEASUREMENT}" and r.city == {_flux_string(city)})
            |> filter(fn: (r) => r._field == "aqi_value")
            |> limit(n: 1)
        '''
        return bool(self._query_values(query))

    def count(self) -> int:
        query = f'''
            from(bucket: "{self.bucket}")
            |> range(start: 0)
            |> filter(fn: (r) => r._measurement == "{MEASUREMENT}" and r._field == "aqi_value")
            |> group()
            |> count()
        '''
        values = self._query_values(query)
        return int(values[0]) if values else 0


class InMemoryStore:
    """
    Process-local store. Each city has its own lock so writes for different
    cities never wait on each other; readings stay sorted by timestamp even
    when they arrive out of order.
    """

    def __init__(self) -> None:
        self._readings: Dict[str, List[Reading]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, city: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(city)
            if lock is None:
                lock = self._locks[city] = threading.Lock()
                self._readings[city] = []
            return lock

    def _snapshot(self, city: str) -> List[Reading]:
        if city not in self._locks:
            return []
        with self._lock_for(city):
            return list(self._readings[city])

    def save(self, reading: Reading) -> None:
        with self._lock_for(reading.city):
            bisect.insort_right(self._readings[reading.city], reading, key=lambda r: r.timestamp)

    def save_many(self, readings: Iterable[Reading]) -> int:
        saved = 0
        for reading in readings:
            self.save(reading)
            saved += 1
        return saved

    def latest(self, city: str) -> Optional[Reading]:
        readings = self._snapshot(city)
        return readings[-1] if readings else None

    def range(self, city: str, start: datetime, end: datetime,
              descending: bool = False) -> List[Reading]:
        """Readings with start <= timestamp <= end, ordered by timestamp."""
        readings = self._snapshot(city)
        start, end = ensure_utc(start), ensure_utc(end)
        lo = bisect.bisect_left(readings, start, key=lambda r: r.timestamp)
        hi = bisect.bisect_right(readings, end, key=lambda r: r.timestamp)
        selected = readings[lo:hi]
        if descending:
            selected.reverse()
        return selected

    def distinct_cities(self) -> List[str]:
        with self._registry_lock:
            cities = list(self._locks)
        return [city for city in cities if self._snapshot(city)]

    def exists(self, city: str) -> bool:
        return bool(self._snapshot(city))

    def count(self) -> int:
        with self._registry_lock:
            cities = list(self._locks)
        return sum(len(self._snapshot(city)) for city in cities)
