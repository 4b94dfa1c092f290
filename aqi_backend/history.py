#file: aqi_backend/history.py

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from aqi_backend.engine import ResolutionEngine, normalize_city
from aqi_backend.errors import InvalidRangeError
from aqi_backend.models import HistoryResult, Reading
from aqi_backend.utils import ensure_utc, utc_now

DEFAULT_DAYS = 90
MAX_DAYS = 1095
MAX_POINTS = 10000


def resolve_time_range(start: Optional[datetime], end: Optional[datetime],
                       default_days: int = DEFAULT_DAYS, max_days: int = MAX_DAYS,
                       now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Fill in missing bounds and reject inverted or oversized ranges."""
    end = ensure_utc(end) if end is not None else (now or utc_now())
    start = ensure_utc(start) if start is not None else end - timedelta(days=default_days)
    if start > end:
        raise InvalidRangeError("Invalid date range: start_date must be <= end_date")
    if (end - start).days > max_days:
        raise InvalidRangeError(f"Date range cannot exceed {max_days} days")
    return start, end


def downsample(readings: Sequence[Reading], max_points: int = MAX_POINTS) -> Tuple[List[Reading], bool]:
    """
    Keep every n-th reading (n = ceil(count / max_points)). The last reading
    is always kept so the sampled series spans the same time range, which
    needs room for at least two points.
    """
    if max_points < 2:
        raise ValueError("max_points must be at least 2")
    if len(readings) <= max_points:
        return list(readings), False

    stride = math.ceil(len(readings) / max_points)
    sampled = list(readings[::stride])
    if sampled[-1] is not readings[-1]:
        if len(sampled) < max_points:
            sampled.append(readings[-1])
        else:
            sampled[-1] = readings[-1]
    return sampled, True


class HistoryService:
    """Caller-facing historical query: range policy plus down-sampling."""

    def __init__(self, engine: ResolutionEngine, default_days: int = DEFAULT_DAYS,
                 max_days: int = MAX_DAYS, max_points: int = MAX_POINTS,
                 clock: Callable[[], datetime] = utc_now) -> None:
        self.engine = engine
        self.default_days = default_days
        self.max_days = max_days
        self.max_points = max_points
        self.clock = clock

    def query(self, city: str, start: Optional[datetime] = None,
              end: Optional[datetime] = None) -> HistoryResult:
        key = normalize_city(city)
        start, end = resolve_time_range(start, end, self.default_days, self.max_days, now=self.clock())
        days = (end - start).days
        if days > 365:
            logging.warning(f"Large date range requested for {key}: {days} days")

        readings = self.engine.historical(key, start, end)
        data, was_sampled = downsample(readings, self.max_points)
        if was_sampled:
            logging.info(f"Sampled {len(readings)} records for {key} down to {len(data)}")

        return HistoryResult(
            city=key,
            start_date=start,
            end_date=end,
            days_covered=days,
            count=len(data),
            was_sampled=was_sampled,
            data=data,
        )
