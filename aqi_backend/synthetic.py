"""
Synthetic AQI history.

Produces plausible readings for a city from a statistical profile:
- Seasonal swing (winter and autumn worse, summer better)
- Rush-hour peaks and a quiet pre-dawn window
- Gaussian noise on the AQI and on every derived pollutant
- Occasional sensor dropout (pollutant left empty)

All randomness comes from an injected ``random.Random`` so that a seeded
source reproduces the same series.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import random
from typing import Dict, Iterator, Optional, Tuple

from aqi_backend.models import CityProfile, Reading

MIN_SYNTHETIC_AQI = 10
MAX_SYNTHETIC_AQI = 500
DROPOUT_PROBABILITY = 0.05

# pollutant -> (AQI proportionality factor, floor added to the base, clamp max)
POLLUTANT_SHAPES: Dict[str, Tuple[float, float, float]] = {
    "pm25": (0.4, 5.0, 150.0),
    "pm10": (0.6, 10.0, 250.0),
    "no2": (0.3, 5.0, 100.0),
    "so2": (0.2, 2.0, 80.0),
    "co": (0.1, 0.5, 20.0),
    "o3": (0.35, 10.0, 200.0),
}

CITY_PROFILES: Dict[str, CityProfile] = {
    profile.name: profile
    for profile in (
        CityProfile(name="Delhi", average_aqi=120, std_deviation=80, seasonal_variation=0.7, daily_variation=0.4),
        CityProfile(name="Mumbai", average_aqi=90, std_deviation=60, seasonal_variation=0.5, daily_variation=0.3),
        CityProfile(name="Chennai", average_aqi=70, std_deviation=45, seasonal_variation=0.4, daily_variation=0.2),
        CityProfile(name="London", average_aqi=50, std_deviation=30, seasonal_variation=0.3, daily_variation=0.15),
        CityProfile(name="New York", average_aqi=60, std_deviation=35, seasonal_variation=0.4, daily_variation=0.2),
        CityProfile(name="Beijing", average_aqi=110, std_deviation=75, seasonal_variation=0.6, daily_variation=0.35),
        CityProfile(name="Los Angeles", average_aqi=80, std_deviation=50, seasonal_variation=0.4, daily_variation=0.25),
        CityProfile(name="Tokyo", average_aqi=65, std_deviation=40, seasonal_variation=0.3, daily_variation=0.18),
        CityProfile(name="Paris", average_aqi=55, std_deviation=35, seasonal_variation=0.3, daily_variation=0.2),
        CityProfile(name="Sydney", average_aqi=45, std_deviation=28, seasonal_variation=0.25, daily_variation=0.15),
    )
}

DEFAULT_PROFILE = CityProfile(
    name="Default", average_aqi=75, std_deviation=45, seasonal_variation=0.4, daily_variation=0.2,
)


def profile_for(city: str, profiles: Optional[Dict[str, CityProfile]] = None) -> CityProfile:
    """
    Profile for a normalized city name, falling back to the default profile
    renamed to the requested city.
    """
    profiles = CITY_PROFILES if profiles is None else profiles
    profile = profiles.get(city)
    if profile is not None:
        return profile
    return DEFAULT_PROFILE.model_copy(update={"name": city})


def seasonal_multiplier(month: int, seasonal_variation: float) -> float:
    if month in (12, 1, 2):
        base = 1.0 + seasonal_variation
    elif month in (3, 4, 5):
        base = 1.0 + seasonal_variation * 0.3
    elif month in (6, 7, 8):
        # rain season
        base = 1.0 - seasonal_variation * 0.2
    else:
        base = 1.0 + seasonal_variation * 0.5
    return max(0.3, min(2.0, base))


def diurnal_multiplier(hour: int) -> float:
    if 7 <= hour <= 10 or 17 <= hour <= 20:
        return 1.3
    if 2 <= hour <= 5:
        return 0.7
    return 1.0


class SyntheticGenerator:
    """
    Stateless apart from its random source; the same seed, profile and
    timestamps always yield the same readings.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng if rng is not None else random.Random()

    def _pollutant(self, rng: random.Random, aqi: int, name: str) -> Optional[float]:
        factor, floor, ceiling = POLLUTANT_SHAPES[name]
        base = aqi * factor + floor
        value = max(0.0, min(ceiling, base + base * 0.3 * rng.gauss(0.0, 1.0)))
        if rng.random() < DROPOUT_PROBABILITY:
            return None
        return round(value, 2)

    def generate(
        self,
        profile: CityProfile,
        timestamp: datetime,
        rng: Optional[random.Random] = None,
    ) -> Reading:
        rng = rng if rng is not None else self._rng

        base = (
            profile.average_aqi
            * seasonal_multiplier(timestamp.month, profile.seasonal_variation)
            * diurnal_multiplier(timestamp.hour)
        )
        aqi = int(base + rng.gauss(0.0, 1.0) * profile.std_deviation)
        aqi = max(MIN_SYNTHETIC_AQI, min(MAX_SYNTHETIC_AQI, aqi))

        return Reading(
            city=profile.name,
            timestamp=timestamp,
            aqi_value=aqi,
            **{name: self._pollutant(rng, aqi, name) for name in POLLUTANT_SHAPES},
        )

    def generate_range(
        self,
        profile: CityProfile,
        start: datetime,
        end: datetime,
        rng: Optional[random.Random] = None,
    ) -> Iterator[Reading]:
        """
        Lazily yield readings from ``start`` (inclusive) up to ``end``
        (exclusive), stepping forward a random 2-4 hours each time.
        """
        rng = rng if rng is not None else self._rng
        current = start
        while current < end:
            yield self.generate(profile, current, rng)
            current += timedelta(hours=rng.randint(2, 4))
