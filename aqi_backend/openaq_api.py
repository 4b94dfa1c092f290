# file: aqi_backend/openaq_api.py

import aiohttp
import asyncio
import math
from datetime import datetime
from typing import Any, Dict, Optional
import logging
import certifi
import ssl

from aqi_backend.outcomes import Fetched, NotFound, ProviderResult, TransientFailure

OPENAQ_URL = "https://api.openaq.org/v2/latest"
PARAM_MAPPING = {
    "pm25": "pm25",
    "pm2.5": "pm25",
    "pm10": "pm10",
    "no2": "no2",
    "so2": "so2",
    "o3": "o3",
    "co": "co",
}

# ppm -> µg/m³ (mg/m³ for CO) at 25 °C
PPM_FACTORS = {
    "no2": 1880.0,
    "so2": 2620.0,
    "o3": 1960.0,
    "co": 1.145,
}


def _to_storage_unit(pollutant: str, value: float, unit: Optional[str]) -> float:
    """Convert a provider value to µg/m³ (mg/m³ for CO)."""
    unit = (unit or "").strip().lower().replace("µ", "u").replace("³", "3")
    if unit == "ppm" and pollutant in PPM_FACTORS:
        return value * PPM_FACTORS[pollutant]
    if unit == "ppb" and pollutant in PPM_FACTORS:
        return value * PPM_FACTORS[pollutant] / 1000.0
    if pollutant == "co" and unit in ("ug/m3", "ugm3"):
        return value / 1000.0
    return value


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_latest_payload(city: str, payload: Dict[str, Any]) -> ProviderResult:
    """Reduce a 'latest' response to the concentrations of its first station."""
    results = payload.get("results") if isinstance(payload, dict) else None
    if not results:
        return NotFound(city)

    measurements = results[0].get("measurements") or []
    pollutants: Dict[str, Optional[float]] = {}
    measured_at = None
    for measurement in measurements:
        param_code = str(measurement.get("parameter", "")).lower()
        if param_code not in PARAM_MAPPING or measurement.get("value") is None:
            continue
        try:
            value = float(measurement["value"])
        except (TypeError, ValueError):
            continue
        if not math.isfinite(value) or value < 0:
            continue
        pollutant = PARAM_MAPPING[param_code]
        pollutants[pollutant] = _to_storage_unit(pollutant, value, measurement.get("unit"))
        updated = _parse_time(measurement.get("lastUpdated"))
        if updated is not None and (measured_at is None or updated > measured_at):
            measured_at = updated

    if not pollutants:
        return NotFound(city)
    return Fetched(pollutants=pollutants, measured_at=measured_at)


class OpenAQProvider:
    """Best-effort source of the most recent station reading for a city."""

    def __init__(self, url: str = OPENAQ_URL, api_key: Optional[str] = None,
                 timeout_seconds: float = 10.0) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @classmethod
    def from_settings(cls, settings) -> "OpenAQProvider":
        return cls(settings.openaq_url, settings.openaq_api_key, settings.provider_timeout_seconds)

    async def fetch_latest_async(self, city: str) -> ProviderResult:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        headers = {"X-API-Key": self.api_key} if self.api_key else {}
        params = {"city": city, "limit": 1}
        try:
            async with aiohttp.ClientSession(connector=aiohttp.TCPConnector(ssl=ssl_context),
                                             timeout=self.timeout, headers=headers) as session:
                async with session.get(self.url, params=params) as response:
                    if response.status != 200:
                        logging.warning(f"Provider returned HTTP {response.status} for {city}")
                        return TransientFailure(f"HTTP {response.status}")
                    payload = await response.json(content_type=None)
        except asyncio.TimeoutError:
            logging.warning(f"Provider timed out for {city}")
            return TransientFailure("timeout")
        except (aiohttp.ClientError, ValueError) as e:
            logging.warning(f"Error fetching provider data for {city}: {e}")
            return TransientFailure(str(e) or type(e).__name__)
        return parse_latest_payload(city, payload)

    def fetch_latest(self, city: str) -> ProviderResult:
        """Blocking wrapper; must not be called from a running event loop."""
        return asyncio.run(self.fetch_latest_async(city))
