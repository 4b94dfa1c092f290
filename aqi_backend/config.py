# file: aqi_backend/config.py

import os
from datetime import timedelta
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, TypeAdapter, field_validator

from aqi_backend.models import AlertSubscription

DEFAULT_MONITORED_CITIES = [
    "Delhi", "Mumbai", "Bangalore", "Chennai", "Kolkata",
    "Hyderabad", "Pune", "Ahmedabad", "Jaipur", "Surat",
    "New York", "London", "Paris", "Tokyo", "Beijing",
]

# Settings field -> environment variable
ENV_VARS = {
    "influxdb_url": "INFLUXDB_URL",
    "influxdb_token": "INFLUXDB_TOKEN",
    "influxdb_org": "INFLUXDB_ORG",
    "influxdb_bucket": "INFLUXDB_BUCKET",
    "store_backend": "AQI_STORE_BACKEND",
    "openaq_url": "OPENAQ_URL",
    "openaq_api_key": "OPENAQ_API_KEY",
    "provider_timeout_seconds": "AQI_PROVIDER_TIMEOUT_SECONDS",
    "cache_ttl_minutes": "AQI_CACHE_TTL_MINUTES",
    "recent_threshold_hours": "AQI_RECENT_THRESHOLD_HOURS",
    "refresh_enabled": "AQI_REFRESH_ENABLED",
    "refresh_interval_minutes": "AQI_REFRESH_INTERVAL_MINUTES",
    "refresh_delay_seconds": "AQI_REFRESH_DELAY_SECONDS",
    "monitored_cities": "AQI_MONITORED_CITIES",
    "seed_history": "AQI_SEED_HISTORY",
    "seed_years": "AQI_SEED_YEARS",
    "seed_min_records": "AQI_SEED_MIN_RECORDS",
    "seed_batch_size": "AQI_SEED_BATCH_SIZE",
    "history_default_days": "AQI_HISTORY_DEFAULT_DAYS",
    "history_max_days": "AQI_HISTORY_MAX_DAYS",
    "history_max_points": "AQI_HISTORY_MAX_POINTS",
    "search_limit": "AQI_SEARCH_LIMIT",
    "alert_subscriptions": "AQI_ALERT_SUBSCRIPTIONS",
    "log_level": "AQI_LOG_LEVEL",
}


class Settings(BaseModel):
    influxdb_url: Optional[str] = Field(None, description="InfluxDB server URL")
    influxdb_token: Optional[str] = Field(None, description="InfluxDB API token")
    influxdb_org: Optional[str] = Field(None, description="InfluxDB organization")
    influxdb_bucket: Optional[str] = Field(None, description="InfluxDB bucket for readings")
    store_backend: Literal["auto", "influx", "memory"] = Field("auto", description="Which Store to use")

    openaq_url: str = Field("https://api.openaq.org/v2/latest", description="Provider 'latest' endpoint")
    openaq_api_key: Optional[str] = Field(None, description="Provider API key (X-API-Key)")
    provider_timeout_seconds: float = Field(10.0, gt=0, description="Hard timeout for one provider call")

    cache_ttl_minutes: float = Field(5, gt=0, description="Freshness window of the resolution cache")
    recent_threshold_hours: float = Field(24, gt=0, description="Max age of a stored reading served without refetch")

    refresh_enabled: bool = Field(True, description="Run the periodic refresh loop")
    refresh_interval_minutes: int = Field(5, gt=0, description="Minutes between refresh cycles")
    refresh_delay_seconds: float = Field(1.0, ge=0, description="Pause between cities within a cycle")
    monitored_cities: List[str] = Field(default_factory=lambda: list(DEFAULT_MONITORED_CITIES))

    seed_history: bool = Field(True, description="Backfill synthetic history on startup")
    seed_years: int = Field(3, gt=0, description="Years of history to backfill")
    seed_min_records: int = Field(10000, ge=0, description="Skip backfill when the store holds this many records")
    seed_batch_size: int = Field(1000, gt=0, description="Readings per store write during backfill")

    history_default_days: int = Field(90, gt=0, description="Default historical window")
    history_max_days: int = Field(1095, gt=0, description="Longest historical window accepted")
    history_max_points: int = Field(10000, ge=2, description="Down-sample above this many points")
    search_limit: int = Field(10, gt=0, description="Maximum city search results")

    alert_subscriptions: List[AlertSubscription] = Field(default_factory=list)
    log_level: str = Field("INFO", description="Root logging level")

    @field_validator("monitored_cities", mode="before")
    @classmethod
    def _split_cities(cls, value):
        if isinstance(value, str):
            return [city.strip() for city in value.split(",") if city.strip()]
        return value

    @field_validator("alert_subscriptions", mode="before")
    @classmethod
    def _parse_subscriptions(cls, value):
        if isinstance(value, str):
            return TypeAdapter(List[AlertSubscription]).validate_json(value or "[]")
        return value

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(minutes=self.cache_ttl_minutes)

    @property
    def recent_threshold(self) -> timedelta:
        return timedelta(hours=self.recent_threshold_hours)

    @property
    def influx_configured(self) -> bool:
        return all([self.influxdb_url, self.influxdb_token, self.influxdb_org, self.influxdb_bucket])


def load_settings() -> Settings:
    """Build settings from the environment (and a .env file, if present)."""
    load_dotenv()
    values = {field: os.getenv(var) for field, var in ENV_VARS.items()}
    return Settings.model_validate({field: value for field, value in values.items() if value is not None})
