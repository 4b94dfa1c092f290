#file: aqi_backend/models.py

from datetime import datetime
from typing import Optional, List, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator

from aqi_backend.utils import ensure_utc

POLLUTANTS = ("pm25", "pm10", "no2", "so2", "co", "o3")


class Reading(BaseModel):
    """A single resolved AQI observation for a city, live or synthetic."""
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    city: str = Field(..., min_length=1, description="Normalized city name")
    timestamp: datetime = Field(..., description="Observation time (UTC)")
    aqi_value: int = Field(..., ge=0, le=500, description="Overall AQI")
    pm25: Optional[float] = Field(None, ge=0, description="PM2.5 concentration (µg/m³)")
    pm10: Optional[float] = Field(None, ge=0, description="PM10 concentration (µg/m³)")
    no2: Optional[float] = Field(None, ge=0, description="NO2 concentration (µg/m³)")
    so2: Optional[float] = Field(None, ge=0, description="SO2 concentration (µg/m³)")
    co: Optional[float] = Field(None, ge=0, description="CO concentration (mg/m³)")
    o3: Optional[float] = Field(None, ge=0, description="O3 concentration (µg/m³)")

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def pollutants(self) -> Dict[str, Optional[float]]:
        return {name: getattr(self, name) for name in POLLUTANTS}


class CityProfile(BaseModel):
    """Statistical baseline used to synthesize plausible history for a city."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Canonical city name")
    average_aqi: float = Field(..., gt=0, description="Typical AQI level")
    std_deviation: float = Field(..., ge=0, description="Spread of the AQI noise")
    seasonal_variation: float = Field(..., ge=0, description="Strength of the seasonal swing")
    daily_variation: float = Field(..., ge=0, description="Strength of the diurnal swing")


class ReadingOut(BaseModel):
    city: str
    timestamp: datetime
    aqi_value: int
    category: str
    description: str
    pm25: Optional[float] = None
    pm10: Optional[float] = None
    no2: Optional[float] = None
    so2: Optional[float] = None
    co: Optional[float] = None
    o3: Optional[float] = None


class HistoryResult(BaseModel):
    city: str
    start_date: datetime
    end_date: datetime
    days_covered: int
    count: int
    was_sampled: bool
    data: List[Reading]


class AlertSubscription(BaseModel):
    recipient: str = Field(..., min_length=1, description="Phone number or address to notify")
    city: str = Field(..., min_length=1, description="City to watch")
    threshold: int = Field(..., ge=0, le=500, description="Notify when AQI reaches this value")
