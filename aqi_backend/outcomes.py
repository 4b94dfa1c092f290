#file: aqi_backend/outcomes.py

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Union

from aqi_backend.models import Reading


@dataclass(frozen=True)
class Found:
    reading: Reading


@dataclass(frozen=True)
class NotFound:
    city: str


@dataclass(frozen=True)
class Fetched:
    """Concentrations returned by a provider for one station reading."""
    pollutants: Dict[str, Optional[float]] = field(default_factory=dict)
    measured_at: Optional[datetime] = None


@dataclass(frozen=True)
class TransientFailure:
    reason: str


StoreLookup = Union[Found, NotFound]
ProviderResult = Union[Fetched, NotFound, TransientFailure]
