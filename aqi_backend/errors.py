#file: aqi_backend/errors.py


class AqiServiceError(Exception):
    """Base class for errors raised by the AQI service."""


class InvalidCityError(AqiServiceError, ValueError):
    """City name is empty or cannot be normalized."""


class InvalidRangeError(AqiServiceError, ValueError):
    """Historical range is inverted or exceeds the maximum span."""


class StoreUnavailableError(AqiServiceError):
    """The persistence layer cannot be reached; distinct from 'no data'."""
