# aqi_backend/aqi.py
# EPA-style AQI from raw pollutant concentrations.
# Gases are converted from mass concentration to a ppb/ppm proxy before lookup.

import math
from typing import Iterable, Mapping, Optional, Tuple

DEFAULT_AQI = 50
MAX_AQI = 500

# Each tuple: (C_low, C_high, I_low, I_high). C_low of a row equals C_high of
# the row before it, so the interpolation is continuous across rows.
PM25 = [
    (0.0,    12.0,    0,  50),
    (12.0,   35.5,   50, 100),
    (35.5,   55.4,  100, 150),
    (55.4,  150.4,  150, 200),
    (150.4, 250.4,  200, 300),
    (250.4, 350.4,  300, 400),
    (350.4, 500.4,  400, 500),
]

PM10 = [
    (0,    54,    0,  50),
    (54,  154,   50, 100),
    (154, 254,  100, 150),
    (254, 354,  150, 200),
    (354, 424,  200, 300),
    (424, 504,  300, 400),
    (504, 604,  400, 500),
]

NO2_PPB = [
    (0,      53,    0,  50),
    (53,    100,   50, 100),
    (100,   360,  100, 150),
    (360,   649,  150, 200),
    (649,  1249,  200, 300),
    (1249, 1649,  300, 400),
    (1649, 2049,  400, 500),
]

SO2_PPB = [
    (0,    35,    0,  50),
    (35,   75,   50, 100),
    (75,  185,  100, 150),
    (185, 304,  150, 200),
    (304, 604,  200, 300),
    (604, 804,  300, 400),
    (804, 1004, 400, 500),
]

CO_PPM = [
    (0.0,   4.4,   0,  50),
    (4.4,   9.4,  50, 100),
    (9.4,  12.4, 100, 150),
    (12.4, 15.4, 150, 200),
    (15.4, 30.4, 200, 300),
    (30.4, 40.4, 300, 400),
    (40.4, 50.4, 400, 500),
]

O3_PPB = [
    (0,    54,    0,  50),
    (54,   70,   50, 100),
    (70,   85,  100, 150),
    (85,  105,  150, 200),
    (105, 200,  200, 300),
    # Above this the 1-hr table takes over.
    (200, 404,  300, 400),
    (404, 604,  400, 500),
]

TABLES = {
    "pm25": PM25,
    "pm10": PM10,
    "no2":  NO2_PPB,
    "so2":  SO2_PPB,
    "co":   CO_PPM,
    "o3":   O3_PPB,
}

# Approximate multiplicative factor from the stored unit (µg/m³, mg/m³ for CO)
# to the unit the breakpoint table is written in.
CONVERSION_FACTORS = {
    "pm25": 1.0,
    "pm10": 1.0,
    "no2":  0.53,
    "so2":  0.38,
    "co":   0.87,
    "o3":   0.51,
}

# (upper AQI bound, category, description)
CATEGORIES = [
    (50,  "Good",
     "Air quality is satisfactory, and air pollution poses little or no risk."),
    (100, "Moderate",
     "Air quality is acceptable; some pollutants may be a concern for a small number of unusually sensitive people."),
    (150, "Unhealthy for Sensitive Groups",
     "Members of sensitive groups may experience health effects. The general public is less likely to be affected."),
    (200, "Unhealthy",
     "Some members of the general public may experience health effects; sensitive groups may experience more serious effects."),
    (300, "Very Unhealthy",
     "Health alert: the risk of health effects is increased for everyone."),
]
HAZARDOUS = ("Hazardous", "Health warning of emergency conditions: everyone is more likely to be affected.")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _interp(c_low: float, c_high: float, i_low: int, i_high: int, c: float) -> int:
    # Linear interpolation per EPA formula, rounded to nearest integer
    if c_high == c_low:
        return i_high
    return _round_half_up(i_low + (c - c_low) * (i_high - i_low) / (c_high - c_low))


def sub_index(pollutant: str, concentration: Optional[float]) -> int:
    """
    AQI implied by one pollutant's concentration alone.
    A missing concentration yields 0; anything above the top breakpoint yields 500.
    Raises KeyError for pollutants without a breakpoint table.
    """
    table = TABLES[pollutant]
    if concentration is None:
        return 0

    c = max(0.0, float(concentration)) * CONVERSION_FACTORS[pollutant]
    for c_low, c_high, i_low, i_high in table:
        if c <= c_high:
            return max(0, min(MAX_AQI, _interp(c_low, c_high, i_low, i_high, c)))
    return MAX_AQI


def combine(sub_indices: Iterable[int]) -> int:
    """Overall AQI is the worst (maximum) sub-index."""
    values = list(sub_indices)
    if not values:
        raise ValueError("combine() needs at least one sub-index")
    return max(values)


def compute_aqi(pollutants: Mapping[str, Optional[float]]) -> int:
    """
    Overall AQI for a set of concentrations. Unknown keys and missing values
    are ignored; with nothing usable left the moderate default is returned.
    """
    known = {
        name: value
        for name, value in pollutants.items()
        if name in TABLES and value is not None
    }
    if not known:
        return DEFAULT_AQI
    return combine(sub_index(name, value) for name, value in known.items())


def _lookup(aqi: int) -> Tuple[str, str]:
    for upper, category, description in CATEGORIES:
        if aqi <= upper:
            return category, description
    return HAZARDOUS


def aqi_category(aqi: int) -> str:
    return _lookup(int(aqi))[0]


def aqi_description(aqi: int) -> str:
    return _lookup(int(aqi))[1]
