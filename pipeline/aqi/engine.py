"""
EPA AQI Engine.

Loads epa_aqi_breakpoints.json on first use. Converts pollutant
concentrations into per-pollutant sub-indices and an overall AQI using the
maximum-pollutant rule. Stateless: no side effects, no I/O beyond the
one-time table load.
"""

import json
import logging
import math
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from pipeline.models import (
    AQIResult,
    POLLUTANT_LABELS,
    POLLUTANTS,
    PollutantAQI,
    UNKNOWN_POLLUTANT,
)

logger = logging.getLogger(__name__)

CONFIG_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "config", "epa_aqi_breakpoints.json"
)

OVERFLOW_INCREMENT = 100

_BREAKPOINTS: Optional[Dict[str, List["Breakpoint"]]] = None

# (upper bound inclusive, category, colour, health text, recommendation)
AQI_BANDS: List[Tuple[float, str, str, str, str]] = [
    (50, "Good", "#00E400",
     "Good - Air quality is satisfactory",
     "No health impacts expected; enjoy outdoor activities"),
    (100, "Moderate", "#FFFF00",
     "Moderate - Air quality is acceptable",
     "Some sensitive groups (children, elderly) may experience minor impacts"),
    (150, "Unhealthy for Sensitive Groups", "#FF7E00",
     "Unhealthy for Sensitive Groups",
     "Sensitive groups should limit prolonged outdoor exertion"),
    (200, "Unhealthy", "#FF0000",
     "Unhealthy - Health alert issued",
     "General public may experience health effects; avoid outdoor activities"),
    (300, "Very Unhealthy", "#8F3F97",
     "Very Unhealthy - Health warning",
     "Everyone should avoid outdoor activities; consider staying indoors"),
    (math.inf, "Hazardous", "#7E0023",
     "Hazardous - Health emergency",
     "Avoid all outdoor activities; wear N95 masks if venturing outside"),
]


@dataclass(frozen=True)
class Breakpoint:
    """One concentration → AQI interpolation bracket."""
    aqi_low: int
    aqi_high: int
    conc_low: float
    conc_high: float
    level: str


def _load_breakpoints() -> Dict[str, List[Breakpoint]]:
    """Load breakpoint tables from disk. Fail fast if missing."""
    global _BREAKPOINTS
    if _BREAKPOINTS is not None:
        return _BREAKPOINTS

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(
            f"CRITICAL: epa_aqi_breakpoints.json not found at {CONFIG_PATH}. "
            "Cannot start AQI engine."
        )

    with open(CONFIG_PATH, "r") as f:
        raw = json.load(f)

    tables = {}
    for pollutant in POLLUTANTS:
        rows = raw.get(pollutant)
        if not rows:
            raise ValueError(f"Breakpoint table missing for pollutant={pollutant}")
        tables[pollutant] = [Breakpoint(**row) for row in rows]

    _BREAKPOINTS = tables
    logger.info("AQI breakpoints loaded from %s", CONFIG_PATH)
    return _BREAKPOINTS


def get_breakpoints(pollutant: str) -> List[Breakpoint]:
    """Return the ordered bracket list for a pollutant key (e.g. 'pm25')."""
    tables = _load_breakpoints()
    key = pollutant.lower()
    if key not in tables:
        raise ValueError(f"No breakpoint table for pollutant={pollutant}")
    return tables[key]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def pollutant_aqi(pollutant: str, concentration: Optional[float]) -> Optional[Tuple[int, str]]:
    """
    Sub-index for a single pollutant concentration.

    Returns (aqi, level) or None when the concentration is absent or
    negative. Values above the last bracket return last.aqi_high + 100
    with the last bracket's level.
    """
    if concentration is None:
        return None
    try:
        c = float(concentration)
    except (TypeError, ValueError):
        return None
    if math.isnan(c) or c < 0:
        logger.debug("Ignoring invalid %s concentration: %s", pollutant, concentration)
        return None

    brackets = get_breakpoints(pollutant)
    for bp in brackets:
        # Values falling in the rounding gap between brackets belong to the
        # next bracket up
        if c <= bp.conc_high:
            slope = (bp.aqi_high - bp.aqi_low) / (bp.conc_high - bp.conc_low)
            aqi = _round_half_up(slope * (c - bp.conc_low) + bp.aqi_low)
            return max(aqi, 0), bp.level

    last = brackets[-1]
    return last.aqi_high + OVERFLOW_INCREMENT, last.level


def concentration_from_aqi(pollutant: str, aqi: Optional[float]) -> Optional[float]:
    """
    Invert the breakpoint interpolation: back out an approximate
    concentration for a reported sub-index.

    The result is an estimate (breakpoint rounding is lossy). AQI values
    beyond the table return the highest tabulated concentration.
    """
    if aqi is None:
        return None
    try:
        value = float(aqi)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or value < 0:
        return None

    brackets = get_breakpoints(pollutant)
    for bp in brackets:
        if value <= bp.aqi_high:
            slope = (bp.conc_high - bp.conc_low) / (bp.aqi_high - bp.aqi_low)
            conc = slope * (max(value, bp.aqi_low) - bp.aqi_low) + bp.conc_low
            return round(conc, 1)
    return float(brackets[-1].conc_high)


def _band_for(aqi: float) -> Tuple[float, str, str, str, str]:
    for band in AQI_BANDS:
        if aqi <= band[0]:
            return band
    return AQI_BANDS[-1]


def category_for(aqi: float) -> str:
    return _band_for(aqi)[1]


def color_for(aqi: float) -> str:
    return _band_for(aqi)[2]


def health_info_for(aqi: float) -> Tuple[str, str]:
    """(health implication, recommendation) for an overall AQI."""
    band = _band_for(aqi)
    return band[3], band[4]


def _concentration(reading, pollutant: str):
    if isinstance(reading, Mapping):
        return reading.get(pollutant)
    return getattr(reading, pollutant, None)


def compute_aqi(reading) -> AQIResult:
    """
    Compute the overall AQI for one reading.

    Args:
        reading: A Reading, any object with pollutant attributes
                 (pm25, pm10, no2, co, o3, so2), or a dict keyed the same way.
                 Missing/None concentrations are skipped, never treated as 0.

    Returns:
        AQIResult. When no pollutant is present the overall AQI is 0 and the
        dominant pollutant is "Unknown".
    """
    per_pollutant: Dict[str, PollutantAQI] = {}
    overall = 0
    dominant = UNKNOWN_POLLUTANT

    for pollutant in POLLUTANTS:
        conc = _concentration(reading, pollutant)
        sub = pollutant_aqi(pollutant, conc)
        if sub is None:
            continue
        aqi, level = sub
        per_pollutant[pollutant] = PollutantAQI(
            pollutant=POLLUTANT_LABELS[pollutant],
            concentration=float(conc),
            aqi=aqi,
            level=level,
        )
        # Strict comparison keeps the first pollutant on ties
        if aqi > overall:
            overall = aqi
            dominant = POLLUTANT_LABELS[pollutant]

    implication, recommendation = health_info_for(overall)
    result = AQIResult(
        overall=overall,
        dominant_pollutant=dominant,
        per_pollutant=per_pollutant,
        category=category_for(overall),
        color=color_for(overall),
        health_text=implication,
        recommendation=recommendation,
    )
    logger.debug("AQI computed: overall=%d dominant=%s", overall, dominant)
    return result
