"""
IQAir (AirVisual) API Connector.

Fetches the nearest-city snapshot for a sensor location and maps it onto a
Reading. Handles API timeouts, HTTP errors, malformed responses and
non-"success" statuses by returning None ("no data this cycle").

The free endpoint reports a US AQI and the dominant pollutant code rather
than raw concentrations. The mapper backs out an approximate concentration
for the dominant pollutant by inverting its breakpoint table and flags the
reading as estimated. Only the PM2.5 (p2) inversion is part of the defined
provider mapping; applying the same inversion to p1, o3, n2, s2 and co is an
extension of it, with no stated accuracy bound for any code.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx
from dotenv import load_dotenv

from pipeline.aqi.engine import concentration_from_aqi
from pipeline.models import Reading

load_dotenv()

logger = logging.getLogger(__name__)

IQAIR_BASE_URL = "http://api.airvisual.com/v2"
REQUEST_TIMEOUT = 10  # seconds

# IQAir "mainus" codes → internal pollutant keys (p2 is the defined mapping,
# the others reuse the same inversion)
DOMINANT_CODES = {
    "p2": "pm25",
    "p1": "pm10",
    "o3": "o3",
    "n2": "no2",
    "s2": "so2",
    "co": "co",
}


@dataclass
class IQAirSnapshot:
    """Typed view over a nearest_city response."""
    city: str
    timestamp: datetime
    aqi_us: Optional[int] = None
    main_pollutant: Optional[str] = None
    # Weather block
    temperature: Optional[float] = None     # °C
    humidity: Optional[float] = None        # %
    pressure: Optional[float] = None        # hPa
    wind_speed: Optional[float] = None      # m/s
    wind_direction: Optional[float] = None  # degrees


def _safe_float(val) -> Optional[float]:
    """Safely convert a value to float, returning None on failure."""
    if val is None or val == "-" or val == "":
        return None
    try:
        return float(val)
    except (TypeError, ValueError):
        return None


def _safe_int(val) -> Optional[int]:
    f = _safe_float(val)
    return int(round(f)) if f is not None else None


def _parse_timestamp(raw) -> datetime:
    """Parse an IQAir ISO timestamp into UTC; fall back to now."""
    try:
        if raw:
            dt = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt.astimezone(timezone.utc)
    except (ValueError, AttributeError):
        pass
    return datetime.now(timezone.utc)


def parse_snapshot(payload: dict) -> Optional[IQAirSnapshot]:
    """Build an IQAirSnapshot from a decoded JSON payload, or None if unusable."""
    try:
        data = payload["data"]
        current = data["current"]
    except (KeyError, TypeError):
        logger.error("IQAir response missing 'data.current' block")
        return None

    pollution = current.get("pollution") or {}
    weather = current.get("weather") or {}

    return IQAirSnapshot(
        city=data.get("city", ""),
        timestamp=_parse_timestamp(pollution.get("ts")),
        aqi_us=_safe_int(pollution.get("aqius")),
        main_pollutant=pollution.get("mainus"),
        temperature=_safe_float(weather.get("tp")),
        humidity=_safe_float(weather.get("hu")),
        pressure=_safe_float(weather.get("pr")),
        wind_speed=_safe_float(weather.get("ws")),
        wind_direction=_safe_float(weather.get("wd")),
    )


def fetch_nearest_city(
    latitude: float,
    longitude: float,
    api_key: Optional[str] = None,
    base_url: str = IQAIR_BASE_URL,
) -> Optional[IQAirSnapshot]:
    """
    Fetch the nearest-city air quality snapshot for a coordinate.

    Args:
        latitude: Sensor latitude
        longitude: Sensor longitude
        api_key: IQAir key (defaults to IQAIR_API_KEY from the environment)
        base_url: API root

    Returns:
        IQAirSnapshot or None on any failure.
    """
    key = api_key or os.getenv("IQAIR_API_KEY", "")
    if not key:
        logger.error("IQAIR_API_KEY not set in environment")
        return None

    params = {"lat": latitude, "lon": longitude, "key": key}

    try:
        resp = httpx.get(f"{base_url}/nearest_city", params=params, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
    except httpx.TimeoutException:
        logger.error("IQAir request timed out for %.4f,%.4f", latitude, longitude)
        return None
    except httpx.HTTPStatusError as e:
        logger.error("IQAir HTTP error %s for %.4f,%.4f", e.response.status_code, latitude, longitude)
        return None
    except httpx.RequestError as e:
        logger.error("IQAir network error for %.4f,%.4f: %s", latitude, longitude, e)
        return None

    try:
        payload = resp.json()
    except ValueError:
        logger.error("IQAir returned malformed JSON for %.4f,%.4f", latitude, longitude)
        return None

    if not isinstance(payload, dict) or payload.get("status") != "success":
        status = payload.get("status") if isinstance(payload, dict) else None
        detail = ""
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            detail = payload["data"].get("message", "")
        logger.error("IQAir status not success for %.4f,%.4f: %s %s", latitude, longitude, status, detail)
        return None

    snapshot = parse_snapshot(payload)
    if snapshot is not None:
        logger.info(
            "IQAir snapshot fetched for %.4f,%.4f: city=%s AQI=%s main=%s",
            latitude, longitude, snapshot.city, snapshot.aqi_us, snapshot.main_pollutant,
        )
    return snapshot


def map_to_reading(sensor_id: int, snapshot: IQAirSnapshot,
                   now: Optional[datetime] = None) -> Reading:
    """
    Map a snapshot onto a Reading.

    Only the dominant pollutant gets a concentration, estimated from the
    reported US AQI; every other pollutant stays None. The reading is stamped
    with the ingestion time; the provider's own timestamp is kept in
    source_timestamp.
    """
    reading = Reading(
        sensor_id=sensor_id,
        timestamp=now or datetime.now(timezone.utc),
        temperature=snapshot.temperature,
        humidity=snapshot.humidity,
        pressure=snapshot.pressure,
        wind_speed=snapshot.wind_speed,
        wind_direction=snapshot.wind_direction,
        source="iqair",
        provider_aqi=snapshot.aqi_us,
        dominant_code=snapshot.main_pollutant,
        source_timestamp=snapshot.timestamp,
    )

    pollutant = DOMINANT_CODES.get((snapshot.main_pollutant or "").lower())
    if pollutant is None:
        logger.warning("Unknown IQAir main pollutant code %r for sensor %s",
                       snapshot.main_pollutant, sensor_id)
        return reading

    concentration = concentration_from_aqi(pollutant, snapshot.aqi_us)
    if concentration is not None:
        setattr(reading, pollutant, concentration)
        reading.is_estimated = True
    return reading
