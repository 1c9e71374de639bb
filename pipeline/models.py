"""
Value objects exchanged between pipeline components.

These are plain dataclasses copied out of storage; no component keeps a
reference to them across ingestion cycles.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

# Evaluation order matters: ties in the overall AQI go to the first entry
POLLUTANTS = ["pm25", "pm10", "no2", "co", "o3", "so2"]

POLLUTANT_LABELS = {
    "pm25": "PM2.5",
    "pm10": "PM10",
    "no2":  "NO₂",
    "co":   "CO",
    "o3":   "O₃",
    "so2":  "SO₂",
}

UNKNOWN_POLLUTANT = "Unknown"


class AlertType(str, enum.Enum):
    threshold = "threshold"
    spike = "spike"
    sensor_health = "sensor_health"


class Severity(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class SensorStatus(str, enum.Enum):
    active = "active"
    stale = "stale"
    offline = "offline"
    error = "error"


@dataclass
class Sensor:
    """A provisioned sensor. Read-only to the pipeline."""
    id: int
    device_id: str
    latitude: float
    longitude: float
    is_active: bool = True
    name: Optional[str] = None


@dataclass
class Reading:
    """One measurement snapshot for a sensor (concentrations are nullable)."""
    sensor_id: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Pollutants (μg/m³, CO in ppm)
    pm25: Optional[float] = None
    pm10: Optional[float] = None
    no2: Optional[float] = None
    co: Optional[float] = None
    o3: Optional[float] = None
    so2: Optional[float] = None
    # Ambient metrics
    temperature: Optional[float] = None     # °C
    humidity: Optional[float] = None        # %
    pressure: Optional[float] = None        # hPa
    wind_speed: Optional[float] = None      # m/s
    wind_direction: Optional[float] = None  # degrees
    # Provenance
    source: str = "synthetic"
    is_estimated: bool = False
    provider_aqi: Optional[int] = None
    dominant_code: Optional[str] = None
    source_timestamp: Optional[datetime] = None
    id: Optional[int] = None

    def concentrations(self) -> Dict[str, Optional[float]]:
        return {p: getattr(self, p) for p in POLLUTANTS}


@dataclass
class PollutantAQI:
    """Sub-index for one pollutant."""
    pollutant: str
    concentration: float
    aqi: int
    level: str


@dataclass
class AQIResult:
    """Output of the AQI engine for one reading."""
    overall: int
    dominant_pollutant: str
    per_pollutant: Dict[str, PollutantAQI]
    category: str
    color: str
    health_text: str
    recommendation: str

    def sub_aqi(self, pollutant: str) -> Optional[int]:
        entry = self.per_pollutant.get(pollutant)
        return entry.aqi if entry else None


@dataclass
class ForecastPoint:
    """One hourly forecast value."""
    hour: int
    predicted_aqi: int
    confidence: float
    valid_at: datetime


@dataclass
class AlertRecord:
    id: int
    sensor_id: int
    alert_type: AlertType
    severity: Severity
    message: str
    is_active: bool
    created_at: datetime
    resolved_at: Optional[datetime] = None
    aqi_level: Optional[int] = None
    pollutant: Optional[str] = None


@dataclass
class SensorHealth:
    sensor_id: int
    status: SensorStatus
    error_count: int
    last_reading_at: Optional[datetime]
    updated_at: datetime


def as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite hands them back naive)."""
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)
