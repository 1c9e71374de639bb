"""
Reading sources.

The scheduler pulls readings through a DataSource chosen by configuration:
  - SyntheticDataSource: random but plausible readings for every sensor,
    no network, no rate limit (development / demo deployments)
  - LiveDataSource: one IQAir nearest_city call per sensor, rotated in
    small batches with a delay between calls to respect the provider limit
"""

import logging
import random
from datetime import datetime, timezone
from typing import Optional, Protocol

from pipeline.config import DATA_SOURCE_IQAIR, PipelineConfig
from pipeline.ingestion import iqair_connector
from pipeline.models import Reading, Sensor

logger = logging.getLogger(__name__)


class DataSource(Protocol):
    name: str
    # Rotating sources are served a bounded batch per cycle, with a delay
    # after every call
    rotates: bool
    request_delay_seconds: float

    def fetch(self, sensor: Sensor, now: Optional[datetime] = None) -> Optional[Reading]: ...


class SyntheticDataSource:
    """Generates a reading for every sensor on every cycle."""

    name = "synthetic"
    rotates = False
    request_delay_seconds = 0.0

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def fetch(self, sensor: Sensor, now: Optional[datetime] = None) -> Optional[Reading]:
        r = self._rng.random
        return Reading(
            sensor_id=sensor.id,
            timestamp=now or datetime.now(timezone.utc),
            pm25=float(round(r() * 120 + 5)),
            pm10=float(round(r() * 180 + 10)),
            no2=float(round(r() * 80 + 5)),
            co=round(r() * 2 + 0.2, 1),
            o3=float(round(r() * 90 + 5)),
            so2=float(round(r() * 50 + 2)),
            temperature=round(r() * 25 + 5, 1),
            humidity=float(round(r() * 60 + 20)),
            pressure=float(round(r() * 30 + 980)),
            wind_speed=round(r() * 8 + 1, 1),
            source=self.name,
        )


class LiveDataSource:
    """IQAir-backed source; returns None when the provider has no data."""

    name = "iqair"
    rotates = True

    def __init__(self, api_key: Optional[str], request_delay_seconds: float,
                 base_url: str = iqair_connector.IQAIR_BASE_URL):
        self._api_key = api_key
        self._base_url = base_url
        self.request_delay_seconds = request_delay_seconds

    def fetch(self, sensor: Sensor, now: Optional[datetime] = None) -> Optional[Reading]:
        snapshot = iqair_connector.fetch_nearest_city(
            sensor.latitude, sensor.longitude,
            api_key=self._api_key, base_url=self._base_url,
        )
        if snapshot is None:
            return None
        return iqair_connector.map_to_reading(sensor.id, snapshot, now)


def build_data_source(config: PipelineConfig) -> DataSource:
    """Pick the reading source named by DATA_SOURCE (anything but 'iqair' is synthetic)."""
    if config.scheduler.data_source == DATA_SOURCE_IQAIR:
        if not config.iqair_api_key:
            logger.warning("DATA_SOURCE=iqair but IQAIR_API_KEY is empty — every fetch will fail")
        return LiveDataSource(
            api_key=config.iqair_api_key,
            request_delay_seconds=config.scheduler.effective_request_delay,
            base_url=config.iqair_base_url,
        )
    logger.info("Data source '%s' — using synthetic readings", config.scheduler.data_source)
    return SyntheticDataSource()
