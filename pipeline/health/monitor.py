"""
Sensor health monitor.

Classifies each sensor as active / stale / offline / error from the age of
its latest reading and upserts the result (one row per sensor).
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from pipeline.models import SensorHealth, SensorStatus
from pipeline.storage.database import StorageError

logger = logging.getLogger(__name__)


def classify_staleness(minutes_since_reading: float, stale_minutes: int = 15) -> SensorStatus:
    if minutes_since_reading > stale_minutes * 2:
        return SensorStatus.offline
    if minutes_since_reading > stale_minutes:
        return SensorStatus.stale
    return SensorStatus.active


def _previous_errors(store, sensor_id: int) -> int:
    try:
        previous = store.get_sensor_health(sensor_id)
    except StorageError:
        return 0
    return previous.error_count if previous else 0


def check_sensor_health(
    store,
    sensor_id: int,
    stale_minutes: int = 15,
    now: Optional[datetime] = None,
) -> Optional[SensorHealth]:
    """
    Recompute and upsert the health row for one sensor.

    Missing readings and failed lookups count as errors; a healthy check
    resets the counter. Returns the stored row, or None if even the error
    status could not be written.
    """
    now = now or datetime.now(timezone.utc)
    try:
        last_reading = store.latest_reading_time(sensor_id)
    except StorageError as e:
        logger.error("Health check failed for sensor %s: %s", sensor_id, e)
        try:
            return store.upsert_sensor_health(
                sensor_id, SensorStatus.error,
                _previous_errors(store, sensor_id) + 1, now=now,
            )
        except StorageError:
            return None

    if last_reading is None:
        return store.upsert_sensor_health(
            sensor_id, SensorStatus.offline,
            _previous_errors(store, sensor_id) + 1, now=now,
        )

    minutes = (now - last_reading).total_seconds() / 60.0
    status = classify_staleness(minutes, stale_minutes)
    if status is not SensorStatus.active:
        logger.info("Sensor %s is %s (%.0f min since last reading)", sensor_id, status.value, minutes)
    return store.upsert_sensor_health(sensor_id, status, 0, last_reading_at=last_reading, now=now)


def health_summary(store) -> Dict[str, int]:
    """Count of sensors per health status."""
    return store.health_summary()
