"""
Ingestion Scheduler.

Each ingestion cycle:
  1. List active sensors
  2. Pick the batch (all sensors, or a rotating slice for rate-limited sources)
  3. Fetch a reading per sensor and persist it
  4. Compute AQI for the reading and persist the AQI record
  5. Run threshold and spike alert checks against the new AQI

Forecast and health cycles run on their own timers. Sensor-health alerts are
raised by the health cycle: a sensor that stopped reporting never reaches
step 5. Every per-sensor step is isolated: a failure is logged and the cycle
moves on; the next scheduled cycle is the retry.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pipeline.alerts.evaluator import AlertEvaluator
from pipeline.aqi.engine import compute_aqi
from pipeline.config import PipelineConfig
from pipeline.forecast.generator import (
    generate_forecast_for_sensor,
    purge_expired_forecasts,
    store_forecast_batch,
)
from pipeline.health.monitor import check_sensor_health
from pipeline.models import Reading, Sensor
from pipeline.scheduler.state import CycleGuard, RotationCursor
from pipeline.storage.database import StorageError

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """Outcome of one scheduler cycle."""
    kind: str
    skipped: bool = False
    attempted: int = 0
    succeeded: int = 0
    failed: List[int] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class IngestionScheduler:
    """Owns the cycle guards and rotation cursor; cycles run to completion."""

    def __init__(
        self,
        store,
        source,
        config: PipelineConfig = PipelineConfig(),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.source = source
        self.config = config
        self._sleep = sleep
        self.ingestion_guard = CycleGuard("ingestion")
        self.forecast_guard = CycleGuard("forecast")
        self.health_guard = CycleGuard("health")
        self.cursor = RotationCursor(config.scheduler.effective_max_per_cycle)
        self.alerts = AlertEvaluator(store, config.alerts)

    @property
    def is_running(self) -> bool:
        return self.ingestion_guard.is_running

    # ── Ingestion ───────────────────────────────────────────────────────────

    def select_batch(self, sensors: List[Sensor]) -> List[Sensor]:
        if self.source.rotates:
            return self.cursor.next_batch(sensors)
        return list(sensors)

    def run_ingestion_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        report = CycleReport(kind="ingestion")
        if not self.ingestion_guard.try_begin_cycle():
            logger.warning("Ingestion cycle already running — skipping this interval")
            report.skipped = True
            return report

        try:
            logger.info("── Ingestion cycle starting (source=%s) ──", self.source.name)
            try:
                sensors = self.store.list_sensors(active_only=True)
            except StorageError as exc:
                logger.error("Cannot list sensors, skipping cycle: %s", exc)
                return report

            if not sensors:
                logger.info("No active sensors found. Skipping.")
                return report

            batch = self.select_batch(sensors)
            logger.info("Found %d active sensors, updating %d this cycle", len(sensors), len(batch))

            for sensor in batch:
                report.attempted += 1
                try:
                    if self._ingest_sensor(sensor, now):
                        report.succeeded += 1
                    else:
                        report.failed.append(sensor.id)
                except Exception as exc:
                    logger.error("Failed to update sensor %s: %s", sensor.device_id, exc)
                    report.failed.append(sensor.id)
                finally:
                    if self.source.rotates:
                        # Delay applies after failed calls too
                        self._sleep(self.source.request_delay_seconds)

            logger.info(
                "── Ingestion cycle complete: %d/%d sensors updated ──",
                report.succeeded, report.attempted,
            )
            return report
        finally:
            self.ingestion_guard.end_cycle()

    def _ingest_sensor(self, sensor: Sensor, now: Optional[datetime]) -> bool:
        """Fetch, persist, score and alert for one sensor. False when no data."""
        reading = self.source.fetch(sensor, now)
        if reading is None:
            logger.warning("No reading for sensor %s this cycle", sensor.device_id)
            return False

        reading.id = self.store.insert_reading(reading)
        logger.debug("Persisted reading %s for sensor %s", reading.id, sensor.device_id)

        self._score_reading(reading, now)
        return True

    def _score_reading(self, reading: Reading, now: Optional[datetime]) -> None:
        """Best effort: AQI + alerts failures are logged, the reading stays."""
        try:
            result = compute_aqi(reading)
            self.store.insert_aqi_record(
                reading.sensor_id, result,
                reading_id=reading.id, timestamp=reading.timestamp,
            )
        except Exception as exc:
            logger.error("AQI calculation failed for sensor %s: %s", reading.sensor_id, exc)
            return

        if reading.is_estimated:
            logger.debug(
                "Sensor %s AQI=%d derived from estimated concentration",
                reading.sensor_id, result.overall,
            )

        if not self.config.scheduler.enable_alerts:
            return
        try:
            self.alerts.run_alert_checks(reading.sensor_id, result.overall, now, include_health=False)
        except Exception as exc:
            logger.error("Alert checks failed for sensor %s: %s", reading.sensor_id, exc)

    def recompute_missing_aqi(self, sensor_id: Optional[int] = None) -> int:
        """Fill AQI records for readings that were persisted without one."""
        readings = self.store.readings_without_aqi(sensor_id)
        filled = 0
        for reading in readings:
            try:
                self.store.insert_aqi_record(
                    reading.sensor_id, compute_aqi(reading),
                    reading_id=reading.id, timestamp=reading.timestamp,
                )
                filled += 1
            except StorageError as exc:
                logger.error("AQI recompute failed for reading %s: %s", reading.id, exc)
        if filled:
            logger.info("Recomputed AQI for %d readings", filled)
        return filled

    # ── Forecasting ─────────────────────────────────────────────────────────

    def run_forecast_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        report = CycleReport(kind="forecast")
        if not self.forecast_guard.try_begin_cycle():
            logger.warning("Forecast cycle already running — skipping this interval")
            report.skipped = True
            return report

        try:
            now = now or datetime.now(timezone.utc)
            forecast_cfg = self.config.forecast
            try:
                purge_expired_forecasts(self.store, forecast_cfg, now)
                sensors = self.store.list_sensors(active_only=True)
            except StorageError as exc:
                logger.error("Forecast cycle aborted: %s", exc)
                return report

            for sensor in sensors:
                report.attempted += 1
                try:
                    points = generate_forecast_for_sensor(self.store, sensor.id, forecast_cfg, now)
                    if not points:
                        logger.info("Not enough history to forecast sensor %s", sensor.device_id)
                        continue
                    store_forecast_batch(self.store, sensor.id, points, forecast_cfg, now)
                    report.succeeded += 1
                except Exception as exc:
                    logger.error("Forecast failed for sensor %s: %s", sensor.device_id, exc)
                    report.failed.append(sensor.id)

            logger.info("Forecasts generated for %d/%d active sensors", report.succeeded, report.attempted)
            return report
        finally:
            self.forecast_guard.end_cycle()

    # ── Sensor health ───────────────────────────────────────────────────────

    def run_health_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        report = CycleReport(kind="health")
        if not self.health_guard.try_begin_cycle():
            report.skipped = True
            return report

        try:
            try:
                sensors = self.store.list_sensors(active_only=True)
            except StorageError as exc:
                logger.error("Health cycle aborted: %s", exc)
                return report

            for sensor in sensors:
                report.attempted += 1
                try:
                    if check_sensor_health(self.store, sensor.id, self.config.alerts.stale_minutes, now):
                        report.succeeded += 1
                    else:
                        report.failed.append(sensor.id)
                except Exception as exc:
                    logger.error("Health check failed for sensor %s: %s", sensor.device_id, exc)
                    report.failed.append(sensor.id)

                if self.config.scheduler.enable_alerts:
                    try:
                        self.alerts.check_sensor_health(sensor.id, now)
                    except Exception as exc:
                        logger.error("Sensor-health alert check failed for sensor %s: %s", sensor.device_id, exc)

            logger.info("Health check completed for %d sensors", report.attempted)
            return report
        finally:
            self.health_guard.end_cycle()
