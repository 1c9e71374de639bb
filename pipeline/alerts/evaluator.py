"""
Alert Evaluator.

Raises and auto-resolves alerts for one sensor against its current AQI:
  THRESHOLD:      AQI >= critical (critical) or >= high (high); at most one
                  active threshold alert per sensor
  SPIKE:          > spike% rise between the two latest AQI records in the
                  short window (high)
  SENSOR_HEALTH:  no reading ever (critical) or latest reading older than
                  stale minutes (medium, critical beyond twice that)
  AUTO-RESOLVE:   active threshold alerts resolve once AQI < high - 20

Lifecycle per alert is none → active → resolved. A resolved alert is never
reopened; a fresh crossing always inserts a new row.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pipeline.config import AlertConfig
from pipeline.models import AlertRecord, AlertType, Severity

logger = logging.getLogger(__name__)


@dataclass
class AlertCheckSummary:
    """What one run_alert_checks call changed for a sensor."""
    sensor_id: int
    current_aqi: int
    created: List[AlertRecord] = field(default_factory=list)
    resolved: List[AlertRecord] = field(default_factory=list)

    def created_of(self, alert_type: AlertType) -> List[AlertRecord]:
        return [a for a in self.created if a.alert_type == alert_type]


class AlertEvaluator:
    """Rule engine over the persisted alert ledger."""

    def __init__(self, store, config: AlertConfig = AlertConfig()):
        self.store = store
        self.config = config

    def check_threshold(self, sensor_id: int, current_aqi: int,
                        now: Optional[datetime] = None) -> Optional[AlertRecord]:
        """Open a threshold alert unless one is already active for the sensor."""
        if current_aqi >= self.config.critical_threshold:
            severity = Severity.critical
            message = f"CRITICAL: AQI has reached {current_aqi} - Air quality is hazardous"
        elif current_aqi >= self.config.high_threshold:
            severity = Severity.high
            message = f"WARNING: AQI has reached {current_aqi} - Air quality is unhealthy"
        else:
            return None

        existing = self.store.active_alerts(sensor_id, AlertType.threshold)
        if existing:
            logger.debug(
                "Threshold alert already active for sensor=%s (id=%s) — suppressing",
                sensor_id, existing[0].id,
            )
            return None

        alert = self.store.create_alert(
            sensor_id, AlertType.threshold, severity, message,
            aqi_level=current_aqi, now=now,
        )
        logger.warning(
            "THRESHOLD alert sensor=%s severity=%s aqi=%d",
            sensor_id, severity.value, current_aqi,
        )
        return alert

    def check_spike(self, sensor_id: int, current_aqi: int,
                    now: Optional[datetime] = None) -> Optional[AlertRecord]:
        """
        Compare the current AQI against the previous record in the spike
        window. Needs two records in the window; a previous AQI of 0 is
        skipped rather than divided by.
        """
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(minutes=self.config.spike_window_minutes)
        recent = self.store.recent_aqi_values(sensor_id, since, limit=2)
        if len(recent) < 2:
            return None

        previous = recent[1]
        if previous <= 0:
            logger.debug("Spike check skipped for sensor=%s: previous AQI is %s", sensor_id, previous)
            return None

        change = (current_aqi - previous) / previous * 100.0
        if change <= self.config.spike_threshold_percent:
            return None

        message = (
            f"POLLUTION SPIKE: AQI increased by {change:.1f}% "
            f"(from {previous} to {current_aqi})"
        )
        alert = self.store.create_alert(
            sensor_id, AlertType.spike, Severity.high, message,
            aqi_level=current_aqi, now=now,
        )
        logger.warning("SPIKE alert sensor=%s change=%.1f%%", sensor_id, change)
        return alert

    def check_sensor_health(self, sensor_id: int,
                            now: Optional[datetime] = None) -> Optional[AlertRecord]:
        """Alert when the sensor has never reported or its data is stale."""
        now = now or datetime.now(timezone.utc)
        last_reading = self.store.latest_reading_time(sensor_id)

        if last_reading is None:
            alert = self.store.create_alert(
                sensor_id, AlertType.sensor_health, Severity.critical,
                "No readings received from sensor", now=now,
            )
            logger.warning("SENSOR_HEALTH alert sensor=%s: no readings", sensor_id)
            return alert

        minutes = (now - last_reading).total_seconds() / 60.0
        if minutes <= self.config.stale_minutes:
            return None

        severity = Severity.critical if minutes > self.config.stale_minutes * 2 else Severity.medium
        alert = self.store.create_alert(
            sensor_id, AlertType.sensor_health, severity,
            f"Sensor offline: No reading for {round(minutes)} minutes", now=now,
        )
        logger.warning(
            "SENSOR_HEALTH alert sensor=%s severity=%s stale=%.0fmin",
            sensor_id, severity.value, minutes,
        )
        return alert

    def auto_resolve_threshold_alerts(self, sensor_id: int, current_aqi: int,
                                      now: Optional[datetime] = None) -> List[AlertRecord]:
        """Resolve active threshold alerts once AQI is below the hysteresis band."""
        if current_aqi >= self.config.resolve_below:
            return []

        resolved = []
        for alert in self.store.active_alerts(sensor_id, AlertType.threshold):
            updated = self.store.resolve_alert(alert.id, now=now)
            if updated is not None:
                resolved.append(updated)
                logger.info(
                    "Resolved threshold alert id=%s sensor=%s (aqi=%d < %d)",
                    alert.id, sensor_id, current_aqi, self.config.resolve_below,
                )
        return resolved

    def run_alert_checks(self, sensor_id: int, current_aqi: int,
                         now: Optional[datetime] = None,
                         include_health: bool = True) -> AlertCheckSummary:
        """
        Run every check for one sensor.

        The checks are independent; each reads the ledger before writing so
        the one-active-threshold-alert rule holds across repeated calls.
        The scheduler passes include_health=False right after persisting a
        reading; staleness is checked by its health cycle instead.
        """
        now = now or datetime.now(timezone.utc)
        summary = AlertCheckSummary(sensor_id=sensor_id, current_aqi=current_aqi)

        summary.resolved.extend(self.auto_resolve_threshold_alerts(sensor_id, current_aqi, now))
        for check in (self.check_threshold, self.check_spike):
            alert = check(sensor_id, current_aqi, now)
            if alert is not None:
                summary.created.append(alert)
        if include_health:
            alert = self.check_sensor_health(sensor_id, now)
            if alert is not None:
                summary.created.append(alert)

        return summary


def run_alert_checks(store, sensor_id: int, current_aqi: int,
                     config: AlertConfig = AlertConfig(),
                     now: Optional[datetime] = None) -> AlertCheckSummary:
    """Convenience wrapper for callers that do not hold an evaluator."""
    return AlertEvaluator(store, config).run_alert_checks(sensor_id, current_aqi, now)
