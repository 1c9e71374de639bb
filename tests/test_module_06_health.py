"""
Tests for Module 06 — Sensor Health Monitor.
"""
from datetime import timedelta
from unittest.mock import MagicMock

from pipeline.health.monitor import check_sensor_health, classify_staleness, health_summary
from pipeline.models import Reading, SensorStatus
from pipeline.storage.database import StorageError


class TestClassifyStaleness:
    def test_fresh(self):
        assert classify_staleness(3) == SensorStatus.active

    def test_at_threshold_is_active(self):
        assert classify_staleness(15) == SensorStatus.active

    def test_stale(self):
        assert classify_staleness(16) == SensorStatus.stale
        assert classify_staleness(30) == SensorStatus.stale

    def test_offline(self):
        assert classify_staleness(31) == SensorStatus.offline

    def test_custom_threshold(self):
        assert classify_staleness(8, stale_minutes=5) == SensorStatus.stale


class TestCheckSensorHealth:
    def test_active_sensor(self, store, sensor, now):
        last = now - timedelta(minutes=4)
        store.insert_reading(Reading(sensor_id=sensor.id, timestamp=last))
        health = check_sensor_health(store, sensor.id, now=now)
        assert health.status == SensorStatus.active
        assert health.error_count == 0
        assert health.last_reading_at == last

    def test_stale_then_offline(self, store, sensor, now):
        store.insert_reading(Reading(sensor_id=sensor.id, timestamp=now - timedelta(minutes=20)))
        assert check_sensor_health(store, sensor.id, now=now).status == SensorStatus.stale
        later = now + timedelta(minutes=20)
        assert check_sensor_health(store, sensor.id, now=later).status == SensorStatus.offline

    def test_no_readings_counts_errors(self, store, sensor, now):
        first = check_sensor_health(store, sensor.id, now=now)
        second = check_sensor_health(store, sensor.id, now=now + timedelta(minutes=10))
        assert first.status == SensorStatus.offline
        assert first.error_count == 1
        assert second.error_count == 2

    def test_recovery_resets_error_count(self, store, sensor, now):
        check_sensor_health(store, sensor.id, now=now)
        store.insert_reading(Reading(sensor_id=sensor.id, timestamp=now))
        health = check_sensor_health(store, sensor.id, now=now + timedelta(minutes=1))
        assert health.status == SensorStatus.active
        assert health.error_count == 0

    def test_one_row_per_sensor(self, store, sensor, now):
        for minutes in range(0, 50, 10):
            check_sensor_health(store, sensor.id, now=now + timedelta(minutes=minutes))
        assert sum(health_summary(store).values()) == 1

    def test_lookup_failure_records_error(self, now):
        store = MagicMock()
        store.latest_reading_time.side_effect = StorageError("latest_reading_time failed")
        store.get_sensor_health.return_value = None
        check_sensor_health(store, 9, now=now)
        store.upsert_sensor_health.assert_called_once_with(9, SensorStatus.error, 1, now=now)

    def test_unwritable_error_returns_none(self, now):
        store = MagicMock()
        store.latest_reading_time.side_effect = StorageError("down")
        store.get_sensor_health.side_effect = StorageError("down")
        store.upsert_sensor_health.side_effect = StorageError("down")
        assert check_sensor_health(store, 9, now=now) is None


class TestHealthSummary:
    def test_counts_every_status(self, store, sensors, now):
        store.insert_reading(Reading(sensor_id=sensors[0].id, timestamp=now))
        store.insert_reading(Reading(sensor_id=sensors[1].id, timestamp=now - timedelta(minutes=20)))
        for s in sensors:
            check_sensor_health(store, s.id, now=now)
        assert health_summary(store) == {"active": 1, "stale": 1, "offline": 3, "error": 0}
