"""
SqlStore — the storage collaborator used by every pipeline component.

Each method opens its own session and commits independently; nothing here
spans a transaction across several writes. Rows are copied into value
objects (pipeline.models) before the session closes.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pipeline.models import (
    AQIResult,
    AlertRecord,
    AlertType,
    ForecastPoint,
    POLLUTANTS,
    Reading,
    Sensor,
    SensorHealth,
    SensorStatus,
    Severity,
    as_utc,
)
from pipeline.storage import db_models
from pipeline.storage.database import StorageError

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_sensor(row: db_models.Sensor) -> Sensor:
    return Sensor(
        id=row.id,
        device_id=row.device_id,
        latitude=row.latitude,
        longitude=row.longitude,
        is_active=row.is_active,
        name=row.name,
    )


def _to_reading(row: db_models.SensorReading) -> Reading:
    return Reading(
        id=row.id,
        sensor_id=row.sensor_id,
        timestamp=as_utc(row.timestamp),
        pm25=row.pm25,
        pm10=row.pm10,
        no2=row.no2,
        co=row.co,
        o3=row.o3,
        so2=row.so2,
        temperature=row.temperature,
        humidity=row.humidity,
        pressure=row.pressure,
        wind_speed=row.wind_speed,
        wind_direction=row.wind_direction,
        source=row.source,
        is_estimated=row.is_estimated,
        provider_aqi=row.provider_aqi,
        dominant_code=row.dominant_code,
        source_timestamp=as_utc(row.source_timestamp),
    )


def _to_alert(row: db_models.Alert) -> AlertRecord:
    return AlertRecord(
        id=row.id,
        sensor_id=row.sensor_id,
        alert_type=AlertType(row.alert_type),
        severity=Severity(row.severity),
        message=row.message,
        is_active=row.is_active,
        created_at=as_utc(row.created_at),
        resolved_at=as_utc(row.resolved_at),
        aqi_level=row.aqi_level,
        pollutant=row.pollutant,
    )


def _to_health(row: db_models.SensorHealthRow) -> SensorHealth:
    return SensorHealth(
        sensor_id=row.sensor_id,
        status=SensorStatus(row.status),
        error_count=row.error_count,
        last_reading_at=as_utc(row.last_reading_at),
        updated_at=as_utc(row.updated_at),
    )


class SqlStore:
    """Storage operations keyed by sensor id and time window."""

    def __init__(self, engine: Engine):
        self._engine = engine

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        db = Session(self._engine, expire_on_commit=False)
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Storage operation '%s' failed: %s", operation, e)
            raise StorageError(f"{operation} failed: {e}") from e
        finally:
            db.close()

    def create_schema(self) -> None:
        """Create missing tables (local/dev databases and tests)."""
        db_models.Base.metadata.create_all(self._engine)

    # ── Sensor directory ────────────────────────────────────────────────────

    def add_sensor(
        self,
        device_id: str,
        latitude: float,
        longitude: float,
        name: Optional[str] = None,
        is_active: bool = True,
    ) -> Sensor:
        with self._session("add_sensor") as db:
            row = db_models.Sensor(
                device_id=device_id,
                name=name,
                latitude=latitude,
                longitude=longitude,
                is_active=is_active,
            )
            db.add(row)
            db.commit()
            return _to_sensor(row)

    def list_sensors(self, active_only: bool = True) -> List[Sensor]:
        with self._session("list_sensors") as db:
            stmt = select(db_models.Sensor).order_by(db_models.Sensor.id)
            if active_only:
                stmt = stmt.where(db_models.Sensor.is_active.is_(True))
            return [_to_sensor(r) for r in db.scalars(stmt)]

    # ── Readings ─────────────────────────────────────────────────────────────

    def insert_reading(self, reading: Reading) -> int:
        """Append a reading; returns its id."""
        with self._session("insert_reading") as db:
            row = db_models.SensorReading(
                sensor_id=reading.sensor_id,
                timestamp=reading.timestamp or _now(),
                pm25=reading.pm25,
                pm10=reading.pm10,
                no2=reading.no2,
                co=reading.co,
                o3=reading.o3,
                so2=reading.so2,
                temperature=reading.temperature,
                humidity=reading.humidity,
                pressure=reading.pressure,
                wind_speed=reading.wind_speed,
                wind_direction=reading.wind_direction,
                provider_aqi=reading.provider_aqi,
                dominant_code=reading.dominant_code,
                is_estimated=reading.is_estimated,
                source=reading.source,
                source_timestamp=reading.source_timestamp,
            )
            db.add(row)
            db.commit()
            return row.id

    def latest_reading_time(self, sensor_id: int) -> Optional[datetime]:
        with self._session("latest_reading_time") as db:
            ts = db.scalar(
                select(func.max(db_models.SensorReading.timestamp))
                .where(db_models.SensorReading.sensor_id == sensor_id)
            )
            return as_utc(ts)

    def reading_history(self, sensor_id: int, since: datetime, limit: int = 48) -> List[Reading]:
        """Most recent readings after `since`, returned oldest first."""
        with self._session("reading_history") as db:
            rows = db.scalars(
                select(db_models.SensorReading)
                .where(
                    db_models.SensorReading.sensor_id == sensor_id,
                    db_models.SensorReading.timestamp > since,
                )
                .order_by(db_models.SensorReading.timestamp.desc())
                .limit(limit)
            ).all()
            return [_to_reading(r) for r in reversed(rows)]

    def readings_without_aqi(self, sensor_id: Optional[int] = None, limit: int = 500) -> List[Reading]:
        """
        Readings that never received an AQI record (e.g. after a crash mid-cycle).

        A record written without reading_id still counts for the reading of the
        same sensor and timestamp, so recomputing never duplicates it.
        """
        with self._session("readings_without_aqi") as db:
            stmt = (
                select(db_models.SensorReading)
                .outerjoin(
                    db_models.AQIRecord,
                    or_(
                        db_models.AQIRecord.reading_id == db_models.SensorReading.id,
                        and_(
                            db_models.AQIRecord.reading_id.is_(None),
                            db_models.AQIRecord.sensor_id == db_models.SensorReading.sensor_id,
                            db_models.AQIRecord.timestamp == db_models.SensorReading.timestamp,
                        ),
                    ),
                )
                .where(db_models.AQIRecord.id.is_(None))
                .order_by(db_models.SensorReading.timestamp)
                .limit(limit)
            )
            if sensor_id is not None:
                stmt = stmt.where(db_models.SensorReading.sensor_id == sensor_id)
            return [_to_reading(r) for r in db.scalars(stmt)]

    # ── AQI records ──────────────────────────────────────────────────────────

    def insert_aqi_record(
        self,
        sensor_id: int,
        result: AQIResult,
        reading_id: Optional[int] = None,
        timestamp: Optional[datetime] = None,
    ) -> int:
        """Callers scoring a stored reading pass its reading_id."""
        with self._session("insert_aqi_record") as db:
            row = db_models.AQIRecord(
                sensor_id=sensor_id,
                reading_id=reading_id,
                aqi_overall=result.overall,
                dominant_pollutant=result.dominant_pollutant,
                category=result.category,
                timestamp=timestamp or _now(),
                **{f"{p}_aqi": result.sub_aqi(p) for p in POLLUTANTS},
            )
            db.add(row)
            db.commit()
            return row.id

    def recent_aqi_values(self, sensor_id: int, since: datetime, limit: int = 2) -> List[int]:
        """Overall AQI values after `since`, newest first."""
        with self._session("recent_aqi_values") as db:
            return list(db.scalars(
                select(db_models.AQIRecord.aqi_overall)
                .where(
                    db_models.AQIRecord.sensor_id == sensor_id,
                    db_models.AQIRecord.timestamp > since,
                )
                .order_by(db_models.AQIRecord.timestamp.desc(), db_models.AQIRecord.id.desc())
                .limit(limit)
            ))

    def aqi_history(self, sensor_id: int, since: datetime, limit: int = 48) -> List[int]:
        """Most recent overall AQI values after `since`, returned oldest first."""
        values = self.recent_aqi_values(sensor_id, since, limit)
        values.reverse()
        return values

    # ── Forecasts ────────────────────────────────────────────────────────────

    def insert_forecasts(
        self,
        sensor_id: int,
        points: List[ForecastPoint],
        model_version: str,
        generated_at: datetime,
    ) -> int:
        """Persist one forecast batch sharing a single generation timestamp."""
        with self._session("insert_forecasts") as db:
            db.add_all([
                db_models.Forecast(
                    sensor_id=sensor_id,
                    forecast_hour=p.hour,
                    predicted_aqi=p.predicted_aqi,
                    confidence=p.confidence,
                    model_version=model_version,
                    created_at=generated_at,
                    valid_at=p.valid_at,
                )
                for p in points
            ])
            db.commit()
            return len(points)

    def latest_forecasts(self, sensor_id: int, now: Optional[datetime] = None) -> List[ForecastPoint]:
        """The newest forecast batch for a sensor, future hours only."""
        now = now or _now()
        with self._session("latest_forecasts") as db:
            latest = db.scalar(
                select(func.max(db_models.Forecast.created_at))
                .where(db_models.Forecast.sensor_id == sensor_id)
            )
            if latest is None:
                return []
            rows = db.scalars(
                select(db_models.Forecast)
                .where(
                    db_models.Forecast.sensor_id == sensor_id,
                    db_models.Forecast.created_at == latest,
                    db_models.Forecast.valid_at > now,
                )
                .order_by(db_models.Forecast.forecast_hour)
            )
            return [
                ForecastPoint(
                    hour=r.forecast_hour,
                    predicted_aqi=r.predicted_aqi,
                    confidence=r.confidence,
                    valid_at=as_utc(r.valid_at),
                )
                for r in rows
            ]

    def purge_forecasts(self, older_than: datetime) -> int:
        with self._session("purge_forecasts") as db:
            deleted = (
                db.query(db_models.Forecast)
                .filter(db_models.Forecast.created_at < older_than)
                .delete(synchronize_session=False)
            )
            db.commit()
            return deleted

    # ── Alerts ───────────────────────────────────────────────────────────────

    def create_alert(
        self,
        sensor_id: int,
        alert_type: AlertType,
        severity: Severity,
        message: str,
        aqi_level: Optional[int] = None,
        pollutant: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AlertRecord:
        with self._session("create_alert") as db:
            row = db_models.Alert(
                sensor_id=sensor_id,
                alert_type=alert_type,
                severity=severity,
                message=message,
                aqi_level=aqi_level,
                pollutant=pollutant,
                is_active=True,
                created_at=now or _now(),
            )
            db.add(row)
            db.commit()
            return _to_alert(row)

    def active_alerts(
        self,
        sensor_id: Optional[int] = None,
        alert_type: Optional[AlertType] = None,
    ) -> List[AlertRecord]:
        with self._session("active_alerts") as db:
            stmt = (
                select(db_models.Alert)
                .where(db_models.Alert.is_active.is_(True))
                .order_by(db_models.Alert.created_at.desc())
                .limit(100)
            )
            if sensor_id is not None:
                stmt = stmt.where(db_models.Alert.sensor_id == sensor_id)
            if alert_type is not None:
                stmt = stmt.where(db_models.Alert.alert_type == alert_type)
            return [_to_alert(r) for r in db.scalars(stmt)]

    def alert_history(self, sensor_id: Optional[int] = None, since: Optional[datetime] = None) -> List[AlertRecord]:
        with self._session("alert_history") as db:
            stmt = select(db_models.Alert).order_by(db_models.Alert.created_at.desc())
            if sensor_id is not None:
                stmt = stmt.where(db_models.Alert.sensor_id == sensor_id)
            if since is not None:
                stmt = stmt.where(db_models.Alert.created_at > since)
            return [_to_alert(r) for r in db.scalars(stmt)]

    def resolve_alert(self, alert_id: int, now: Optional[datetime] = None) -> Optional[AlertRecord]:
        """
        Flip an active alert to resolved. Already-resolved alerts are left
        untouched (returns None). Alerts are never reopened or re-resolved.
        """
        with self._session("resolve_alert") as db:
            row = db.get(db_models.Alert, alert_id)
            if row is None or not row.is_active:
                return None
            row.is_active = False
            row.resolved_at = now or _now()
            db.commit()
            return _to_alert(row)

    # ── Sensor health ────────────────────────────────────────────────────────

    def get_sensor_health(self, sensor_id: int) -> Optional[SensorHealth]:
        with self._session("get_sensor_health") as db:
            row = db.scalar(
                select(db_models.SensorHealthRow)
                .where(db_models.SensorHealthRow.sensor_id == sensor_id)
            )
            return _to_health(row) if row else None

    def upsert_sensor_health(
        self,
        sensor_id: int,
        status: SensorStatus,
        error_count: int,
        last_reading_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> SensorHealth:
        with self._session("upsert_sensor_health") as db:
            row = db.scalar(
                select(db_models.SensorHealthRow)
                .where(db_models.SensorHealthRow.sensor_id == sensor_id)
            )
            if row is None:
                row = db_models.SensorHealthRow(sensor_id=sensor_id)
                db.add(row)
            row.status = status
            row.error_count = error_count
            row.last_reading_at = last_reading_at
            row.updated_at = now or _now()
            db.commit()
            return _to_health(row)

    def health_summary(self) -> Dict[str, int]:
        summary = {s.value: 0 for s in SensorStatus}
        with self._session("health_summary") as db:
            rows = db.execute(
                select(db_models.SensorHealthRow.status, func.count())
                .group_by(db_models.SensorHealthRow.status)
            ).all()
        for status, count in rows:
            summary[SensorStatus(status).value] = int(count)
        return summary
