"""
SQLAlchemy ORM models for the AirWatch pipeline.
Tables: sensors, sensor_readings, aqi_records, forecasts, alerts, sensor_health
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from pipeline.models import AlertType, SensorStatus, Severity

Base = declarative_base()


class Sensor(Base):
    __tablename__ = "sensors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String(64), nullable=False, unique=True)
    name = Column(String(200), nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    readings = relationship("SensorReading", back_populates="sensor")
    alerts = relationship("Alert", back_populates="sensor")

    __table_args__ = (
        Index("ix_sensors_active", "is_active"),
    )


class SensorReading(Base):
    __tablename__ = "sensor_readings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sensor_id = Column(Integer, ForeignKey("sensors.id", ondelete="CASCADE"), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    pm25 = Column(Float, nullable=True)
    pm10 = Column(Float, nullable=True)
    no2 = Column(Float, nullable=True)
    co = Column(Float, nullable=True)
    o3 = Column(Float, nullable=True)
    so2 = Column(Float, nullable=True)
    temperature = Column(Float, nullable=True)
    humidity = Column(Float, nullable=True)
    pressure = Column(Float, nullable=True)
    wind_speed = Column(Float, nullable=True)
    wind_direction = Column(Float, nullable=True)
    provider_aqi = Column(Integer, nullable=True)
    dominant_code = Column(String(8), nullable=True)
    is_estimated = Column(Boolean, default=False, nullable=False)
    source = Column(String(20), nullable=False, default="synthetic")
    source_timestamp = Column(DateTime(timezone=True), nullable=True)

    sensor = relationship("Sensor", back_populates="readings")

    __table_args__ = (
        Index("ix_sensor_readings_sensor_timestamp", "sensor_id", "timestamp"),
    )


class AQIRecord(Base):
    __tablename__ = "aqi_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sensor_id = Column(Integer, ForeignKey("sensors.id", ondelete="CASCADE"), nullable=False)
    reading_id = Column(Integer, ForeignKey("sensor_readings.id", ondelete="SET NULL"), nullable=True)
    aqi_overall = Column(Integer, nullable=False)
    pm25_aqi = Column(Integer, nullable=True)
    pm10_aqi = Column(Integer, nullable=True)
    no2_aqi = Column(Integer, nullable=True)
    co_aqi = Column(Integer, nullable=True)
    o3_aqi = Column(Integer, nullable=True)
    so2_aqi = Column(Integer, nullable=True)
    dominant_pollutant = Column(String(20), nullable=True)
    category = Column(String(40), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_aqi_records_sensor_timestamp", "sensor_id", "timestamp"),
        Index("ix_aqi_records_reading_id", "reading_id"),
    )


class Forecast(Base):
    __tablename__ = "forecasts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sensor_id = Column(Integer, ForeignKey("sensors.id", ondelete="CASCADE"), nullable=False)
    forecast_hour = Column(Integer, nullable=False)
    predicted_aqi = Column(Integer, nullable=False)
    confidence = Column(Float, nullable=True)
    model_version = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    valid_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_forecasts_sensor_valid", "sensor_id", "valid_at"),
        Index("ix_forecasts_created_at", "created_at"),
    )


class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sensor_id = Column(Integer, ForeignKey("sensors.id", ondelete="CASCADE"), nullable=False)
    alert_type = Column(Enum(AlertType), nullable=False)
    severity = Column(Enum(Severity), nullable=False)
    message = Column(Text, nullable=False)
    aqi_level = Column(Integer, nullable=True)
    pollutant = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    sensor = relationship("Sensor", back_populates="alerts")

    __table_args__ = (
        Index("ix_alerts_sensor_active", "sensor_id", "is_active"),
        Index("ix_alerts_created_at", "created_at"),
    )


class SensorHealthRow(Base):
    __tablename__ = "sensor_health"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sensor_id = Column(Integer, ForeignKey("sensors.id", ondelete="CASCADE"), nullable=False, unique=True)
    status = Column(Enum(SensorStatus), nullable=False)
    error_count = Column(Integer, default=0, nullable=False)
    last_reading_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_sensor_health_status", "status"),
    )
