"""Shared test fixtures and configuration for the AirWatch test suite."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from pipeline.storage.store import SqlStore

# Fixed clock for every time-dependent test
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def db_engine():
    """A fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture()
def store(db_engine):
    """SqlStore with the schema created."""
    s = SqlStore(db_engine)
    s.create_schema()
    return s


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def sensor(store):
    return store.add_sensor("AW-001", 28.6139, 77.2090, name="Connaught Place")


@pytest.fixture()
def sensors(store):
    """Five active sensors plus one inactive sensor."""
    active = [
        store.add_sensor(f"AW-{i:03d}", 28.5 + i * 0.01, 77.2 + i * 0.01)
        for i in range(1, 6)
    ]
    store.add_sensor("AW-099", 28.0, 77.0, is_active=False)
    return active
