"""
Tests for Module 02 — Data Ingestion.
Tests the IQAir connector, the snapshot → reading mapper and the reading sources.
"""

import random
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import httpx
import pytest

from pipeline.aqi.engine import compute_aqi
from pipeline.config import DATA_SOURCE_IQAIR, PipelineConfig, SchedulerConfig
from pipeline.ingestion.iqair_connector import (
    IQAirSnapshot,
    _parse_timestamp,
    _safe_float,
    fetch_nearest_city,
    map_to_reading,
    parse_snapshot,
)
from pipeline.ingestion.sources import LiveDataSource, SyntheticDataSource, build_data_source
from pipeline.models import Sensor

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

SUCCESS_PAYLOAD = {
    "status": "success",
    "data": {
        "city": "New Delhi",
        "state": "Delhi",
        "country": "India",
        "current": {
            "pollution": {"ts": "2024-06-01T11:00:00.000Z", "aqius": 168, "mainus": "p2"},
            "weather": {"ts": "2024-06-01T11:00:00.000Z", "tp": 34, "hu": 40, "pr": 1002, "ws": 3.6, "wd": 270},
        },
    },
}


def _response(payload):
    resp = MagicMock()
    resp.raise_for_status.return_value = None
    resp.json.return_value = payload
    return resp


# ============================================================
# IQAir Connector Tests
# ============================================================

class TestSafeFloat:
    def test_valid_number(self):
        assert _safe_float(42.5) == 42.5

    def test_string_number(self):
        assert _safe_float("42.5") == 42.5

    def test_dash_returns_none(self):
        assert _safe_float("-") is None

    def test_none_returns_none(self):
        assert _safe_float(None) is None

    def test_invalid_string_returns_none(self):
        assert _safe_float("not-a-number") is None


class TestParseTimestamp:
    def test_zulu_timestamp(self):
        ts = _parse_timestamp("2024-06-01T11:00:00.000Z")
        assert ts == datetime(2024, 6, 1, 11, 0, tzinfo=timezone.utc)

    def test_garbage_falls_back_to_now(self):
        ts = _parse_timestamp("yesterday")
        assert ts.tzinfo is not None
        assert abs((datetime.now(timezone.utc) - ts).total_seconds()) < 5


class TestParseSnapshot:
    def test_parses_pollution_and_weather(self):
        snap = parse_snapshot(SUCCESS_PAYLOAD)
        assert snap.city == "New Delhi"
        assert snap.aqi_us == 168
        assert snap.main_pollutant == "p2"
        assert snap.temperature == 34.0
        assert snap.humidity == 40.0
        assert snap.pressure == 1002.0
        assert snap.wind_speed == 3.6
        assert snap.wind_direction == 270.0

    def test_missing_current_block(self):
        assert parse_snapshot({"status": "success", "data": {}}) is None


class TestFetchNearestCity:
    @patch("pipeline.ingestion.iqair_connector.httpx.get")
    def test_success(self, mock_get):
        mock_get.return_value = _response(SUCCESS_PAYLOAD)
        snap = fetch_nearest_city(28.61, 77.21, api_key="test-key")
        assert snap is not None
        assert snap.aqi_us == 168
        _, kwargs = mock_get.call_args
        assert kwargs["params"] == {"lat": 28.61, "lon": 77.21, "key": "test-key"}
        assert mock_get.call_args[0][0].endswith("/nearest_city")

    @patch("pipeline.ingestion.iqair_connector.httpx.get")
    def test_status_not_success(self, mock_get):
        mock_get.return_value = _response({"status": "fail", "data": {"message": "call_limit_reached"}})
        assert fetch_nearest_city(28.61, 77.21, api_key="test-key") is None

    @patch("pipeline.ingestion.iqair_connector.httpx.get")
    def test_timeout_returns_none(self, mock_get):
        mock_get.side_effect = httpx.TimeoutException("timed out")
        assert fetch_nearest_city(28.61, 77.21, api_key="test-key") is None

    @patch("pipeline.ingestion.iqair_connector.httpx.get")
    def test_http_error_returns_none(self, mock_get):
        resp = MagicMock()
        resp.raise_for_status.side_effect = httpx.HTTPStatusError(
            "429 Too Many Requests", request=MagicMock(), response=MagicMock(status_code=429),
        )
        mock_get.return_value = resp
        assert fetch_nearest_city(28.61, 77.21, api_key="test-key") is None

    @patch("pipeline.ingestion.iqair_connector.httpx.get")
    def test_network_error_returns_none(self, mock_get):
        mock_get.side_effect = httpx.ConnectError("connection refused")
        assert fetch_nearest_city(28.61, 77.21, api_key="test-key") is None

    @patch("pipeline.ingestion.iqair_connector.httpx.get")
    def test_malformed_json_returns_none(self, mock_get):
        resp = MagicMock()
        resp.raise_for_status.return_value = None
        resp.json.side_effect = ValueError("Expecting value")
        mock_get.return_value = resp
        assert fetch_nearest_city(28.61, 77.21, api_key="test-key") is None

    @patch("pipeline.ingestion.iqair_connector.httpx.get")
    def test_missing_key_skips_request(self, mock_get, monkeypatch):
        monkeypatch.delenv("IQAIR_API_KEY", raising=False)
        assert fetch_nearest_city(28.61, 77.21) is None
        mock_get.assert_not_called()


class TestMapToReading:
    def _snapshot(self, aqi=100, main="p2"):
        return IQAirSnapshot(
            city="New Delhi",
            timestamp=datetime(2024, 6, 1, 11, 0, tzinfo=timezone.utc),
            aqi_us=aqi,
            main_pollutant=main,
            temperature=30.0,
            humidity=55.0,
        )

    def test_dominant_pollutant_is_estimated(self):
        reading = map_to_reading(7, self._snapshot(), NOW)
        assert reading.pm25 == 35.4
        assert reading.is_estimated is True
        assert reading.pm10 is None
        assert reading.o3 is None

    def test_estimated_concentration_reproduces_aqi(self):
        reading = map_to_reading(7, self._snapshot(aqi=100), NOW)
        assert compute_aqi(reading).overall == 100

    def test_timestamps(self):
        reading = map_to_reading(7, self._snapshot(), NOW)
        assert reading.timestamp == NOW
        assert reading.source_timestamp == datetime(2024, 6, 1, 11, 0, tzinfo=timezone.utc)

    def test_provenance_fields(self):
        reading = map_to_reading(7, self._snapshot(aqi=168, main="p2"), NOW)
        assert reading.sensor_id == 7
        assert reading.source == "iqair"
        assert reading.provider_aqi == 168
        assert reading.dominant_code == "p2"
        assert reading.temperature == 30.0

    @pytest.mark.parametrize("code,attr", [
        ("p1", "pm10"), ("o3", "o3"), ("n2", "no2"), ("s2", "so2"), ("co", "co"),
    ])
    def test_other_dominant_codes(self, code, attr):
        reading = map_to_reading(7, self._snapshot(aqi=80, main=code), NOW)
        assert getattr(reading, attr) is not None
        assert reading.pm25 is None
        assert reading.is_estimated is True
        assert compute_aqi(reading).overall == pytest.approx(80, abs=2)

    def test_unknown_code_leaves_pollutants_empty(self):
        reading = map_to_reading(7, self._snapshot(main="xx"), NOW)
        assert reading.is_estimated is False
        assert all(v is None for v in reading.concentrations().values())

    def test_missing_aqi_leaves_pollutants_empty(self):
        reading = map_to_reading(7, self._snapshot(aqi=None), NOW)
        assert reading.pm25 is None
        assert reading.is_estimated is False


# ============================================================
# Reading Source Tests
# ============================================================

SENSOR = Sensor(id=3, device_id="AW-003", latitude=28.61, longitude=77.21)


class TestSyntheticDataSource:
    def test_values_within_generator_ranges(self):
        source = SyntheticDataSource(rng=random.Random(42))
        for _ in range(50):
            reading = source.fetch(SENSOR, NOW)
            assert 5 <= reading.pm25 <= 125
            assert 10 <= reading.pm10 <= 190
            assert 5 <= reading.no2 <= 85
            assert 0.2 <= reading.co <= 2.2
            assert 5 <= reading.o3 <= 95
            assert 2 <= reading.so2 <= 52
            assert 980 <= reading.pressure <= 1010

    def test_reading_metadata(self):
        reading = SyntheticDataSource(rng=random.Random(1)).fetch(SENSOR, NOW)
        assert reading.sensor_id == 3
        assert reading.timestamp == NOW
        assert reading.source == "synthetic"
        assert reading.is_estimated is False

    def test_does_not_rotate(self):
        assert SyntheticDataSource().rotates is False


class TestLiveDataSource:
    @patch("pipeline.ingestion.iqair_connector.httpx.get")
    def test_fetch_maps_snapshot(self, mock_get):
        mock_get.return_value = _response(SUCCESS_PAYLOAD)
        source = LiveDataSource(api_key="k", request_delay_seconds=15)
        reading = source.fetch(SENSOR, NOW)
        assert reading.sensor_id == 3
        assert reading.pm25 is not None
        assert compute_aqi(reading).overall == pytest.approx(168, abs=1)

    @patch("pipeline.ingestion.iqair_connector.httpx.get")
    def test_fetch_failure_returns_none(self, mock_get):
        mock_get.side_effect = httpx.TimeoutException("timed out")
        source = LiveDataSource(api_key="k", request_delay_seconds=15)
        assert source.fetch(SENSOR, NOW) is None


class TestBuildDataSource:
    def test_default_is_synthetic(self):
        assert isinstance(build_data_source(PipelineConfig()), SyntheticDataSource)

    def test_iqair_source_uses_clamped_delay(self):
        config = PipelineConfig(
            iqair_api_key="k",
            scheduler=SchedulerConfig(data_source=DATA_SOURCE_IQAIR, request_delay_seconds=2),
        )
        source = build_data_source(config)
        assert isinstance(source, LiveDataSource)
        assert source.rotates is True
        assert source.request_delay_seconds == 15
