"""
AQI Forecast Generator.

Projects hourly AQI for the next 7 days from a short AQI history using
exponential smoothing plus a damped linear trend. The core function is
pure; loading history and persisting batches are separate helpers that
take the store explicitly.
"""

import logging
import math
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from numbers import Number
from typing import List, Optional, Sequence

from pipeline.aqi.engine import compute_aqi
from pipeline.config import ForecastConfig
from pipeline.models import AQIResult, ForecastPoint

logger = logging.getLogger(__name__)


def _as_aqi_value(point) -> float:
    """
    Normalise one history point to an overall AQI number.

    Numbers are taken as AQI, AQIResults by their overall value, and
    anything else (Reading, dict of concentrations) goes through the engine.
    """
    if isinstance(point, bool):
        raise TypeError("bool is not a valid AQI history point")
    if isinstance(point, Number):
        return float(point)
    if isinstance(point, AQIResult):
        return float(point.overall)
    if isinstance(point, Mapping) and "aqi_overall" in point:
        return float(point["aqi_overall"])
    return float(compute_aqi(point).overall)


def exponential_smoothing(values: Sequence[float], alpha: float = 0.3) -> List[float]:
    """s[0] = v[0]; s[i] = alpha * v[i] + (1 - alpha) * s[i-1]"""
    if not values:
        return []
    smoothed = [float(values[0])]
    for v in values[1:]:
        smoothed.append(alpha * v + (1 - alpha) * smoothed[-1])
    return smoothed


def linear_trend(values: Sequence[float], window: int = 12) -> float:
    """Least-squares slope of value against index over the last `window` points."""
    if len(values) < 2:
        return 0.0
    recent = list(values[-window:])
    n = len(recent)
    sum_x = sum(range(n))
    sum_y = sum(recent)
    sum_xy = sum(i * y for i, y in enumerate(recent))
    sum_x2 = sum(i * i for i in range(n))
    denominator = n * sum_x2 - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def base_confidence(values: Sequence[float], config: ForecastConfig = ForecastConfig()) -> float:
    """
    Inverse coefficient of variation, clamped to [0.1, 0.95].

    Uses the population standard deviation; a zero mean is treated as 1.
    """
    if len(values) < 2:
        return 0.5
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    cv = math.sqrt(variance) / (mean or 1)
    return max(config.confidence_floor, min(config.confidence_ceiling, 1 - cv / 2))


def dampening_factor(hour: int, config: ForecastConfig = ForecastConfig()) -> float:
    """
    Trend multiplier for a forecast horizon hour.

      h <= 24:        max(0.5, 1 - h * 0.02)
      25 <= h <= 72:  max(0.3, 0.8 - (h - 24) * 0.01)
      h > 72:         max(0.1, 0.5 - (h - 72) * 0.005)
    """
    if hour <= config.short_range_end:
        return max(0.5, 1 - hour * 0.02)
    if hour <= config.mid_range_end:
        return max(0.3, 0.8 - (hour - config.short_range_end) * 0.01)
    return max(0.1, 0.5 - (hour - config.mid_range_end) * 0.005)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def generate_forecast(
    history: Sequence,
    config: ForecastConfig = ForecastConfig(),
    now: Optional[datetime] = None,
) -> List[ForecastPoint]:
    """
    Generate an hourly forecast from a time-ordered history (oldest first).

    Args:
        history: AQI values, AQIResults, or raw-concentration readings.
        config: Forecast constants.
        now: Anchor for valid_at (defaults to current UTC time).

    Returns:
        `config.horizon_hours` ForecastPoints, or an empty list when the
        history has fewer than `config.min_history_points` entries.
    """
    if len(history) < config.min_history_points:
        logger.debug("Insufficient history for forecast: %d points", len(history))
        return []

    values = [_as_aqi_value(p) for p in history]
    smoothed = exponential_smoothing(values, config.alpha)
    trend = linear_trend(values, config.trend_window)
    confidence = base_confidence(values, config)
    last_smoothed = smoothed[-1]
    anchor = now or datetime.now(timezone.utc)

    points: List[ForecastPoint] = []
    for hour in range(1, config.horizon_hours + 1):
        predicted = _round_half_up(last_smoothed + trend * hour * dampening_factor(hour, config))
        horizon_confidence = max(
            config.horizon_confidence_floor,
            confidence - hour * config.horizon_confidence_decay,
        )
        points.append(ForecastPoint(
            hour=hour,
            predicted_aqi=max(0, predicted),
            confidence=round(horizon_confidence, 2),
            valid_at=anchor + timedelta(hours=hour),
        ))

    logger.debug(
        "Forecast generated: last_smoothed=%.1f trend=%.3f confidence=%.2f",
        last_smoothed, trend, confidence,
    )
    return points


def load_history(store, sensor_id: int, config: ForecastConfig = ForecastConfig(),
                 now: Optional[datetime] = None) -> List:
    """
    AQI history for the last `history_hours`.

    Falls back to raw readings (converted by the engine later) when fewer
    than the minimum number of AQI records exist.
    """
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(hours=config.history_hours)
    history = store.aqi_history(sensor_id, since, config.history_limit)
    if len(history) >= config.min_history_points:
        return history
    readings = store.reading_history(sensor_id, since, config.history_limit)
    if len(readings) > len(history):
        logger.info(
            "Sensor %s: %d AQI records, using %d raw readings for forecast",
            sensor_id, len(history), len(readings),
        )
        return readings
    return history


def generate_forecast_for_sensor(
    store,
    sensor_id: int,
    config: ForecastConfig = ForecastConfig(),
    now: Optional[datetime] = None,
) -> List[ForecastPoint]:
    """Load history for one sensor and forecast from it. Does not persist."""
    now = now or datetime.now(timezone.utc)
    history = load_history(store, sensor_id, config, now)
    return generate_forecast(history, config, now)


def store_forecast_batch(
    store,
    sensor_id: int,
    points: List[ForecastPoint],
    config: ForecastConfig = ForecastConfig(),
    generated_at: Optional[datetime] = None,
) -> int:
    """Persist a batch under one generation timestamp; returns rows written."""
    if not points:
        return 0
    generated_at = generated_at or datetime.now(timezone.utc)
    return store.insert_forecasts(sensor_id, points, config.model_version, generated_at)


def purge_expired_forecasts(store, config: ForecastConfig = ForecastConfig(),
                            now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    deleted = store.purge_forecasts(now - timedelta(days=config.retention_days))
    if deleted:
        logger.info("Purged %d forecasts older than %d days", deleted, config.retention_days)
    return deleted
