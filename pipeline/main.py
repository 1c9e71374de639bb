"""
AirWatch — Pipeline Main Entry Point

One APScheduler BackgroundScheduler drives three periodic jobs:
  ingestion  — every effective ingestion interval:
                 fetch readings (synthetic or IQAir), persist, compute AQI,
                 persist AQI records, run threshold and spike alert checks
  forecast   — every effective forecast interval (>= 1h):
                 purge expired forecasts, regenerate 168h forecasts per sensor
  health     — every effective health interval:
                 classify each sensor active/stale/offline/error and raise
                 sensor-health alerts for silent or stale sensors

Each job runs with max_instances=1 and coalesce=True, and each cycle is
additionally guarded in-process so an overrunning cycle is skipped rather
than overlapped. The main thread only waits for SIGINT/SIGTERM.
"""

import logging
import signal
import sys
import time
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.background import BackgroundScheduler

from pipeline.config import load_config
from pipeline.ingestion.sources import build_data_source
from pipeline.scheduler.ingestion import IngestionScheduler
from pipeline.storage.database import StorageUnavailableError, check_connection, make_engine
from pipeline.storage.store import SqlStore

logger = logging.getLogger("pipeline.main")

# ── Graceful shutdown flag ─────────────────────────────────────────────────────
_running = True


def _shutdown(sig, frame):
    global _running
    logger.info("Shutdown signal (%s) — stopping scheduler.", sig)
    _running = False


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [PIPELINE] %(levelname)s %(name)s — %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stdout,
    )


def build_scheduler(runner: IngestionScheduler, config) -> BackgroundScheduler:
    """Register the enabled jobs on a BackgroundScheduler (not started)."""
    sched_cfg = config.scheduler
    now = datetime.now(timezone.utc)
    scheduler = BackgroundScheduler()

    scheduler.add_job(
        func=runner.run_ingestion_cycle,
        trigger="interval",
        seconds=sched_cfg.effective_ingestion_interval,
        next_run_time=now + timedelta(seconds=sched_cfg.initial_ingestion_delay),
        id="ingestion",
        name="Sensor ingestion",
        max_instances=1,
        coalesce=True,
    )

    if sched_cfg.enable_forecasting:
        scheduler.add_job(
            func=runner.run_forecast_cycle,
            trigger="interval",
            seconds=sched_cfg.effective_forecast_interval,
            next_run_time=now + timedelta(seconds=sched_cfg.initial_forecast_delay),
            id="forecast",
            name="Forecast generation",
            max_instances=1,
            coalesce=True,
        )

    if sched_cfg.enable_health_monitoring:
        scheduler.add_job(
            func=runner.run_health_cycle,
            trigger="interval",
            seconds=sched_cfg.effective_health_interval,
            id="health",
            name="Sensor health",
            max_instances=1,
            coalesce=True,
        )

    return scheduler


def main() -> None:
    config = load_config()
    _configure_logging(config.log_level)
    logger.info("Configuration version %s, data source '%s'", config.version, config.scheduler.data_source)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    engine = make_engine(config.database_url)
    try:
        check_connection(engine)
    except StorageUnavailableError as exc:
        logger.error("Database unavailable at startup: %s", exc)
        sys.exit(1)

    store = SqlStore(engine)
    store.create_schema()

    source = build_data_source(config)
    runner = IngestionScheduler(store, source, config)

    sched_cfg = config.scheduler
    if sched_cfg.uses_provider and sched_cfg.ingestion_interval_seconds < sched_cfg.effective_ingestion_interval:
        logger.warning(
            "Ingestion interval %ds is below the provider floor — using %ds",
            sched_cfg.ingestion_interval_seconds, sched_cfg.effective_ingestion_interval,
        )

    scheduler = build_scheduler(runner, config)
    scheduler.start()
    batch = str(sched_cfg.effective_max_per_cycle) if source.rotates else "all"
    logger.info(
        "Scheduler started — ingestion every %ds, %s sensor(s) per cycle",
        sched_cfg.effective_ingestion_interval, batch,
    )

    logger.info("AirWatch pipeline running. Press Ctrl+C or send SIGTERM to stop.")
    try:
        while _running:
            time.sleep(1)
    finally:
        logger.info("Stopping scheduler…")
        scheduler.shutdown(wait=False)
        engine.dispose()
        logger.info("Pipeline stopped cleanly.")


if __name__ == "__main__":
    main()
