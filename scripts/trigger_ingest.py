#!/usr/bin/env python3
"""
trigger_ingest.py — run one AirWatch pipeline cycle by hand

Runs a single ingestion cycle against the configured database and data
source, optionally followed by a forecast and a health cycle, and prints a
short summary. Useful after seeding sensors or when debugging the provider.

    python scripts/trigger_ingest.py [--forecast] [--health] [--recompute]
"""

import argparse
import logging
import sys

from pipeline.config import load_config
from pipeline.ingestion.sources import build_data_source
from pipeline.scheduler.ingestion import IngestionScheduler
from pipeline.storage.database import StorageUnavailableError, check_connection, make_engine
from pipeline.storage.store import SqlStore


def _print_report(report):
    if report.skipped:
        print(f"  ⏭  {report.kind}: skipped (cycle already running)")
        return
    mark = "✅" if not report.failed else "⚠ "
    print(f"  {mark}  {report.kind}: {report.succeeded}/{report.attempted} ok"
          + (f", failed sensors {report.failed}" if report.failed else ""))


def main():
    parser = argparse.ArgumentParser(description="Run one AirWatch pipeline cycle")
    parser.add_argument("--forecast", action="store_true", help="also regenerate forecasts")
    parser.add_argument("--health", action="store_true", help="also run sensor health checks")
    parser.add_argument("--recompute", action="store_true", help="fill AQI for readings missing it")
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [TRIGGER] %(levelname)s %(name)s — %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stdout,
    )

    engine = make_engine(config.database_url)
    try:
        check_connection(engine)
    except StorageUnavailableError as e:
        print(f"  ❌  database: {e}")
        sys.exit(1)

    store = SqlStore(engine)
    store.create_schema()
    runner = IngestionScheduler(store, build_data_source(config), config)

    print("\nAirWatch manual trigger")
    _print_report(runner.run_ingestion_cycle())
    if args.recompute:
        print(f"  ✅  recompute: {runner.recompute_missing_aqi()} AQI record(s) filled")
    if args.forecast:
        _print_report(runner.run_forecast_cycle())
    if args.health:
        _print_report(runner.run_health_cycle())
        print(f"  ℹ  health summary: {store.health_summary()}")

    engine.dispose()


if __name__ == "__main__":
    main()
