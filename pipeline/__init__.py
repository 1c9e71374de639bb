"""
AirWatch — Air Quality Data Pipeline Package.

Components:
    - ingestion: IQAir nearest-city connector and synthetic reading source
    - aqi: EPA breakpoint AQI engine
    - forecast: smoothing + damped-trend 168h forecaster
    - alerts: threshold, spike and sensor-health alert evaluator
    - health: sensor staleness monitor
    - scheduler: cycle guard, rotation cursor and ingestion orchestrator
    - storage: SQLAlchemy models and store
"""
