"""
Call Analytics Backend Package.

Real-time analytics pipeline for voice-AI calls: consumes call-lifecycle
events, derives conversation signals from transcripts, accumulates per-template
and per-assistant aggregates, and publishes operational alerts.

Subpackages:
    - api: FastAPI route handlers (event push, provider webhooks, read path)
    - core: Configuration, database, and dependencies
    - models: Pydantic schemas, enums and delta operations
    - services: Analyzer, router, aggregation, alerts and ingestion pipeline
    - jobs: Scheduled housekeeping
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
