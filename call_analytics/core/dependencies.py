"""
FastAPI dependency injection module for the call analytics service.

This module provides reusable FastAPI dependencies that build the pipeline
components from the shared asyncpg pool and the cached Settings. Endpoint
handlers receive fully-wired collaborators and never construct them.

Key Dependencies Provided:
- get_settings_dependency: Returns the cached Settings singleton
- get_aggregate_store: PostgreSQL aggregate store on the shared pool
- get_assistant_directory: Assistant directory on the shared pool
- get_alert_evaluator: Alert evaluator with Slack channel and thresholds
- get_ingestion_pipeline: Ingestion pipeline wired from the above
- SettingsDep / StoreDep / DirectoryDep / PipelineDep: Annotated type aliases

Usage Examples:
    @router.post("/events")
    async def ingest_event(payload: Dict[str, Any], pipeline: PipelineDep) -> IngestionResult:
        return await pipeline.process(payload)

Testing:
    Every dependency can be replaced through FastAPI's override mechanism:

    app.dependency_overrides[get_ingestion_pipeline] = lambda: fake_pipeline
"""

from datetime import timedelta
from typing import Annotated, Optional

from fastapi import Depends

from call_analytics.core.config import Settings, get_settings
from call_analytics.core.database import get_db_pool
from call_analytics.services.aggregate_store import AggregateStore, PostgresAggregateStore
from call_analytics.services.alerts import (
    AlertEvaluator,
    AlertThresholds,
    NotificationChannel,
    SlackNotificationChannel,
)
from call_analytics.services.assistant_directory import (
    AssistantDirectory,
    PostgresAssistantDirectory,
)
from call_analytics.services.ingestion import IngestionPipeline


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    This is a thin wrapper around get_settings() to enable FastAPI's
    dependency override mechanism for testing:

        app.dependency_overrides[get_settings_dependency] = lambda: mock_settings
    """
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]


# =============================================================================
# Store and Directory Dependencies
# =============================================================================

async def get_aggregate_store() -> AggregateStore:
    """Aggregate store bound to the shared connection pool."""
    pool = await get_db_pool()
    return PostgresAggregateStore(pool)


async def get_assistant_directory() -> AssistantDirectory:
    pool = await get_db_pool()
    return PostgresAssistantDirectory(pool)


StoreDep = Annotated[AggregateStore, Depends(get_aggregate_store)]
DirectoryDep = Annotated[AssistantDirectory, Depends(get_assistant_directory)]


# =============================================================================
# Pipeline Dependencies
# =============================================================================

def build_alert_evaluator(settings: Settings, store: AggregateStore) -> AlertEvaluator:
    """
    Create the alert evaluator from settings.

    Without SLACK_WEBHOOK_URL alerts are logged and not published.
    """
    channel: Optional[NotificationChannel] = None
    if settings.slack_webhook_url:
        channel = SlackNotificationChannel(settings.slack_webhook_url)

    return AlertEvaluator(
        store,
        channel=channel,
        thresholds=AlertThresholds(
            failure_rate_min_calls=settings.failure_rate_min_calls,
            failure_rate_threshold=settings.failure_rate_threshold,
            low_quality_threshold=settings.low_quality_threshold,
            high_performance_objectives=settings.high_performance_objectives,
        ),
        subject_prefix=settings.alert_subject_prefix,
    )


def get_alert_evaluator(settings: SettingsDep, store: StoreDep) -> AlertEvaluator:
    return build_alert_evaluator(settings, store)


AlertEvaluatorDep = Annotated[AlertEvaluator, Depends(get_alert_evaluator)]


def get_ingestion_pipeline(
    settings: SettingsDep,
    store: StoreDep,
    directory: DirectoryDep,
    alerts: AlertEvaluatorDep,
) -> IngestionPipeline:
    """
    Build the ingestion pipeline for one request.

    Construction is cheap: the pipeline holds references to the shared pool
    and immutable configuration only.
    """
    return IngestionPipeline(
        store,
        alerts,
        directory=directory,
        deduplicate=settings.deduplicate_events,
        active_call_ttl=timedelta(seconds=settings.active_call_ttl_seconds),
    )


PipelineDep = Annotated[IngestionPipeline, Depends(get_ingestion_pipeline)]
