"""
Call Analytics Services Module

This module contains the business logic of the analytics pipeline. Services
hold no per-event state and receive their collaborators at construction time,
so each can be tested with fakes.

Services:
- conversation_analyzer: Sentiment, objectives, keywords and quality from transcripts
- event_router: Dispatch by event type; unknown types are dropped
- aggregate_store: Atomic accumulation on PostgreSQL
- aggregation: Per-event-type delta plans and idempotent application
- alerts: Threshold and per-event alerts published to Slack
- assistant_directory: Assistant -> template/owner/category lookup
- ingestion: Entry point state machine
- webhook_adapter: VAPI webhook translation and signature verification
"""

# =============================================================================
# Conversation Analyzer Exports
# =============================================================================
from call_analytics.services.conversation_analyzer import (
    AnalyzerConfig,
    ObjectiveRule,
    DEFAULT_ANALYZER_CONFIG,
    analyze_conversation,
    compute_quality_score,
    score_sentiment,
)

# =============================================================================
# Storage Exports
# =============================================================================
from call_analytics.services.aggregate_store import (
    AggregateStore,
    PostgresAggregateStore,
)

# =============================================================================
# Aggregation Exports
# =============================================================================
from call_analytics.services.aggregation import (
    AggregationPlan,
    AggregationUpdater,
    ApplyOutcome,
    PLANNERS,
)

# =============================================================================
# Alert Exports
# =============================================================================
from call_analytics.services.alerts import (
    AlertEvaluator,
    AlertThresholds,
    NotificationChannel,
    SlackNotificationChannel,
)

# =============================================================================
# Routing and Ingestion Exports
# =============================================================================
from call_analytics.services.event_router import EventRouter
from call_analytics.services.assistant_directory import (
    AssistantDirectory,
    PostgresAssistantDirectory,
)
from call_analytics.services.ingestion import (
    IngestionPipeline,
    MalformedEventError,
    parse_event,
)
from call_analytics.services.webhook_adapter import (
    AssistantNotFoundError,
    WebhookSignatureError,
    translate_webhook,
    verify_signature,
)

__all__ = [
    # Conversation analyzer
    'AnalyzerConfig',
    'ObjectiveRule',
    'DEFAULT_ANALYZER_CONFIG',
    'analyze_conversation',
    'compute_quality_score',
    'score_sentiment',
    # Storage
    'AggregateStore',
    'PostgresAggregateStore',
    # Aggregation
    'AggregationPlan',
    'AggregationUpdater',
    'ApplyOutcome',
    'PLANNERS',
    # Alerts
    'AlertEvaluator',
    'AlertThresholds',
    'NotificationChannel',
    'SlackNotificationChannel',
    # Routing and ingestion
    'EventRouter',
    'AssistantDirectory',
    'PostgresAssistantDirectory',
    'IngestionPipeline',
    'MalformedEventError',
    'parse_event',
    'AssistantNotFoundError',
    'WebhookSignatureError',
    'translate_webhook',
    'verify_signature',
]
