"""
Package initialization file for call analytics models.

This module exports the Pydantic schemas, enumerations and delta operations,
making them importable from call_analytics.models directly.

Usage:
    from call_analytics.models import (
        EventType,
        CallLifecycleEvent,
        ConversationAnalysis,
        CounterDelta,
        # ... etc
    )
"""

# =============================================================================
# Enums - Import and re-export all enumerations from enums.py
# =============================================================================

from call_analytics.models.enums import (
    EventType,
    Sentiment,
    AlertType,
    PeriodType,
    IngestionState,
    ProviderWebhookType,
)

# =============================================================================
# Schemas - Import and re-export all Pydantic models from schemas.py
# =============================================================================

from call_analytics.models.schemas import (
    # Inbound events
    CallArtifact,
    CallLifecycleEvent,
    # Derived signals
    ConversationAnalysis,
    # Aggregates
    TemplateAggregate,
    AssistantAggregate,
    # Alerts and results
    Alert,
    AssistantProfile,
    IngestionResult,
)

# =============================================================================
# Delta operations - Import and re-export from deltas.py
# =============================================================================

from call_analytics.models.deltas import (
    CounterDelta,
    SetUnion,
    MapCounterDelta,
    BucketIncrement,
    LastWriteWins,
    DeltaOp,
    TemplateAggregateKey,
    sanitize_map_key,
)

__all__ = [
    # Enums
    'EventType',
    'Sentiment',
    'AlertType',
    'PeriodType',
    'IngestionState',
    'ProviderWebhookType',
    # Schemas
    'CallArtifact',
    'CallLifecycleEvent',
    'ConversationAnalysis',
    'TemplateAggregate',
    'AssistantAggregate',
    'Alert',
    'AssistantProfile',
    'IngestionResult',
    # Deltas
    'CounterDelta',
    'SetUnion',
    'MapCounterDelta',
    'BucketIncrement',
    'LastWriteWins',
    'DeltaOp',
    'TemplateAggregateKey',
    'sanitize_map_key',
]
