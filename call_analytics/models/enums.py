"""
Enumeration definitions for the call analytics backend.

This module provides type-safe enumeration values for the call-lifecycle events
consumed by the ingestion pipeline, the signals derived by the conversation
analyzer, and the alerts emitted by the alert evaluator.

All enums inherit from both `str` and `Enum` to ensure JSON serialization compatibility
with Pydantic models, enabling automatic serialization/deserialization in API responses.
"""

from enum import Enum
from typing import Optional


class EventType(str, Enum):
    """
    Call-lifecycle and engagement event types understood by the pipeline.

    Call events:
    - call_started: A call was connected (concurrent-calls gauge, hourly usage)
    - call_ended: A call finished; carries duration, status and transcript
    - call_completed: Alias of call_ended published by older producers
    - call_failed: A call could not be completed
    - escalation_triggered: The assistant handed the caller to a human
    - function_call: The assistant invoked a tool during the call

    Template engagement events:
    - template_used / template_viewed / template_rated

    Assistant lifecycle events:
    - assistant_created / assistant_deployed / assistant_performance_update
    """
    CALL_STARTED = "call_started"
    CALL_ENDED = "call_ended"
    CALL_COMPLETED = "call_completed"
    CALL_FAILED = "call_failed"
    ESCALATION_TRIGGERED = "escalation_triggered"
    FUNCTION_CALL = "function_call"
    TEMPLATE_USED = "template_used"
    TEMPLATE_VIEWED = "template_viewed"
    TEMPLATE_RATED = "template_rated"
    ASSISTANT_CREATED = "assistant_created"
    ASSISTANT_DEPLOYED = "assistant_deployed"
    ASSISTANT_PERFORMANCE_UPDATE = "assistant_performance_update"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["EventType"]:
        """Return the matching member, or None for unrecognized values."""
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def canonical(self) -> "EventType":
        """call_completed and call_ended describe the same fact."""
        if self is EventType.CALL_COMPLETED:
            return EventType.CALL_ENDED
        return self

    @property
    def is_call_event(self) -> bool:
        return self in _CALL_EVENTS


_CALL_EVENTS = frozenset({
    EventType.CALL_STARTED,
    EventType.CALL_ENDED,
    EventType.CALL_COMPLETED,
    EventType.CALL_FAILED,
    EventType.ESCALATION_TRIGGERED,
    EventType.FUNCTION_CALL,
})


class Sentiment(str, Enum):
    """Overall caller sentiment derived from a transcript."""
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class AlertType(str, Enum):
    """
    Alert kinds published to the notification channel.

    - high_failure_rate: Template failure ratio breached for the current month
    - quality_degradation: A single call scored below the quality floor
    - high_performance: A single call achieved many objectives
    - escalation_triggered: Every escalation notifies, no threshold
    - analytics_processing_error: An event could not be processed
    """
    HIGH_FAILURE_RATE = "high_failure_rate"
    QUALITY_DEGRADATION = "quality_degradation"
    HIGH_PERFORMANCE = "high_performance"
    ESCALATION_TRIGGERED = "escalation_triggered"
    PROCESSING_ERROR = "analytics_processing_error"


class PeriodType(str, Enum):
    """Granularity of a template aggregate row."""
    MONTHLY = "monthly"
    HOURLY = "hourly"


class IngestionState(str, Enum):
    """
    States of a single ingestion invocation.

    Received -> Routed -> Analyzed (optional) -> Aggregated -> AlertsChecked -> Done
    Received -> Failed on any unrecoverable error before Aggregated.
    """
    RECEIVED = "received"
    ROUTED = "routed"
    ANALYZED = "analyzed"
    AGGREGATED = "aggregated"
    ALERTS_CHECKED = "alerts_checked"
    DONE = "done"
    FAILED = "failed"


class ProviderWebhookType(str, Enum):
    """Webhook message types sent by the voice-AI provider."""
    CALL_STARTED = "call.started"
    CALL_ENDED = "call.ended"
    FUNCTION_CALL = "function-call"
    TRANSFER = "transfer"
    ESCALATION = "escalation"
