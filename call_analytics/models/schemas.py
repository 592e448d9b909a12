"""
Pydantic request/response models for the call analytics backend.

This module provides type-safe validation and serialization for the inbound
call-lifecycle events, the signals derived from call transcripts, the persisted
aggregate rows read back by the dashboard, and the transient alerts published
to the notification channel.

Field names use the camelCase wire format of the event producers and the
dashboard so that payloads round-trip without aliasing.

All models use Pydantic v2 syntax with proper field validation and examples.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from call_analytics.models.enums import (
    AlertType,
    EventType,
    IngestionState,
    PeriodType,
    Sentiment,
)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Inbound Event Models
# =============================================================================


class CallArtifact(BaseModel):
    """
    Conversation artifacts attached to a call_ended event.

    The provider may supply its own sentiment classification; when present it
    takes precedence over the heuristic computed by the conversation analyzer.
    """
    model_config = ConfigDict(extra='ignore')

    transcript: str = Field(
        default='',
        description="Full conversation transcript"
    )
    summary: Optional[str] = Field(
        default=None,
        description="Provider-generated call summary"
    )
    sentiment: Optional[Sentiment] = Field(
        default=None,
        description="Provider-computed sentiment label"
    )
    sentimentScore: Optional[float] = Field(
        default=None,
        ge=-1.0,
        le=1.0,
        description="Provider-computed sentiment score"
    )
    recordingUrl: Optional[str] = Field(
        default=None,
        description="Recording location, if the call was recorded"
    )


class CallLifecycleEvent(BaseModel):
    """
    A single call-lifecycle or engagement fact delivered to the pipeline.

    `eventType` is kept as a plain string so that events of types introduced
    after this service was deployed still parse and can be dropped by the
    router instead of failing validation.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra='ignore',
        json_schema_extra={
            "example": {
                "eventType": "call_ended",
                "callId": "call-7f3a",
                "assistantId": "assistant-12",
                "templateId": "lead-qualification-specialist",
                "userId": "user-3",
                "duration": 182,
                "status": "completed",
                "timestamp": "2026-03-14T15:09:26Z",
                "artifact": {
                    "transcript": "We have a budget and need a solution this quarter"
                }
            }
        }
    )

    eventType: str = Field(
        ...,
        min_length=1,
        description="Declared event type"
    )
    eventId: Optional[str] = Field(
        default=None,
        description="Producer-assigned delivery identifier"
    )
    callId: Optional[str] = Field(default=None)
    assistantId: Optional[str] = Field(default=None)
    templateId: Optional[str] = Field(default=None)
    userId: Optional[str] = Field(default=None)
    timestamp: datetime = Field(
        ...,
        description="When the fact occurred (ISO-8601)"
    )
    duration: Optional[float] = Field(
        default=None,
        ge=0,
        description="Call duration in seconds"
    )
    status: Optional[str] = Field(
        default=None,
        description="Final call status (completed, failed, abandoned, transferred)"
    )
    qualityScore: Optional[float] = Field(
        default=None,
        ge=0,
        le=5,
        description="Externally supplied call quality score"
    )
    objectivesAchieved: Optional[List[str]] = Field(
        default=None,
        description="Externally supplied objective tags"
    )
    rating: Optional[float] = Field(
        default=None,
        description="Template rating (whole stars 1..5); other values are ignored"
    )
    performanceMetrics: Optional[Dict[str, float]] = Field(
        default=None,
        description="Explicit assistant metrics to accumulate"
    )
    artifact: Optional[CallArtifact] = Field(
        default=None,
        description="Transcript and provider analysis for call_ended"
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Open key-value map (failureReason, escalationReason, functionName, ...)"
    )

    @field_validator('timestamp')
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator('metadata', mode='before')
    @classmethod
    def _default_metadata(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def event_type(self) -> Optional[EventType]:
        """The recognized event type, or None for unknown types."""
        return EventType.parse(self.eventType)

    @property
    def function_name(self) -> str:
        """Invoked tool name for function_call events; metadata values are untyped."""
        value = self.metadata.get('functionName')
        return '' if value is None else str(value)

    @property
    def idempotency_key(self) -> str:
        """
        Ledger key identifying this fact across redeliveries.

        Call facts are keyed by (event type, call id) with call_completed folded
        into call_ended; function calls also carry the function name since one
        call may invoke several tools. Facts without a call id fall back to the
        producer's delivery id, then to a composite of identifiers and timestamp.
        """
        event_type = self.event_type
        kind = event_type.canonical.value if event_type else self.eventType
        if self.callId:
            if event_type is EventType.FUNCTION_CALL:
                return f"{kind}#{self.callId}#{self.function_name}"
            return f"{kind}#{self.callId}"
        if self.eventId:
            return f"{kind}#event#{self.eventId}"
        return '#'.join([
            kind,
            self.templateId or '',
            self.assistantId or '',
            self.userId or '',
            self.timestamp.isoformat(),
        ])


# =============================================================================
# Derived Signals
# =============================================================================


class ConversationAnalysis(BaseModel):
    """
    Business-intelligence signals derived from one call transcript.

    Ephemeral: recomputed per event and only folded into aggregates, never
    persisted on its own. An empty transcript yields a neutral analysis with
    no quality score.
    """
    sentiment: Sentiment = Field(default=Sentiment.NEUTRAL)
    sentimentScore: float = Field(default=0.0, ge=-1.0, le=1.0)
    objectivesAchieved: List[str] = Field(default_factory=list)
    leadScore: int = Field(default=0, ge=0, le=100)
    keywordsMentioned: List[str] = Field(default_factory=list)
    callQualityScore: Optional[float] = Field(default=None, ge=1.0, le=5.0)
    escalationTriggered: bool = Field(default=False)
    nextSteps: List[str] = Field(default_factory=list)


# =============================================================================
# Aggregate Rows (read path)
# =============================================================================


class TemplateAggregate(BaseModel):
    """
    Accumulated counters for one (template, month) or (template, day, hour).

    Every counter only grows. Ratios are derived at read time.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "analyticsId": "lead-qualification-specialist#2026-03",
                "templateId": "lead-qualification-specialist",
                "period": "2026-03",
                "periodType": "monthly",
                "totalCalls": 42,
                "successfulCalls": 37,
                "failedCalls": 3,
                "totalDuration": 7560.0,
                "ratingDistribution": [0, 1, 2, 5, 9]
            }
        }
    )

    analyticsId: str
    templateId: str
    period: str
    periodType: PeriodType = PeriodType.MONTHLY
    hourOfDay: Optional[int] = Field(default=None, ge=0, le=23)

    totalCalls: int = Field(default=0, ge=0)
    successfulCalls: int = Field(default=0, ge=0)
    failedCalls: int = Field(default=0, ge=0)
    escalationsTriggered: int = Field(default=0, ge=0)
    totalDuration: float = Field(default=0.0, ge=0)
    qualityScoreSum: float = Field(default=0.0, ge=0)
    qualityScoreCount: int = Field(default=0, ge=0)
    totalUsages: int = Field(default=0, ge=0)
    templateViews: int = Field(default=0, ge=0)
    totalRatings: int = Field(default=0, ge=0)
    ratingSum: float = Field(default=0.0, ge=0)
    ratingDistribution: List[int] = Field(default_factory=lambda: [0, 0, 0, 0, 0])
    activeAssistants: int = Field(default=0, ge=0)
    deployedAssistants: int = Field(default=0, ge=0)
    hourlyUsage: int = Field(default=0, ge=0)

    objectivesAchieved: Dict[str, float] = Field(default_factory=dict)
    uniqueUsers: List[str] = Field(default_factory=list)
    viewingUsers: List[str] = Field(default_factory=list)
    failureReasons: List[str] = Field(default_factory=list)
    escalationReasons: List[str] = Field(default_factory=list)

    computedAt: Optional[datetime] = None

    @computed_field
    @property
    def successRate(self) -> Optional[float]:
        return self.successfulCalls / self.totalCalls if self.totalCalls else None

    @computed_field
    @property
    def failureRate(self) -> Optional[float]:
        return self.failedCalls / self.totalCalls if self.totalCalls else None

    @computed_field
    @property
    def averageCallDuration(self) -> Optional[float]:
        return self.totalDuration / self.totalCalls if self.totalCalls else None

    @computed_field
    @property
    def averageQualityScore(self) -> Optional[float]:
        if not self.qualityScoreCount:
            return None
        return self.qualityScoreSum / self.qualityScoreCount

    @computed_field
    @property
    def averageRating(self) -> Optional[float]:
        return self.ratingSum / self.totalRatings if self.totalRatings else None


class AssistantAggregate(BaseModel):
    """Per-assistant call statistics; lastCallAt is last-write-wins."""
    assistantId: str
    totalCalls: int = Field(default=0, ge=0)
    successfulCalls: int = Field(default=0, ge=0)
    totalDuration: float = Field(default=0.0, ge=0)
    performanceMetrics: Dict[str, float] = Field(default_factory=dict)
    lastCallAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    @computed_field
    @property
    def averageCallDuration(self) -> Optional[float]:
        return self.totalDuration / self.totalCalls if self.totalCalls else None


# =============================================================================
# Alerts
# =============================================================================


class Alert(BaseModel):
    """Transient notification describing a triggering condition."""
    alertType: AlertType
    subject: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = Field(default_factory=dict)

    def to_message(self) -> str:
        """Render the message body published to the notification channel."""
        return json.dumps(
            {
                'alertType': self.alertType.value,
                'timestamp': self.timestamp.isoformat(),
                'data': self.data,
            },
            indent=2,
            default=str,
        )


# =============================================================================
# Collaborator and Result Models
# =============================================================================


class AssistantProfile(BaseModel):
    """Directory entry resolving an assistant to its template and owner."""
    assistantId: str
    templateId: str
    userId: str
    templateCategory: Optional[str] = None
    providerAssistantId: Optional[str] = None

    @property
    def category(self) -> str:
        """Category used to select objective-detection rules."""
        return self.templateCategory or self.templateId


class IngestionResult(BaseModel):
    """Outcome of one ingestion invocation, returned by the HTTP layer."""
    eventType: str
    callId: Optional[str] = None
    state: IngestionState
    states: List[IngestionState] = Field(
        default_factory=list,
        description="States passed through, from received to the terminal state"
    )
    routed: bool = True
    duplicate: bool = False
    analysis: Optional[ConversationAnalysis] = None
    alerts: List[AlertType] = Field(default_factory=list)
    message: Optional[str] = None
