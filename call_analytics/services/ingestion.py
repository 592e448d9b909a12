"""
Call Lifecycle Event Ingestion Service

This module implements the ingestion entry point of the call analytics
pipeline. Each invocation receives one event and drives it through the
Event Router, the Conversation Analyzer, the Aggregation Updater and the
Alert Evaluator.

State machine:
    Received -> Routed -> Analyzed (optional) -> Aggregated -> AlertsChecked -> Done
    Received -> Failed on any unrecoverable error before Aggregated
    Received -> Done for unknown event types
    Received -> Routed -> (Analyzed) -> Done for duplicate deliveries

The states passed through are returned in IngestionResult.states; a failed
invocation logs and alerts with the last state it reached.

Failure policy:
- Malformed events (unparseable, missing required identifiers) fail the
  invocation and are re-raised so the caller can redeliver or dead-letter.
- Primary aggregate write failures fail the invocation and are re-raised.
- Assistant aggregate writes and alert publishing are best-effort.
- Unknown event types are logged and complete successfully.
- Before re-raising, a best-effort processing-error alert is published.

Event envelopes:
    Events published on the event bus arrive wrapped as {"detail": {...}};
    the envelope is removed before validation.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from call_analytics.models.enums import AlertType, EventType, IngestionState
from call_analytics.models.schemas import (
    CallLifecycleEvent,
    ConversationAnalysis,
    IngestionResult,
)
from call_analytics.services.aggregate_store import AggregateStore
from call_analytics.services.aggregation import (
    AggregationUpdater,
    ApplyOutcome,
    escalation_reason,
    is_escalation_function,
    is_failure_status,
    plan_call_ended,
    PLANNERS,
    resolve_objectives,
    resolve_quality_score,
)
from call_analytics.services.alerts import AlertEvaluator
from call_analytics.services.assistant_directory import AssistantDirectory
from call_analytics.services.conversation_analyzer import (
    AnalyzerConfig,
    DEFAULT_ANALYZER_CONFIG,
    analyze_conversation,
)
from call_analytics.services.event_router import EventRouter

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS - Required Identifiers per Event Type
# =============================================================================

CALL_EVENT_REQUIRED_FIELDS: Tuple[str, ...] = ('callId', 'assistantId', 'templateId')
TEMPLATE_EVENT_REQUIRED_FIELDS: Tuple[str, ...] = ('templateId',)
ASSISTANT_EVENT_REQUIRED_FIELDS: Tuple[str, ...] = ('assistantId', 'templateId')

REQUIRED_FIELDS: Dict[EventType, Tuple[str, ...]] = {
    EventType.CALL_STARTED: CALL_EVENT_REQUIRED_FIELDS,
    EventType.CALL_ENDED: CALL_EVENT_REQUIRED_FIELDS,
    EventType.CALL_COMPLETED: CALL_EVENT_REQUIRED_FIELDS,
    EventType.CALL_FAILED: CALL_EVENT_REQUIRED_FIELDS,
    EventType.ESCALATION_TRIGGERED: CALL_EVENT_REQUIRED_FIELDS,
    EventType.FUNCTION_CALL: CALL_EVENT_REQUIRED_FIELDS,
    EventType.TEMPLATE_USED: TEMPLATE_EVENT_REQUIRED_FIELDS,
    EventType.TEMPLATE_VIEWED: TEMPLATE_EVENT_REQUIRED_FIELDS,
    EventType.TEMPLATE_RATED: TEMPLATE_EVENT_REQUIRED_FIELDS,
    EventType.ASSISTANT_CREATED: ASSISTANT_EVENT_REQUIRED_FIELDS,
    EventType.ASSISTANT_DEPLOYED: ASSISTANT_EVENT_REQUIRED_FIELDS,
    EventType.ASSISTANT_PERFORMANCE_UPDATE: ('assistantId',),
}

ENVELOPE_KEY = 'detail'


class MalformedEventError(ValueError):
    """The event cannot be parsed or lacks a required identifier."""


# =============================================================================
# Parsing and Validation
# =============================================================================


def unwrap_envelope(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Return the event inside an event-bus envelope, or the event itself."""
    detail = raw.get(ENVELOPE_KEY)
    if 'eventType' not in raw and isinstance(detail, dict):
        return detail
    return raw


def validate_required_fields(event: CallLifecycleEvent) -> None:
    """
    Check that the identifiers needed by the event's handler are present.

    Unknown event types have no requirements; the router drops them.

    Raises:
        MalformedEventError: Listing every missing identifier.
    """
    event_type = event.event_type
    if event_type is None:
        return
    missing = [name for name in REQUIRED_FIELDS[event_type] if not getattr(event, name)]
    if missing:
        raise MalformedEventError(
            f"{event.eventType} event missing required fields: {', '.join(missing)}"
        )


def parse_event(raw: Any) -> CallLifecycleEvent:
    """
    Parse and validate one inbound event.

    Args:
        raw: Decoded JSON object, optionally wrapped in a {"detail": ...} envelope.

    Returns:
        CallLifecycleEvent ready for routing.

    Raises:
        MalformedEventError: If the payload is not an object, fails schema
            validation, or lacks a required identifier.
    """
    if not isinstance(raw, dict):
        raise MalformedEventError(f"Event must be a JSON object, got {type(raw).__name__}")

    try:
        event = CallLifecycleEvent.model_validate(unwrap_envelope(raw))
    except ValidationError as e:
        raise MalformedEventError(f"Invalid event: {e}") from e

    validate_required_fields(event)
    return event


# =============================================================================
# Pipeline
# =============================================================================


@dataclass
class IngestionTrace:
    """States one invocation has passed through, in order."""
    states: List[IngestionState] = field(default_factory=lambda: [IngestionState.RECEIVED])

    @property
    def current(self) -> IngestionState:
        return self.states[-1]

    def advance(self, state: IngestionState) -> None:
        logger.debug(f"Ingestion state {self.current.value} -> {state.value}")
        self.states.append(state)


@dataclass
class HandlerOutcome:
    duplicate: bool = False
    analysis: Optional[ConversationAnalysis] = None
    alerts: List[AlertType] = field(default_factory=list)


class IngestionPipeline:
    """
    Drive one event at a time through routing, analysis, aggregation and alerts.

    The pipeline holds no per-event state, so one instance serves concurrent
    invocations. Each invocation records its state transitions in an
    IngestionTrace that is returned with the result.

    Args:
        store: Aggregate store for primary and secondary writes.
        alerts: Alert evaluator.
        directory: Assistant directory used to resolve template categories.
        analyzer_config: Vocabulary and rules for the conversation analyzer.
        deduplicate: Skip events already recorded in the idempotency ledger.
        active_call_ttl: Lifetime of concurrent-call markers.
    """

    def __init__(
        self,
        store: AggregateStore,
        alerts: AlertEvaluator,
        directory: Optional[AssistantDirectory] = None,
        analyzer_config: AnalyzerConfig = DEFAULT_ANALYZER_CONFIG,
        deduplicate: bool = True,
        active_call_ttl: timedelta = timedelta(hours=2),
    ):
        self._alerts = alerts
        self._directory = directory
        self._analyzer_config = analyzer_config
        self._updater = AggregationUpdater(
            store,
            deduplicate=deduplicate,
            active_call_ttl=active_call_ttl,
        )
        self._router: EventRouter[HandlerOutcome] = EventRouter({
            EventType.CALL_STARTED: self._handle_aggregate_only,
            EventType.CALL_ENDED: self._handle_call_ended,
            EventType.CALL_COMPLETED: self._handle_call_ended,
            EventType.CALL_FAILED: self._handle_call_failed,
            EventType.ESCALATION_TRIGGERED: self._handle_escalation,
            EventType.FUNCTION_CALL: self._handle_function_call,
            EventType.TEMPLATE_USED: self._handle_aggregate_only,
            EventType.TEMPLATE_VIEWED: self._handle_aggregate_only,
            EventType.TEMPLATE_RATED: self._handle_aggregate_only,
            EventType.ASSISTANT_CREATED: self._handle_aggregate_only,
            EventType.ASSISTANT_DEPLOYED: self._handle_aggregate_only,
            EventType.ASSISTANT_PERFORMANCE_UPDATE: self._handle_aggregate_only,
        })

    async def process(self, raw: Any) -> IngestionResult:
        """
        Process one inbound event.

        Returns:
            IngestionResult in state DONE, with the states passed through.

        Raises:
            MalformedEventError: If the event is malformed.
            Exception: Any primary aggregate write failure, unchanged.
        """
        trace = IngestionTrace()
        try:
            event = parse_event(raw)
            if self._router.handles(event.event_type):
                trace.advance(IngestionState.ROUTED)
            outcome = await self._router.route(event, trace)
        except Exception as e:
            reached = trace.current
            trace.advance(IngestionState.FAILED)
            logger.error(
                f"Event processing failed after state {reached.value} "
                f"({type(e).__name__}): {e}"
            )
            await self._alerts.notify_processing_error(raw, e, state=reached)
            raise

        trace.advance(IngestionState.DONE)

        if outcome is None:
            return IngestionResult(
                eventType=event.eventType,
                callId=event.callId,
                state=trace.current,
                states=trace.states,
                routed=False,
                message=f"Unknown event type {event.eventType} ignored",
            )

        logger.info(
            f"Processed {event.eventType} event "
            f"(call={event.callId}, template={event.templateId}, duplicate={outcome.duplicate})"
        )
        return IngestionResult(
            eventType=event.eventType,
            callId=event.callId,
            state=trace.current,
            states=trace.states,
            duplicate=outcome.duplicate,
            analysis=outcome.analysis,
            alerts=outcome.alerts,
            message='Duplicate delivery skipped' if outcome.duplicate else None,
        )

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def _handle_aggregate_only(
        self,
        event: CallLifecycleEvent,
        trace: IngestionTrace,
    ) -> HandlerOutcome:
        plan = PLANNERS[event.event_type](event)
        applied = await self._updater.apply(event, plan)
        if applied is ApplyOutcome.DUPLICATE:
            return HandlerOutcome(duplicate=True)

        trace.advance(IngestionState.AGGREGATED)
        # Engagement and call_started events carry no alert conditions
        trace.advance(IngestionState.ALERTS_CHECKED)
        return HandlerOutcome()

    async def _handle_call_ended(
        self,
        event: CallLifecycleEvent,
        trace: IngestionTrace,
    ) -> HandlerOutcome:
        artifact = event.artifact
        analysis = analyze_conversation(
            artifact.transcript if artifact else '',
            template_category=await self._resolve_category(event),
            external_sentiment=artifact.sentiment if artifact else None,
            external_sentiment_score=artifact.sentimentScore if artifact else None,
            call_status=event.status,
            metadata=event.metadata,
            config=self._analyzer_config,
        )
        trace.advance(IngestionState.ANALYZED)

        applied = await self._updater.apply(event, plan_call_ended(event, analysis))
        if applied is ApplyOutcome.DUPLICATE:
            return HandlerOutcome(duplicate=True, analysis=analysis)
        trace.advance(IngestionState.AGGREGATED)

        alerts = await self._alerts.check_call_ended(
            event,
            resolve_quality_score(event, analysis),
            resolve_objectives(event, analysis),
        )
        raised = [alert.alertType for alert in alerts]
        if is_failure_status(event.status):
            failure_alert = await self._alerts.check_failure_rate(event.templateId, event.timestamp)
            if failure_alert is not None:
                raised.append(failure_alert.alertType)
        trace.advance(IngestionState.ALERTS_CHECKED)

        return HandlerOutcome(analysis=analysis, alerts=raised)

    async def _handle_call_failed(
        self,
        event: CallLifecycleEvent,
        trace: IngestionTrace,
    ) -> HandlerOutcome:
        applied = await self._updater.apply(event, PLANNERS[EventType.CALL_FAILED](event))
        if applied is ApplyOutcome.DUPLICATE:
            return HandlerOutcome(duplicate=True)
        trace.advance(IngestionState.AGGREGATED)

        failure_alert = await self._alerts.check_failure_rate(event.templateId, event.timestamp)
        trace.advance(IngestionState.ALERTS_CHECKED)
        return HandlerOutcome(alerts=[failure_alert.alertType] if failure_alert else [])

    async def _handle_escalation(
        self,
        event: CallLifecycleEvent,
        trace: IngestionTrace,
    ) -> HandlerOutcome:
        applied = await self._updater.apply(event, PLANNERS[EventType.ESCALATION_TRIGGERED](event))
        if applied is ApplyOutcome.DUPLICATE:
            return HandlerOutcome(duplicate=True)
        trace.advance(IngestionState.AGGREGATED)

        alert = await self._alerts.notify_escalation(event, escalation_reason(event))
        trace.advance(IngestionState.ALERTS_CHECKED)
        return HandlerOutcome(alerts=[alert.alertType])

    async def _handle_function_call(
        self,
        event: CallLifecycleEvent,
        trace: IngestionTrace,
    ) -> HandlerOutcome:
        if is_escalation_function(event):
            return await self._handle_escalation(event, trace)
        return await self._handle_aggregate_only(event, trace)

    async def _resolve_category(self, event: CallLifecycleEvent) -> Optional[str]:
        """Template category from event metadata, the directory, or the template id."""
        category = event.metadata.get('templateCategory')
        if category:
            return str(category)

        if self._directory is not None and event.assistantId:
            try:
                profile = await self._directory.lookup(event.assistantId)
            except Exception:
                logger.exception(f"Assistant directory lookup failed for {event.assistantId}")
                profile = None
            if profile is not None:
                return profile.category

        return event.templateId
