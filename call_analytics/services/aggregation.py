"""
Aggregation Updater - translate events into delta operations.

For each event type a planner builds an AggregationPlan: the deltas for the
template's monthly row, the template's hourly capacity-planning row and the
assistant row, plus the call-marker actions behind the concurrent-calls gauge.
The updater then applies the plan through the AggregateStore.

Write policy:
- The idempotency-ledger claim, the template rows and the call markers are
  written in one transaction. A failure there propagates to the caller and
  releases the claim, so the redelivered event is processed again.
- The assistant row is written after the commit and is best-effort: failures
  are logged and swallowed. assistant_performance_update is the exception,
  since the assistant row is its only fact.
- A plan that touches nothing is a no-op logged as a warning.

Status semantics (call_ended / call_completed):
- completed / success / successful -> successfulCalls
- failed / error -> failedCalls
- anything else (abandoned, transferred, no-answer) -> counted in totalCalls only
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from call_analytics.models.deltas import (
    BucketIncrement,
    CounterDelta,
    DeltaOp,
    LastWriteWins,
    MapCounterDelta,
    SetUnion,
    TemplateAggregateKey,
)
from call_analytics.models.enums import EventType
from call_analytics.models.schemas import CallLifecycleEvent, ConversationAnalysis
from call_analytics.services.aggregate_store import AggregateStore


logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

SUCCESS_STATUSES = frozenset({'completed', 'success', 'successful'})
FAILURE_STATUSES = frozenset({'failed', 'error'})

MIN_RATING = 1
MAX_RATING = 5

ESCALATION_FUNCTION_PREFIX = 'escalate_'

UNKNOWN_REASON = 'unknown'
REQUESTED_ESCALATION_REASON = 'User requested escalation'


def is_success_status(status: Optional[str]) -> bool:
    return (status or '').lower() in SUCCESS_STATUSES


def is_failure_status(status: Optional[str]) -> bool:
    return (status or '').lower() in FAILURE_STATUSES


def is_valid_rating(rating: Optional[float]) -> bool:
    """Whole-star ratings in [MIN_RATING, MAX_RATING]; anything else is ignored."""
    if rating is None or not float(rating).is_integer():
        return False
    return MIN_RATING <= rating <= MAX_RATING


def is_escalation_function(event: CallLifecycleEvent) -> bool:
    return event.function_name.startswith(ESCALATION_FUNCTION_PREFIX)


# =============================================================================
# Plans
# =============================================================================


@dataclass
class AggregationPlan:
    """Delta operations and marker actions derived from one event."""
    template_monthly: List[DeltaOp] = field(default_factory=list)
    template_hourly: List[DeltaOp] = field(default_factory=list)
    assistant: List[DeltaOp] = field(default_factory=list)
    assistant_is_primary: bool = False
    open_call: bool = False
    close_call: bool = False

    @property
    def is_empty(self) -> bool:
        return not (
            self.template_monthly
            or self.template_hourly
            or self.assistant
            or self.open_call
            or self.close_call
        )


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    NOOP = "noop"


def plan_call_started(event: CallLifecycleEvent) -> AggregationPlan:
    return AggregationPlan(
        template_hourly=[CounterDelta('hourly_usage')],
        open_call=bool(event.callId),
    )


def plan_call_ended(
    event: CallLifecycleEvent,
    analysis: Optional[ConversationAnalysis] = None,
) -> AggregationPlan:
    """
    Deltas for a finished call.

    Explicit qualityScore/objectivesAchieved on the event take precedence over
    values derived from the transcript.
    """
    monthly: List[DeltaOp] = [CounterDelta('total_calls')]
    assistant: List[DeltaOp] = [CounterDelta('total_calls')]

    if is_success_status(event.status):
        monthly.append(CounterDelta('successful_calls'))
        assistant.append(CounterDelta('successful_calls'))
    elif is_failure_status(event.status):
        monthly.append(CounterDelta('failed_calls'))
        reason = event.metadata.get('failureReason')
        if reason:
            monthly.append(SetUnion('failure_reasons', (str(reason),)))

    if event.duration:
        monthly.append(CounterDelta('total_duration', float(event.duration)))
        assistant.append(CounterDelta('total_duration', float(event.duration)))

    quality_score = resolve_quality_score(event, analysis)
    if quality_score is not None:
        monthly.append(CounterDelta('quality_score_sum', float(quality_score)))
        monthly.append(CounterDelta('quality_score_count'))

    for objective in resolve_objectives(event, analysis):
        monthly.append(MapCounterDelta('objectives_achieved', objective))

    assistant.append(LastWriteWins('last_call_at', event.timestamp))

    return AggregationPlan(
        template_monthly=monthly,
        assistant=assistant,
        close_call=bool(event.callId),
    )


def plan_call_failed(event: CallLifecycleEvent) -> AggregationPlan:
    reason = event.metadata.get('failureReason') or UNKNOWN_REASON
    return AggregationPlan(
        template_monthly=[
            CounterDelta('total_calls'),
            CounterDelta('failed_calls'),
            SetUnion('failure_reasons', (str(reason),)),
        ],
        close_call=bool(event.callId),
    )


def escalation_reason(event: CallLifecycleEvent) -> str:
    reason = event.metadata.get('escalationReason')
    if not reason:
        parameters = event.metadata.get('parameters') or {}
        reason = parameters.get('reason') if isinstance(parameters, dict) else None
    if not reason:
        # Escalation tools are invoked on the caller's request
        return REQUESTED_ESCALATION_REASON if is_escalation_function(event) else UNKNOWN_REASON
    return str(reason)


def plan_escalation(event: CallLifecycleEvent) -> AggregationPlan:
    return AggregationPlan(
        template_monthly=[
            CounterDelta('escalations_triggered'),
            SetUnion('escalation_reasons', (escalation_reason(event),)),
        ],
    )


def plan_function_call(event: CallLifecycleEvent) -> AggregationPlan:
    # Only escalation tools affect aggregates
    if is_escalation_function(event):
        return plan_escalation(event)
    return AggregationPlan()


def _users(event: CallLifecycleEvent) -> tuple:
    return (event.userId,) if event.userId else ()


def plan_template_used(event: CallLifecycleEvent) -> AggregationPlan:
    monthly: List[DeltaOp] = [CounterDelta('total_usages')]
    if event.userId:
        monthly.append(SetUnion('unique_users', _users(event)))
    return AggregationPlan(template_monthly=monthly)


def plan_template_viewed(event: CallLifecycleEvent) -> AggregationPlan:
    monthly: List[DeltaOp] = [CounterDelta('template_views')]
    if event.userId:
        monthly.append(SetUnion('viewing_users', _users(event)))
    return AggregationPlan(template_monthly=monthly)


def plan_template_rated(event: CallLifecycleEvent) -> AggregationPlan:
    rating = event.rating
    if not is_valid_rating(rating):
        logger.warning(f"Ignoring rating {rating!r} for template {event.templateId}")
        return AggregationPlan()
    stars = int(rating)
    return AggregationPlan(
        template_monthly=[
            CounterDelta('total_ratings'),
            CounterDelta('rating_sum', float(stars)),
            BucketIncrement('rating_distribution', stars - 1),
        ],
    )


def plan_assistant_created(event: CallLifecycleEvent) -> AggregationPlan:
    monthly: List[DeltaOp] = [CounterDelta('active_assistants')]
    if event.userId:
        monthly.append(SetUnion('unique_users', _users(event)))
    return AggregationPlan(template_monthly=monthly)


def plan_assistant_deployed(event: CallLifecycleEvent) -> AggregationPlan:
    return AggregationPlan(template_monthly=[CounterDelta('deployed_assistants')])


def plan_assistant_performance_update(event: CallLifecycleEvent) -> AggregationPlan:
    deltas: List[DeltaOp] = []
    for metric, value in sorted((event.performanceMetrics or {}).items()):
        if value < 0:
            logger.warning(f"Skipping negative metric {metric}={value} for assistant {event.assistantId}")
            continue
        deltas.append(MapCounterDelta('performance_metrics', metric, value))
    return AggregationPlan(assistant=deltas, assistant_is_primary=True)


def resolve_quality_score(
    event: CallLifecycleEvent,
    analysis: Optional[ConversationAnalysis],
) -> Optional[float]:
    # A supplied score of 0 means unscored
    if event.qualityScore:
        return event.qualityScore
    return analysis.callQualityScore if analysis else None


def resolve_objectives(
    event: CallLifecycleEvent,
    analysis: Optional[ConversationAnalysis],
) -> List[str]:
    if event.objectivesAchieved is not None:
        return list(event.objectivesAchieved)
    return list(analysis.objectivesAchieved) if analysis else []


Planner = Callable[[CallLifecycleEvent], AggregationPlan]

PLANNERS: Dict[EventType, Planner] = {
    EventType.CALL_STARTED: plan_call_started,
    EventType.CALL_ENDED: plan_call_ended,
    EventType.CALL_COMPLETED: plan_call_ended,
    EventType.CALL_FAILED: plan_call_failed,
    EventType.ESCALATION_TRIGGERED: plan_escalation,
    EventType.FUNCTION_CALL: plan_function_call,
    EventType.TEMPLATE_USED: plan_template_used,
    EventType.TEMPLATE_VIEWED: plan_template_viewed,
    EventType.TEMPLATE_RATED: plan_template_rated,
    EventType.ASSISTANT_CREATED: plan_assistant_created,
    EventType.ASSISTANT_DEPLOYED: plan_assistant_deployed,
    EventType.ASSISTANT_PERFORMANCE_UPDATE: plan_assistant_performance_update,
}


# =============================================================================
# Updater
# =============================================================================


class AggregationUpdater:
    """
    Apply aggregation plans to the aggregate store.

    Args:
        store: Aggregate store.
        deduplicate: Claim each fact in the idempotency ledger before writing.
        active_call_ttl: Lifetime of a call marker when call_ended never arrives.
    """

    def __init__(
        self,
        store: AggregateStore,
        deduplicate: bool = True,
        active_call_ttl: timedelta = timedelta(hours=2),
    ):
        self._store = store
        self._deduplicate = deduplicate
        self._active_call_ttl = active_call_ttl

    async def apply(self, event: CallLifecycleEvent, plan: AggregationPlan) -> ApplyOutcome:
        """
        Apply one event's plan.

        Returns:
            APPLIED, DUPLICATE when the ledger already holds the fact, or NOOP
            for a plan that touches nothing.

        Raises:
            Any store error from the primary writes.
        """
        if plan.is_empty:
            logger.warning(
                f"No aggregate updates for {event.eventType} event "
                f"(call={event.callId}, template={event.templateId})"
            )
            return ApplyOutcome.NOOP

        async with self._store.transaction() as tx:
            if self._deduplicate:
                claimed = await tx.claim_event(event.idempotency_key, event.eventType, event.callId)
                if not claimed:
                    logger.warning(f"Skipping duplicate delivery {event.idempotency_key}")
                    return ApplyOutcome.DUPLICATE

            if plan.template_monthly:
                await tx.apply_template_deltas(
                    TemplateAggregateKey.monthly(event.templateId, event.timestamp),
                    plan.template_monthly,
                )
            if plan.template_hourly:
                await tx.apply_template_deltas(
                    TemplateAggregateKey.hourly(event.templateId, event.timestamp),
                    plan.template_hourly,
                )
            if plan.assistant and plan.assistant_is_primary:
                await tx.apply_assistant_deltas(event.assistantId, plan.assistant)
            if plan.open_call:
                await tx.open_call_marker(
                    event.callId,
                    event.templateId,
                    event.assistantId,
                    event.timestamp,
                    self._active_call_ttl,
                )
            if plan.close_call:
                await tx.close_call_marker(event.callId)

        if plan.assistant and not plan.assistant_is_primary and event.assistantId:
            await self._apply_assistant_best_effort(event, plan.assistant)

        return ApplyOutcome.APPLIED

    async def _apply_assistant_best_effort(self, event: CallLifecycleEvent, deltas: List[DeltaOp]) -> None:
        try:
            await self._store.apply_assistant_deltas(event.assistantId, deltas)
        except Exception:
            logger.exception(
                f"Assistant aggregate update failed for {event.assistantId} (call {event.callId})"
            )
