"""
Alert Evaluator - threshold and per-event alerts for the analytics pipeline.

Two trigger classes:
1. Threshold alerts on read-back: after a failure is recorded, the current
   month's template aggregate is re-read; more than `failure_rate_min_calls`
   calls with a failure ratio above `failure_rate_threshold` raises a
   high_failure_rate alert carrying the rounded percentage.
2. Per-event alerts: a finished call scoring below `low_quality_threshold`
   raises quality_degradation, more than `high_performance_objectives`
   objectives raises high_performance, and every escalation raises
   escalation_triggered.

Alerts are published to Slack through the slack-sdk WebhookClient, whose
blocking send runs in a worker thread.
Publishing is fire-and-forget: a failure is logged and never propagated.
When no webhook URL is configured the alert is logged and dropped.

Message format:
    subject: "<prefix> - HIGH FAILURE RATE"
    message: JSON document {"alertType", "timestamp", "data"}
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from slack_sdk.webhook import WebhookClient

from call_analytics.models.deltas import TemplateAggregateKey
from call_analytics.models.enums import AlertType, IngestionState
from call_analytics.models.schemas import Alert, CallLifecycleEvent, TemplateAggregate
from call_analytics.services.aggregate_store import AggregateStore


logger = logging.getLogger(__name__)


DEFAULT_SUBJECT_PREFIX = 'Voice Matrix'


@dataclass(frozen=True)
class AlertThresholds:
    """Alert trigger thresholds."""
    failure_rate_min_calls: int = 10
    failure_rate_threshold: float = 0.20
    low_quality_threshold: float = 2.0
    high_performance_objectives: int = 3


DEFAULT_THRESHOLDS = AlertThresholds()


def alert_subject(alert_type: AlertType, prefix: str = DEFAULT_SUBJECT_PREFIX) -> str:
    return f"{prefix} - {alert_type.value.replace('_', ' ').upper()}"


# =============================================================================
# Pure Evaluation
# =============================================================================


def evaluate_failure_rate(
    aggregate: Optional[TemplateAggregate],
    thresholds: AlertThresholds = DEFAULT_THRESHOLDS,
    prefix: str = DEFAULT_SUBJECT_PREFIX,
) -> Optional[Alert]:
    """
    Check a monthly aggregate against the failure-rate threshold.

    The minimum call count keeps low-volume templates from alerting on a
    handful of failures.
    """
    if aggregate is None or aggregate.totalCalls <= thresholds.failure_rate_min_calls:
        return None

    failure_rate = aggregate.failedCalls / aggregate.totalCalls
    if failure_rate <= thresholds.failure_rate_threshold:
        return None

    return Alert(
        alertType=AlertType.HIGH_FAILURE_RATE,
        subject=alert_subject(AlertType.HIGH_FAILURE_RATE, prefix),
        data={
            'templateId': aggregate.templateId,
            'period': aggregate.period,
            'failureRate': round(failure_rate * 100),
            'totalCalls': aggregate.totalCalls,
            'failedCalls': aggregate.failedCalls,
        },
    )


def evaluate_call_ended(
    event: CallLifecycleEvent,
    quality_score: Optional[float],
    objectives: List[str],
    thresholds: AlertThresholds = DEFAULT_THRESHOLDS,
    prefix: str = DEFAULT_SUBJECT_PREFIX,
) -> List[Alert]:
    """Per-call quality and performance alerts."""
    alerts: List[Alert] = []
    base = {
        'callId': event.callId,
        'assistantId': event.assistantId,
        'templateId': event.templateId,
    }

    if quality_score is not None and quality_score < thresholds.low_quality_threshold:
        alerts.append(Alert(
            alertType=AlertType.QUALITY_DEGRADATION,
            subject=alert_subject(AlertType.QUALITY_DEGRADATION, prefix),
            data={**base, 'qualityScore': quality_score},
        ))

    if len(objectives) > thresholds.high_performance_objectives:
        alerts.append(Alert(
            alertType=AlertType.HIGH_PERFORMANCE,
            subject=alert_subject(AlertType.HIGH_PERFORMANCE, prefix),
            data={**base, 'objectivesAchieved': list(objectives)},
        ))

    return alerts


def evaluate_escalation(
    event: CallLifecycleEvent,
    reason: str,
    prefix: str = DEFAULT_SUBJECT_PREFIX,
) -> Alert:
    """Every escalation notifies; there is no threshold."""
    return Alert(
        alertType=AlertType.ESCALATION_TRIGGERED,
        subject=alert_subject(AlertType.ESCALATION_TRIGGERED, prefix),
        data={
            'callId': event.callId,
            'assistantId': event.assistantId,
            'templateId': event.templateId,
            'reason': reason,
        },
    )


def processing_error_alert(
    raw_event: Any,
    error: BaseException,
    prefix: str = DEFAULT_SUBJECT_PREFIX,
    state: Optional[IngestionState] = None,
) -> Alert:
    data: Dict[str, Any] = {
        'error': str(error),
        'errorType': type(error).__name__,
        'event': raw_event,
    }
    if state is not None:
        data['state'] = state.value
    return Alert(
        alertType=AlertType.PROCESSING_ERROR,
        subject=alert_subject(AlertType.PROCESSING_ERROR, prefix),
        data=data,
    )


# =============================================================================
# Notification Channels
# =============================================================================


class NotificationError(RuntimeError):
    """The notification channel rejected a message."""


class NotificationChannel(ABC):
    """Publish-only sink accepting (subject, message)."""

    @abstractmethod
    async def publish(self, subject: str, message: str) -> None:
        ...


class SlackNotificationChannel(NotificationChannel):
    """
    Publish alerts to a Slack incoming webhook.

    Args:
        webhook_url: Slack incoming-webhook URL.
    """

    def __init__(self, webhook_url: str):
        self._client = WebhookClient(webhook_url)

    async def publish(self, subject: str, message: str) -> None:
        # WebhookClient is synchronous; keep the HTTP round-trip off the event loop
        response = await asyncio.to_thread(
            self._client.send,
            text=subject,
            blocks=[
                {
                    'type': 'header',
                    'text': {'type': 'plain_text', 'text': subject[:150]},
                },
                {
                    'type': 'section',
                    'text': {'type': 'mrkdwn', 'text': f"```{message}```"},
                },
            ],
        )

        if response.status_code != 200:
            raise NotificationError(
                f'Slack API returned status {response.status_code}: {response.body}'
            )


# =============================================================================
# Evaluator
# =============================================================================


class AlertEvaluator:
    """
    Evaluate alert conditions and publish the resulting alerts.

    Args:
        store: Aggregate store used for threshold read-back.
        channel: Notification channel; None logs alerts without publishing.
        thresholds: Alert thresholds.
        subject_prefix: Prefix for alert subjects.
    """

    def __init__(
        self,
        store: AggregateStore,
        channel: Optional[NotificationChannel] = None,
        thresholds: AlertThresholds = DEFAULT_THRESHOLDS,
        subject_prefix: str = DEFAULT_SUBJECT_PREFIX,
    ):
        self._store = store
        self._channel = channel
        self.thresholds = thresholds
        self.subject_prefix = subject_prefix

    async def publish(self, alert: Alert) -> bool:
        """Publish one alert; never raises. Returns True when delivered."""
        if self._channel is None:
            logger.info(f"No notification channel configured, alert not sent: {alert.subject}")
            return False

        try:
            await self._channel.publish(alert.subject, alert.to_message())
        except Exception:
            logger.exception(f"Failed to publish alert {alert.alertType.value}")
            return False

        logger.info(f"Published alert {alert.alertType.value}")
        return True

    async def publish_all(self, alerts: List[Alert]) -> List[AlertType]:
        """Publish alerts in order and return the types that were raised."""
        for alert in alerts:
            await self.publish(alert)
        return [alert.alertType for alert in alerts]

    async def check_failure_rate(self, template_id: str, timestamp: datetime) -> Optional[Alert]:
        """
        Re-read the template's monthly aggregate and alert on a breach.

        Read failures are logged and treated as no alert.
        """
        key = TemplateAggregateKey.monthly(template_id, timestamp)
        try:
            aggregate = await self._store.get_template_aggregate(key.analytics_id)
        except Exception:
            logger.exception(f"Failure-rate read-back failed for {key.analytics_id}")
            return None

        alert = evaluate_failure_rate(aggregate, self.thresholds, self.subject_prefix)
        if alert is not None:
            await self.publish(alert)
        return alert

    async def check_call_ended(
        self,
        event: CallLifecycleEvent,
        quality_score: Optional[float],
        objectives: List[str],
    ) -> List[Alert]:
        alerts = evaluate_call_ended(
            event, quality_score, objectives, self.thresholds, self.subject_prefix
        )
        await self.publish_all(alerts)
        return alerts

    async def notify_escalation(self, event: CallLifecycleEvent, reason: str) -> Alert:
        alert = evaluate_escalation(event, reason, self.subject_prefix)
        await self.publish(alert)
        return alert

    async def notify_processing_error(
        self,
        raw_event: Any,
        error: BaseException,
        state: Optional[IngestionState] = None,
    ) -> Alert:
        """Alert on a failed invocation; `state` is the last state it reached."""
        alert = processing_error_alert(raw_event, error, self.subject_prefix, state)
        await self.publish(alert)
        return alert
