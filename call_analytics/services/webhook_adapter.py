"""
Voice-provider webhook adapter.

Translates VAPI webhook payloads into CallLifecycleEvents for the ingestion
pipeline and verifies webhook signatures.

Handled payload types:
- call.started  -> call_started
- call.ended    -> call_ended (duration from call.startedAt/endedAt, status
                   from call.status defaulting to "completed", transcript and
                   provider analysis from artifact/analysis)
- function-call -> function_call (escalate_* functions count as escalations)
- escalation    -> escalation_triggered

Other payload types (transfer, unknown) are acknowledged without processing.

Signatures:
    X-VAPI-Signature carries the hex HMAC-SHA256 of the raw request body keyed
    with the shared webhook secret. Without a configured secret, unsigned
    webhooks are accepted only in development environments.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from call_analytics.models.enums import EventType, ProviderWebhookType, Sentiment
from call_analytics.models.schemas import AssistantProfile, CallArtifact, CallLifecycleEvent
from call_analytics.services.assistant_directory import AssistantDirectory
from call_analytics.services.ingestion import MalformedEventError


logger = logging.getLogger(__name__)


SIGNATURE_HEADER = 'X-VAPI-Signature'

DEFAULT_CALL_STATUS = 'completed'


class WebhookSignatureError(PermissionError):
    """Webhook signature missing or invalid."""


class AssistantNotFoundError(LookupError):
    """Webhook references an assistant unknown to the directory."""


# =============================================================================
# Payload Models
# =============================================================================


class VapiCall(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: Optional[str] = None
    status: Optional[str] = None
    startedAt: Optional[datetime] = None
    endedAt: Optional[datetime] = None
    cost: Optional[float] = None


class VapiArtifact(BaseModel):
    model_config = ConfigDict(extra='ignore')

    transcript: Optional[str] = None
    summary: Optional[str] = None
    recordingUrl: Optional[str] = None


class VapiAnalysis(BaseModel):
    model_config = ConfigDict(extra='ignore')

    summary: Optional[str] = None
    sentiment: Optional[Sentiment] = None
    sentimentScore: Optional[float] = Field(default=None, ge=-1.0, le=1.0)


class VapiFunctionCall(BaseModel):
    model_config = ConfigDict(extra='ignore')

    name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class VapiWebhookPayload(BaseModel):
    """Fields of a VAPI webhook message used by the analytics pipeline."""
    model_config = ConfigDict(extra='ignore')

    type: str
    callId: Optional[str] = None
    assistantId: Optional[str] = None
    timestamp: Optional[datetime] = None
    call: Optional[VapiCall] = None
    artifact: Optional[VapiArtifact] = None
    analysis: Optional[VapiAnalysis] = None
    functionCall: Optional[VapiFunctionCall] = None
    reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def webhook_type(self) -> Optional[ProviderWebhookType]:
        try:
            return ProviderWebhookType(self.type)
        except ValueError:
            return None


# =============================================================================
# Signature Verification
# =============================================================================


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


def verify_signature(
    body: bytes,
    signature: Optional[str],
    secret: Optional[str],
    allow_unsigned: bool = False,
) -> None:
    """
    Verify a webhook body against its signature header.

    Args:
        body: Raw request body.
        signature: Value of the X-VAPI-Signature header.
        secret: Shared webhook secret; None when not configured.
        allow_unsigned: Accept requests when no secret is configured.

    Raises:
        WebhookSignatureError: If the request cannot be authenticated.
    """
    if not secret:
        if allow_unsigned:
            return
        raise WebhookSignatureError('Webhook secret not configured')

    if not signature:
        raise WebhookSignatureError(f'Missing {SIGNATURE_HEADER} header')

    expected = compute_signature(body, secret)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise WebhookSignatureError('Invalid webhook signature')


# =============================================================================
# Translation
# =============================================================================


def _call_duration(call: Optional[VapiCall]) -> float:
    if call is None or call.startedAt is None or call.endedAt is None:
        return 0.0
    return float(max(0, round((call.endedAt - call.startedAt).total_seconds())))


def _base_fields(payload: VapiWebhookPayload, profile: AssistantProfile) -> Dict[str, Any]:
    return {
        'callId': payload.callId or (payload.call.id if payload.call else None),
        'assistantId': profile.assistantId,
        'templateId': profile.templateId,
        'userId': profile.userId,
        'timestamp': payload.timestamp or datetime.now(timezone.utc),
    }


def _metadata(payload: VapiWebhookPayload, profile: AssistantProfile, **extra: Any) -> Dict[str, Any]:
    metadata = dict(payload.metadata)
    metadata['source'] = 'vapi'
    if profile.templateCategory:
        metadata['templateCategory'] = profile.templateCategory
    if payload.assistantId:
        metadata['providerAssistantId'] = payload.assistantId
    metadata.update({key: value for key, value in extra.items() if value is not None})
    return metadata


async def translate_webhook(
    raw_payload: Dict[str, Any],
    directory: AssistantDirectory,
) -> Optional[CallLifecycleEvent]:
    """
    Translate a VAPI webhook payload into a CallLifecycleEvent.

    Returns:
        The event, or None for payload types that are acknowledged but not
        processed.

    Raises:
        MalformedEventError: If the payload does not match the webhook shape.
        AssistantNotFoundError: If the assistant is not in the directory.
    """
    try:
        payload = VapiWebhookPayload.model_validate(raw_payload)
    except ValidationError as e:
        raise MalformedEventError(f'Invalid webhook payload: {e}') from e

    webhook_type = payload.webhook_type
    if webhook_type is None or webhook_type is ProviderWebhookType.TRANSFER:
        logger.info(f"Unhandled webhook type: {payload.type}")
        return None

    if not payload.assistantId:
        raise MalformedEventError('Webhook payload has no assistantId')

    profile = await directory.lookup(payload.assistantId)
    if profile is None:
        raise AssistantNotFoundError(f'Assistant not found for VAPI ID: {payload.assistantId}')

    fields = _base_fields(payload, profile)

    if webhook_type is ProviderWebhookType.CALL_STARTED:
        return CallLifecycleEvent(
            eventType=EventType.CALL_STARTED.value,
            metadata=_metadata(payload, profile),
            **fields,
        )

    if webhook_type is ProviderWebhookType.CALL_ENDED:
        artifact = payload.artifact or VapiArtifact()
        analysis = payload.analysis or VapiAnalysis()
        call = payload.call
        return CallLifecycleEvent(
            eventType=EventType.CALL_ENDED.value,
            duration=_call_duration(call),
            status=(call.status if call and call.status else DEFAULT_CALL_STATUS),
            artifact=CallArtifact(
                transcript=artifact.transcript or '',
                summary=artifact.summary or analysis.summary,
                sentiment=analysis.sentiment,
                sentimentScore=analysis.sentimentScore,
                recordingUrl=artifact.recordingUrl,
            ),
            metadata=_metadata(payload, profile, cost=call.cost if call else None),
            **fields,
        )

    if webhook_type is ProviderWebhookType.FUNCTION_CALL:
        if payload.functionCall is None:
            raise MalformedEventError('function-call webhook has no functionCall')
        return CallLifecycleEvent(
            eventType=EventType.FUNCTION_CALL.value,
            metadata=_metadata(
                payload,
                profile,
                functionName=payload.functionCall.name,
                parameters=payload.functionCall.parameters,
            ),
            **fields,
        )

    # ProviderWebhookType.ESCALATION
    return CallLifecycleEvent(
        eventType=EventType.ESCALATION_TRIGGERED.value,
        metadata=_metadata(
            payload,
            profile,
            escalationReason=payload.reason or payload.metadata.get('reason'),
        ),
        **fields,
    )
