"""
FastAPI router for voice-provider (VAPI) webhooks.

Key Endpoints:
- POST /webhooks/vapi - Verify, translate and process one VAPI webhook

The raw request body is read before JSON decoding because the signature in
the X-VAPI-Signature header is computed over the exact bytes sent.

Response Codes:
- 200: Processed, or acknowledged without processing (transfer and unknown types)
- 400: Body is not valid JSON
- 401: Signature missing or invalid
- 404: Assistant unknown to the directory
- 422: Payload does not match the webhook shape
- 500: Processing failed; the provider should retry
"""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request

from call_analytics.core.dependencies import DirectoryDep, PipelineDep, SettingsDep
from call_analytics.services.ingestion import MalformedEventError
from call_analytics.services.webhook_adapter import (
    SIGNATURE_HEADER,
    AssistantNotFoundError,
    WebhookSignatureError,
    translate_webhook,
    verify_signature,
)


# Logger for this module
logger = logging.getLogger(__name__)


router = APIRouter()


@router.post("/vapi", response_model=dict)
async def receive_vapi_webhook(
    request: Request,
    settings: SettingsDep,
    directory: DirectoryDep,
    pipeline: PipelineDep,
) -> Dict[str, Any]:
    """
    Receive one VAPI webhook.

    Returns:
        {"message": ..., "type": ..., "callId": ..., "result": IngestionResult | None}
    """
    body = await request.body()

    try:
        verify_signature(
            body,
            request.headers.get(SIGNATURE_HEADER),
            settings.vapi_webhook_secret,
            allow_unsigned=settings.is_development,
        )
    except WebhookSignatureError as e:
        logger.warning(f"Rejected webhook: {e}")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Request body is not valid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")

    logger.info(f"Processing VAPI webhook: {payload.get('type')} {payload.get('callId')}")

    try:
        event = await translate_webhook(payload, directory)
        if event is None:
            return {
                "message": "Event type not handled",
                "type": payload.get("type"),
                "callId": payload.get("callId"),
                "result": None,
            }

        result = await pipeline.process(event.model_dump(mode="json"))
    except AssistantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except MalformedEventError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error(f"Error processing VAPI webhook: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="Failed to process webhook"
        )

    return {
        "message": "Webhook processed",
        "type": payload.get("type"),
        "callId": event.callId,
        "result": result.model_dump(mode="json"),
    }
