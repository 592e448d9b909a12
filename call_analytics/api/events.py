"""
FastAPI router for the internal event-bus push endpoint.

Key Endpoints:
- POST /events - Process one call-lifecycle event through the ingestion pipeline

Response Codes:
- 200: Event processed, skipped as a duplicate delivery, or ignored as an
  unknown event type (body is an IngestionResult)
- 422: Malformed event (not redelivered by a well-behaved publisher)
- 500: Primary aggregate write failed; the publisher should redeliver

Events may be posted bare or wrapped in an event-bus envelope {"detail": {...}}.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException

from call_analytics.core.dependencies import PipelineDep
from call_analytics.models.schemas import IngestionResult
from call_analytics.services.ingestion import MalformedEventError


# Logger for this module
logger = logging.getLogger(__name__)


# =============================================================================
# Router Definition
# =============================================================================

router = APIRouter()


@router.post("", response_model=IngestionResult)
async def ingest_event(
    pipeline: PipelineDep,
    payload: Dict[str, Any] = Body(...),
) -> IngestionResult:
    """
    Process one call-lifecycle event.

    Raises:
        HTTPException 422: If the event is malformed.
        HTTPException 500: If the primary aggregate write fails.
    """
    try:
        return await pipeline.process(payload)
    except MalformedEventError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error(f"Error processing event: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="Failed to process event"
        )
