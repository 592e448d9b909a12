"""
FastAPI router for the dashboard read path.

Key Endpoints:
- GET /analytics/templates/{template_id}?period=YYYY-MM - Monthly template aggregate
- GET /analytics/templates/{template_id}/hourly?date=YYYY-MM-DD - Hourly capacity rows
- GET /analytics/templates/{template_id}/active-calls - Concurrent-calls gauge
- GET /analytics/assistants/{assistant_id} - Assistant aggregate

Aggregates that were never written are returned as zero-valued rows rather
than 404, matching how the dashboard displays templates without traffic.
Derived ratios (successRate, averageCallDuration, averageQualityScore,
averageRating) are computed at read time.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query

from call_analytics.core.dependencies import StoreDep
from call_analytics.models.deltas import TemplateAggregateKey
from call_analytics.models.schemas import AssistantAggregate, TemplateAggregate


# Logger for this module
logger = logging.getLogger(__name__)

PERIOD_PATTERN = r'^\d{4}-(0[1-9]|1[0-2])$'


router = APIRouter()


@router.get("/templates/{template_id}", response_model=TemplateAggregate)
async def get_template_analytics(
    template_id: str,
    store: StoreDep,
    period: Optional[str] = Query(
        None,
        pattern=PERIOD_PATTERN,
        description="Calendar month (YYYY-MM); defaults to the current month"
    ),
) -> TemplateAggregate:
    """Monthly aggregate for one template."""
    period = period or datetime.now(timezone.utc).strftime('%Y-%m')
    key = TemplateAggregateKey(template_id=template_id, period=period)

    try:
        aggregate = await store.get_template_aggregate(key.analytics_id)
    except Exception as e:
        logger.error(f"Error fetching template analytics: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch template analytics")

    return aggregate or TemplateAggregate(
        analyticsId=key.analytics_id,
        templateId=template_id,
        period=period,
    )


@router.get("/templates/{template_id}/hourly", response_model=List[TemplateAggregate])
async def get_template_hourly_analytics(
    template_id: str,
    store: StoreDep,
    day: Optional[date] = Query(None, alias="date", description="UTC date; defaults to today"),
) -> List[TemplateAggregate]:
    """Capacity-planning rows for one template and day, ordered by hour."""
    day = day or datetime.now(timezone.utc).date()

    try:
        return await store.list_hourly_aggregates(template_id, day)
    except Exception as e:
        logger.error(f"Error fetching hourly analytics: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch hourly analytics")


@router.get("/templates/{template_id}/active-calls", response_model=dict)
async def get_active_calls(template_id: str, store: StoreDep) -> Dict[str, Any]:
    """Number of calls started and not yet ended (or expired) for a template."""
    now = datetime.now(timezone.utc)

    try:
        count = await store.count_active_calls(template_id, now)
    except Exception as e:
        logger.error(f"Error counting active calls: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to count active calls")

    return {"templateId": template_id, "activeCalls": count, "asOf": now.isoformat()}


@router.get("/assistants/{assistant_id}", response_model=AssistantAggregate)
async def get_assistant_analytics(assistant_id: str, store: StoreDep) -> AssistantAggregate:
    try:
        aggregate = await store.get_assistant_aggregate(assistant_id)
    except Exception as e:
        logger.error(f"Error fetching assistant analytics: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch assistant analytics")

    return aggregate or AssistantAggregate(assistantId=assistant_id)
