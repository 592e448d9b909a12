"""
API package initialization.

This package contains FastAPI router modules for the call analytics service:
- events: Internal event-bus push endpoint
- webhooks: Voice-provider webhook endpoint
- analytics: Dashboard read path for template and assistant aggregates
"""

from fastapi import APIRouter

# Import router modules
from call_analytics.api.events import router as events_router
from call_analytics.api.webhooks import router as webhooks_router
from call_analytics.api.analytics import router as analytics_router

# Create main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(events_router, prefix="/events", tags=["events"])
api_router.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(analytics_router, prefix="/analytics", tags=["analytics"])

# Export all routers for selective imports
__all__ = [
    "api_router",
    "events_router",
    "webhooks_router",
    "analytics_router",
]
