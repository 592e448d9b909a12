"""
Event Router - dispatch call-lifecycle events to their processing routine.

Each recognized event type maps to exactly one async handler. An event whose
type is not registered is logged at warning level and treated as handled, so
event types introduced by producers after deployment never fail the pipeline
or trigger redelivery.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from call_analytics.models.enums import EventType
from call_analytics.models.schemas import CallLifecycleEvent


logger = logging.getLogger(__name__)

T = TypeVar('T')

# Handlers take the event first; extra route() arguments are passed through
EventHandler = Callable[..., Awaitable[T]]


class EventRouter(Generic[T]):
    """Registry of one handler per event type."""

    def __init__(self, handlers: Optional[Dict[EventType, EventHandler]] = None):
        self._handlers: Dict[EventType, EventHandler] = dict(handlers or {})

    def register(self, event_type: EventType, handler: EventHandler) -> None:
        if event_type in self._handlers:
            raise ValueError(f"Handler already registered for {event_type.value}")
        self._handlers[event_type] = handler

    def handles(self, event_type: Optional[EventType]) -> bool:
        return event_type is not None and event_type in self._handlers

    async def route(self, event: CallLifecycleEvent, *args: Any) -> Optional[T]:
        """
        Dispatch `event` to its handler, followed by any extra `args`.

        Returns:
            The handler's result, or None for an unrecognized event type.
        """
        event_type = event.event_type
        if not self.handles(event_type):
            logger.warning(f"Unknown event type: {event.eventType}")
            return None

        return await self._handlers[event_type](event, *args)
