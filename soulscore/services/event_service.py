# soulscore/services/event_service.py
"""
Event Service for SoulScore.

Provides a central in-process event emission and subscription system.
Writers publish events (for example ``content.changed`` when a user's
content set changes) instead of calling dependent components directly;
dependents subscribe once at import time.

Handlers run inside the publisher's session, so their writes commit or roll
back together with the change that triggered them.

Usage:
    from soulscore.services.event_service import ContentChanged, event_service

    @event_service.subscribe(ContentChanged.EVENT_NAME)
    async def on_content_changed(session, event):
        ...

    await event_service.emit(session, ContentChanged(user_id="user_1", change="created"))
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger("soulscore.services.event_service")

EventHandler = Callable[[AsyncSession, Any], Awaitable[None]]


@dataclass(frozen=True)
class ContentChanged:
    """A user's content set changed (content created, edited or deleted)."""

    EVENT_NAME: ClassVar[str] = "content.changed"

    user_id: str
    content_id: Optional[UUID] = None
    change: str = "updated"
    occurred_at: Optional[datetime] = None

    @property
    def event_name(self) -> str:
        return self.EVENT_NAME


class EventService:
    """
    Central event bus.

    Events follow a dotted naming convention (``content.changed``). Each
    event object exposes ``event_name``; handlers receive the session and
    the event object.
    """

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}

    def subscribe(self, event_name: str, handler: Optional[EventHandler] = None):
        """
        Register a handler for an event name.

        Can be used directly or as a decorator. Registering the same handler
        twice is a no-op.
        """
        def register(func: EventHandler) -> EventHandler:
            handlers = self._handlers.setdefault(event_name, [])
            if func not in handlers:
                handlers.append(func)
                logger.debug(f"Subscribed {func.__qualname__} to {event_name}")
            return func

        if handler is not None:
            return register(handler)
        return register

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, event_name: str) -> List[EventHandler]:
        return list(self._handlers.get(event_name, []))

    async def emit(self, session: AsyncSession, event: Any) -> int:
        """
        Deliver an event to every subscribed handler, in registration order.

        Handler errors propagate to the publisher so the triggering change
        is rolled back with them.

        Args:
            session: Database session of the publisher
            event: Event object with an ``event_name`` attribute

        Returns:
            Number of handlers invoked
        """
        handlers = self.handlers_for(event.event_name)
        logger.info(f"Event emitted: {event.event_name} ({len(handlers)} handlers)")

        for handler in handlers:
            await handler(session, event)
        return len(handlers)


# Global service instance
event_service = EventService()
