# File: src/parktrack/infrastructure/messaging.py
"""
In-process domain event publishing

The coordinator announces session transitions and rejected scans as domain
events. Subscribers (dashboards, notification senders, audit trails) live
outside the core; a failing subscriber is logged and never breaks the
operation that emitted the event.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4
import asyncio
import json
import logging


class EventType(str, Enum):
    """Domain event types"""
    SESSION_STARTED = "session_started"
    SESSION_COMPLETED = "session_completed"
    SESSION_FORCE_CLOSED = "session_force_closed"
    SCAN_REJECTED = "scan_rejected"


@dataclass
class DomainEvent:
    """Domain event message"""
    event_type: EventType
    driver_id: Optional[str] = None
    session_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    message_id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['event_type'] = self.event_type.value
        data['message_id'] = str(self.message_id)
        data['timestamp'] = self.timestamp.isoformat()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


# ============================================================================
# EVENT HANDLERS
# ============================================================================

class EventHandler(ABC):
    """Abstract base class for event handlers"""

    @abstractmethod
    def handle(self, event: DomainEvent) -> None:
        """Handle a domain event"""
        pass

    def can_handle(self, event: DomainEvent) -> bool:
        return True


class AsyncEventHandler(ABC):
    """Abstract base class for async event handlers"""

    @abstractmethod
    async def handle(self, event: DomainEvent) -> None:
        """Handle a domain event asynchronously"""
        pass

    def can_handle(self, event: DomainEvent) -> bool:
        return True


# ============================================================================
# EVENT BUS (In-memory)
# ============================================================================

class EventBus:
    """
    In-memory event bus for intra-process event publishing
    Implements publish/subscribe within the same process
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[EventHandler]] = {}
        self._async_subscribers: Dict[EventType, List[AsyncEventHandler]] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._subscribers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
            self._logger.debug(f"Subscribed {handler.__class__.__name__} to {event_type.value}")

    def subscribe_async(self, event_type: EventType, handler: AsyncEventHandler) -> None:
        handlers = self._async_subscribers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
            self._logger.debug(f"Subscribed async {handler.__class__.__name__} to {event_type.value}")

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            self._logger.debug(f"Unsubscribed {handler.__class__.__name__} from {event_type.value}")

    def publish(self, event: DomainEvent) -> None:
        """Publish an event to synchronous subscribers"""
        self._logger.info(f"Publishing event: {event.event_type.value} (ID: {event.message_id})")
        for handler in self._subscribers.get(event.event_type, []):
            if handler.can_handle(event):
                try:
                    handler.handle(event)
                except Exception as e:
                    self._logger.error(
                        f"Error handling event {event.event_type.value} with {handler.__class__.__name__}: {e}",
                        exc_info=True
                    )

    async def publish_async(self, event: DomainEvent) -> None:
        """Publish an event to synchronous and asynchronous subscribers"""
        self.publish(event)

        handlers = [h for h in self._async_subscribers.get(event.event_type, []) if h.can_handle(event)]
        if not handlers:
            return

        results = await asyncio.gather(*(h.handle(event) for h in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                self._logger.error(f"Error in async handler {handler.__class__.__name__}: {result}")

    def clear_subscribers(self) -> None:
        """Clear all subscribers (for testing)"""
        self._subscribers.clear()
        self._async_subscribers.clear()


class RecordingEventHandler(EventHandler):
    """Keeps every event it sees; handy for audit trails and tests"""

    def __init__(self):
        self.events: List[DomainEvent] = []

    def handle(self, event: DomainEvent) -> None:
        self.events.append(event)
