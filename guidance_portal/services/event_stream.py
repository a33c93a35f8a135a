"""
In-process live update streams.

Producers call ``EventBroker.publish``; consumers hold a ``Subscription``,
iterate it with ``async for`` and must close it (directly or with
``async with``) once they no longer need updates. Each subscription has a
bounded queue: when a consumer falls behind, its oldest pending update is
dropped so producers are never blocked.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional, Set

from guidance_portal.core.config import settings
from guidance_portal.schemas.events import AppointmentChanged, NotificationCreated

logger = logging.getLogger(__name__)

_CLOSED = object()

class Subscription:
    def __init__(self, broker: "EventBroker", predicate: Optional[Callable[[Any], bool]], maxsize: int):
        self._broker = broker
        self._predicate = predicate
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0
    
    def _offer(self, item: Any) -> bool:
        if self.closed:
            return False
        if self._predicate is not None and item is not _CLOSED and not self._predicate(item):
            return False
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            logger.warning(f"Subscriber on {self._broker.name} is behind; dropped oldest update")
        self._queue.put_nowait(item)
        return True
    
    async def get(self) -> Any:
        """Wait for the next update. Raises StopAsyncIteration once closed."""
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item
    
    def close(self) -> None:
        if self.closed:
            return
        self._broker._remove(self)
        self._offer(_CLOSED)
        self.closed = True
    
    def __aiter__(self):
        return self
    
    async def __anext__(self) -> Any:
        return await self.get()
    
    async def __aenter__(self) -> "Subscription":
        return self
    
    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

class EventBroker:
    def __init__(self, name: str):
        self.name = name
        self._subscribers: Set[Subscription] = set()
    
    def subscribe(self, predicate: Optional[Callable[[Any], bool]] = None, maxsize: Optional[int] = None) -> Subscription:
        subscription = Subscription(self, predicate, maxsize or settings.STREAM_QUEUE_SIZE)
        self._subscribers.add(subscription)
        return subscription
    
    def publish(self, event: Any) -> int:
        """Deliver an event to every matching subscriber. Returns the delivery count."""
        delivered = 0
        for subscription in list(self._subscribers):
            if subscription._offer(event):
                delivered += 1
        return delivered
    
    def _remove(self, subscription: Subscription) -> None:
        self._subscribers.discard(subscription)
    
    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

appointment_events = EventBroker("appointments")
notification_events = EventBroker("notifications")

def publish_appointment_change(event: str, appointment: dict) -> None:
    appointment_events.publish(AppointmentChanged(
        event=event,
        appointmentId=appointment["id"],
        studentId=appointment["studentId"],
        date=appointment["date"],
        timeSlot=appointment["timeSlot"],
        status=appointment["status"],
        occurredAt=datetime.utcnow()
    ))

def publish_notification(notification: dict) -> None:
    notification_events.publish(NotificationCreated(
        notificationId=notification["id"],
        userId=notification["userId"],
        type=notification["type"],
        title=notification["title"],
        message=notification["message"],
        appointmentId=notification.get("appointmentId"),
        occurredAt=datetime.utcnow()
    ))
