"""Real-time notifications for browser and agent subscribers.

Events are published from any thread (the change watcher, HTTP handlers) and
consumed on the event loop that subscribed. Each subscriber has a small
bounded mailbox; publishing never blocks, and an event that does not fit is
dropped for that subscriber only.
"""

import asyncio
import itertools
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAILBOX_SIZE = 4


class EventType(str, Enum):
    """Types of events sent to subscribers."""
    EDIT_DETECTED = "edit-detected"
    STATE_CHANGED = "state-changed"
    COMMENTS_CHANGED = "comments-changed"
    REVIEW_FINISHED = "review-finished"
    SERVER_SHUTDOWN = "server-shutdown"


@dataclass
class Event:
    """A single notification."""
    type: EventType
    data: Dict[str, Any]
    id: int
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp,
        }

    def to_sse(self) -> str:
        """Encode as a server-sent events frame."""
        return f"id: {self.id}\nevent: {self.type.value}\ndata: {json.dumps(self.to_dict())}\n\n"


@dataclass
class Subscriber:
    """One consumer's mailbox, bound to the event loop it subscribed from."""
    id: str
    queue: "asyncio.Queue[Event]"
    loop: asyncio.AbstractEventLoop
    dropped: int = 0
    last_event_id: Optional[str] = None

    def offer(self, event: Event) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Dropped %s event for slow subscriber %s", event.type.value, self.id)


class EventManager:
    """Publish/subscribe hub with best-effort, non-blocking delivery."""

    def __init__(self, mailbox_size: int = DEFAULT_MAILBOX_SIZE) -> None:
        self.mailbox_size = mailbox_size
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    async def subscribe(self) -> Subscriber:
        """Register a subscriber on the running event loop."""
        subscriber = Subscriber(
            id=uuid.uuid4().hex[:8],
            queue=asyncio.Queue(maxsize=self.mailbox_size),
            loop=asyncio.get_running_loop(),
        )
        with self._lock:
            self._subscribers[subscriber.id] = subscriber
        return subscriber

    async def unsubscribe(self, subscriber_id: str) -> None:
        with self._lock:
            self._subscribers.pop(subscriber_id, None)

    def publish(self, event_type: EventType, data: Optional[Dict[str, Any]] = None) -> Event:
        """Deliver an event to every subscriber without blocking. Safe from any thread."""
        with self._lock:
            event = Event(type=event_type, data=data or {}, id=next(self._ids))
            subscribers = list(self._subscribers.values())

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        for subscriber in subscribers:
            if subscriber.loop is running:
                subscriber.offer(event)
                continue
            try:
                subscriber.loop.call_soon_threadsafe(subscriber.offer, event)
            except RuntimeError:
                # Loop already closed; the subscriber is gone.
                with self._lock:
                    self._subscribers.pop(subscriber.id, None)
        return event

    async def wait_for_events(self, subscriber: Subscriber, timeout: float = 30.0) -> List[Event]:
        """Wait up to timeout for at least one event, then drain the mailbox."""
        try:
            first = await asyncio.wait_for(subscriber.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return []

        events = [first]
        while True:
            try:
                events.append(subscriber.queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        subscriber.last_event_id = str(events[-1].id)
        return events
