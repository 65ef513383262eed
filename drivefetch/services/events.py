"""Fan-out of task events to live subscribers."""
import asyncio
import itertools
import logging
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterable, Optional

from pydantic import BaseModel, ConfigDict

from drivefetch.state.models import ProgressSnapshot, Task

logger = logging.getLogger("drivefetch")

SUBSCRIBER_QUEUE_SIZE = 1000


class EventType(str, Enum):
    task_start = "task_start"
    progress = "progress"
    warning = "warning"
    task_complete = "task_complete"
    task_error = "task_error"
    cancelled = "cancelled"


class Event(BaseModel):
    """Immutable, self-contained message delivered to every subscriber."""
    model_config = ConfigDict(frozen=True)

    type: EventType
    task_id: Optional[str] = None
    task: Optional[Task] = None
    progress: Optional[ProgressSnapshot] = None
    warning: Optional[str] = None
    error: Optional[str] = None
    output_dir: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class Subscription:
    """A subscriber's private queue; iterate it to receive events."""

    def __init__(self, subscriber_id: int, maxsize: int):
        self.id = subscriber_id
        self.queue: "asyncio.Queue[Event]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def __aiter__(self) -> AsyncIterator[Event]:
        return self

    async def __anext__(self) -> Event:
        return await self.queue.get()

    async def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next event, or None when timeout elapses first."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class EventHub:
    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self.queue_size = queue_size
        self._subscribers: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, replay: Iterable[Event] = ()) -> Subscription:
        sub = Subscription(next(self._ids), self.queue_size)
        for event in replay:
            self._offer(sub, event)
        self._subscribers[sub.id] = sub
        logger.info("Subscriber added subscriber_id=%d count=%d", sub.id, len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if self._subscribers.pop(sub.id, None) is not None:
            logger.info("Subscriber removed subscriber_id=%d count=%d", sub.id, len(self._subscribers))

    def publish(self, event: Event) -> None:
        logger.debug("Publish event type=%s task_id=%s subscribers=%d", event.type.value, event.task_id, len(self._subscribers))
        for sub in list(self._subscribers.values()):
            self._offer(sub, event)

    def _offer(self, sub: Subscription, event: Event) -> None:
        try:
            sub.queue.put_nowait(event)
        except asyncio.QueueFull:
            sub.dropped += 1
            logger.warning("Subscriber queue full, dropping event subscriber_id=%d type=%s", sub.id, event.type.value)
