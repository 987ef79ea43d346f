"""Publisher service fanning job progress events out to listeners."""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.config import settings

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = frozenset({"complete", "cancelled", "error"})


@dataclass
class ProgressEvent:
    """A named event on a job's progress stream."""
    job_id: str
    event: str
    data: Dict[str, Any]

    @property
    def is_terminal(self) -> bool:
        return self.event in TERMINAL_EVENTS

    def to_message(self) -> Dict[str, Any]:
        return {"type": self.event, "job_id": self.job_id, "data": self.data}


class Subscription:
    """FIFO queue of one listener's events for one job."""

    def __init__(self, publisher: "ProgressPublisher", job_id: str):
        self.publisher = publisher
        self.job_id = job_id
        self.queue: "asyncio.Queue[ProgressEvent]" = asyncio.Queue()

    async def get(self, timeout: Optional[float] = None) -> ProgressEvent:
        """Next event; raises asyncio.TimeoutError if none arrives in time."""
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def pending(self) -> bool:
        return not self.queue.empty()

    def close(self):
        self.publisher.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info):
        self.close()


class ProgressPublisher:
    """Per-job event broker.

    In-process listeners get their own queue per job, so events of one job
    arrive in the order they were published. Every event is also published
    to a Redis channel for WebSocket clients served by other processes.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, channel: str = None):
        self.redis = redis_client
        self.channel = channel or settings.redis_progress_channel
        self._subscribers: Dict[str, Set[Subscription]] = {}

    def subscribe(self, job_id: str) -> Subscription:
        subscription = Subscription(self, job_id)
        self._subscribers.setdefault(job_id, set()).add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        listeners = self._subscribers.get(subscription.job_id)
        if listeners is None:
            return
        listeners.discard(subscription)
        if not listeners:
            del self._subscribers[subscription.job_id]

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))

    async def publish(self, event: ProgressEvent):
        """Deliver to local listeners, then mirror to Redis."""
        for subscription in list(self._subscribers.get(event.job_id, ())):
            subscription.queue.put_nowait(event)

        if self.redis is None:
            return
        try:
            await self.redis.publish(self.channel, json.dumps(event.to_message(), default=str))
        except RedisError as e:
            logger.warning(f"Failed to mirror {event.event} event for job {event.job_id} to Redis: {e}")
