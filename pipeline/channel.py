"""
Change Channel

Publishes catalyst insert/update/delete notifications to subscribers.

Delivery is at-most-once with no replay: a subscriber that is slow, full
or not yet connected simply misses events. Consumers that need a complete
picture must reconcile by refetching from CatalystStore periodically
(see CatalystStore.list_catalysts).

Backends:
- InMemoryChangeChannel: bounded per-subscriber queues, drops when full
- RedisChangeChannel: Redis pub/sub
"""

import json
import logging
import os
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Protocol

import redis

from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


ChangeKind = Literal["insert", "update", "delete"]


@dataclass
class ChangeEvent:
    """One change notification."""
    kind: ChangeKind
    catalyst_id: Optional[int]
    ticker: str
    event_date: Optional[datetime] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "catalyst_id": self.catalyst_id,
            "ticker": self.ticker,
            "event_date": self.event_date.isoformat() if self.event_date else None,
            "payload": self.payload,
            "emitted_at": self.emitted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChangeEvent":
        event_date = data.get("event_date")
        return cls(
            kind=data["kind"],
            catalyst_id=data.get("catalyst_id"),
            ticker=data.get("ticker", ""),
            event_date=datetime.fromisoformat(event_date) if event_date else None,
            payload=data.get("payload") or {},
            emitted_at=datetime.fromisoformat(data["emitted_at"]) if data.get("emitted_at") else utc_now(),
        )


class Subscription(Protocol):
    """
    Consumer handle.

    `poll()` returns the next event or None after `timeout` seconds.
    Missing events are never redelivered.
    """

    def poll(self, timeout: float = 0.0) -> Optional[ChangeEvent]:
        ...

    def close(self) -> None:
        ...


class ChangeChannel(Protocol):
    def publish(self, event: ChangeEvent) -> None:
        ...

    def subscribe(self) -> Subscription:
        ...


class _QueueSubscription:
    """Subscription over a bounded in-process queue."""

    def __init__(self, channel: "InMemoryChangeChannel", maxsize: int):
        self._channel = channel
        self.queue: "queue.Queue[ChangeEvent]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def poll(self, timeout: float = 0.0) -> Optional[ChangeEvent]:
        try:
            if timeout <= 0:
                return self.queue.get_nowait()
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._channel._unsubscribe(self)


class InMemoryChangeChannel:
    """Fan-out to in-process subscribers. Events published before subscribe() are not seen."""

    def __init__(self, queue_size: int = 1000):
        self.queue_size = queue_size
        self._subscribers: List[_QueueSubscription] = []
        self._lock = threading.Lock()

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        for sub in subscribers:
            try:
                sub.queue.put_nowait(event)
            except queue.Full:
                sub.dropped += 1
                logger.warning(
                    f"Subscriber queue full, dropped {event.kind} for {event.ticker} "
                    f"({sub.dropped} dropped so far)"
                )

    def subscribe(self) -> _QueueSubscription:
        sub = _QueueSubscription(self, self.queue_size)
        with self._lock:
            self._subscribers.append(sub)
        return sub

    def _unsubscribe(self, sub: _QueueSubscription) -> None:
        with self._lock:
            if sub in self._subscribers:
                self._subscribers.remove(sub)


class _RedisSubscription:
    """Subscription over a Redis pub/sub connection."""

    def __init__(self, client: "redis.Redis", channel_name: str):
        self._pubsub = client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.subscribe(channel_name)

    def poll(self, timeout: float = 0.0) -> Optional[ChangeEvent]:
        message = self._pubsub.get_message(timeout=timeout)
        if not message or message.get("type") != "message":
            return None
        try:
            return ChangeEvent.from_dict(json.loads(message["data"]))
        except (ValueError, KeyError) as e:
            logger.warning(f"Discarding malformed change event: {e}")
            return None

    def close(self) -> None:
        self._pubsub.close()


class RedisChangeChannel:
    """Redis pub/sub channel. Messages to absent subscribers are lost."""

    def __init__(
        self,
        channel_name: str = "catalyst-updates",
        client: Optional["redis.Redis"] = None,
        redis_url: Optional[str] = None
    ):
        if client is None:
            url = redis_url or os.environ.get("REDIS_URL", "redis://localhost:6379/0")
            client = redis.Redis.from_url(url, decode_responses=True)
        self.client = client
        self.channel_name = channel_name

    def publish(self, event: ChangeEvent) -> None:
        try:
            self.client.publish(self.channel_name, json.dumps(event.to_dict()))
        except redis.exceptions.RedisError as e:
            # at-most-once: a failed publish is logged, not retried
            logger.warning(f"Failed to publish {event.kind} for {event.ticker}: {e}")

    def subscribe(self) -> _RedisSubscription:
        return _RedisSubscription(self.client, self.channel_name)


def build_channel(settings: Optional[dict] = None) -> ChangeChannel:
    """Create the channel backend from the `channel` config section and CATALYST_CHANNEL."""
    settings = settings or {}
    backend = os.environ.get("CATALYST_CHANNEL", settings.get("backend", "memory"))
    if backend == "redis":
        return RedisChangeChannel(channel_name=settings.get("redis_channel", "catalyst-updates"))
    return InMemoryChangeChannel(queue_size=settings.get("queue_size", 1000))
