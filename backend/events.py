"""
Live room updates.

Every membership or lifecycle change publishes a snapshot of the room view.
Subscribers (the server-sent events route) receive snapshots for one room.
Supports an in-memory fan-out for tests/local runs and Redis pub/sub for
multi-process deployments.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)


class RoomSubscription(Protocol):
    def get(self, timeout: float | None = None) -> Optional[dict]:
        ...

    def close(self) -> None:
        ...


class RoomEventBus(Protocol):
    """Minimal publish/subscribe interface keyed by room id."""

    def publish(self, room_id: str, payload: dict) -> None:
        ...

    def subscribe(self, room_id: str) -> RoomSubscription:
        ...


@dataclass
class InMemorySubscription:
    bus: "InMemoryRoomEventBus"
    room_id: str
    items: "queue.Queue[dict]" = field(default_factory=queue.Queue)

    def get(self, timeout: float | None = None) -> Optional[dict]:
        try:
            return self.items.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self.bus._unsubscribe(self)


class InMemoryRoomEventBus:
    """Thread-safe fan-out to every subscriber of a room."""

    def __init__(self):
        self._subscribers: dict[str, list[InMemorySubscription]] = {}
        self._lock = threading.Lock()

    def publish(self, room_id: str, payload: dict) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(room_id, []))
        for subscription in subscribers:
            subscription.items.put(payload)

    def subscribe(self, room_id: str) -> InMemorySubscription:
        subscription = InMemorySubscription(bus=self, room_id=room_id)
        with self._lock:
            self._subscribers.setdefault(room_id, []).append(subscription)
        return subscription

    def subscriber_count(self, room_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(room_id, []))

    def _unsubscribe(self, subscription: InMemorySubscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.room_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.room_id, None)


@dataclass
class RedisSubscription:
    pubsub: "redis.client.PubSub"

    def get(self, timeout: float | None = None) -> Optional[dict]:
        try:
            message = self.pubsub.get_message(
                ignore_subscribe_messages=True, timeout=timeout or 0
            )
        except redis_exceptions.ConnectionError:
            logger.warning("Redis connection dropped while reading room events")
            return None
        if not message or message.get("type") != "message":
            return None
        data = message["data"]
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return json.loads(data)

    def close(self) -> None:
        self.pubsub.close()


@dataclass
class RedisRoomEventBus:
    """Redis-backed bus using one pub/sub channel per room."""

    url: str
    channel_prefix: str = "rideshare"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def channel(self, room_id: str) -> str:
        return f"{self.channel_prefix}:room:{room_id}"

    def publish(self, room_id: str, payload: dict) -> None:
        try:
            self.client.publish(self.channel(room_id), json.dumps(payload, default=str))
        except redis_exceptions.ConnectionError:
            # Managed Redis resets connections; reconnect for the next publish.
            logger.warning("Redis publish failed for room %s", room_id)
            self.client = redis.Redis.from_url(self.url)

    def subscribe(self, room_id: str) -> RedisSubscription:
        pubsub = self.client.pubsub()
        pubsub.subscribe(self.channel(room_id))
        return RedisSubscription(pubsub=pubsub)


def format_sse(payload: dict, event: str = "room") -> str:
    return f"event: {event}\ndata: {json.dumps(payload, default=str)}\n\n"
