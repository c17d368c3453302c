"""
Realtime notifier.

Fan-out of lifecycle events to channels keyed by round, event, participant
and the admin room. Delivery is at-most-once: a full subscriber queue or a
broker outage drops the message and logs it. Clients reconcile by
refetching, so nothing here may raise into the attempt lifecycle.
"""
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Set
import asyncio
import json
import logging

import redis.asyncio as aioredis

from ..core.config import settings
from ..utils.timezone import isoformat_utc, utc_now

logger = logging.getLogger(__name__)


ADMIN_CHANNEL = "admin"


def round_channel(round_id: str) -> str:
    return f"round:{round_id}"


def event_channel(event_id: str) -> str:
    return f"event:{event_id}"


def participant_channel(participant_id: str) -> str:
    return f"participant:{participant_id}"


def attempt_finalized_data(attempt, event_id: Optional[str]) -> Dict[str, Any]:
    """Plain snapshot of a finalized attempt, safe to publish after the session moves on"""
    return {
        "attempt_id": attempt.id,
        "participant_id": attempt.participant_id,
        "round_id": attempt.round_id,
        "event_id": event_id,
        "status": attempt.status,
        "reason": attempt.finalize_reason,
        "violation_count": attempt.violation_count,
        "completed_at": isoformat_utc(attempt.completed_at) if attempt.completed_at else None,
    }


class Subscription:
    """Async iterator over messages delivered to a set of channels"""

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        return await self.get()

    async def get(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        raise NotImplementedError


class _QueueSubscription(Subscription):
    def __init__(self, queue: asyncio.Queue):
        self.queue = queue

    async def get(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)


class InMemoryBroker:
    """Single-process broker backed by bounded asyncio queues."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}

    async def publish(self, channel: str, message: Dict[str, Any]) -> int:
        delivered = 0
        for queue in list(self._subscribers.get(channel, ())):
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Dropping {message.get('type')} for slow subscriber on {channel}")
        return delivered

    @asynccontextmanager
    async def subscribe(self, channels: Iterable[str]) -> AsyncIterator[Subscription]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        channels = list(channels)
        for channel in channels:
            self._subscribers.setdefault(channel, set()).add(queue)
        try:
            yield _QueueSubscription(queue)
        finally:
            for channel in channels:
                subscribers = self._subscribers.get(channel)
                if subscribers is None:
                    continue
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[channel]

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    async def close(self):
        self._subscribers.clear()


class _RedisSubscription(Subscription):
    def __init__(self, pubsub):
        self.pubsub = pubsub

    async def _next_message(self) -> Dict[str, Any]:
        while True:
            message = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message is None:
                continue
            try:
                return json.loads(message["data"])
            except (json.JSONDecodeError, TypeError) as e:
                logger.warning(f"Skipping undecodable realtime message: {e}")

    async def get(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        if timeout is None:
            return await self._next_message()
        return await asyncio.wait_for(self._next_message(), timeout=timeout)


class RedisBroker:
    """Cross-process broker on Redis pub/sub."""

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.redis_url
        self._client: Optional[aioredis.Redis] = None

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
        return self._client

    async def publish(self, channel: str, message: Dict[str, Any]) -> int:
        return await self.client.publish(channel, json.dumps(message, default=str))

    @asynccontextmanager
    async def subscribe(self, channels: Iterable[str]) -> AsyncIterator[Subscription]:
        pubsub = self.client.pubsub()
        await pubsub.subscribe(*channels)
        try:
            yield _RedisSubscription(pubsub)
        finally:
            await pubsub.unsubscribe()
            await pubsub.aclose()

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class Notifier:
    def __init__(self, broker):
        self.broker = broker

    async def publish(self, message_type: str, channels: Iterable[str], data: Dict[str, Any]) -> int:
        message = {
            "type": message_type,
            "data": data,
            "timestamp": isoformat_utc(utc_now()),
        }
        delivered = 0
        for channel in channels:
            try:
                delivered += await self.broker.publish(channel, {**message, "channel": channel})
            except Exception as e:
                logger.warning(f"Realtime publish of {message_type} to {channel} failed: {e}")
        return delivered

    def subscribe(self, channels: Iterable[str]):
        return self.broker.subscribe(channels)

    async def attempt_finalized(self, attempt, event_id: str) -> int:
        return await self.publish_attempt_finalized(attempt_finalized_data(attempt, event_id))

    async def publish_attempt_finalized(self, data: Dict[str, Any]) -> int:
        channels = [
            round_channel(data["round_id"]),
            participant_channel(data["participant_id"]),
            ADMIN_CHANNEL,
        ]
        if data.get("event_id"):
            channels.insert(1, event_channel(data["event_id"]))
        return await self.publish("attempt_finalized", channels, data)

    async def override_action(self, action: str, target_type: str, target_id: str, changes: Dict[str, Any], channels: Iterable[str] = ()) -> int:
        data = {
            "action": action,
            "target_type": target_type,
            "target_id": target_id,
            "changes": changes,
        }
        return await self.publish("override_action", [ADMIN_CHANNEL, *channels], data)

    async def round_status(self, round_) -> int:
        data = {
            "round_id": round_.id,
            "event_id": round_.event_id,
            "status": round_.status,
            "results_published": round_.results_published,
        }
        return await self.publish(
            "round_status",
            [round_channel(round_.id), event_channel(round_.event_id), ADMIN_CHANNEL],
            data,
        )

    async def results_published(self, round_) -> int:
        data = {"round_id": round_.id, "event_id": round_.event_id}
        return await self.publish(
            "results_published",
            [round_channel(round_.id), event_channel(round_.event_id), ADMIN_CHANNEL],
            data,
        )


def build_broker():
    if settings.notifier_backend == "redis":
        return RedisBroker(settings.redis_url)
    return InMemoryBroker(queue_size=settings.notifier_queue_size)


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = Notifier(build_broker())
    return _notifier


def set_notifier(notifier: Optional[Notifier]):
    global _notifier
    _notifier = notifier
