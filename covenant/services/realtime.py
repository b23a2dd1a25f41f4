"""
Covenant — Realtime message broker

Fan-out of freshly appended messages to live subscribers over Redis pub/sub.
One channel per conversation, ``messages:<conversation_id>``; payloads are
JSON objects.  Publishing is retried with exponential backoff on Redis
connection errors; the message ledger treats an exhausted retry as a logged
failure rather than a failed append.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, AsyncIterator

import redis.asyncio as aioredis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from covenant.config import get_settings

logger = structlog.get_logger("covenant.realtime")

CHANNEL_PREFIX = "messages:"


def channel_for(conversation_id: uuid.UUID | str) -> str:
    return f"{CHANNEL_PREFIX}{conversation_id}"


def _is_retryable_redis_error(exc: BaseException) -> bool:
    return isinstance(exc, (RedisConnectionError, RedisTimeoutError))


class MessageBroker:
    """Publish/subscribe over a shared ``redis.asyncio`` client.

    The client is created on first use unless one is injected, so the
    broker can be constructed at import time and in tests without a
    running Redis.
    """

    def __init__(self, redis_client: Any | None = None, max_attempts: int | None = None) -> None:
        self._redis = redis_client
        self.max_attempts = max_attempts or get_settings().PUBLISH_MAX_ATTEMPTS

    async def _get_redis(self) -> Any:
        """Return an async Redis client, creating it on first call."""
        if self._redis is None:
            settings = get_settings()
            self._redis = aioredis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=5,
            )
            logger.info("broker_redis_connected", url=settings.REDIS_URL)
        return self._redis

    async def ping(self) -> bool:
        redis = await self._get_redis()
        return bool(await redis.ping())

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("broker_redis_closed")

    # ── Publish ───────────────────────────────────────────────────────────

    async def publish(self, conversation_id: uuid.UUID | str, event: dict[str, Any]) -> int:
        """Publish ``event`` on the conversation's channel.

        Returns the number of subscribers that received it.  Raises the
        last Redis error once ``max_attempts`` is exhausted.
        """
        channel = channel_for(conversation_id)
        payload = json.dumps(event, default=str)
        redis = await self._get_redis()

        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_retryable_redis_error),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
            reraise=True,
        ):
            with attempt:
                receivers = await redis.publish(channel, payload)

        logger.debug("event_published", channel=channel, receivers=receivers)
        return receivers

    # ── Subscribe ─────────────────────────────────────────────────────────

    async def subscribe(self, conversation_id: uuid.UUID | str) -> AsyncIterator[dict[str, Any]]:
        """Yield decoded events published on the conversation's channel
        until the consumer stops iterating."""
        channel = channel_for(conversation_id)
        redis = await self._get_redis()
        pubsub = redis.pubsub()
        await pubsub.subscribe(channel)
        logger.info("channel_subscribed", channel=channel)

        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    yield json.loads(message["data"])
                except (TypeError, ValueError):
                    logger.warning("event_decode_failed", channel=channel)
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            logger.info("channel_unsubscribed", channel=channel)


_broker: MessageBroker | None = None


def get_broker() -> MessageBroker:
    """Process-wide broker shared by the API and the app lifespan."""
    global _broker
    if _broker is None:
        _broker = MessageBroker()
    return _broker
