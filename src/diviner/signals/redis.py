# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Redis pub/sub signal bus.

Each subscription owns a dedicated ``PubSub`` connection and a listener
task that hands every message on its channel to the handler.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

import redis.asyncio as aioredis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from diviner.core.exceptions import SignalBusError
from diviner.signals.base import SignalBus, SignalHandler, Subscription, dispatch

logger = logging.getLogger("diviner.signals.redis")


class _RedisSubscription(Subscription):
    def __init__(self, channel: str, pubsub: PubSub, handler: SignalHandler) -> None:
        super().__init__(channel)
        self._pubsub = pubsub
        self._handler = handler
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._listen(), name=f"signal-listener:{self.channel}")

    async def unsubscribe(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        try:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
        except RedisError as exc:
            logger.warning("Error closing subscription on %s: %s", self.channel, exc)

    async def _listen(self) -> None:
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                await dispatch(self._handler, self.channel, str(message["data"]))
        except RedisError:
            logger.exception("Listener on channel %s lost its connection", self.channel)


class RedisSignalBus(SignalBus):
    """Signal bus over Redis PUBLISH/SUBSCRIBE.

    Args:
        redis_url: Redis connection URL (e.g. ``redis://localhost:6379/0``).
        client: An existing ``redis.asyncio.Redis`` client to use instead of
            connecting to *redis_url*.  It must decode responses.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        client: aioredis.Redis | None = None,
    ) -> None:
        self._client: aioredis.Redis = client or aioredis.from_url(
            redis_url, decode_responses=True
        )
        self._subscriptions: list[_RedisSubscription] = []

    async def publish(self, channel: str, message: str) -> int:
        try:
            return int(await self._client.publish(channel, message))
        except RedisError as exc:
            raise SignalBusError(f"Failed to publish on {channel}: {exc}") from exc

    async def subscribe(self, channel: str, handler: SignalHandler) -> Subscription:
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.subscribe(channel)
        except RedisError as exc:
            raise SignalBusError(f"Failed to subscribe to {channel}: {exc}") from exc
        sub = _RedisSubscription(channel, pubsub, handler)
        sub.start()
        self._subscriptions.append(sub)
        return sub

    async def close(self) -> None:
        subs, self._subscriptions = self._subscriptions, []
        for sub in subs:
            await sub.unsubscribe()
        await self._client.aclose()
