# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""In-process signal bus.

Handlers run inline in the publisher's task, one after another, so they
should do little more than flag or cancel work.
"""

from __future__ import annotations

from diviner.core.exceptions import SignalBusError
from diviner.signals.base import SignalBus, SignalHandler, Subscription, dispatch


class _MemorySubscription(Subscription):
    def __init__(self, bus: MemorySignalBus, channel: str, handler: SignalHandler) -> None:
        super().__init__(channel)
        self.handler = handler
        self._bus = bus

    async def unsubscribe(self) -> None:
        self._bus._detach(self)


class MemorySignalBus(SignalBus):
    """Dict-of-lists pub/sub for single-process deployments and tests."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[_MemorySubscription]] = {}
        self._closed = False

    async def publish(self, channel: str, message: str) -> int:
        if self._closed:
            raise SignalBusError("Signal bus is closed")
        # Copy: a handler may unsubscribe while we iterate.
        subscribers = list(self._subscribers.get(channel, ()))
        for sub in subscribers:
            await dispatch(sub.handler, channel, message)
        return len(subscribers)

    async def subscribe(self, channel: str, handler: SignalHandler) -> Subscription:
        if self._closed:
            raise SignalBusError("Signal bus is closed")
        sub = _MemorySubscription(self, channel, handler)
        self._subscribers.setdefault(channel, []).append(sub)
        return sub

    async def close(self) -> None:
        self._subscribers.clear()
        self._closed = True

    def _detach(self, sub: _MemorySubscription) -> None:
        subs = self._subscribers.get(sub.channel)
        if subs and sub in subs:
            subs.remove(sub)
