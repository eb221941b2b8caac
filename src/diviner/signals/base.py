# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Abstract publish/subscribe bus for cross-process control signals.

Delivery is best effort and at-most-once: a subscriber that is not
connected when a message is published never sees it, and there is no
ordering guarantee across channels.
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger("diviner.signals")

SignalHandler = Callable[[str], Awaitable[None]]


async def dispatch(handler: SignalHandler, channel: str, message: str) -> None:
    """Run *handler*, logging (never raising) whatever it fails with."""
    try:
        await handler(message)
    except Exception:
        logger.exception("Signal handler on channel %s failed for message %r", channel, message)


class Subscription(abc.ABC):
    """A live registration of a handler on one channel."""

    def __init__(self, channel: str) -> None:
        self.channel = channel

    @abc.abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivering messages to the handler.  Safe to call twice."""


class SignalBus(abc.ABC):
    """Base class for signal bus backends.

    Backend failures surface as
    :class:`~diviner.core.exceptions.SignalBusError`.
    """

    @abc.abstractmethod
    async def publish(self, channel: str, message: str) -> int:
        """Publish *message* on *channel*.

        Returns:
            The number of subscribers the message was handed to.
        """

    @abc.abstractmethod
    async def subscribe(self, channel: str, handler: SignalHandler) -> Subscription:
        """Register *handler* for every message published on *channel*."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Drop every subscription and release backend resources."""
