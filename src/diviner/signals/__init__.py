# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Cancellation signal bus: abstract interface and backends."""

from diviner.signals.base import SignalBus, SignalHandler, Subscription
from diviner.signals.memory import MemorySignalBus

__all__ = ["MemorySignalBus", "SignalBus", "SignalHandler", "Subscription"]
