# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Job queue abstraction, backends, facade and worker."""

from diviner.queue.base import JobHandle, JobQueue
from diviner.queue.memory import MemoryJobQueue
from diviner.queue.options import Backoff, JobOptions

__all__ = ["Backoff", "JobHandle", "JobOptions", "JobQueue", "MemoryJobQueue"]
