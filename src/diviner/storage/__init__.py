# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Persistence layer: connection management, migrations, repositories."""

from diviner.storage.database import close_db, get_db, init_db
from diviner.storage.repository import SchedulingRepository
from diviner.storage.sqlite import SqliteSchedulingRepository

__all__ = [
    "SchedulingRepository",
    "SqliteSchedulingRepository",
    "close_db",
    "get_db",
    "init_db",
]
