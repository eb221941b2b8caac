# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Shared test fixtures and configuration."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from diviner.core.constants import ScmProviderKind
from diviner.core.exceptions import ProviderError
from diviner.models.scan import ScanConfig
from diviner.models.schedule import ScheduleConfig, ScmCredentials
from diviner.queue.memory import MemoryJobQueue
from diviner.queue.service import QueueService
from diviner.scm.base import Commit, ScmProvider
from diviner.signals.memory import MemorySignalBus
from diviner.storage.database import close_db, init_db
from diviner.storage.sqlite import SqliteSchedulingRepository

# Monday, 02:00 UTC
NOW = datetime(2026, 3, 2, 2, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class StubProvider(ScmProvider):
    """Returns a fixed head commit, or fails for the listed repositories."""

    kind = ScmProviderKind.GITHUB

    def __init__(self, sha: str = "abc123", failing: tuple[str, ...] = ()) -> None:
        self.sha = sha
        self.failing = set(failing)
        self.calls: list[tuple[str, str, str]] = []

    async def get_latest_commit(
        self, credentials: ScmCredentials, owner: str, repo: str, branch: str
    ) -> Commit:
        self.calls.append((owner, repo, branch))
        if f"{owner}/{repo}" in self.failing:
            raise ProviderError("rate limited", provider="github", status_code=429)
        return Commit(sha=self.sha, message="head", author_name="dev")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def db():
    """In-memory database with all migrations applied."""
    import diviner.storage.database as db_mod

    db_mod._db = None
    conn = await init_db(":memory:")
    yield conn
    await close_db()


@pytest.fixture
async def repository(db) -> SqliteSchedulingRepository:
    return SqliteSchedulingRepository(db)


@pytest.fixture
def job_queue(clock: FakeClock) -> MemoryJobQueue:
    return MemoryJobQueue(clock=clock)


@pytest.fixture
def signal_bus() -> MemorySignalBus:
    return MemorySignalBus()


@pytest.fixture
def queue_service(job_queue: MemoryJobQueue, signal_bus: MemorySignalBus) -> QueueService:
    return QueueService(job_queue, signal_bus)


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def provision(repository: SqliteSchedulingRepository, clock: FakeClock):
    """Factory creating a tenant (once), connection, repository and schedule."""
    tenants: set[str] = set()

    async def _provision(
        repository_id: str = "repo-1",
        *,
        tenant_id: str = "tenant-1",
        tenant_active: bool = True,
        full_name: str = "acme/api",
        default_branch: str = "main",
        cron: str | None = "0 2 * * *",
        timezone: str = "UTC",
        enabled: bool = True,
        due: bool = True,
    ) -> str:
        if tenant_id not in tenants:
            await repository.insert_tenant(tenant_id, f"Tenant {tenant_id}", is_active=tenant_active)
            tenants.add(tenant_id)
        connection_id = f"conn-{repository_id}"
        await repository.insert_connection(
            connection_id, tenant_id, ScmProviderKind.GITHUB, "ghp_test_token"
        )
        await repository.insert_repository(
            repository_id, tenant_id, connection_id, full_name, default_branch=default_branch
        )
        await repository.upsert_scan_config(repository_id, ScanConfig())
        next_run = clock() if due else clock() + timedelta(days=1)
        await repository.save_schedule_config(
            repository_id,
            ScheduleConfig(
                schedule_enabled=enabled,
                schedule_cron=cron,
                schedule_timezone=timezone,
                next_scheduled_scan=next_run if enabled else None,
            ),
            now=clock(),
        )
        return repository_id

    return _provision
