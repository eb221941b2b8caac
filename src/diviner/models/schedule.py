# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Per-repository schedule state and the context a scheduler tick works on."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field

from diviner.core.constants import DEFAULT_TIMEZONE, SchedulePreset, ScmProviderKind
from diviner.models.scan import ScanConfig
from diviner.scheduler.presets import preset_from_cron


class ScheduleConfig(BaseModel):
    """Persisted schedule fields of a repository's scan configuration.

    ``next_scheduled_scan`` is ``None`` exactly when the schedule is disabled
    or has no cron expression.
    """

    schedule_enabled: bool = False
    schedule_cron: str | None = None
    schedule_timezone: str = DEFAULT_TIMEZONE
    last_scheduled_scan: datetime | None = None
    next_scheduled_scan: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def preset(self) -> SchedulePreset | None:
        return preset_from_cron(self.schedule_cron)


class ScheduleUpdate(BaseModel):
    """A partial update to a :class:`ScheduleConfig`.

    A ``preset`` other than ``custom`` overrides ``schedule_cron``.
    """

    schedule_enabled: bool | None = None
    schedule_cron: str | None = None
    schedule_timezone: str | None = None
    preset: SchedulePreset | None = None


class ScmCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str = Field(repr=False)
    base_url: str | None = None


class RepositoryScheduleContext(BaseModel):
    """Everything a tick needs to dispatch a scan for one repository."""

    model_config = ConfigDict(frozen=True)

    config_id: str | None = None
    tenant_id: str
    tenant_slug: str
    tenant_active: bool
    repository_id: str
    full_name: str
    default_branch: str
    clone_url: str
    connection_id: str
    provider: ScmProviderKind
    credentials: ScmCredentials
    scan_config: ScanConfig = Field(default_factory=ScanConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    @property
    def owner_and_name(self) -> tuple[str, str]:
        owner, _, name = self.full_name.rpartition("/")
        return owner, name


class Tenant(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenant_id: str
    name: str
    slug: str
    is_active: bool = True
