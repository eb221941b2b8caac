# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""SCM provider capability used by the scheduler."""

from __future__ import annotations

import abc
from datetime import datetime

from pydantic import BaseModel

from diviner.core.constants import ScmProviderKind
from diviner.models.schedule import ScmCredentials


class Commit(BaseModel):
    sha: str
    message: str = ""
    author_name: str = "Unknown"
    author_email: str = ""
    timestamp: datetime | None = None


class ScmProvider(abc.ABC):
    """One source-control platform.

    Implementations raise :class:`~diviner.core.exceptions.ProviderError`
    for every failure: authentication, rate limiting, missing branch, or
    network errors.
    """

    kind: ScmProviderKind

    @abc.abstractmethod
    async def get_latest_commit(
        self, credentials: ScmCredentials, owner: str, repo: str, branch: str
    ) -> Commit:
        """Return the head commit of *branch* in ``owner/repo``."""
