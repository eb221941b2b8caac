# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""HTTP clients for GitHub, GitLab, Bitbucket and Azure DevOps."""

from __future__ import annotations

import contextlib
import logging
import re
from collections.abc import Iterator
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from diviner import __version__
from diviner.core.config import Settings
from diviner.core.constants import ScmProviderKind
from diviner.core.exceptions import ProviderError
from diviner.models.schedule import ScmCredentials
from diviner.scm.base import Commit, ScmProvider

logger = logging.getLogger("diviner.scm")

_USER_AGENT = f"diviner/{__version__}"
_BITBUCKET_AUTHOR = re.compile(r"^(?P<name>[^<]*?)\s*(?:<(?P<email>[^>]+)>)?$")


def _check_response(resp: httpx.Response, provider: ScmProviderKind, context: str) -> None:
    """Raise :class:`ProviderError` for non-2xx responses."""
    if resp.is_success:
        return
    msg = f"{provider} {context}: HTTP {resp.status_code}"
    body = resp.text[:200]
    if body:
        msg = f"{msg}: {body}"
    raise ProviderError(msg, provider=str(provider), status_code=resp.status_code)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class HttpScmProvider(ScmProvider):
    """Shared request plumbing for the REST-based providers.

    Args:
        base_url: Default API root.  A connection's own ``base_url`` (for
            self-hosted instances) takes precedence.
        timeout: HTTP timeout in seconds.
        transport: Optional ``httpx`` transport, used by tests.
    """

    accept = "application/json"

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self, credentials: ScmCredentials) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
            headers={
                "User-Agent": _USER_AGENT,
                "Accept": self.accept,
                "Authorization": f"Bearer {credentials.access_token}",
            },
        )

    def _root(self, credentials: ScmCredentials) -> str:
        return (credentials.base_url or self.base_url).rstrip("/")

    async def _get_json(
        self,
        credentials: ScmCredentials,
        path: str,
        context: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self._root(credentials)}{path}"
        try:
            async with self._client(credentials) as client:
                resp = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"{self.kind} {context}: {exc}", provider=str(self.kind)
            ) from exc
        _check_response(resp, self.kind, context)
        with self._payload(context):
            return resp.json()

    @contextlib.contextmanager
    def _payload(self, context: str) -> Iterator[None]:
        """Report an undecodable or oddly shaped response as a provider failure."""
        try:
            yield
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ProviderError(
                f"{self.kind} {context}: unexpected response: {exc!r}", provider=str(self.kind)
            ) from exc


class GitHubProvider(HttpScmProvider):
    kind = ScmProviderKind.GITHUB
    accept = "application/vnd.github+json"

    async def get_latest_commit(
        self, credentials: ScmCredentials, owner: str, repo: str, branch: str
    ) -> Commit:
        context = f"latest commit of {owner}/{repo}@{branch}"
        data = await self._get_json(
            credentials,
            f"/repos/{owner}/{repo}/commits/{quote(branch, safe='')}",
            context,
        )
        with self._payload(context):
            commit = data.get("commit") or {}
            author = commit.get("author") or {}
            return Commit(
                sha=data["sha"],
                message=commit.get("message", ""),
                author_name=author.get("name") or "Unknown",
                author_email=author.get("email") or "",
                timestamp=_parse_timestamp(author.get("date")),
            )


class GitLabProvider(HttpScmProvider):
    kind = ScmProviderKind.GITLAB

    async def get_latest_commit(
        self, credentials: ScmCredentials, owner: str, repo: str, branch: str
    ) -> Commit:
        project = quote(f"{owner}/{repo}", safe="")
        context = f"latest commit of {owner}/{repo}@{branch}"
        data = await self._get_json(
            credentials,
            f"/projects/{project}/repository/commits/{quote(branch, safe='')}",
            context,
        )
        with self._payload(context):
            return Commit(
                sha=data["id"],
                message=data.get("message", ""),
                author_name=data.get("author_name") or "Unknown",
                author_email=data.get("author_email") or "",
                timestamp=_parse_timestamp(data.get("committed_date")),
            )


class BitbucketProvider(HttpScmProvider):
    kind = ScmProviderKind.BITBUCKET

    async def get_latest_commit(
        self, credentials: ScmCredentials, owner: str, repo: str, branch: str
    ) -> Commit:
        context = f"latest commit of {owner}/{repo}@{branch}"
        data = await self._get_json(
            credentials,
            f"/repositories/{owner}/{repo}/commits/{quote(branch, safe='')}",
            context,
            params={"pagelen": 1},
        )
        with self._payload(context):
            values = data.get("values") or []
            if not values:
                raise ProviderError(
                    f"bitbucket {context}: no commits found", provider=str(self.kind)
                )
            commit = values[0]
            raw_author = (commit.get("author") or {}).get("raw") or ""
            match = _BITBUCKET_AUTHOR.match(raw_author.strip())
            return Commit(
                sha=commit["hash"],
                message=commit.get("message", ""),
                author_name=(match.group("name") if match else "") or "Unknown",
                author_email=(match.group("email") if match else "") or "",
                timestamp=_parse_timestamp(commit.get("date")),
            )


class AzureDevOpsProvider(HttpScmProvider):
    """Azure Repos.  *owner* is the project; the base URL carries the organization."""

    kind = ScmProviderKind.AZURE_DEVOPS

    async def get_latest_commit(
        self, credentials: ScmCredentials, owner: str, repo: str, branch: str
    ) -> Commit:
        context = f"latest commit of {owner}/{repo}@{branch}"
        data = await self._get_json(
            credentials,
            f"/{owner}/_apis/git/repositories/{repo}/commits",
            context,
            params={
                "searchCriteria.itemVersion.version": branch,
                "$top": 1,
                "api-version": "7.0",
            },
        )
        with self._payload(context):
            values = data.get("value") or []
            if not values:
                raise ProviderError(
                    f"azure_devops {context}: no commits found", provider=str(self.kind)
                )
            commit = values[0]
            author = commit.get("author") or {}
            push_date = (commit.get("push") or {}).get("date")
            return Commit(
                sha=commit["commitId"],
                message=commit.get("comment", ""),
                author_name=author.get("name") or "Unknown",
                author_email=author.get("email") or "",
                timestamp=_parse_timestamp(author.get("date") or push_date),
            )


def build_providers(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[ScmProviderKind, ScmProvider]:
    """Return one provider per supported platform, configured from *settings*."""
    timeout = settings.scm_timeout
    return {
        ScmProviderKind.GITHUB: GitHubProvider(settings.github_api_url, timeout, transport),
        ScmProviderKind.GITLAB: GitLabProvider(settings.gitlab_api_url, timeout, transport),
        ScmProviderKind.BITBUCKET: BitbucketProvider(settings.bitbucket_api_url, timeout, transport),
        ScmProviderKind.AZURE_DEVOPS: AzureDevOpsProvider(
            settings.azure_devops_api_url, timeout, transport
        ),
    }
