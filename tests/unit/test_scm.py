# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Tests for the SCM provider clients."""

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import pytest
import respx

from diviner.core.config import Settings
from diviner.core.constants import ScmProviderKind
from diviner.core.exceptions import ProviderError
from diviner.models.schedule import ScmCredentials
from diviner.scm.providers import (
    AzureDevOpsProvider,
    BitbucketProvider,
    GitHubProvider,
    GitLabProvider,
    build_providers,
)

CREDS = ScmCredentials(access_token="tok-123")


class TestGitHub:
    @respx.mock
    async def test_latest_commit(self) -> None:
        route = respx.get("https://api.github.com/repos/acme/api/commits/main").mock(
            return_value=httpx.Response(
                200,
                json={
                    "sha": "abc123",
                    "commit": {
                        "message": "Fix login",
                        "author": {"name": "Ada", "email": "ada@acme.dev", "date": "2026-03-01T10:00:00Z"},
                    },
                },
            )
        )

        commit = await GitHubProvider("https://api.github.com").get_latest_commit(CREDS, "acme", "api", "main")

        assert commit.sha == "abc123"
        assert commit.author_name == "Ada"
        assert commit.timestamp == datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer tok-123"
        assert request.headers["User-Agent"].startswith("diviner/")

    @respx.mock
    async def test_branch_is_url_encoded(self) -> None:
        route = respx.get("https://api.github.com/repos/acme/api/commits/release%2F1.0").mock(
            return_value=httpx.Response(200, json={"sha": "def456", "commit": {}})
        )
        commit = await GitHubProvider("https://api.github.com").get_latest_commit(
            CREDS, "acme", "api", "release/1.0"
        )
        assert route.called
        assert commit.author_name == "Unknown"

    @respx.mock
    async def test_rate_limited(self) -> None:
        respx.get("https://api.github.com/repos/acme/api/commits/main").mock(
            return_value=httpx.Response(429, text="API rate limit exceeded")
        )
        with pytest.raises(ProviderError) as exc_info:
            await GitHubProvider("https://api.github.com").get_latest_commit(CREDS, "acme", "api", "main")
        assert exc_info.value.status_code == 429
        assert exc_info.value.provider == "github"
        assert "rate limit" in str(exc_info.value)

    @respx.mock
    async def test_network_error(self) -> None:
        respx.get("https://api.github.com/repos/acme/api/commits/main").mock(
            side_effect=httpx.ConnectError("refused")
        )
        with pytest.raises(ProviderError) as exc_info:
            await GitHubProvider("https://api.github.com").get_latest_commit(CREDS, "acme", "api", "main")
        assert exc_info.value.status_code is None

    @respx.mock
    async def test_connection_base_url_wins(self) -> None:
        route = respx.get("https://ghe.acme.dev/api/v3/repos/acme/api/commits/main").mock(
            return_value=httpx.Response(200, json={"sha": "e1", "commit": {}})
        )
        creds = ScmCredentials(access_token="t", base_url="https://ghe.acme.dev/api/v3/")
        await GitHubProvider("https://api.github.com").get_latest_commit(creds, "acme", "api", "main")
        assert route.called


class TestGitLab:
    @respx.mock
    async def test_latest_commit(self) -> None:
        respx.get("https://gitlab.com/api/v4/projects/group%2Fsvc/repository/commits/main").mock(
            return_value=httpx.Response(
                200,
                json={
                    "id": "9f8e7d",
                    "message": "Bump deps",
                    "author_name": "Lin",
                    "author_email": "lin@acme.dev",
                    "committed_date": "2026-03-01T09:30:00+00:00",
                },
            )
        )
        commit = await GitLabProvider("https://gitlab.com/api/v4").get_latest_commit(
            CREDS, "group", "svc", "main"
        )
        assert commit.sha == "9f8e7d"
        assert commit.author_email == "lin@acme.dev"

    @respx.mock
    async def test_not_found(self) -> None:
        respx.get(url__startswith="https://gitlab.com/api/v4/projects/").mock(
            return_value=httpx.Response(404, json={"message": "404 Branch Not Found"})
        )
        with pytest.raises(ProviderError) as exc_info:
            await GitLabProvider("https://gitlab.com/api/v4").get_latest_commit(CREDS, "group", "svc", "gone")
        assert exc_info.value.status_code == 404


class TestBitbucket:
    @respx.mock
    async def test_latest_commit(self) -> None:
        route = respx.get("https://api.bitbucket.org/2.0/repositories/acme/web/commits/main").mock(
            return_value=httpx.Response(
                200,
                json={
                    "values": [
                        {
                            "hash": "b1b2b3",
                            "message": "Initial",
                            "author": {"raw": "Sam Doe <sam@acme.dev>"},
                            "date": "2026-02-28T12:00:00+00:00",
                        }
                    ]
                },
            )
        )
        commit = await BitbucketProvider("https://api.bitbucket.org/2.0").get_latest_commit(
            CREDS, "acme", "web", "main"
        )
        assert commit.sha == "b1b2b3"
        assert commit.author_name == "Sam Doe"
        assert commit.author_email == "sam@acme.dev"
        assert route.calls.last.request.url.params["pagelen"] == "1"

    @respx.mock
    async def test_empty_branch(self) -> None:
        respx.get("https://api.bitbucket.org/2.0/repositories/acme/web/commits/main").mock(
            return_value=httpx.Response(200, json={"values": []})
        )
        with pytest.raises(ProviderError):
            await BitbucketProvider("https://api.bitbucket.org/2.0").get_latest_commit(
                CREDS, "acme", "web", "main"
            )


class TestAzureDevOps:
    @respx.mock
    async def test_latest_commit(self) -> None:
        route = respx.get("https://dev.azure.com/acme-org/Platform/_apis/git/repositories/api/commits").mock(
            return_value=httpx.Response(
                200,
                json={
                    "value": [
                        {
                            "commitId": "a2c4e6",
                            "comment": "Merge PR 12",
                            "author": {"name": "Kai", "email": "kai@acme.dev", "date": "2026-03-01T08:00:00Z"},
                        }
                    ]
                },
            )
        )
        creds = ScmCredentials(access_token="pat", base_url="https://dev.azure.com/acme-org")
        commit = await AzureDevOpsProvider("https://dev.azure.com").get_latest_commit(
            creds, "Platform", "api", "main"
        )
        assert commit.sha == "a2c4e6"
        assert commit.message == "Merge PR 12"
        params = route.calls.last.request.url.params
        assert params["searchCriteria.itemVersion.version"] == "main"
        assert params["$top"] == "1"

    @respx.mock
    async def test_unauthorized(self) -> None:
        respx.get(url__startswith="https://dev.azure.com/").mock(return_value=httpx.Response(401))
        with pytest.raises(ProviderError) as exc_info:
            await AzureDevOpsProvider("https://dev.azure.com").get_latest_commit(
                CREDS, "Platform", "api", "main"
            )
        assert exc_info.value.status_code == 401


class TestBuildProviders:
    def test_one_provider_per_platform(self) -> None:
        providers = build_providers(Settings(gitlab_api_url="https://git.internal/api/v4", scm_timeout=5))
        assert set(providers) == set(ScmProviderKind)
        assert providers[ScmProviderKind.GITLAB].base_url == "https://git.internal/api/v4"
        assert providers[ScmProviderKind.GITHUB].timeout == 5
