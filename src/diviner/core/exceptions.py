# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Custom exception hierarchy for diviner.

Duplicate enqueues and lookups of unknown jobs are expected outcomes and are
reported through return values, never through exceptions.
"""


class DivinerError(Exception):
    """Base exception for all diviner errors."""


class ConfigurationError(DivinerError):
    """Invalid or missing configuration."""


class StorageError(DivinerError):
    """Database or storage operation failed."""


class InvalidCronExpression(DivinerError):
    """A cron expression or its timezone could not be interpreted."""


class ProviderError(DivinerError):
    """An SCM provider call failed (auth, rate limit, network)."""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class QueueUnavailable(DivinerError):
    """The job queue backend cannot be reached."""


class SignalBusError(DivinerError):
    """The cancellation signal bus cannot be reached."""


class RepositoryNotFound(DivinerError):
    """No repository (or no scan configuration) exists for the given id."""


class TenantInactive(DivinerError):
    """The owning tenant is disabled and may not receive scheduled work."""
