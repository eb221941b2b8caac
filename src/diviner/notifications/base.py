# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Abstract base class for digest delivery."""

from __future__ import annotations

import abc

from diviner.models.maintenance import WeeklySummary


class DigestSender(abc.ABC):
    """Delivers a tenant's weekly summary to a list of recipients."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Human-readable sender name (e.g. ``'email'``)."""

    @abc.abstractmethod
    async def send_weekly_summary(self, recipients: list[str], data: WeeklySummary) -> bool:
        """Deliver *data* to *recipients*.

        Returns:
            ``True`` if the delivery succeeded, ``False`` otherwise.  Never
            raises for delivery failures.
        """

    def is_configured(self) -> bool:
        return True
