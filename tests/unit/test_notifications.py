# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Tests for the weekly digest email sender."""

from __future__ import annotations

import smtplib
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

from diviner.core.config import Settings
from diviner.models.maintenance import WeeklySummary
from diviner.models.scan import FindingsCount
from diviner.notifications.email import EmailDigestSender, build_html, build_subject


def _summary(**overrides) -> WeeklySummary:
    values = {
        "tenant_id": "tenant-1",
        "tenant_name": "Acme <Labs>",
        "period_start": datetime(2026, 2, 23, 8, 0, tzinfo=UTC),
        "period_end": datetime(2026, 3, 2, 8, 0, tzinfo=UTC),
        "scans_run": 14,
        "scans_failed": 1,
        "repositories_scanned": 3,
        "resolved_findings": 5,
        "new_findings": FindingsCount(critical=1, high=2, low=4),
    }
    values.update(overrides)
    return WeeklySummary(**values)


def _mock_smtp(mock_smtp_class: MagicMock) -> MagicMock:
    server = MagicMock()
    mock_smtp_class.return_value.__enter__ = MagicMock(return_value=server)
    mock_smtp_class.return_value.__exit__ = MagicMock(return_value=False)
    return server


class TestRendering:
    def test_subject_counts_new_findings(self) -> None:
        assert build_subject(_summary()) == (
            "[diviner] Weekly security summary for Acme <Labs>: 7 new finding(s)"
        )

    def test_html_body(self) -> None:
        html = build_html(_summary(), app_url="https://app.diviner.dev")
        assert "Acme &lt;Labs&gt;" in html
        assert "2026-02-23 to 2026-03-02" in html
        assert "New findings (7)" in html
        assert "https://app.diviner.dev/dashboard" in html
        assert "<strong>Critical</strong>" in html

    def test_html_without_app_url(self) -> None:
        assert "dashboard" not in build_html(_summary())


class TestEmailDigestSender:
    def test_configuration(self) -> None:
        assert not EmailDigestSender(smtp_host="").is_configured()
        assert EmailDigestSender(smtp_host="smtp.acme.dev").is_configured()

    def test_from_settings(self) -> None:
        sender = EmailDigestSender.from_settings(
            Settings(smtp_host="smtp.acme.dev", smtp_port=2525, smtp_from="digest@acme.dev")
        )
        assert sender.is_configured()
        assert sender.name == "email"

    async def test_unconfigured_does_not_send(self) -> None:
        sender = EmailDigestSender(smtp_host="")
        assert await sender.send_weekly_summary(["a@acme.dev"], _summary()) is False

    async def test_no_recipients(self) -> None:
        sender = EmailDigestSender(smtp_host="smtp.acme.dev")
        assert await sender.send_weekly_summary([], _summary()) is False

    @patch("diviner.notifications.email.smtplib.SMTP")
    async def test_send_success(self, mock_smtp_class: MagicMock) -> None:
        server = _mock_smtp(mock_smtp_class)
        sender = EmailDigestSender(
            smtp_host="smtp.acme.dev",
            smtp_port=587,
            smtp_user="digest@acme.dev",
            smtp_password="secret",  # noqa: S106
        )

        sent = await sender.send_weekly_summary(["a@acme.dev", "b@acme.dev"], _summary())

        assert sent is True
        mock_smtp_class.assert_called_once_with("smtp.acme.dev", 587)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("digest@acme.dev", "secret")
        from_addr, to_addrs, body = server.sendmail.call_args.args
        assert from_addr == "digest@acme.dev"
        assert to_addrs == ["a@acme.dev", "b@acme.dev"]
        assert "Weekly security summary" in body

    @patch("diviner.notifications.email.smtplib.SMTP")
    async def test_send_without_tls_or_login(self, mock_smtp_class: MagicMock) -> None:
        server = _mock_smtp(mock_smtp_class)
        sender = EmailDigestSender(smtp_host="localhost", smtp_port=25, smtp_use_tls=False)

        assert await sender.send_weekly_summary(["a@acme.dev"], _summary()) is True
        server.starttls.assert_not_called()
        server.login.assert_not_called()

    @patch("diviner.notifications.email.smtplib.SMTP")
    async def test_send_failure_returns_false(self, mock_smtp_class: MagicMock) -> None:
        mock_smtp_class.side_effect = smtplib.SMTPConnectError(421, b"busy")
        sender = EmailDigestSender(smtp_host="smtp.acme.dev")
        assert await sender.send_weekly_summary(["a@acme.dev"], _summary()) is False
