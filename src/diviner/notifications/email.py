# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Weekly digest delivered over SMTP as an HTML email."""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from diviner.core.config import Settings
from diviner.models.maintenance import WeeklySummary
from diviner.notifications.base import DigestSender

logger = logging.getLogger("diviner.notifications.email")

_SEVERITY_COLORS = {
    "critical": "#dc3545",
    "high": "#fd7e14",
    "medium": "#ffc107",
    "low": "#17a2b8",
    "info": "#6c757d",
}


def build_subject(data: WeeklySummary) -> str:
    return (
        f"[diviner] Weekly security summary for {data.tenant_name}: "
        f"{data.total_new_findings} new finding(s)"
    )


def build_html(data: WeeklySummary, app_url: str = "") -> str:
    """Render the weekly summary as an HTML email body."""
    counts = data.new_findings.model_dump()
    severity_rows = "".join(
        f"<tr>"
        f"<td style='padding:4px 8px;border-bottom:1px solid #eee;color:{color}'>"
        f"<strong>{severity.title()}</strong></td>"
        f"<td style='padding:4px 8px;border-bottom:1px solid #eee'>{counts.get(severity, 0)}</td>"
        f"</tr>"
        for severity, color in _SEVERITY_COLORS.items()
    )

    link = ""
    if app_url:
        link = f'<p><a href="{escape(app_url)}/dashboard">Open the dashboard</a></p>'

    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;padding:20px">
    <div style="background:#343a40;color:white;padding:16px;border-radius:8px 8px 0 0">
        <h1 style="margin:0;font-size:20px">Weekly summary: {escape(data.tenant_name)}</h1>
    </div>
    <div style="border:1px solid #dee2e6;border-top:none;padding:20px;border-radius:0 0 8px 8px">
        <p>{data.period_start:%Y-%m-%d} to {data.period_end:%Y-%m-%d}</p>
        <table style="width:100%">
            <tr><td><strong>Scans run:</strong></td><td>{data.scans_run}</td></tr>
            <tr><td><strong>Scans failed:</strong></td><td>{data.scans_failed}</td></tr>
            <tr><td><strong>Repositories scanned:</strong></td><td>{data.repositories_scanned}</td></tr>
            <tr><td><strong>Findings resolved:</strong></td><td>{data.resolved_findings}</td></tr>
        </table>
        <h3 style="margin-top:20px">New findings ({data.total_new_findings})</h3>
        <table style="border-collapse:collapse;width:100%">
            <tbody>{severity_rows}</tbody>
        </table>
        {link}
    </div>
</body>
</html>"""


class EmailDigestSender(DigestSender):
    """Send weekly digests via SMTP with HTML formatting."""

    def __init__(
        self,
        *,
        smtp_host: str,
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_addr: str = "",
        app_url: str = "",
    ) -> None:
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._smtp_user = smtp_user
        self._smtp_password = smtp_password
        self._smtp_use_tls = smtp_use_tls
        self._from_addr = from_addr or smtp_user
        self._app_url = app_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> EmailDigestSender:
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_addr=settings.smtp_from,
            app_url=settings.app_url,
        )

    @property
    def name(self) -> str:
        return "email"

    def is_configured(self) -> bool:
        return bool(self._smtp_host)

    async def send_weekly_summary(self, recipients: list[str], data: WeeklySummary) -> bool:
        if not self.is_configured():
            logger.warning("Email digest not configured (missing SMTP host)")
            return False
        if not recipients:
            logger.debug("No digest recipients for tenant %s", data.tenant_id)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = build_subject(data)
        msg["From"] = self._from_addr
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(build_html(data, self._app_url), "html"))

        try:
            await asyncio.to_thread(self._deliver, recipients, msg.as_string())
        except (OSError, smtplib.SMTPException):
            logger.exception("Failed to send weekly digest for tenant %s", data.tenant_id)
            return False
        logger.info("Weekly digest sent for tenant %s to %d recipient(s)", data.tenant_id, len(recipients))
        return True

    def _deliver(self, recipients: list[str], body: str) -> None:
        with smtplib.SMTP(self._smtp_host, self._smtp_port) as server:
            if self._smtp_use_tls:
                context = ssl.create_default_context()
                server.ehlo()
                server.starttls(context=context)
                server.ehlo()
            if self._smtp_user:
                server.login(self._smtp_user, self._smtp_password)
            server.sendmail(self._from_addr, recipients, body)
