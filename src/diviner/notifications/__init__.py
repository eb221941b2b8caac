# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Weekly digest delivery."""

from diviner.notifications.base import DigestSender
from diviner.notifications.email import EmailDigestSender

__all__ = ["DigestSender", "EmailDigestSender"]
