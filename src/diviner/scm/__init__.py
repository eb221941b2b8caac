# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""Source-control providers."""

from diviner.scm.base import Commit, ScmProvider
from diviner.scm.providers import build_providers

__all__ = ["Commit", "ScmProvider", "build_providers"]
