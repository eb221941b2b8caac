# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""diviner - scan scheduling and job dispatch for multi-tenant security scanning."""

__version__ = "0.1.0"

__all__ = ["__version__"]
