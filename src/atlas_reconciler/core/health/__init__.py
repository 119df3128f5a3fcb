# src/atlas_reconciler/core/health/__init__.py
"""HealthChecker: readiness de bundles após o apply."""

from .checker import HealthChecker, HealthReport

__all__ = ["HealthChecker", "HealthReport"]
