# src/atlas_reconciler/core/drift/__init__.py
"""DriftDetector: detecção de divergência entre estado vivo e último apply."""

from .detector import DriftDetector, DriftReport, DriftSink

__all__ = ["DriftDetector", "DriftReport", "DriftSink"]
