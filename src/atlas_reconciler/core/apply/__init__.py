# src/atlas_reconciler/core/apply/__init__.py
"""
Apply — diff, kinds, sistema alvo e Applier.

API pública exposta:
    - Applier, ApplyPlan, ApplyResult
    - LiveTarget (protocolo), InMemoryTarget (referência)
    - KindHandler, KindRegistry, default_registry
    - normalize_manifest, diff_manifests, manifest_checksum
"""

from .applier import Applier, ApplyPlan, ApplyResult
from .diff import diff_manifests, manifest_checksum, normalize_manifest
from .kinds import (
    PRIORITY_DEFAULT,
    PRIORITY_FIRST,
    CustomResourceDefinitionHandler,
    KindHandler,
    KindRegistry,
    NamespaceHandler,
    WorkloadHandler,
    default_registry,
)
from .target import InMemoryTarget, LiveTarget

__all__ = [
    "Applier",
    "ApplyPlan",
    "ApplyResult",
    "CustomResourceDefinitionHandler",
    "InMemoryTarget",
    "KindHandler",
    "KindRegistry",
    "LiveTarget",
    "NamespaceHandler",
    "PRIORITY_DEFAULT",
    "PRIORITY_FIRST",
    "WorkloadHandler",
    "default_registry",
    "diff_manifests",
    "manifest_checksum",
    "normalize_manifest",
]
