# src/atlas_reconciler/core/bundle/__init__.py
"""
# Bundle Core — Atlas Reconciler

Este pacote define o **modelo de dados** da engine: bundles, recursos,
referências a secrets e registros de run.

## Componentes

- **types**
  - `BundleState`, `RunOutcome`, `Operation`
  - `Bundle`, `HealthCheckSpec`
  - `ResourceKey`, `Resource`, `ResourceSet`, `SecretRef`
  - `ResourceDiff`, `ReconciliationRun`

- **registry**
  - `BundleRegistry`: unicidade de nomes e ordem de declaração

## Invariantes

- Cada bundle possui nome único
- Cada recurso é identificado por (apiGroup, kind, namespace, name)
- Somente `status` e `last_applied_revision` de um Bundle mudam em runtime
"""

from .registry import BundleRegistry
from .types import (
    DEFAULT_POLL_INTERVAL,
    SECRET_MARKER,
    Bundle,
    BundleState,
    HealthCheckSpec,
    Operation,
    ReconciliationRun,
    Resource,
    ResourceDiff,
    ResourceKey,
    ResourceSet,
    RunOutcome,
    SecretRef,
    split_api_version,
)

__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "SECRET_MARKER",
    "Bundle",
    "BundleRegistry",
    "BundleState",
    "HealthCheckSpec",
    "Operation",
    "ReconciliationRun",
    "Resource",
    "ResourceDiff",
    "ResourceKey",
    "ResourceSet",
    "RunOutcome",
    "SecretRef",
    "split_api_version",
]
