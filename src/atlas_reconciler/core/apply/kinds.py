# src/atlas_reconciler/core/apply/kinds.py
"""
Registro de KindHandlers — comportamento específico por tipo de recurso.

A engine não conhece a semântica dos recursos que aplica. O que varia por
tipo fica atrás de um `KindHandler`, indexado por (apiGroup, kind):

    - normalize(manifest)      → forma comparável (sem campos do sistema)
    - diff(desired, live)      → caminhos divergentes
    - is_healthy(live)         → readiness usada pelo HealthChecker
    - apply_priority(manifest) → menor aplica antes

Handlers incluídos:
    - default                      → existir é estar saudável
    - Namespace                    → prioridade 0
    - CustomResourceDefinition     → prioridade 0; condição Established
    - Deployment/StatefulSet/DaemonSet → rollout completo

Invariantes:
    - Todo (apiGroup, kind) resolve para algum handler
    - Registrar um handler substitui o anterior para a mesma chave
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..bundle.types import ResourceKey
from .diff import diff_manifests, normalize_manifest


PRIORITY_FIRST = 0
PRIORITY_DEFAULT = 100


class KindHandler:
    """Handler padrão; subclasses sobrescrevem apenas o que muda."""

    api_group = ""
    kind = "*"
    priority = PRIORITY_DEFAULT

    def normalize(self, manifest: Mapping[str, Any]) -> Dict[str, Any]:
        return normalize_manifest(manifest)

    def diff(self, desired: Mapping[str, Any], live: Mapping[str, Any]) -> List[str]:
        return diff_manifests(self.normalize(desired), self.normalize(live))

    def is_healthy(self, live: Optional[Mapping[str, Any]]) -> bool:
        return live is not None

    def apply_priority(self, manifest: Optional[Mapping[str, Any]] = None) -> int:
        return self.priority


class NamespaceHandler(KindHandler):
    kind = "Namespace"
    priority = PRIORITY_FIRST


class CustomResourceDefinitionHandler(KindHandler):
    api_group = "apiextensions.k8s.io"
    kind = "CustomResourceDefinition"
    priority = PRIORITY_FIRST

    def is_healthy(self, live: Optional[Mapping[str, Any]]) -> bool:
        if live is None:
            return False
        conditions = _conditions(live)
        if not conditions:
            return True
        return conditions.get("Established") == "True"


class WorkloadHandler(KindHandler):
    """Saudável quando o rollout da geração atual terminou."""

    api_group = "apps"

    def __init__(self, kind: str):
        self.kind = kind

    def _desired_replicas(self, live: Mapping[str, Any], status: Mapping[str, Any]) -> int:
        if self.kind == "DaemonSet":
            return int(status.get("desiredNumberScheduled", 0))
        spec = live.get("spec") or {}
        replicas = spec.get("replicas")
        return 1 if replicas is None else int(replicas)

    def is_healthy(self, live: Optional[Mapping[str, Any]]) -> bool:
        if live is None:
            return False
        status = live.get("status") or {}
        generation = (live.get("metadata") or {}).get("generation")
        if generation is not None and status.get("observedGeneration", 0) < generation:
            return False
        desired = self._desired_replicas(live, status)
        if self.kind == "DaemonSet":
            updated = status.get("updatedNumberScheduled", 0)
            available = status.get("numberAvailable", 0)
        else:
            updated = status.get("updatedReplicas", 0)
            available = status.get("availableReplicas", 0)
        return updated >= desired and available >= desired


WORKLOAD_KINDS = ("Deployment", "StatefulSet", "DaemonSet")


def _conditions(live: Mapping[str, Any]) -> Dict[str, str]:
    status = live.get("status") or {}
    return {
        str(c.get("type")): str(c.get("status"))
        for c in status.get("conditions") or []
        if isinstance(c, Mapping)
    }


class KindRegistry:
    """Resolve o handler de um recurso; cai no handler padrão."""

    def __init__(self, handlers: Optional[Iterable[KindHandler]] = None, *, default: Optional[KindHandler] = None):
        self._handlers: Dict[Tuple[str, str], KindHandler] = {}
        self.default = default or KindHandler()
        for h in handlers or ():
            self.register(h)

    def register(self, handler: KindHandler) -> None:
        self._handlers[(handler.api_group, handler.kind)] = handler

    def handler_for(self, key: ResourceKey) -> KindHandler:
        return self._handlers.get((key.api_group, key.kind), self.default)

    def __len__(self) -> int:
        return len(self._handlers)


def default_registry() -> KindRegistry:
    return KindRegistry([
        NamespaceHandler(),
        CustomResourceDefinitionHandler(),
        *(WorkloadHandler(k) for k in WORKLOAD_KINDS),
    ])
