# src/atlas_reconciler/core/apply/target.py
"""
Sistema alvo (live state) — protocolo + implementação de referência.

O Applier fala com o sistema alvo apenas por `LiveTarget`:

    get(key)          -> manifest vivo | None
    list_keys()       -> identidades existentes
    create(manifest)  -> manifest vivo
    update(manifest)  -> manifest vivo
    delete(key)       -> None

Falhas são reportadas como `TransientError` (throttling, timeout, conflito)
ou `ValidationError` (objeto rejeitado); outras exceções são tratadas pelo
Applier como transitórias.

`InMemoryTarget` é a implementação de referência usada por testes e pela
CLI (persistida em JSON). Ela simula o que um sistema alvo real faz:
    - acrescenta campos do sistema (status, uid, resourceVersion, ...)
    - incrementa `generation` quando o conteúdo muda
    - opcionalmente simula controllers (rollout de workloads, CRDs)
    - aceita mutações externas para simular drift
    - aceita injeção de falhas por operação
"""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

from ..bundle.types import ResourceKey
from ..config.merge import deep_merge
from ..exceptions import ReconcileException, TransientError, ValidationError
from .diff import normalize_manifest


@runtime_checkable
class LiveTarget(Protocol):
    """Contrato mínimo do sistema alvo."""

    def get(self, key: ResourceKey) -> Optional[Dict[str, Any]]:
        ...

    def list_keys(self) -> List[ResourceKey]:
        ...

    def create(self, manifest: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    def update(self, manifest: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    def delete(self, key: ResourceKey) -> None:
        ...


_MANAGER = "atlas-reconciler"
_WORKLOAD_KINDS = {"Deployment", "StatefulSet", "DaemonSet"}


def _simulated_status(manifest: Mapping[str, Any], generation: int) -> Dict[str, Any]:
    key = ResourceKey.of(manifest)
    if key.api_group == "apps" and key.kind in _WORKLOAD_KINDS:
        if key.kind == "DaemonSet":
            return {
                "observedGeneration": generation,
                "desiredNumberScheduled": 1,
                "updatedNumberScheduled": 1,
                "numberAvailable": 1,
            }
        replicas = (manifest.get("spec") or {}).get("replicas")
        replicas = 1 if replicas is None else int(replicas)
        return {
            "observedGeneration": generation,
            "replicas": replicas,
            "updatedReplicas": replicas,
            "availableReplicas": replicas,
        }
    if key.kind == "CustomResourceDefinition":
        return {"conditions": [{"type": "Established", "status": "True"}]}
    return {}


class InMemoryTarget:
    """LiveTarget em memória, thread-safe."""

    def __init__(self, *, simulate_controllers: bool = True):
        self.simulate_controllers = simulate_controllers
        self._objects: Dict[ResourceKey, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._version = 0
        self._faults: List[List[Any]] = []
        #: operações de escrita recebidas: (operação, identidade)
        self.calls: List[Tuple[str, ResourceKey]] = []

    # ------------------------------------------------------------------
    # injeção de falhas
    # ------------------------------------------------------------------

    def fail_next(
        self,
        operation: str,
        *,
        key: Optional[ResourceKey] = None,
        times: int = 1,
        error: Optional[ReconcileException] = None,
    ) -> None:
        """Faz as próximas `times` chamadas de `operation` (e `key`) falharem."""
        exc = error or TransientError(f"{operation} throttled", details={"operation": operation})
        with self._lock:
            self._faults.append([operation, key, times, exc])

    def _maybe_fail(self, operation: str, key: ResourceKey) -> None:
        for fault in self._faults:
            op, fkey, remaining, exc = fault
            if op == operation and (fkey is None or fkey == key) and remaining > 0:
                fault[2] -= 1
                raise exc

    # ------------------------------------------------------------------
    # LiveTarget
    # ------------------------------------------------------------------

    def get(self, key: ResourceKey) -> Optional[Dict[str, Any]]:
        with self._lock:
            obj = self._objects.get(key)
            return copy.deepcopy(obj) if obj is not None else None

    def list_keys(self) -> List[ResourceKey]:
        with self._lock:
            return sorted(self._objects)

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _with_status(self, obj: Dict[str, Any], status: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        generation = obj["metadata"]["generation"]
        if self.simulate_controllers:
            obj["status"] = _simulated_status(obj, generation)
        else:
            obj["status"] = status if status is not None else {}
        return obj

    def create(self, manifest: Mapping[str, Any]) -> Dict[str, Any]:
        key = ResourceKey.of(manifest)
        with self._lock:
            self.calls.append(("create", key))
            self._maybe_fail("create", key)
            if key in self._objects:
                raise ValidationError(f"{key} already exists", details={"resource": str(key)})
            obj = normalize_manifest(manifest)
            metadata = obj.setdefault("metadata", {})
            metadata.update({
                "uid": str(uuid.uuid4()),
                "resourceVersion": self._next_version(),
                "generation": 1,
                "creationTimestamp": datetime.now(timezone.utc).isoformat(),
                "managedFields": [{"manager": _MANAGER, "operation": "Apply"}],
            })
            self._objects[key] = self._with_status(obj, None)
            return copy.deepcopy(self._objects[key])

    def update(self, manifest: Mapping[str, Any]) -> Dict[str, Any]:
        key = ResourceKey.of(manifest)
        with self._lock:
            self.calls.append(("update", key))
            self._maybe_fail("update", key)
            current = self._objects.get(key)
            if current is None:
                raise ValidationError(f"{key} does not exist", details={"resource": str(key)})
            self._objects[key] = self._replace(current, normalize_manifest(manifest))
            return copy.deepcopy(self._objects[key])

    def delete(self, key: ResourceKey) -> None:
        with self._lock:
            self.calls.append(("delete", key))
            self._maybe_fail("delete", key)
            # delete de objeto inexistente é no-op (idempotente)
            self._objects.pop(key, None)

    def _replace(self, current: Dict[str, Any], body: Dict[str, Any]) -> Dict[str, Any]:
        old_meta = current["metadata"]
        generation = old_meta["generation"]
        if normalize_manifest(current) != body:
            generation += 1
        metadata = body.setdefault("metadata", {})
        metadata.update({
            "uid": old_meta["uid"],
            "resourceVersion": self._next_version(),
            "generation": generation,
            "creationTimestamp": old_meta["creationTimestamp"],
            "managedFields": old_meta.get("managedFields", []),
        })
        return self._with_status(body, current.get("status"))

    # ------------------------------------------------------------------
    # mutações externas (simulação de drift)
    # ------------------------------------------------------------------

    def external_patch(self, key: ResourceKey, patch: Mapping[str, Any]) -> None:
        """Altera um objeto vivo por fora da engine (deep-merge)."""
        with self._lock:
            current = self._objects[key]
            merged = deep_merge(normalize_manifest(current), dict(patch))
            self._objects[key] = self._replace(current, merged)

    def external_delete(self, key: ResourceKey) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def set_status(self, key: ResourceKey, status: Mapping[str, Any]) -> None:
        """Define o status observado de um objeto (papel de um controller)."""
        with self._lock:
            self._objects[key]["status"] = copy.deepcopy(dict(status))

    # ------------------------------------------------------------------
    # persistência (CLI)
    # ------------------------------------------------------------------

    def dump(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "version": self._version,
                "objects": [copy.deepcopy(self._objects[k]) for k in sorted(self._objects)],
            }

    @classmethod
    def from_dump(cls, data: Mapping[str, Any], *, simulate_controllers: bool = True) -> "InMemoryTarget":
        target = cls(simulate_controllers=simulate_controllers)
        for obj in data.get("objects") or []:
            target._objects[ResourceKey.of(obj)] = copy.deepcopy(dict(obj))
        target._version = int(data.get("version") or 0)
        return target
