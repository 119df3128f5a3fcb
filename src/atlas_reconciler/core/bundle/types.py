# src/atlas_reconciler/core/bundle/types.py
"""
Tipos canônicos da engine de reconciliação.

Este módulo define as estruturas e enums fundamentais que padronizam a
comunicação entre SourceWatcher, DependencyGraph, Scheduler, Applier,
HealthChecker e DriftDetector.

Componentes principais:
    - BundleState       → máquina de estados por bundle
    - RunOutcome        → resultado final de uma run
    - Operation         → tipo de operação de apply
    - HealthCheckSpec   → referência a um recurso cuja readiness é exigida
    - Bundle            → unidade agendável, com dependências declaradas
    - ResourceKey       → identidade única (apiGroup, kind, namespace, name)
    - Resource          → unidade de diff/mutação do Applier
    - ResourceSet       → conjunto ordenado e sem identidades repetidas
    - SecretRef         → valor cifrado embutido em um manifest
    - ResourceDiff      → diff de um recurso (create/update/delete/noop)
    - ReconciliationRun → registro de auditoria de uma tentativa

Princípios fundamentais:
    - Tipos são estáveis e serializáveis
    - Enums possuem valores textuais canônicos
    - Nenhuma lógica de execução vive neste módulo

Invariantes:
    - `status` e `last_applied_revision` são os únicos campos mutáveis de Bundle
    - Resource, ResourceKey, SecretRef e ResourceDiff são imutáveis
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..config.hashing import compute_content_hash
from ..exceptions import ValidationError


DEFAULT_POLL_INTERVAL = 60.0

#: chave que marca um nó de manifest como SecretRef
SECRET_MARKER = "$secret"


class BundleState(str, Enum):
    """
    Estados de um bundle.

    Transições:
        pending → rendering → waiting_on_dependencies → applying
                → health_checking → ready
        rendering/applying/health_checking → failed → (backoff) → rendering
        ready → rendering (nova revisão ou drift)

    `pending` é o único estado inicial; não existe estado terminal.
    """
    PENDING = "pending"
    RENDERING = "rendering"
    WAITING_ON_DEPENDENCIES = "waiting_on_dependencies"
    APPLYING = "applying"
    HEALTH_CHECKING = "health_checking"
    READY = "ready"
    FAILED = "failed"


class RunOutcome(str, Enum):
    """Resultado final de uma ReconciliationRun."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Operation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NOOP = "noop"


@dataclass(frozen=True)
class HealthCheckSpec:
    """
    Health check declarado por um bundle.

    Referencia um recurso (por identidade) que deve estar saudável, segundo
    o hook `is_healthy` do KindHandler correspondente, para que o bundle
    transite para `ready`.
    """
    kind: str
    name: str
    namespace: str = ""
    api_group: str = ""

    @property
    def key(self) -> "ResourceKey":
        return ResourceKey(api_group=self.api_group, kind=self.kind, namespace=self.namespace, name=self.name)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HealthCheckSpec":
        if not isinstance(data, Mapping):
            raise ValidationError("healthChecks entries must be mappings", details={"entry": repr(data)})
        kind = data.get("kind")
        name = data.get("name")
        if not isinstance(kind, str) or not kind or not isinstance(name, str) or not name:
            raise ValidationError("healthChecks entries require 'kind' and 'name'", details={"entry": dict(data)})
        api_group = data.get("apiGroup")
        if api_group is None and isinstance(data.get("apiVersion"), str):
            api_group = split_api_version(data["apiVersion"])[0]
        return cls(
            kind=kind,
            name=name,
            namespace=str(data.get("namespace") or ""),
            api_group=str(api_group or ""),
        )


@dataclass
class Bundle:
    """
    Bundle — grupo de recursos agendado de forma independente.

    Campos declarativos (vindos do manifest de dependências):
        - name, source_path, depends_on, poll_interval, prune_enabled,
          health_checks, overlay_path, decryption_key_id

    Campos mutáveis (escritos apenas pelo pipeline Scheduler/Applier/HealthChecker):
        - status
        - last_applied_revision
    """
    name: str
    source_path: str
    depends_on: Tuple[str, ...] = ()
    poll_interval: float = DEFAULT_POLL_INTERVAL
    prune_enabled: bool = False
    health_checks: Tuple[HealthCheckSpec, ...] = ()
    overlay_path: Optional[str] = None
    decryption_key_id: Optional[str] = None

    status: BundleState = BundleState.PENDING
    last_applied_revision: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("bundle name must be a non-empty string")
        # preserva ordem de declaração, remove duplicatas
        seen: List[str] = []
        for dep in self.depends_on:
            if dep not in seen:
                seen.append(dep)
        self.depends_on = tuple(seen)
        self.health_checks = tuple(self.health_checks)

    def definition(self) -> Dict[str, Any]:
        """Parte declarativa do bundle (comparável entre revisões)."""
        return {
            "name": self.name,
            "path": self.source_path,
            "dependsOn": list(self.depends_on),
            "pollInterval": self.poll_interval,
            "prune": self.prune_enabled,
            "healthChecks": [
                {"apiGroup": h.api_group, "kind": h.kind, "namespace": h.namespace, "name": h.name}
                for h in self.health_checks
            ],
            "overlay": self.overlay_path,
            "decryptionKeyId": self.decryption_key_id,
        }


def split_api_version(api_version: str) -> Tuple[str, str]:
    """`apps/v1` → (`apps`, `v1`); `v1` → (``, `v1`)."""
    if "/" in api_version:
        group, version = api_version.split("/", 1)
        return group, version
    return "", api_version


@dataclass(frozen=True, order=True)
class ResourceKey:
    """Identidade única de um recurso: (apiGroup, kind, namespace, name)."""
    api_group: str
    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        group = self.api_group or "core"
        ns = self.namespace or "-"
        return f"{group}/{self.kind}/{ns}/{self.name}"

    def to_dict(self) -> Dict[str, str]:
        return {
            "apiGroup": self.api_group,
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResourceKey":
        return cls(
            api_group=str(data.get("apiGroup") or ""),
            kind=str(data["kind"]),
            namespace=str(data.get("namespace") or ""),
            name=str(data["name"]),
        )

    @classmethod
    def of(cls, manifest: Mapping[str, Any]) -> "ResourceKey":
        """
        Extrai a identidade de um manifest.

        Raises:
            ValidationError: Se `apiVersion`, `kind` ou `metadata.name` faltarem.
        """
        if not isinstance(manifest, Mapping):
            raise ValidationError("resource manifest must be a mapping", details={"type": type(manifest).__name__})
        api_version = manifest.get("apiVersion")
        kind = manifest.get("kind")
        metadata = manifest.get("metadata") or {}
        name = metadata.get("name") if isinstance(metadata, Mapping) else None
        missing = [
            f for f, v in (("apiVersion", api_version), ("kind", kind), ("metadata.name", name))
            if not isinstance(v, str) or not v
        ]
        if missing:
            raise ValidationError(
                "malformed resource manifest",
                details={"missing": missing, "kind": kind, "name": name},
            )
        namespace = metadata.get("namespace") or ""
        return cls(
            api_group=split_api_version(api_version)[0],
            kind=kind,
            namespace=str(namespace),
            name=name,
        )


@dataclass(frozen=True)
class Resource:
    """Recurso desejado: identidade, manifest e checksum de conteúdo."""
    key: ResourceKey
    manifest: Mapping[str, Any]
    checksum: str

    @classmethod
    def from_manifest(cls, manifest: Mapping[str, Any]) -> "Resource":
        key = ResourceKey.of(manifest)
        body = copy.deepcopy(dict(manifest))
        return cls(key=key, manifest=body, checksum=compute_content_hash(body))

    def with_manifest(self, manifest: Mapping[str, Any]) -> "Resource":
        return Resource(key=self.key, manifest=manifest, checksum=compute_content_hash(manifest))


class ResourceSet(Sequence[Resource]):
    """
    Conjunto ordenado de recursos renderizados de um bundle.

    A ordem de declaração é preservada (é o desempate de ordem de apply).

    Raises:
        ValidationError: Se duas entradas tiverem a mesma identidade.
    """

    def __init__(self, resources: Iterable[Resource] = ()):
        items: List[Resource] = []
        index: Dict[ResourceKey, int] = {}
        for r in resources:
            if r.key in index:
                raise ValidationError("duplicate resource identity in bundle", details={"resource": str(r.key)})
            index[r.key] = len(items)
            items.append(r)
        self._items: Tuple[Resource, ...] = tuple(items)
        self._index = index

    @classmethod
    def from_manifests(cls, manifests: Iterable[Mapping[str, Any]]) -> "ResourceSet":
        return cls(Resource.from_manifest(m) for m in manifests)

    def __getitem__(self, i):  # type: ignore[override]
        return self._items[i]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Resource]:
        return iter(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceSet):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"ResourceSet({[str(r.key) for r in self._items]})"

    def keys(self) -> List[ResourceKey]:
        return [r.key for r in self._items]

    def get(self, key: ResourceKey) -> Optional[Resource]:
        i = self._index.get(key)
        return None if i is None else self._items[i]


@dataclass(frozen=True)
class SecretRef:
    """
    Referência a um valor cifrado embutido em um manifest.

    Forma no manifest:
        {"$secret": {"encryptedBlob": "<token>", "keyId": "<id>"}}

    `key_id` pode ser None quando o bundle declara `decryptionKeyId`.
    """
    encrypted_blob: str
    key_id: Optional[str] = None

    def to_manifest_node(self) -> Dict[str, Any]:
        node: Dict[str, Any] = {"encryptedBlob": self.encrypted_blob}
        if self.key_id is not None:
            node["keyId"] = self.key_id
        return {SECRET_MARKER: node}


@dataclass(frozen=True)
class ResourceDiff:
    key: ResourceKey
    operation: Operation
    changed_paths: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource": self.key.to_dict(),
            "operation": self.operation.value,
            "changed_paths": list(self.changed_paths),
        }


@dataclass
class ReconciliationRun:
    """
    Registro de auditoria de uma tentativa de reconciliação.

    `error` guarda o payload serializado (ReconcileErrorPayload.to_dict),
    nunca uma exceção crua. `stale` indica que uma revisão mais nova chegou
    durante a run; ela terminou normalmente e uma run nova foi agendada.
    """
    run_id: str
    bundle: str
    revision: Optional[str]
    started_at: float
    trigger: str = "poll"
    finished_at: Optional[float] = None
    outcome: Optional[RunOutcome] = None
    resource_diffs: List[ResourceDiff] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    stale: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "bundle": self.bundle,
            "revision": self.revision,
            "trigger": self.trigger,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "outcome": self.outcome.value if self.outcome else None,
            "resource_diffs": [d.to_dict() for d in self.resource_diffs],
            "error": self.error,
            "stale": self.stale,
        }
