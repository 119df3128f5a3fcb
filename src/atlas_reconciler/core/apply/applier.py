# src/atlas_reconciler/core/apply/applier.py
"""
Applier — converge o estado vivo para o ResourceSet desejado.

Contrato:
    plan(bundle, desired, previous) -> ApplyPlan
    apply(bundle, desired)          -> ApplyResult | ReconcileException
    prune_all(bundle)               -> List[ResourceDiff]

Plano:
    - to_create:  desejado e ausente no alvo
    - to_update:  desejado, presente e divergente após normalização
    - unchanged:  desejado, presente e equivalente
    - to_delete:  aplicado anteriormente pelo bundle e não mais desejado
                  (somente com `prune` habilitado)

Ordem de apply:
    - escritas: prioridade do KindHandler (Namespace/CRD primeiro) e, em
      empate, ordem de declaração
    - deletes: por último, na ordem inversa

Decisões arquiteturais:
    - Cada operação é retentada com backoff exponencial em TransientError
      (`retry` da configuração); ValidationError falha imediatamente
    - Qualquer operação falha falha o apply inteiro; não há rollback
      (o sistema é forward-only)
    - Cada escrita bem-sucedida entra no inventário assim que acontece, mesmo
      que o apply falhe depois; após um apply totalmente bem-sucedido o
      inventário é substituído pelo conjunto desejado com checksums vivos
    - Texto plano de secrets é removido de mensagens de erro; apenas
      checksums da forma normalizada viva são guardados

Invariantes:
    - Recursos fora do inventário do bundle nunca são deletados
    - Aplicar duas vezes o mesmo desejado gera zero mutações na segunda
"""

from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, TypeVar

from ..bundle.types import Operation, Resource, ResourceDiff, ResourceKey, ResourceSet
from ..clock import Clock, SystemClock
from ..config.hashing import compute_content_hash
from ..config.settings import BackoffPolicy
from ..exceptions import ReconcileException, TransientError
from ..secrets.redaction import redact_text, redact_value
from ..traceability.audit import AuditTrail
from .kinds import KindRegistry, default_registry
from .target import LiveTarget


T = TypeVar("T")


@dataclass(frozen=True)
class ApplyPlan:
    """Operações necessárias para convergir um bundle, já ordenadas."""

    bundle: str
    to_create: Tuple[Resource, ...] = ()
    to_update: Tuple[Tuple[Resource, Tuple[str, ...]], ...] = ()
    to_delete: Tuple[ResourceKey, ...] = ()
    unchanged: Tuple[ResourceKey, ...] = ()
    #: escritas na ordem de execução: (operação, recurso)
    writes: Tuple[Tuple[Operation, Resource], ...] = ()

    @property
    def is_noop(self) -> bool:
        return not (self.to_create or self.to_update or self.to_delete)

    def diffs(self) -> List[ResourceDiff]:
        changed = {r.key: paths for r, paths in self.to_update}
        out = [ResourceDiff(r.key, op, changed.get(r.key, ())) for op, r in self.writes]
        out.extend(ResourceDiff(k, Operation.DELETE) for k in self.to_delete)
        out.extend(ResourceDiff(k, Operation.NOOP) for k in self.unchanged)
        return out


@dataclass
class ApplyResult:
    bundle: str
    plan: ApplyPlan
    applied: List[ResourceDiff] = field(default_factory=list)
    inventory: Dict[ResourceKey, str] = field(default_factory=dict)

    @property
    def mutations(self) -> int:
        return len(self.applied)


class Applier:
    """Aplica ResourceSets em um LiveTarget e mantém o inventário por bundle."""

    def __init__(
        self,
        target: LiveTarget,
        *,
        kinds: Optional[KindRegistry] = None,
        retry: Optional[BackoffPolicy] = None,
        clock: Optional[Clock] = None,
        audit: Optional[AuditTrail] = None,
    ):
        self.target = target
        self.kinds = kinds or default_registry()
        self.retry = retry or BackoffPolicy()
        self.clock: Clock = clock or SystemClock()
        self.audit = audit
        self._inventory: Dict[str, Dict[ResourceKey, str]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # inventário
    # ------------------------------------------------------------------

    def inventory(self, bundle: str) -> Dict[ResourceKey, str]:
        """Identidade → checksum vivo registrado no último apply bem-sucedido."""
        with self._lock:
            return dict(self._inventory.get(bundle, {}))

    def bundles(self) -> List[str]:
        with self._lock:
            return list(self._inventory)

    def live_checksum(self, key: ResourceKey) -> Optional[str]:
        """Checksum da forma normalizada viva; None se o objeto não existe."""
        live = self.target.get(key)
        if live is None:
            return None
        return compute_content_hash(self.kinds.handler_for(key).normalize(live))

    def export_inventory(self) -> Dict[str, List[Dict[str, Any]]]:
        with self._lock:
            return {
                bundle: [{"resource": k.to_dict(), "checksum": c} for k, c in inv.items()]
                for bundle, inv in self._inventory.items()
            }

    def restore_inventory(self, data: Mapping[str, Iterable[Mapping[str, Any]]]) -> None:
        with self._lock:
            self._inventory = {
                bundle: {ResourceKey.from_dict(e["resource"]): str(e["checksum"]) for e in entries}
                for bundle, entries in data.items()
            }

    # ------------------------------------------------------------------
    # plano
    # ------------------------------------------------------------------

    def _priority(self, key: ResourceKey, manifest: Optional[Mapping[str, Any]] = None) -> int:
        return self.kinds.handler_for(key).apply_priority(manifest)

    def plan(
        self,
        bundle: str,
        desired: ResourceSet,
        previous: Optional[Iterable[ResourceKey]] = None,
        *,
        prune: bool = False,
    ) -> ApplyPlan:
        """
        Calcula o plano de um bundle contra o estado vivo atual.

        `previous` é o conjunto aplicado anteriormente pelo bundle (por
        padrão, o inventário registrado).
        """
        to_create: List[Resource] = []
        to_update: List[Tuple[Resource, Tuple[str, ...]]] = []
        unchanged: List[ResourceKey] = []

        for r in desired:
            live = self.target.get(r.key)
            if live is None:
                to_create.append(r)
                continue
            paths = self.kinds.handler_for(r.key).diff(r.manifest, live)
            if paths:
                to_update.append((r, tuple(paths)))
            else:
                unchanged.append(r.key)

        to_delete: List[ResourceKey] = []
        if prune:
            prior = list(previous) if previous is not None else list(self.inventory(bundle))
            wanted = set(desired.keys())
            to_delete = [k for k in prior if k not in wanted]

        position = {k: i for i, k in enumerate(desired.keys())}
        writes = [(Operation.CREATE, r) for r in to_create] + [(Operation.UPDATE, r) for r, _ in to_update]
        writes.sort(key=lambda w: (self._priority(w[1].key, w[1].manifest), position[w[1].key]))

        return ApplyPlan(
            bundle=bundle,
            to_create=tuple(to_create),
            to_update=tuple(to_update),
            to_delete=tuple(self._delete_order(to_delete)),
            unchanged=tuple(unchanged),
            writes=tuple(writes),
        )

    def _delete_order(self, keys: List[ResourceKey]) -> List[ResourceKey]:
        ordered = sorted(enumerate(keys), key=lambda e: (self._priority(e[1]), e[0]))
        return [k for _, k in reversed(ordered)]

    # ------------------------------------------------------------------
    # execução
    # ------------------------------------------------------------------

    def _with_retry(
        self,
        bundle: str,
        key: ResourceKey,
        op: Operation,
        fn: Callable[[], T],
        secrets: Tuple[str, ...] = (),
    ) -> T:
        attempt = 1
        while True:
            try:
                result = fn()
            except TransientError as e:
                self._record(bundle, key, op, "retrying" if not self.retry.exhausted(attempt) else "failed",
                             attempt=attempt, error=redact_text(e.message, secrets))
                if self.retry.exhausted(attempt):
                    raise
                self.clock.sleep(self.retry.delay(attempt))
                attempt += 1
                continue
            except ReconcileException as e:
                self._record(bundle, key, op, "failed", attempt=attempt, error=redact_text(e.message, secrets))
                raise
            except Exception as e:
                # falha desconhecida do alvo: classificada como transitória
                err = TransientError(str(e) or e.__class__.__name__, details={"exception_class": e.__class__.__name__})
                self._record(bundle, key, op, "retrying" if not self.retry.exhausted(attempt) else "failed",
                             attempt=attempt, error=redact_text(err.message, secrets))
                if self.retry.exhausted(attempt):
                    raise err from e
                self.clock.sleep(self.retry.delay(attempt))
                attempt += 1
                continue
            self._record(bundle, key, op, "succeeded", attempt=attempt)
            return result

    def _record(self, bundle: str, key: ResourceKey, op: Operation, outcome: str, **kw: Any) -> None:
        if self.audit is not None:
            self.audit.record_operation(bundle, key, op, outcome, **kw)

    def apply(
        self,
        bundle: str,
        desired: ResourceSet,
        *,
        prune: bool = False,
        secret_values: Iterable[str] = (),
    ) -> ApplyResult:
        """
        Aplica `desired` (já decifrado) para o bundle.

        Raises:
            TransientError: Se uma operação esgotar as tentativas.
            ValidationError: Se o alvo rejeitar um recurso.
        """
        secrets = tuple(s for s in secret_values if s)
        plan = self.plan(bundle, desired, prune=prune)
        result = ApplyResult(bundle=bundle, plan=plan)
        changed = {r.key: paths for r, paths in plan.to_update}
        recorded = self.inventory(bundle)

        try:
            for op, resource in plan.writes:
                write = self.target.create if op is Operation.CREATE else self.target.update
                self._with_retry(bundle, resource.key, op, lambda: write(resource.manifest), secrets)
                result.applied.append(ResourceDiff(resource.key, op, changed.get(resource.key, ())))
                checksum = self.live_checksum(resource.key)
                if checksum is not None:
                    recorded[resource.key] = checksum
            for key in plan.to_delete:
                self._with_retry(bundle, key, Operation.DELETE, lambda: self.target.delete(key), secrets)
                result.applied.append(ResourceDiff(key, Operation.DELETE))
                recorded.pop(key, None)
        except ReconcileException as e:
            # apply parcial: o inventário guarda o que já foi escrito
            with self._lock:
                if recorded or bundle in self._inventory:
                    self._inventory[bundle] = recorded
            raise _scrubbed(e, secrets, applied=len(result.applied)) from None

        inventory: Dict[ResourceKey, str] = {}
        for key in desired.keys():
            checksum = self.live_checksum(key)
            if checksum is None:
                raise TransientError(f"{key} disappeared right after apply", details={"resource": str(key)})
            inventory[key] = checksum
        with self._lock:
            self._inventory[bundle] = inventory
        result.inventory = dict(inventory)
        return result

    def prune_all(self, bundle: str) -> List[ResourceDiff]:
        """Remove todos os recursos do inventário de um bundle que saiu da árvore."""
        keys = self._delete_order(list(self.inventory(bundle)))
        deleted: List[ResourceDiff] = []
        for key in keys:
            self._with_retry(bundle, key, Operation.DELETE, lambda: self.target.delete(key))
            deleted.append(ResourceDiff(key, Operation.DELETE))
        with self._lock:
            self._inventory.pop(bundle, None)
        return deleted

    def forget(self, bundle: str) -> None:
        with self._lock:
            self._inventory.pop(bundle, None)


def _scrubbed(exc: ReconcileException, secrets: Tuple[str, ...], *, applied: int) -> ReconcileException:
    details = dict(redact_value(dict(exc.details or {}), secrets))
    details["applied_operations"] = applied
    return dataclasses.replace(
        exc,
        message=redact_text(exc.message, secrets),
        details=details,
    )
