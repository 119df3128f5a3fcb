# src/atlas_reconciler/core/drift/detector.py
"""
DriftDetector — caminho de self-healing da engine.

A cada `interval`, compara o checksum normalizado vivo de cada recurso
do inventário de cada bundle `ready` com o checksum registrado no último
apply bem-sucedido. Recurso ausente ou divergente é drift, e o bundle é
enfileirado no Scheduler com o gatilho `drift`.

Decisões arquiteturais:
    - Apenas bundles `ready` são varridos (os demais já têm run pendente
      ou estão bloqueados)
    - O detector só enfileira; a correção é uma run normal do bundle
    - Checksums cobrem a forma normalizada (status e campos do sistema
      não contam como drift)

Limites explícitos:
    - Não corrige nada diretamente
    - Não observa recursos fora do inventário
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Tuple

from ..apply.applier import Applier
from ..bundle.types import ResourceKey
from ..clock import Clock, SystemClock
from ..traceability.audit import AuditTrail


class DriftSink(Protocol):
    """Quem recebe os bundles com drift (o Scheduler)."""

    def ready_bundles(self) -> Iterable[str]:
        ...

    def trigger(self, name: str, reason: str) -> bool:
        ...


@dataclass(frozen=True)
class DriftReport:
    bundle: str
    missing: Tuple[ResourceKey, ...] = ()
    changed: Tuple[ResourceKey, ...] = ()

    @property
    def drifted(self) -> bool:
        return bool(self.missing or self.changed)


class DriftDetector:
    def __init__(
        self,
        applier: Applier,
        sink: DriftSink,
        *,
        interval: float = 10.0,
        clock: Optional[Clock] = None,
        audit: Optional[AuditTrail] = None,
    ):
        self.applier = applier
        self.sink = sink
        self.interval = interval
        self.clock: Clock = clock or SystemClock()
        self.audit = audit
        self._next_scan: Optional[float] = None

    def inspect(self, bundle: str) -> DriftReport:
        missing: List[ResourceKey] = []
        changed: List[ResourceKey] = []
        for key, recorded in self.applier.inventory(bundle).items():
            live = self.applier.live_checksum(key)
            if live is None:
                missing.append(key)
            elif live != recorded:
                changed.append(key)
        return DriftReport(bundle, tuple(missing), tuple(changed))

    def scan(self, now: Optional[float] = None) -> List[DriftReport]:
        """Varre todos os bundles ready; enfileira os que divergiram."""
        now = self.clock.now() if now is None else now
        self._next_scan = now + self.interval
        reports: List[DriftReport] = []
        for name in list(self.sink.ready_bundles()):
            report = self.inspect(name)
            if not report.drifted:
                continue
            reports.append(report)
            if self.audit is not None:
                self.audit.add_event(
                    "drift_detected",
                    bundle=name,
                    missing=[str(k) for k in report.missing],
                    changed=[str(k) for k in report.changed],
                )
            self.sink.trigger(name, "drift")
        return reports

    def next_due(self) -> Optional[float]:
        return self._next_scan

    def maybe_scan(self, now: Optional[float] = None) -> List[DriftReport]:
        now = self.clock.now() if now is None else now
        if self._next_scan is not None and now < self._next_scan:
            return []
        return self.scan(now)
