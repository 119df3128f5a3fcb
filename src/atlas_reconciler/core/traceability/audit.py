# src/atlas_reconciler/core/traceability/audit.py
"""
AuditTrail — trilha de auditoria da engine de reconciliação.

A trilha consolida, de forma ordenada e serializável:
    - metadados da engine (versão, hash da configuração, início)
    - estado mais recente de cada bundle (status, revisão aplicada, erro)
    - registros de ReconciliationRun
    - Event Log ordenado: logs da engine, transições de estado e
      operações de apply (identidade do recurso, operação, resultado)

É o canal de logging da engine: nenhum componente escreve em stdout ou
no módulo `logging`; tudo o que é observável passa por aqui.

Princípios fundamentais:
    - Nenhum evento é emitido implicitamente
    - A ordem do Event Log reflete a ordem real de chamada
    - A trilha é serializável e reconstruível (round-trip)

Decisões arquiteturais:
    - UTC é o timezone canônico de todos os timestamps
    - O formato de persistência é JSON determinístico
    - Chamadas concorrentes (workers do Scheduler) são serializadas por lock
    - `max_events` e `max_runs` limitam o Event Log e os registros de run
      em processos de longa duração (os mais antigos são descartados)

Invariantes:
    - Manifests e valores de secrets nunca entram na trilha
    - `events` e `runs` são sempre listas ordenadas

Limites explícitos:
    - Não decide políticas de execução
    - Não persiste automaticamente
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ... import __version__
from ..bundle.types import BundleState, Operation, ReconciliationRun, ResourceKey


LEVELS = ("debug", "info", "warning", "error")


def _ensure_tzaware_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: Optional[datetime] = None) -> str:
    return _ensure_tzaware_utc(dt or datetime.now(timezone.utc)).isoformat()


def _value(v: Any) -> Any:
    return v.value if isinstance(v, (BundleState, Operation)) else v


@dataclass
class AuditTrail:
    """
    Registro ordenado do que a engine observou e fez.

    Campos:
        - engine: metadados (atlas_reconciler_version, config_hash, started_at)
        - bundles: nome → último status conhecido
        - runs: registros de ReconciliationRun serializados
        - events: Event Log ordenado
    """

    engine: Dict[str, Any] = field(default_factory=dict)
    bundles: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    runs: List[Dict[str, Any]] = field(default_factory=list)
    events: List[Dict[str, Any]] = field(default_factory=list)
    max_events: Optional[int] = None
    max_runs: Optional[int] = None
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Event Log
    # ------------------------------------------------------------------

    def add_event(self, event_type: str, *, bundle: Optional[str] = None, **payload: Any) -> Dict[str, Any]:
        ev: Dict[str, Any] = {"event_type": event_type, "timestamp": _iso()}
        if bundle is not None:
            ev["bundle"] = bundle
        if payload:
            ev["payload"] = {k: _value(v) for k, v in payload.items()}
        with self._lock:
            self.events.append(ev)
            if self.max_events is not None and len(self.events) > self.max_events:
                del self.events[: len(self.events) - self.max_events]
        return ev

    def log(self, level: str, message: str, *, bundle: Optional[str] = None, **extra: Any) -> None:
        if level not in LEVELS:
            raise ValueError(f"unknown log level: {level}")
        self.add_event("log", bundle=bundle, level=level, message=message, **extra)

    def transition(
        self,
        bundle: str,
        old: Optional[BundleState],
        new: BundleState,
        *,
        reason: Optional[str] = None,
    ) -> None:
        with self._lock:
            entry = self.bundles.setdefault(bundle, {"name": bundle})
            entry["status"] = new.value
            entry["updated_at"] = _iso()
            self.add_event(
                "state_transition",
                bundle=bundle,
                old=old.value if old is not None else None,
                new=new.value,
                reason=reason,
            )

    def set_bundle(self, bundle: str, **fields: Any) -> None:
        with self._lock:
            entry = self.bundles.setdefault(bundle, {"name": bundle})
            entry.update({k: _value(v) for k, v in fields.items()})

    def forget_bundle(self, bundle: str) -> None:
        with self._lock:
            self.bundles.pop(bundle, None)
            self.add_event("bundle_removed", bundle=bundle)

    def record_operation(
        self,
        bundle: str,
        key: ResourceKey,
        operation: Operation,
        outcome: str,
        *,
        attempt: int = 1,
        error: Optional[str] = None,
    ) -> None:
        payload: Dict[str, Any] = {
            "resource": key.to_dict(),
            "operation": operation.value,
            "outcome": outcome,
            "attempt": attempt,
        }
        if error is not None:
            payload["error"] = error
        self.add_event("apply_operation", bundle=bundle, **payload)

    def record_run(self, run: ReconciliationRun) -> None:
        data = run.to_dict()
        with self._lock:
            self.runs.append(data)
            if self.max_runs is not None and len(self.runs) > self.max_runs:
                del self.runs[: len(self.runs) - self.max_runs]
            self.add_event(
                "run_finished",
                bundle=run.bundle,
                run_id=run.run_id,
                outcome=data["outcome"],
                revision=run.revision,
                stale=run.stale,
            )

    # ------------------------------------------------------------------
    # consulta
    # ------------------------------------------------------------------

    def events_for(self, bundle: str, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                dict(e) for e in self.events
                if e.get("bundle") == bundle and (event_type is None or e["event_type"] == event_type)
            ]

    def runs_for(self, bundle: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self.runs if r["bundle"] == bundle]

    # ------------------------------------------------------------------
    # serialização
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "engine": dict(self.engine),
                "bundles": {k: dict(v) for k, v in self.bundles.items()},
                "runs": [dict(r) for r in self.runs],
                "events": [dict(e) for e in self.events],
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditTrail":
        return cls(
            engine=dict(data.get("engine", {}) or {}),
            bundles={k: dict(v) for k, v in (data.get("bundles", {}) or {}).items()},
            runs=[dict(r) for r in (data.get("runs", []) or [])],
            events=[dict(e) for e in (data.get("events", []) or [])],
        )


def create_audit(
    *,
    config_hash: Optional[str] = None,
    started_at: Optional[datetime] = None,
    max_events: Optional[int] = None,
    max_runs: Optional[int] = None,
) -> AuditTrail:
    """Cria a trilha de uma instância da engine; nenhum evento é emitido."""
    return AuditTrail(
        engine={
            "atlas_reconciler_version": __version__,
            "config_hash": config_hash,
            "started_at": _iso(started_at),
        },
        max_events=max_events,
        max_runs=max_runs,
    )


def save_audit(trail: Union[AuditTrail, Dict[str, Any]], path: Union[str, Path]) -> None:
    """
    Persiste a trilha em JSON determinístico (chaves ordenadas).

    Raises:
        OSError: Em caso de falha de escrita.
        TypeError: Se algum payload não for serializável.
    """
    data = trail.to_dict() if isinstance(trail, AuditTrail) else trail
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True), encoding="utf-8")


def load_audit(path: Union[str, Path]) -> AuditTrail:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return AuditTrail.from_dict(data)
