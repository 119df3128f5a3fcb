# src/atlas_reconciler/core/engine/engine.py
"""
ReconcileEngine — fachada que conecta fonte, grafo, Scheduler e alvo.

Fluxo de um passo (`step`):
    1. sync_source: poll da fonte; revisão nova → plan_graph → Scheduler
    2. drift: varredura se o intervalo do DriftDetector venceu
    3. run_pending: runs vencidas/gatilhadas até estabilizar
    4. garbage collection de bundles que saíram da árvore

Decisões arquiteturais:
    - Manifest de dependências inválido não derruba a engine: a revisão é
      rejeitada, registrada na trilha, e o último estado desejado válido
      continua sendo reconciliado
    - Entradas nomeadas porém inválidas do manifest entram no grafo como
      marcadores `failed`, para que seus dependentes esperem em vez de
      serem rejeitados por dependência desconhecida
    - Bundle removido da árvore com `prune` habilitado tem seu inventário
      deletado; sem `prune`, os recursos são apenas abandonados

Limites explícitos:
    - Não clona repositórios (a fonte é um diretório local)
    - Não expõe API de rede
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..apply.applier import Applier
from ..apply.kinds import KindRegistry, default_registry
from ..apply.target import LiveTarget
from ..bundle.types import Bundle, ReconciliationRun
from ..clock import Clock, SystemClock
from ..config.hashing import compute_config_hash
from ..config.settings import EngineSettings
from ..drift.detector import DriftDetector
from ..errors import exception_to_error
from ..exceptions import ReconcileException, ValidationError
from ..health.checker import HealthChecker
from ..secrets.decryptor import SecretDecryptor
from ..secrets.keyring import Keyring
from ..source.watcher import DirectorySource, SourceSnapshot
from ..traceability.audit import AuditTrail, create_audit, save_audit
from .planner import GraphPlan, plan_graph
from .reconciler import BundleReconciler
from .scheduler import BundleStatus, Scheduler


class ReconcileEngine:
    """Engine de reconciliação contínua de uma árvore declarativa."""

    def __init__(
        self,
        source: DirectorySource,
        target: LiveTarget,
        *,
        settings: Optional[EngineSettings] = None,
        keyring: Optional[Keyring] = None,
        clock: Optional[Clock] = None,
        audit: Optional[AuditTrail] = None,
        kinds: Optional[KindRegistry] = None,
    ):
        self.settings = settings or EngineSettings()
        self.source = source
        self.target = target
        self.clock: Clock = clock or SystemClock()
        self.audit = audit or create_audit(
            max_events=self.settings.audit_max_events,
            max_runs=self.settings.audit_max_runs,
        )
        self.kinds = kinds or default_registry()
        self.keyring = keyring or Keyring.from_references(self.settings.secret_keys)

        self.applier = Applier(
            target,
            kinds=self.kinds,
            retry=self.settings.retry,
            clock=self.clock,
            audit=self.audit,
        )
        self.health = HealthChecker(
            target,
            kinds=self.kinds,
            clock=self.clock,
            poll_interval=self.settings.health_poll_interval,
        )
        self.reconciler = BundleReconciler(
            applier=self.applier,
            decryptor=SecretDecryptor(self.keyring),
            health=self.health,
            health_timeout=self.settings.health_timeout,
            clock=self.clock,
            audit=self.audit,
        )
        self.scheduler = Scheduler(
            self.reconciler,
            max_workers=self.settings.max_workers,
            failure_backoff=self.settings.failure_backoff,
            clock=self.clock,
            audit=self.audit,
        )
        self.drift = DriftDetector(
            self.applier,
            self.scheduler,
            interval=self.settings.drift_interval,
            clock=self.clock,
            audit=self.audit,
        )

        self.plan: Optional[GraphPlan] = None
        self.source_error: Optional[Dict[str, Any]] = None
        self._next_source_poll: Optional[float] = None

    @classmethod
    def from_config(
        cls,
        source: DirectorySource,
        target: LiveTarget,
        config: Dict[str, Any],
        *,
        clock: Optional[Clock] = None,
        key_base_dir: Optional[Union[str, Path]] = None,
    ) -> "ReconcileEngine":
        """
        Constrói a engine a partir da configuração efetiva (já mesclada).

        Raises:
            ConfigError: Se a configuração ou alguma chave for inválida.
        """
        settings = EngineSettings.from_config(config)
        keyring = Keyring.from_references(settings.secret_keys, base_dir=key_base_dir)
        audit = create_audit(
            config_hash=compute_config_hash(config),
            max_events=settings.audit_max_events,
            max_runs=settings.audit_max_runs,
        )
        return cls(source, target, settings=settings, keyring=keyring, clock=clock, audit=audit)

    # ------------------------------------------------------------------
    # fonte
    # ------------------------------------------------------------------

    def sync_source(self) -> Optional[SourceSnapshot]:
        """
        Lê a fonte e, se a revisão mudou, replaneja o grafo.

        Returns:
            Optional[SourceSnapshot]: snapshot aceito, ou None se nada mudou
            ou se a revisão foi rejeitada por inteiro.
        """
        try:
            snapshot = self.source.poll()
        except ValidationError as e:
            self.source_error = exception_to_error(e).to_dict()
            self.audit.log(
                "error",
                f"source revision rejected: {e.message}",
                revision=self.source.last_revision,
                details=dict(e.details),
            )
            return None
        if snapshot is None:
            return None

        self.source_error = None
        names = {b.name for b in snapshot.bundles}
        placeholders = [Bundle(name=n, source_path="") for n in snapshot.errors if n not in names]
        self.plan = plan_graph(list(snapshot.bundles) + placeholders)
        self.scheduler.notify_revision(snapshot, self.plan)
        self.audit.log(
            "info",
            "new source revision",
            revision=snapshot.revision,
            bundles=len(snapshot.bundles),
            rejected=sorted(set(self.plan.rejected) | set(snapshot.errors)),
        )
        self._collect_garbage()
        return snapshot

    def _collect_garbage(self) -> None:
        for bundle in self.scheduler.take_removed():
            if not bundle.prune_enabled:
                self.applier.forget(bundle.name)
                self.audit.log("info", "bundle removed; resources left in place", bundle=bundle.name)
                continue
            try:
                deleted = self.applier.prune_all(bundle.name)
            except ReconcileException as e:
                self.audit.log("error", f"garbage collection failed: {e.message}", bundle=bundle.name)
                continue
            self.audit.log("info", f"bundle removed; pruned {len(deleted)} resource(s)", bundle=bundle.name)

    # ------------------------------------------------------------------
    # passo único / serviço
    # ------------------------------------------------------------------

    def step(self) -> List[ReconciliationRun]:
        """Um ciclo completo: fonte → drift → runs → garbage collection."""
        self.sync_source()
        self.drift.maybe_scan()
        runs = self.scheduler.run_pending()
        self._collect_garbage()
        return runs

    def _tick(self) -> None:
        now = self.clock.now()
        if self._next_source_poll is None or now >= self._next_source_poll:
            self.sync_source()
            self._next_source_poll = now + self.settings.default_poll_interval
        self.drift.maybe_scan(now)
        self._collect_garbage()

    def serve_forever(self, stop_event: threading.Event) -> None:
        """Reconcilia continuamente até `stop_event` ser sinalizado."""
        self.audit.log("info", "engine started")
        try:
            self.scheduler.serve_forever(stop_event, tick=self._tick)
        finally:
            self.audit.log("info", "engine stopped")
            self._save_audit()

    def stop(self, stop_event: threading.Event) -> None:
        stop_event.set()
        self.scheduler.wake()

    def close(self) -> None:
        self.scheduler.shutdown(wait=True)
        self._save_audit()

    def _save_audit(self) -> None:
        if self.settings.audit_path:
            save_audit(self.audit, Path(self.settings.audit_path))

    # ------------------------------------------------------------------
    # consulta
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, BundleStatus]:
        return self.scheduler.statuses()
