# src/atlas_reconciler/core/engine/scheduler.py
"""
Scheduler — decide quando cada bundle reconcilia.

Cada bundle tem um registro com estado, timer e gatilhos pendentes. O
Scheduler:
    - dispara runs quando o timer do bundle vence (`poll_interval`) ou
      quando chega um gatilho imediato (`trigger`: drift, revisão)
    - bloqueia bundles cujas dependências não estão `ready`
      (`waiting_on_dependencies`) e os reavalia quando a readiness muda
    - executa runs em um pool limitado de workers; no máximo uma run em
      voo por bundle, subgrafos independentes em paralelo
    - aplica a política de falha: erros retentáveis voltam com backoff
      exponencial; validação/decifragem só voltam quando a revisão muda

Decisões arquiteturais:
    - Gatilhos que chegam com run em voo coalescem em uma única run de
      acompanhamento (drift + revisão simultâneos → uma run nova)
    - Revisão nova durante uma run: a run termina normalmente, é marcada
      `stale` e uma run nova é disparada em seguida
    - Bundles rejeitados pelo planejamento do grafo ou pelo render ficam
      `failed` e nunca são agendados até a próxima revisão
    - `run_pending()` é o passo único do relógio da engine; testes o
      chamam com um ManualClock, o serviço chama `serve_forever`

Invariantes:
    - Um bundle só entra em `applying` com todas as dependências `ready`
    - `last_applied_revision` só avança após uma run bem-sucedida
    - Estado é alterado apenas sob o lock do Scheduler
"""

from __future__ import annotations

import threading
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..bundle.types import Bundle, BundleState, ReconciliationRun, ResourceSet, RunOutcome
from ..clock import Clock, SystemClock
from ..config.settings import BackoffPolicy
from ..errors import error_code_for, exception_to_error, render_error
from ..exceptions import DuplicateBundleError
from ..source.watcher import SourceSnapshot
from ..traceability.audit import AuditTrail
from .planner import DependencyGraph, GraphPlan
from .reconciler import BundleReconciler, RunRequest, RunResult


@dataclass
class BundleRecord:
    """Estado de agendamento de um bundle (interno ao Scheduler)."""

    bundle: Bundle
    status: BundleState = BundleState.PENDING
    last_applied_revision: Optional[str] = None
    last_error: Optional[Dict[str, Any]] = None
    next_due: float = 0.0
    consecutive_failures: int = 0
    in_flight: bool = False
    stale: bool = False
    pending_trigger: Optional[str] = None
    #: não agendar até a próxima revisão (erro não retentável ou rejeição)
    blocked: bool = False
    removed: bool = False
    revision: Optional[str] = None
    resources: Optional[ResourceSet] = None
    rejection: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class BundleStatus:
    """Visão consultável do estado de um bundle."""

    name: str
    status: BundleState
    last_applied_revision: Optional[str] = None
    last_error: Optional[Dict[str, Any]] = None
    consecutive_failures: int = 0
    next_due: Optional[float] = None
    waiting_on: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "last_applied_revision": self.last_applied_revision,
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
            "next_due": self.next_due,
            "waiting_on": list(self.waiting_on),
        }


def _coalesce(current: Optional[str], reason: str) -> str:
    """Junta gatilhos pendentes em um único rótulo (`revision+drift`)."""
    if current is None:
        return reason
    if reason in current.split("+"):
        return current
    return f"{current}+{reason}"


class Scheduler:
    def __init__(
        self,
        reconciler: BundleReconciler,
        *,
        max_workers: int = 4,
        failure_backoff: Optional[BackoffPolicy] = None,
        clock: Optional[Clock] = None,
        audit: Optional[AuditTrail] = None,
    ):
        self.reconciler = reconciler
        self.failure_backoff = failure_backoff or BackoffPolicy(
            base_delay=5.0, multiplier=2.0, max_delay=300.0, max_attempts=0
        )
        self.clock: Clock = clock or SystemClock()
        self.audit = audit
        self._records: Dict[str, BundleRecord] = {}
        self._graph = DependencyGraph(order=(), edges={})
        self._futures: Dict[Future, str] = {}
        self._removed: List[Bundle] = []
        self._lock = threading.RLock()
        self._wakeup = threading.Condition(self._lock)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="atlas-reconciler")

    # ------------------------------------------------------------------
    # estado
    # ------------------------------------------------------------------

    def _set_status(self, rec: BundleRecord, state: BundleState, reason: Optional[str] = None) -> None:
        if rec.status is state:
            return
        old = rec.status
        rec.status = state
        rec.bundle.status = state
        if self.audit is not None:
            self.audit.transition(rec.bundle.name, old, state, reason=reason)

    def _on_transition(self, name: str, state: BundleState, reason: str) -> None:
        with self._lock:
            rec = self._records.get(name)
            if rec is not None:
                self._set_status(rec, state, reason)

    def _sync_audit(self, rec: BundleRecord) -> None:
        if self.audit is not None:
            self.audit.set_bundle(
                rec.bundle.name,
                last_applied_revision=rec.last_applied_revision,
                last_error=rec.last_error,
                consecutive_failures=rec.consecutive_failures,
            )

    def _waiting_on(self, rec: BundleRecord) -> Tuple[str, ...]:
        blocking: List[str] = []
        for dep in rec.bundle.depends_on:
            other = self._records.get(dep)
            if other is None or other.status is not BundleState.READY or other.in_flight:
                blocking.append(dep)
        return tuple(blocking)

    def status(self, name: str) -> BundleStatus:
        with self._lock:
            rec = self._records[name]
            return BundleStatus(
                name=name,
                status=rec.status,
                last_applied_revision=rec.last_applied_revision,
                last_error=rec.last_error,
                consecutive_failures=rec.consecutive_failures,
                next_due=None if rec.blocked else rec.next_due,
                waiting_on=self._waiting_on(rec) if rec.status is BundleState.WAITING_ON_DEPENDENCIES else (),
            )

    def statuses(self) -> Dict[str, BundleStatus]:
        with self._lock:
            return {name: self.status(name) for name in self._records}

    def names(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def ready_bundles(self) -> List[str]:
        with self._lock:
            return [
                n for n, r in self._records.items()
                if r.status is BundleState.READY and not r.in_flight and not r.removed
            ]

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    # ------------------------------------------------------------------
    # entradas: revisão nova e gatilhos imediatos
    # ------------------------------------------------------------------

    def notify_revision(self, snapshot: SourceSnapshot, plan: GraphPlan) -> None:
        """
        Incorpora o estado desejado de uma revisão nova.

        Bundles que saíram da árvore deixam de ser agendados e ficam
        disponíveis em `take_removed()` assim que não tiverem run em voo.
        """
        now = self.clock.now()
        valid: Dict[str, Bundle] = {}
        for b in snapshot.bundles:
            # nome duplicado: a primeira declaração vence
            valid.setdefault(b.name, b)

        rejections: Dict[str, Dict[str, Any]] = {}
        for name, exc in snapshot.errors.items():
            if name in valid:
                rejections[name] = render_error(bundle=name, reason=str(exc)).to_dict()
            else:
                rejections[name] = exception_to_error(exc).to_dict()
        for name, exc in plan.rejected.items():
            if isinstance(exc, DuplicateBundleError):
                if self.audit is not None:
                    self.audit.log("warning", str(exc), bundle=name, error_type=error_code_for(exc))
                continue
            rejections.setdefault(name, exception_to_error(exc).to_dict())

        with self._lock:
            self._graph = plan.graph
            for name in list(self._records):
                if name in valid or name in rejections:
                    continue
                rec = self._records[name]
                if rec.in_flight:
                    rec.removed = True
                else:
                    del self._records[name]
                    self._removed.append(rec.bundle)
                if self.audit is not None:
                    self.audit.forget_bundle(name)

            for name in list(valid) + [n for n in rejections if n not in valid]:
                self._accept(name, valid.get(name), snapshot, rejections.get(name), now)

            self._wakeup.notify_all()

    def take_removed(self) -> List[Bundle]:
        """Bundles que saíram da árvore e aguardam garbage collection."""
        with self._lock:
            out, self._removed = self._removed, []
            return out

    def _accept(
        self,
        name: str,
        bundle: Optional[Bundle],
        snapshot: SourceSnapshot,
        rejection: Optional[Dict[str, Any]],
        now: float,
    ) -> None:
        rec = self._records.get(name)
        if rec is None:
            rec = BundleRecord(bundle=bundle or Bundle(name=name, source_path=""), next_due=now)
            self._records[name] = rec
            if self.audit is not None:
                self.audit.transition(name, None, BundleState.PENDING, reason="discovered")
        elif bundle is not None:
            bundle.status = rec.status
            bundle.last_applied_revision = rec.last_applied_revision
            rec.bundle = bundle

        rec.removed = False
        rec.revision = snapshot.revision
        rec.resources = snapshot.resource_sets.get(name)
        rec.consecutive_failures = 0
        rec.blocked = False
        rec.rejection = rejection

        if rec.in_flight:
            rec.stale = True
            return

        rec.next_due = now
        rec.pending_trigger = _coalesce(rec.pending_trigger, "revision")
        if rejection is not None:
            self._reject(rec)

    def _reject(self, rec: BundleRecord) -> None:
        rec.blocked = True
        rec.pending_trigger = None
        rec.last_error = rec.rejection
        self._set_status(rec, BundleState.FAILED, reason="rejected")
        self._sync_audit(rec)

    def trigger(self, name: str, reason: str) -> bool:
        """
        Enfileira uma run imediata do bundle.

        Gatilhos coalescem: com run em voo ou gatilho ainda pendente, nenhuma
        run extra é criada. Bundles bloqueados ignoram o gatilho. Durante o
        backoff de falha o gatilho fica pendente até o fim da espera.
        """
        with self._lock:
            rec = self._records.get(name)
            if rec is None or rec.removed or rec.blocked:
                return False
            rec.pending_trigger = _coalesce(rec.pending_trigger, reason)
            if not rec.in_flight and rec.consecutive_failures == 0:
                rec.next_due = min(rec.next_due, self.clock.now())
            if self.audit is not None:
                self.audit.add_event("trigger", bundle=name, reason=reason)
            self._wakeup.notify_all()
            return True

    # ------------------------------------------------------------------
    # execução
    # ------------------------------------------------------------------

    def _runnable(self, now: float) -> List[BundleRecord]:
        out: List[BundleRecord] = []
        order = [n for n in self._graph.order if n in self._records]
        for name in order:
            rec = self._records[name]
            if rec.in_flight or rec.blocked or rec.removed or rec.next_due > now:
                continue
            if rec.resources is None:
                continue
            if rec.status is not BundleState.WAITING_ON_DEPENDENCIES:
                self._set_status(rec, BundleState.RENDERING, reason=rec.pending_trigger or "poll")
            blocking = self._waiting_on(rec)
            if blocking:
                self._set_status(rec, BundleState.WAITING_ON_DEPENDENCIES, reason="dependencies not ready")
                continue
            out.append(rec)
        return out

    def _submit(self, rec: BundleRecord) -> None:
        assert rec.resources is not None and rec.revision is not None
        request = RunRequest(
            bundle=rec.bundle,
            resources=rec.resources,
            revision=rec.revision,
            trigger=rec.pending_trigger or "poll",
        )
        rec.in_flight = True
        rec.stale = False
        rec.pending_trigger = None
        future = self._executor.submit(self.reconciler.run, request, self._on_transition)
        future.add_done_callback(lambda _: self._notify())
        self._futures[future] = rec.bundle.name

    def _notify(self) -> None:
        with self._wakeup:
            self._wakeup.notify_all()

    def _finish(self, future: Future) -> ReconciliationRun:
        name = self._futures.pop(future)
        try:
            result: RunResult = future.result()
        except Exception as e:
            # falha da própria engine fora do reconciler
            payload = exception_to_error(e)
            now = self.clock.now()
            rec = self._records.get(name)
            result = RunResult(
                run=ReconciliationRun(
                    run_id=uuid.uuid4().hex,
                    bundle=name,
                    revision=rec.revision if rec else None,
                    started_at=now,
                    finished_at=now,
                    outcome=RunOutcome.FAILED,
                    error=payload.to_dict(),
                ),
                error=payload,
            )

        now = self.clock.now()
        rec = self._records[name]
        rec.in_flight = False
        run = result.run
        run.stale = rec.stale

        if rec.removed:
            del self._records[name]
            self._removed.append(rec.bundle)
            if self.audit is not None:
                self.audit.record_run(run)
            return run

        if result.succeeded:
            rec.last_applied_revision = run.revision
            rec.bundle.last_applied_revision = run.revision
            rec.last_error = None
            rec.consecutive_failures = 0
            rec.next_due = now + rec.bundle.poll_interval
            self._set_status(rec, BundleState.READY, reason="run succeeded")
        else:
            rec.last_error = run.error
            rec.consecutive_failures += 1
            retryable = bool(result.error and result.error.retryable)
            if retryable and not self.failure_backoff.exhausted(rec.consecutive_failures):
                rec.next_due = now + self.failure_backoff.delay(rec.consecutive_failures)
            else:
                rec.blocked = True
            self._set_status(rec, BundleState.FAILED, reason=result.error.type if result.error else "failed")

        if rec.stale:
            rec.stale = False
            rec.blocked = False
            rec.next_due = now
            rec.pending_trigger = _coalesce(rec.pending_trigger, "revision")
            if rec.rejection is not None:
                self._reject(rec)
        elif rec.pending_trigger is not None and result.succeeded:
            rec.next_due = now

        self._sync_audit(rec)
        if self.audit is not None:
            self.audit.record_run(run)
        return run

    def _collect(self, block: bool) -> List[ReconciliationRun]:
        with self._lock:
            pending = list(self._futures)
        if not pending:
            return []
        if block:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
        else:
            done = [f for f in pending if f.done()]
        with self._lock:
            return [self._finish(f) for f in done]

    def run_pending(self, *, block: bool = True) -> List[ReconciliationRun]:
        """
        Passo único do relógio de reconciliação.

        Dispara todos os bundles vencidos e prontos; com `block=True`,
        espera as runs terminarem e reavalia dependentes a cada término,
        até não haver run em voo nem bundle executável.

        Returns:
            List[ReconciliationRun]: runs concluídas neste passo.
        """
        finished: List[ReconciliationRun] = []
        while True:
            finished.extend(self._collect(block=False))
            with self._lock:
                for rec in self._runnable(self.clock.now()):
                    self._submit(rec)
                in_flight = bool(self._futures)
            if not block or not in_flight:
                return finished
            finished.extend(self._collect(block=True))

    def next_wakeup(self) -> Optional[float]:
        """Instante do próximo timer vencível (ignora bundles esperando dependências)."""
        with self._lock:
            dues = [
                r.next_due for r in self._records.values()
                if not (r.in_flight or r.blocked or r.removed)
                and r.status is not BundleState.WAITING_ON_DEPENDENCIES
            ]
        return min(dues) if dues else None

    def wait_for_work(self, timeout: float) -> None:
        with self._wakeup:
            self._wakeup.wait(timeout=max(0.0, timeout))

    def wake(self) -> None:
        self._notify()

    def serve_forever(self, stop_event: threading.Event, *, tick=None, max_idle: float = 1.0) -> None:
        """
        Loop de longa duração: `tick()` (poll da fonte, drift), dispara o que
        venceu e dorme até o próximo timer, um gatilho ou um término de run.
        """
        try:
            while not stop_event.is_set():
                if tick is not None:
                    tick()
                self.run_pending(block=False)
                due = self.next_wakeup()
                timeout = max_idle if due is None else min(max_idle, due - self.clock.now())
                if not stop_event.is_set():
                    self.wait_for_work(timeout)
        finally:
            self.shutdown(wait=True)

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        if wait:
            with self._lock:
                for f in list(self._futures):
                    self._finish(f)

    def __len__(self) -> int:
        return len(self._records)

    def records(self) -> Iterable[BundleRecord]:
        with self._lock:
            return list(self._records.values())
