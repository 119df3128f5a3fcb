# src/atlas_reconciler/core/engine/reconciler.py
"""
Execução de uma run de reconciliação de um bundle.

Fluxo (dentro de um worker do Scheduler):
    applying:         decrypt (all-or-nothing) → apply
    health_checking:  HealthChecker até ready ou timeout
    resultado:        ReconciliationRun (succeeded | failed)

Decisões arquiteturais:
    - Toda exceção vira ReconcileErrorPayload; stack traces nunca chegam
      ao status do bundle nem à trilha de auditoria
    - O ResourceSet decifrado vive apenas durante a chamada de apply
    - O estado final (ready/failed, backoff, stale) é decidido pelo
      Scheduler; aqui só são emitidas as transições intermediárias

Invariantes:
    - Nenhum recurso é aplicado se qualquer SecretRef falhar
    - `revision` do run é a revisão efetivamente aplicada
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable, FrozenSet, Optional

from ..apply.applier import Applier
from ..bundle.types import Bundle, BundleState, ReconciliationRun, ResourceSet, RunOutcome
from ..clock import Clock, SystemClock
from ..errors import ReconcileErrorPayload, exception_to_error
from ..exceptions import HealthTimeoutError
from ..health.checker import HealthChecker
from ..secrets.decryptor import SecretDecryptor
from ..secrets.redaction import redact_value
from ..traceability.audit import AuditTrail


TransitionFn = Callable[[str, BundleState, str], None]


@dataclass(frozen=True)
class RunRequest:
    """Tudo o que uma run precisa, capturado no momento do agendamento."""

    bundle: Bundle
    resources: ResourceSet
    revision: str
    trigger: str = "poll"


@dataclass(frozen=True)
class RunResult:
    run: ReconciliationRun
    error: Optional[ReconcileErrorPayload] = None

    @property
    def succeeded(self) -> bool:
        return self.run.outcome is RunOutcome.SUCCEEDED


class BundleReconciler:
    """Executa runs de bundles: decrypt → apply → health."""

    def __init__(
        self,
        *,
        applier: Applier,
        decryptor: SecretDecryptor,
        health: HealthChecker,
        health_timeout: float,
        clock: Optional[Clock] = None,
        audit: Optional[AuditTrail] = None,
    ):
        self.applier = applier
        self.decryptor = decryptor
        self.health = health
        self.health_timeout = health_timeout
        self.clock: Clock = clock or SystemClock()
        self.audit = audit

    def _log(self, level: str, message: str, bundle: str, **extra) -> None:
        if self.audit is not None:
            self.audit.log(level, message, bundle=bundle, **extra)

    def run(self, request: RunRequest, on_transition: Optional[TransitionFn] = None) -> RunResult:
        bundle = request.bundle
        run = ReconciliationRun(
            run_id=uuid.uuid4().hex,
            bundle=bundle.name,
            revision=request.revision,
            started_at=self.clock.now(),
            trigger=request.trigger,
        )

        def transition(state: BundleState) -> None:
            if on_transition is not None:
                on_transition(bundle.name, state, request.trigger)

        plaintexts: FrozenSet[str] = frozenset()
        try:
            transition(BundleState.APPLYING)
            decrypted = self.decryptor.decrypt(request.resources, bundle.decryption_key_id)
            plaintexts = decrypted.plaintexts
            result = self.applier.apply(
                bundle.name,
                decrypted,
                prune=bundle.prune_enabled,
                secret_values=plaintexts,
            )
            del decrypted
            run.resource_diffs = result.plan.diffs()
            self._log("info", f"applied {result.mutations} operation(s)", bundle.name, revision=request.revision)

            transition(BundleState.HEALTH_CHECKING)
            report = self.health.await_healthy(bundle, self.health_timeout)
            if not report.healthy:
                raise HealthTimeoutError(
                    f"health checks did not pass within {self.health_timeout:g}s",
                    details={"bundle": bundle.name, "failing": report.failing, "attempts": report.attempts},
                )

        except Exception as e:
            payload = exception_to_error(e)
            if plaintexts:
                payload = ReconcileErrorPayload.from_dict(redact_value(payload.to_dict(), plaintexts))
            run.outcome = RunOutcome.FAILED
            run.error = payload.to_dict()
            run.finished_at = self.clock.now()
            self._log("error", payload.message, bundle.name, error_type=payload.type, revision=request.revision)
            return RunResult(run=run, error=payload)

        run.outcome = RunOutcome.SUCCEEDED
        run.finished_at = self.clock.now()
        return RunResult(run=run)
