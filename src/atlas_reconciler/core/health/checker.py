# src/atlas_reconciler/core/health/checker.py
"""
HealthChecker — gate de readiness de um bundle.

Um bundle só transita para `ready` quando todos os seus health checks
declarados passam, segundo o hook `is_healthy` do KindHandler do recurso
referenciado. O checker consulta o alvo a cada `poll_interval` até o
sucesso ou até o timeout.

Decisões arquiteturais:
    - Um health check que referencia recurso inexistente é não saudável
    - Bundle sem health checks declarados é saudável imediatamente
    - O timeout não levanta exceção aqui: o relatório volta com
      `healthy=False` e quem executa a run decide (HealthTimeoutError)
    - Toda espera passa pelo Clock injetado
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..apply.kinds import KindRegistry, default_registry
from ..apply.target import LiveTarget
from ..bundle.types import Bundle
from ..clock import Clock, SystemClock


@dataclass(frozen=True)
class HealthReport:
    bundle: str
    healthy: bool
    checks: Dict[str, bool] = field(default_factory=dict)
    attempts: int = 1
    elapsed: float = 0.0

    @property
    def failing(self) -> List[str]:
        return [k for k, ok in self.checks.items() if not ok]


class HealthChecker:
    def __init__(
        self,
        target: LiveTarget,
        *,
        kinds: Optional[KindRegistry] = None,
        clock: Optional[Clock] = None,
        poll_interval: float = 5.0,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.target = target
        self.kinds = kinds or default_registry()
        self.clock: Clock = clock or SystemClock()
        self.poll_interval = poll_interval

    def check(self, bundle: Bundle) -> Dict[str, bool]:
        """Uma avaliação de todos os health checks do bundle."""
        results: Dict[str, bool] = {}
        for spec in bundle.health_checks:
            key = spec.key
            results[str(key)] = self.kinds.handler_for(key).is_healthy(self.target.get(key))
        return results

    def await_healthy(self, bundle: Bundle, timeout: float) -> HealthReport:
        """Consulta o alvo até todos os checks passarem ou o timeout expirar."""
        start = self.clock.now()
        deadline = start + max(0.0, timeout)
        attempts = 0
        while True:
            attempts += 1
            checks = self.check(bundle)
            now = self.clock.now()
            if all(checks.values()):
                return HealthReport(bundle.name, True, checks, attempts, now - start)
            if now >= deadline:
                return HealthReport(bundle.name, False, checks, attempts, now - start)
            self.clock.sleep(min(self.poll_interval, deadline - now))
