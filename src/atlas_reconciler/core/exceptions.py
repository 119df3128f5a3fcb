"""
Atlas Reconciler — Canonical Exceptions (v1)

Este módulo define as exceções tipadas internas da engine de reconciliação.

Taxonomia:
- TransientError     → throttling, timeout do backend; retry com backoff
- ValidationError    → recurso malformado, ciclo, `dependsOn` irresolvível;
                       fatal para o bundle até a fonte mudar
- DecryptionError    → falha de decifragem; fatal por bundle, all-or-nothing
- HealthTimeoutError → health checks não passaram no prazo; retry com backoff

Regras:
- Exceções carregam apenas dados estruturados (serializáveis) em `details`.
- Mensagens e details nunca contêm valores de secrets decifrados.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ReconcileException(Exception):
    """Base class para exceções internas do Atlas Reconciler.

    Importante:
    - Sempre carregar dados estruturados em `details`
    - Não embedar stack trace em payloads de erro
    - Mensagem deve ser curta e humana
    """

    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    hint: Optional[str] = None

    #: indica se o Scheduler deve agendar nova tentativa com backoff
    retryable = False

    def __str__(self) -> str:  # pragma: no cover
        return self.message


# ---------------------------------------------------------------------------
# Falhas transitórias
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransientError(ReconcileException):
    """Falha classificada como transitória (throttling, timeout, conflito de versão)."""

    retryable = True


# ---------------------------------------------------------------------------
# Falhas de validação (fatais até a fonte mudar)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationError(ReconcileException):
    """Recurso ou definição de bundle inválida; não é retentada."""


@dataclass(frozen=True)
class DuplicateBundleError(ValidationError):
    """Dois bundles declarados com o mesmo nome."""


@dataclass(frozen=True)
class UnknownDependencyError(ValidationError):
    """Um bundle declara em `dependsOn` um bundle inexistente."""


@dataclass(frozen=True)
class CycleDetectedError(ValidationError):
    """O grafo de dependências contém um ciclo (`details["cycle"]`)."""


# ---------------------------------------------------------------------------
# Secrets / Health
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DecryptionError(ReconcileException):
    """Alguma SecretRef do bundle não pôde ser resolvida."""


@dataclass(frozen=True)
class HealthTimeoutError(ReconcileException):
    """Health checks do bundle não passaram dentro do timeout."""

    retryable = True
