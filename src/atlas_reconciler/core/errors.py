"""
Atlas Reconciler — Canonical Error Structures (v1)

Este módulo define o padrão canônico de erros da engine de reconciliação.
Erros são artefatos de domínio: ficam consultáveis no status do bundle,
nos registros de run e na trilha de auditoria, devendo ser:

- explícitos
- serializáveis
- rastreáveis
- livres de valores de secrets decifrados

Nenhuma falha é descartada silenciosamente.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from .exceptions import (
    CycleDetectedError,
    DecryptionError,
    DuplicateBundleError,
    HealthTimeoutError,
    ReconcileException,
    TransientError,
    UnknownDependencyError,
    ValidationError,
)


# ---------------------------------------------------------------------------
# Payload canônico
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReconcileErrorPayload:
    """
    Payload canônico de erro do Atlas Reconciler.

    Campos:
    - type: código estável do erro (não é texto livre)
    - message: mensagem curta, humana e objetiva
    - details: dados estruturados relevantes para diagnóstico
    - hint: ação sugerida ao operador (onde corrigir)
    - retryable: indica se o Scheduler tentará novamente com backoff
    """

    type: str
    message: str
    details: Dict[str, Any]
    hint: Optional[str] = None
    retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Retorna representação serializável do erro."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReconcileErrorPayload":
        return cls(
            type=str(data.get("type", ENGINE_EXECUTION_ERROR)),
            message=str(data.get("message", "")),
            details=dict(data.get("details") or {}),
            hint=data.get("hint"),
            retryable=bool(data.get("retryable", False)),
        )


# ---------------------------------------------------------------------------
# Catálogo canônico de tipos de erro (v1)
# ---------------------------------------------------------------------------

TRANSIENT_ERROR = "TRANSIENT_ERROR"
VALIDATION_ERROR = "VALIDATION_ERROR"
DUPLICATE_BUNDLE = "DUPLICATE_BUNDLE"
UNKNOWN_DEPENDENCY = "UNKNOWN_DEPENDENCY"
DEPENDENCY_CYCLE = "DEPENDENCY_CYCLE"
DECRYPTION_ERROR = "DECRYPTION_ERROR"
HEALTH_TIMEOUT = "HEALTH_TIMEOUT"
RENDER_ERROR = "RENDER_ERROR"
ENGINE_EXECUTION_ERROR = "ENGINE_EXECUTION_ERROR"


# ordem importa: subclasses antes das bases
_CODES = (
    (DuplicateBundleError, DUPLICATE_BUNDLE),
    (UnknownDependencyError, UNKNOWN_DEPENDENCY),
    (CycleDetectedError, DEPENDENCY_CYCLE),
    (ValidationError, VALIDATION_ERROR),
    (DecryptionError, DECRYPTION_ERROR),
    (HealthTimeoutError, HEALTH_TIMEOUT),
    (TransientError, TRANSIENT_ERROR),
)

_HINTS = {
    VALIDATION_ERROR: "Corrija o manifest na árvore declarativa; o bundle só é reavaliado quando a revisão mudar.",
    DUPLICATE_BUNDLE: "Renomeie um dos bundles duplicados no manifest de dependências.",
    UNKNOWN_DEPENDENCY: "Declare o bundle ausente ou remova a referência de `dependsOn`.",
    DEPENDENCY_CYCLE: "Quebre o ciclo de `dependsOn`; nenhum bundle do componente é agendado até lá.",
    DECRYPTION_ERROR: "Verifique o keyId e a identidade de decifragem configurada em `secrets.keys`.",
    HEALTH_TIMEOUT: "Inspecione os recursos aplicados; a run será retentada com backoff.",
    TRANSIENT_ERROR: "Falha transitória do sistema alvo; a run será retentada com backoff.",
}


def error_code_for(exc: BaseException) -> str:
    for cls, code in _CODES:
        if isinstance(exc, cls):
            return code
    return ENGINE_EXECUTION_ERROR


def exception_to_error(exc: BaseException) -> ReconcileErrorPayload:
    """Converte exceções em ReconcileErrorPayload (serializável, acionável).

    Regras:
    - ReconcileException: já vem com message/details/hint.
    - Outras exceções: encapsular como ENGINE_EXECUTION_ERROR sem expor stack trace.
    """
    code = error_code_for(exc)

    if isinstance(exc, ReconcileException):
        return ReconcileErrorPayload(
            type=code,
            message=str(exc) or "Erro de reconciliação",
            details=dict(exc.details or {}),
            hint=exc.hint or _HINTS.get(code),
            retryable=bool(exc.retryable),
        )

    # Fallback genérico: tratado como retentável para não travar o bundle
    return ReconcileErrorPayload(
        type=ENGINE_EXECUTION_ERROR,
        message=str(exc) or "Erro inesperado durante reconciliação",
        details={"exception_class": exc.__class__.__name__},
        hint="Verifique a trilha de auditoria e a configuração do bundle",
        retryable=True,
    )


# ---------------------------------------------------------------------------
# Helpers de fábrica
# ---------------------------------------------------------------------------

def render_error(*, bundle: str, reason: str) -> ReconcileErrorPayload:
    return ReconcileErrorPayload(
        type=RENDER_ERROR,
        message="Falha ao renderizar o bundle",
        details={"bundle": bundle, "reason": reason},
        hint="Corrija base/overlay do bundle; ele só é reavaliado quando a revisão mudar.",
        retryable=False,
    )
