# src/atlas_reconciler/core/secrets/redaction.py
"""
Redaction de valores decifrados em mensagens de erro e details.

Qualquer texto que possa ter sido produzido durante um apply com secrets
decifrados passa por aqui antes de ser gravado em status, run record ou
trilha de auditoria.
"""

from __future__ import annotations

from typing import Any, Iterable

REDACTED = "***"


def redact_text(text: str, secrets: Iterable[str]) -> str:
    # valores mais longos primeiro: um secret pode conter outro
    for value in sorted(set(secrets), key=len, reverse=True):
        if value:
            text = text.replace(value, REDACTED)
    return text


def redact_value(value: Any, secrets: Iterable[str]) -> Any:
    """Aplica `redact_text` recursivamente em dicts, listas e strings."""
    secrets = tuple(secrets)
    if not secrets:
        return value
    if isinstance(value, str):
        return redact_text(value, secrets)
    if isinstance(value, dict):
        return {k: redact_value(v, secrets) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact_value(v, secrets) for v in value]
    return value
