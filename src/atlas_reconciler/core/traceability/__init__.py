# src/atlas_reconciler/core/traceability/__init__.py
"""
Pacote de rastreabilidade do Atlas Reconciler — AuditTrail.

API pública exposta:
    - AuditTrail   → trilha canônica (logs, transições, runs, operações)
    - create_audit → criação explícita da trilha de uma instância da engine
    - save_audit   → persistência em JSON
    - load_audit   → restauração determinística

Invariantes:
    - Eventos nunca são reordenados
    - Manifests e valores de secrets nunca são registrados
"""

from .audit import AuditTrail, LEVELS, create_audit, load_audit, save_audit

__all__ = [
    "AuditTrail",
    "LEVELS",
    "create_audit",
    "load_audit",
    "save_audit",
]
