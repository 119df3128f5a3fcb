# src/atlas_reconciler/core/engine/__init__.py
"""
Engine do Atlas Reconciler.

Este pacote contém o planejamento e a execução contínua da reconciliação:

Componentes principais:
    - planner    → DependencyGraph, ordem topológica determinística,
                   isolamento de ciclos e dependências inexistentes
    - reconciler → uma run de bundle (decrypt → apply → health)
    - scheduler  → timers, gatilhos, gate de readiness, workers, backoff
    - engine     → fachada ReconcileEngine (fonte → grafo → Scheduler)

Princípios fundamentais:
    - Planejamento e execução são responsabilidades separadas
    - A ordem é determinística para o mesmo grafo
    - Nenhuma falha é descartada silenciosamente

Invariantes:
    - Bundles só aplicam após todas as dependências estarem `ready`
    - No máximo uma run em voo por bundle
"""

from .engine import ReconcileEngine
from .planner import DependencyGraph, GraphPlan, build_graph, plan_graph
from .reconciler import BundleReconciler, RunRequest, RunResult
from .scheduler import BundleRecord, BundleStatus, Scheduler

__all__ = [
    "BundleReconciler",
    "BundleRecord",
    "BundleStatus",
    "DependencyGraph",
    "GraphPlan",
    "ReconcileEngine",
    "RunRequest",
    "RunResult",
    "Scheduler",
    "build_graph",
    "plan_graph",
]
