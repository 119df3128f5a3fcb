# src/atlas_reconciler/__init__.py
"""
Atlas Reconciler — engine de reconciliação contínua para árvores declarativas.

Este pacote raiz define o namespace público do Atlas Reconciler, o
controlador que transforma uma árvore declarativa de bundles (manifests,
overlays, secrets cifrados e dependências) em estado vivo no sistema alvo
e o mantém convergido.

Princípios centrais:
    - Bundles formam um DAG explícito de dependências
    - Aplicação é idempotente e convergente (forward-only)
    - Secrets são decifrados apenas no momento do apply
    - Todo efeito colateral é rastreável em uma trilha de auditoria

Arquitetura em alto nível:
    - core.config       → carregamento, merge, hashing e settings tipados
    - core.bundle       → modelo de dados (Bundle, Resource, SecretRef, runs)
    - core.source       → SourceWatcher e Renderer (fronteira externa)
    - core.engine       → DependencyGraph, Scheduler e execução de runs
    - core.secrets      → Keyring e SecretDecryptor (all-or-nothing)
    - core.apply        → diff, registry de kinds, alvo vivo e Applier
    - core.health       → HealthChecker (gate de readiness)
    - core.drift        → DriftDetector (caminho de self-healing)
    - core.traceability → trilha de auditoria e event log estruturado

Limites explícitos:
    - Não define schemas de recursos concretos
    - Não implementa templating (o Renderer é um colaborador externo)
    - Não expõe protocolo de rede
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
