# src/atlas_reconciler/core/__init__.py
"""
Core do Atlas Reconciler.

Este pacote reúne a implementação canônica da engine de reconciliação,
independente de CLI ou de qualquer backend vivo concreto.

O core é projetado para ser:
    - determinístico (ordem de grafo reprodutível, relógio injetável)
    - testável de forma isolada (alvo em memória, ManualClock)
    - orientado a contratos explícitos entre componentes

Componentes principais:
    - config       → resolução de configuração e settings da engine
    - bundle       → tipos canônicos e registry de bundles
    - source       → leitura da árvore declarativa e cálculo de revisão
    - engine       → planejamento (DAG), scheduler e runs por bundle
    - secrets      → decifragem transitória de SecretRefs
    - apply        → diff/apply/prune sobre o sistema alvo
    - health       → avaliação de readiness
    - drift        → detecção de divergência do estado vivo
    - traceability → trilha de auditoria

Princípios fundamentais:
    - Erros são locais a um bundle e nunca abortam bundles irmãos
    - O estado vivo é acessado exclusivamente via Applier/LiveTarget
    - Nenhuma falha é descartada silenciosamente
"""
