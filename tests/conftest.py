# tests/conftest.py
"""
Fixtures compartilhados para testes do Atlas Reconciler.

Este módulo define fixtures reutilizáveis que fornecem:
- configurações mínimas e determinísticas (YAML como string)
- relógio manual (nenhuma espera real em backoff ou health checks)
- sistema alvo em memória
- keyring com uma chave Fernet gerada por teste
- fábrica de árvores declarativas em `tmp_path`
- fábrica de engines ligadas a essas dependências

Decisões arquiteturais:
    - Fixtures são mantidas simples e explícitas
    - Imports do core são realizados de forma lazy para
      melhorar a clareza de erros durante falhas
    - Todo tempo passa por `ManualClock`

Invariantes:
    - Nenhuma fixture dorme de verdade
    - Nenhuma fixture acessa rede

Limites explícitos:
    - Não substituir testes de integração
    - Não conter lógica de domínio
"""

from pathlib import Path
from typing import Any, Dict, Optional

import pytest

from tests._builders import TreeBuilder


# =====================================================
# Config fixtures
# =====================================================

@pytest.fixture
def project_like_config_defaults_yaml() -> str:
    """YAML de defaults semelhante a `config/defaults.yaml`."""
    return """
engine:
  max_workers: 4
  default_poll_interval: 1m
  drift_interval: 10s

health:
  timeout: 5m
  poll_interval: 5s

retry:
  max_attempts: 5
  base_delay: 500ms
  multiplier: 2.0
  max_delay: 30s

failure_backoff:
  max_attempts: 0
  base_delay: 5s
  multiplier: 2.0
  max_delay: 5m

secrets:
  keys: {}

audit:
  path: null
  max_events: 10000
  max_runs: 1000
""".lstrip()


@pytest.fixture
def project_like_config_local_yaml() -> str:
    """Override local: apenas o que muda em relação aos defaults."""
    return """
engine:
  max_workers: 2

health:
  timeout: 30s
""".lstrip()


# =====================================================
# Tempo, alvo e secrets
# =====================================================

@pytest.fixture
def clock():
    from atlas_reconciler.core.clock import ManualClock

    return ManualClock(start=1000.0)


@pytest.fixture
def target():
    from atlas_reconciler.core.apply.target import InMemoryTarget

    return InMemoryTarget()


@pytest.fixture
def audit():
    from atlas_reconciler.core.traceability.audit import create_audit

    return create_audit()


@pytest.fixture
def keyring():
    from atlas_reconciler.core.secrets.keyring import Keyring

    return Keyring({"prod": Keyring.generate_key()})


@pytest.fixture
def secret_node(keyring):
    """Cifra um valor com a chave `prod` e devolve o nó `$secret` do manifest."""
    from atlas_reconciler.core.bundle.types import SecretRef
    from atlas_reconciler.core.secrets.decryptor import encrypt_value

    def _make(plaintext: str, key_id: Optional[str] = "prod") -> Dict[str, Any]:
        ref = encrypt_value(keyring, "prod", plaintext)
        return SecretRef(encrypted_blob=ref.encrypted_blob, key_id=key_id).to_manifest_node()

    return _make


@pytest.fixture
def settings():
    """Settings rápidos para testes: retry curto, health curto."""
    from atlas_reconciler.core.config.settings import BackoffPolicy, EngineSettings

    return EngineSettings(
        max_workers=2,
        default_poll_interval=60.0,
        drift_interval=10.0,
        health_timeout=30.0,
        health_poll_interval=5.0,
        retry=BackoffPolicy(base_delay=0.5, multiplier=2.0, max_delay=4.0, max_attempts=3),
        failure_backoff=BackoffPolicy(base_delay=5.0, multiplier=2.0, max_delay=60.0, max_attempts=0),
    )


# =====================================================
# Bundles, árvore declarativa e engine
# =====================================================

@pytest.fixture
def make_bundle():
    from atlas_reconciler.core.bundle.types import Bundle

    def _make(name: str, depends_on=(), **kwargs: Any):
        return Bundle(name=name, source_path=f"bundles/{name}", depends_on=tuple(depends_on), **kwargs)

    return _make


@pytest.fixture
def tree(tmp_path: Path) -> TreeBuilder:
    return TreeBuilder(tmp_path / "tree")


@pytest.fixture
def make_engine(target, keyring, clock, settings):
    """
    Fábrica de ReconcileEngine sobre uma árvore, com as dependências de teste.

    Keyword arguments sobrescrevem settings/keyring/clock/audit/kinds; `target`
    substitui o alvo em memória padrão.
    """
    from atlas_reconciler.core.engine.engine import ReconcileEngine
    from atlas_reconciler.core.source.watcher import DirectorySource

    engines = []

    def _make(root: Path, *, target=target, **overrides: Any):
        kwargs: Dict[str, Any] = {"settings": settings, "keyring": keyring, "clock": clock}
        kwargs.update(overrides)
        engine = ReconcileEngine(DirectorySource(root), target, **kwargs)
        engines.append(engine)
        return engine

    yield _make
    for e in engines:
        e.scheduler.shutdown(wait=True)
