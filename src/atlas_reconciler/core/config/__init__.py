# src/atlas_reconciler/core/config/__init__.py

"""
Camada de configuração do Atlas Reconciler.

Este pacote contém as estruturas e utilitários responsáveis por carregar,
mesclar, validar e identificar a configuração da engine de reconciliação.

A configuração no Atlas Reconciler é:
    - declarativa
    - determinística
    - explicitamente versionável
    - separada da árvore declarativa reconciliada

Responsabilidades do pacote:
    - Carregamento de arquivos de configuração (defaults + overrides locais)
    - Resolução de configuração final via deep-merge determinístico
    - Geração de hash canônico para rastreabilidade
    - Conversão da configuração efetiva em `EngineSettings` tipado

Invariantes:
    - A configuração final é um dicionário puro (dict)
    - Conflitos estruturais são tratados como erro
    - Valores inválidos nunca chegam ao Scheduler ou ao Applier

Limites explícitos:
    - Não lê a árvore declarativa (responsabilidade de core.source)
    - Não executa reconciliação
"""

from .errors import (
    ConfigError,
    ConfigTypeConflictError,
    DefaultsNotFoundError,
    InvalidConfigRootTypeError,
    InvalidSettingError,
    UnsupportedConfigFormatError,
)
from .hashing import compute_config_hash
from .loader import load_config
from .merge import deep_merge
from .settings import BackoffPolicy, EngineSettings

__all__ = [
    "BackoffPolicy",
    "ConfigError",
    "ConfigTypeConflictError",
    "DefaultsNotFoundError",
    "EngineSettings",
    "InvalidConfigRootTypeError",
    "InvalidSettingError",
    "UnsupportedConfigFormatError",
    "compute_config_hash",
    "deep_merge",
    "load_config",
]
