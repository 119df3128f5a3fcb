# src/atlas_reconciler/core/config/errors.py
"""
Exceções canônicas da camada de configuração do Atlas Reconciler.

Este módulo define a hierarquia oficial de exceções utilizadas durante
o carregamento, merge e validação da configuração da engine.

As exceções aqui definidas representam **violações de configuração da
engine**, e não erros de reconciliação de bundles (estes vivem em
`atlas_reconciler.core.exceptions`).

Invariantes:
    - Todas as exceções de configuração herdam de `ConfigError`
    - Nenhuma exceção representa falha de apply ou de health check

Limites explícitos:
    - Não realiza fallback ou recovery
    - Não depende de Engine, Scheduler ou Applier
"""


class ConfigError(Exception):
    """
    Exceção base para erros relacionados à configuração da engine.

    Todas as exceções levantadas durante carregamento, merge e validação
    de configuração devem herdar desta classe, permitindo captura genérica
    e distinção clara entre falhas de configuração e falhas de run.
    """


class DefaultsNotFoundError(ConfigError):
    """
    Exceção levantada quando o arquivo de configuração base (defaults)
    não é encontrado no caminho especificado.

    Decisões arquiteturais:
        - O arquivo de defaults é obrigatório
        - Sem defaults a engine não inicia

    Limites explícitos:
        - Não tenta inferir ou criar defaults automaticamente
    """


class UnsupportedConfigFormatError(ConfigError):
    """
    Exceção levantada quando o formato do arquivo não é suportado.

    Formatos suportados (v1):
        - YAML (.yaml, .yml)
        - JSON (.json)
    """


class InvalidConfigRootTypeError(ConfigError):
    """
    Exceção levantada quando o conteúdo raiz da configuração
    não é um dicionário (`dict`).

    Invariantes:
        - O loader só opera sobre estruturas do tipo dicionário
    """


class ConfigTypeConflictError(ConfigError):
    """
    Exceção levantada quando ocorre conflito de tipos durante o deep-merge.

    Exemplo de conflito:
        - base:     {"engine": {"max_workers": 4}}
        - override: {"engine": "fast"}

    Invariantes:
        - Nenhum merge parcial é produzido em caso de conflito
    """


class InvalidSettingError(ConfigError):
    """
    Exceção levantada quando um valor da configuração efetiva é
    semanticamente inválido para a engine (ex.: `max_workers` <= 0,
    intervalo negativo, política de backoff incoerente).

    Decisões arquiteturais:
        - A validação ocorre uma única vez, ao construir `EngineSettings`
        - Nenhum valor é corrigido silenciosamente
    """
