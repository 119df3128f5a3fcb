# src/atlas_reconciler/core/config/hashing.py
"""
Hashing canônico do Atlas Reconciler.

Este módulo concentra a serialização JSON canônica e o hashing SHA-256
utilizados em três identidades da engine:
    - hash da configuração efetiva (registrado na trilha de auditoria)
    - checksum de conteúdo de um manifest de recurso
    - revisão content-addressed da árvore declarativa

Política de hashing (v1):
    - Serialização JSON canônica (chaves ordenadas, separadores compactos)
    - Codificação UTF-8
    - Algoritmo SHA-256

Invariantes:
    - Estruturas equivalentes produzem o mesmo hash
    - O valor gerado é sempre uma string hexadecimal de 64 caracteres
"""

import hashlib
import json
from typing import Any, Dict


def canonical_json(value: Any) -> str:
    """Serializa `value` em JSON canônico (chaves ordenadas, sem espaços)."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def compute_content_hash(value: Any) -> str:
    """
    Gera o hash SHA-256 da serialização canônica de qualquer estrutura JSON.

    Usado como `contentChecksum` de recursos e como fingerprint do estado
    vivo normalizado no DriftDetector.
    """
    return sha256_hex(canonical_json(value).encode("utf-8"))


def compute_config_hash(config: Dict[str, Any]) -> str:
    """
    Gera um hash determinístico da configuração efetiva da engine.

    Decisões arquiteturais:
        - O hash representa a identidade estrutural da configuração
        - O hash é independente da ordem original das chaves
        - O resultado é adequado para uso na trilha de auditoria

    Args:
        config (Dict[str, Any]): Configuração efetiva.

    Returns:
        str: Hash SHA-256 hexadecimal da configuração.

    Raises:
        TypeError: Se o objeto fornecido não for um dicionário.
    """

    if not isinstance(config, dict):
        raise TypeError(
            f"Config para hashing deve ser dict, recebido: {type(config).__name__}"
        )

    return compute_content_hash(config)
