# src/atlas_reconciler/core/secrets/keyring.py
"""
Keyring — identidades de decifragem indexadas por `keyId`.

Cada `keyId` resolve para uma chave Fernet (cryptography). As chaves são
declaradas em `secrets.keys` da configuração como referências:
    - `env:VARIAVEL` → valor da variável de ambiente
    - `file:/caminho` ou apenas `/caminho` → conteúdo do arquivo

Decisões arquiteturais:
    - Chaves inválidas ou ausentes no startup são erro de configuração
    - Um `keyId` desconhecido em runtime é `DecryptionError` do bundle
    - O keyring nunca expõe o material de chave em mensagens
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from cryptography.fernet import Fernet

from ..config.errors import InvalidSettingError
from ..exceptions import DecryptionError


KeyMaterial = Union[str, bytes]


class Keyring:
    """Mapa keyId → Fernet."""

    def __init__(self, keys: Optional[Mapping[str, KeyMaterial]] = None):
        self._keys: Dict[str, Fernet] = {}
        for key_id, material in (keys or {}).items():
            self.add(key_id, material)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")

    @classmethod
    def from_references(
        cls,
        references: Mapping[str, str],
        *,
        base_dir: Optional[Union[str, Path]] = None,
    ) -> "Keyring":
        """
        Constrói o keyring a partir de `secrets.keys`.

        Raises:
            InvalidSettingError: Se alguma referência não puder ser resolvida.
        """
        keyring = cls()
        for key_id, ref in references.items():
            keyring.add(key_id, _resolve_reference(key_id, ref, base_dir))
        return keyring

    def add(self, key_id: str, material: KeyMaterial) -> None:
        if not isinstance(key_id, str) or not key_id:
            raise InvalidSettingError("keyId must be a non-empty string")
        raw = material.encode("ascii") if isinstance(material, str) else material
        try:
            self._keys[key_id] = Fernet(raw.strip())
        except (ValueError, TypeError) as e:
            raise InvalidSettingError(f"invalid key material for keyId '{key_id}'") from e

    def __contains__(self, key_id: object) -> bool:
        return key_id in self._keys

    def key_ids(self) -> List[str]:
        return sorted(self._keys)

    def get(self, key_id: str) -> Fernet:
        if key_id not in self._keys:
            raise DecryptionError(
                f"unknown keyId '{key_id}'",
                details={"key_id": key_id},
            )
        return self._keys[key_id]


def _resolve_reference(key_id: str, ref: str, base_dir: Optional[Union[str, Path]]) -> str:
    if ref.startswith("env:"):
        var = ref[len("env:"):]
        value = os.environ.get(var)
        if not value:
            raise InvalidSettingError(f"secrets.keys.{key_id}: environment variable '{var}' is not set")
        return value

    path = Path(ref[len("file:"):] if ref.startswith("file:") else ref)
    if not path.is_absolute() and base_dir is not None:
        path = Path(base_dir) / path
    if not path.is_file():
        raise InvalidSettingError(f"secrets.keys.{key_id}: key file not found: {path}")
    return path.read_text(encoding="ascii").strip()
