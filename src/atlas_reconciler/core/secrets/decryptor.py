# src/atlas_reconciler/core/secrets/decryptor.py
"""
SecretDecryptor — resolução de SecretRefs imediatamente antes do apply.

Contrato:
    decrypt(resources, key_id) -> DecryptedResourceSet | DecryptionError

Cada nó `{"$secret": {"encryptedBlob": ..., "keyId": ...}}` de cada
manifest é substituído pelo texto plano correspondente. `key_id` é a
identidade padrão do bundle, usada quando a referência não traz `keyId`.

Decisões arquiteturais:
    - All-or-nothing por bundle: qualquer referência irresolvível falha a
      chamada inteira e nenhum recurso chega ao Applier
    - Todas as falhas do bundle são coletadas em `details["failures"]`
      (identidade do recurso + caminho), nunca o texto plano
    - O resultado existe apenas em memória, para a chamada de apply que o
      consome; nada aqui é persistido

Invariantes:
    - O ResourceSet de entrada nunca é mutado
    - Recursos sem SecretRef são repassados sem cópia de conteúdo
"""

from __future__ import annotations

import copy
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from cryptography.fernet import Fernet, InvalidToken

from ..bundle.types import SECRET_MARKER, Resource, ResourceSet, SecretRef
from ..exceptions import DecryptionError
from .keyring import Keyring


class DecryptedResourceSet(ResourceSet):
    """ResourceSet com texto plano + os valores decifrados (para redaction)."""

    def __init__(self, resources: Iterable[Resource] = (), plaintexts: Iterable[str] = ()):
        super().__init__(resources)
        self.plaintexts: FrozenSet[str] = frozenset(p for p in plaintexts if p)


def _is_secret_node(value: Any) -> bool:
    return isinstance(value, dict) and len(value) == 1 and SECRET_MARKER in value


def _parse_ref(node: Dict[str, Any]) -> SecretRef:
    body = node[SECRET_MARKER]
    if not isinstance(body, dict) or not isinstance(body.get("encryptedBlob"), str):
        raise ValueError("secret reference requires 'encryptedBlob'")
    key_id = body.get("keyId")
    if key_id is not None and not isinstance(key_id, str):
        raise ValueError("secret reference 'keyId' must be a string")
    return SecretRef(encrypted_blob=body["encryptedBlob"], key_id=key_id)


def _walk(value: Any, trail: Tuple[Any, ...] = ()) -> Iterable[Tuple[Tuple[Any, ...], Any]]:
    """Percorre o manifest produzindo `(trilha de chaves/índices, nó $secret)`."""
    if _is_secret_node(value):
        yield trail, value
        return
    if isinstance(value, dict):
        for k, v in value.items():
            yield from _walk(v, trail + (k,))
    elif isinstance(value, list):
        for i, v in enumerate(value):
            yield from _walk(v, trail + (i,))


def _render_path(trail: Tuple[Any, ...]) -> str:
    """Forma legível de uma trilha (`a.b[0].c`), usada apenas em relatórios."""
    out = ""
    for t in trail:
        if isinstance(t, int):
            out += f"[{t}]"
        else:
            out += f".{t}" if out else str(t)
    return out


def find_secret_refs(manifest: Dict[str, Any]) -> List[Tuple[str, Any]]:
    """Lista `(caminho, nó $secret)` de um manifest, em ordem de travessia."""
    return [(_render_path(trail), node) for trail, node in _walk(manifest)]


def has_secret_refs(manifest: Dict[str, Any]) -> bool:
    return any(True for _ in _walk(manifest))


def encrypt_value(keyring: Keyring, key_id: str, plaintext: str) -> SecretRef:
    """Cifra `plaintext` com a chave `key_id` (útil para autoria e testes)."""
    token = keyring.get(key_id).encrypt(plaintext.encode("utf-8"))
    return SecretRef(encrypted_blob=token.decode("ascii"), key_id=key_id)


class SecretDecryptor:
    """Resolve SecretRefs de um ResourceSet usando um Keyring."""

    def __init__(self, keyring: Keyring):
        self.keyring = keyring

    def _decrypt_ref(self, ref: SecretRef, default_key_id: Optional[str]) -> str:
        key_id = ref.key_id or default_key_id
        if not key_id:
            raise ValueError("no keyId on the reference and no bundle decryption key")
        if key_id not in self.keyring:
            raise ValueError(f"unknown keyId '{key_id}'")
        fernet: Fernet = self.keyring.get(key_id)
        try:
            return fernet.decrypt(ref.encrypted_blob.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise ValueError(f"cannot decrypt with keyId '{key_id}'") from e

    def decrypt(self, resources: ResourceSet, key_id: Optional[str] = None) -> DecryptedResourceSet:
        """
        Decifra todas as SecretRefs do conjunto (all-or-nothing).

        Raises:
            DecryptionError: Se qualquer referência falhar; `details["failures"]`
                lista recurso, caminho e motivo de cada falha.
        """
        failures: List[Dict[str, str]] = []
        plaintexts: List[str] = []
        out: List[Resource] = []

        for resource in resources:
            trails = [trail for trail, _ in _walk(resource.manifest)]
            if not trails:
                out.append(resource)
                continue

            manifest = copy.deepcopy(dict(resource.manifest))
            for trail in trails:
                holder, slot = _locate(manifest, trail)
                try:
                    plaintext = self._decrypt_ref(_parse_ref(holder[slot]), key_id)
                except ValueError as e:
                    failures.append({"resource": str(resource.key), "path": _render_path(trail), "reason": str(e)})
                    continue
                holder[slot] = plaintext
                plaintexts.append(plaintext)
            out.append(resource.with_manifest(manifest))

        if failures:
            raise DecryptionError(
                f"{len(failures)} secret reference(s) could not be decrypted",
                details={"failures": failures},
            )
        return DecryptedResourceSet(out, plaintexts)


def _locate(root: Any, trail: Tuple[Any, ...]) -> Tuple[Any, Any]:
    """Resolve o container e a chave/índice final de uma trilha."""
    holder = root
    for t in trail[:-1]:
        holder = holder[t]
    return holder, trail[-1]
