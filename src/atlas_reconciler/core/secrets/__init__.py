# src/atlas_reconciler/core/secrets/__init__.py
"""
Secrets — decifragem de SecretRefs no momento do apply.

API pública exposta:
    - Keyring               → keyId → chave Fernet
    - SecretDecryptor       → decrypt(resources, key_id), all-or-nothing
    - DecryptedResourceSet  → ResourceSet decifrado + valores para redaction
    - find_secret_refs      → localiza nós `$secret` em um manifest
    - encrypt_value         → cifra um valor (autoria e testes)
    - redact_text / redact_value

Invariantes:
    - Texto plano nunca é persistido nem aparece em erros
"""

from .decryptor import (
    DecryptedResourceSet,
    SecretDecryptor,
    encrypt_value,
    find_secret_refs,
    has_secret_refs,
)
from .keyring import Keyring
from .redaction import REDACTED, redact_text, redact_value

__all__ = [
    "DecryptedResourceSet",
    "Keyring",
    "REDACTED",
    "SecretDecryptor",
    "encrypt_value",
    "find_secret_refs",
    "has_secret_refs",
    "redact_text",
    "redact_value",
]
