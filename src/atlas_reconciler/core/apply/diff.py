# src/atlas_reconciler/core/apply/diff.py
"""
Normalização e diff estrutural de manifests.

O sistema alvo acrescenta campos próprios a todo objeto vivo (status,
uid, resourceVersion, ...). Desejado e vivo só são comparáveis depois de
removidos esses campos; o resultado é a forma normalizada.

Decisões arquiteturais:
    - O diff é completo sobre a forma normalizada: campos acrescentados
      externamente ao objeto vivo também contam como divergência
    - Caminhos de diff usam a notação `a.b[0].c`
    - Checksums usam o mesmo hash canônico da configuração
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Mapping

from ..config.hashing import compute_content_hash


SYSTEM_METADATA_FIELDS = frozenset({
    "uid",
    "resourceVersion",
    "generation",
    "creationTimestamp",
    "managedFields",
    "selfLink",
})

SYSTEM_TOP_LEVEL_FIELDS = frozenset({"status"})


def normalize_manifest(manifest: Mapping[str, Any]) -> Dict[str, Any]:
    """Cópia do manifest sem campos mantidos pelo sistema alvo."""
    body = copy.deepcopy(dict(manifest))
    for f in SYSTEM_TOP_LEVEL_FIELDS:
        body.pop(f, None)
    metadata = body.get("metadata")
    if isinstance(metadata, dict):
        for f in SYSTEM_METADATA_FIELDS:
            metadata.pop(f, None)
    return body


def _diff(a: Any, b: Any, path: str, out: List[str]) -> None:
    if isinstance(a, dict) and isinstance(b, dict):
        for k in sorted(set(a) | set(b), key=str):
            sub = f"{path}.{k}" if path else str(k)
            if k not in a or k not in b:
                out.append(sub)
            else:
                _diff(a[k], b[k], sub, out)
        return
    if isinstance(a, list) and isinstance(b, list) and len(a) == len(b):
        for i, (x, y) in enumerate(zip(a, b)):
            _diff(x, y, f"{path}[{i}]", out)
        return
    if a != b or type(a) is not type(b):
        out.append(path or "$")


def diff_manifests(desired: Mapping[str, Any], live: Mapping[str, Any]) -> List[str]:
    """Caminhos que diferem entre as formas já normalizadas."""
    out: List[str] = []
    _diff(dict(desired), dict(live), "", out)
    return out


def manifest_checksum(manifest: Mapping[str, Any]) -> str:
    return compute_content_hash(normalize_manifest(manifest))
