# src/atlas_reconciler/core/source/renderer.py
"""
Fronteira com o Renderer (colaborador externo).

A engine consome conjuntos de recursos já renderizados; o motor de
overlay/templating é externo e modelado como uma função pura:

    render(base, overlay) -> ResourceSet

Este módulo define o protocolo e uma implementação padrão mínima,
`YamlOverlayRenderer`, suficiente para árvores sem templating:
    - documentos base: todos os `*.yaml|*.yml|*.json` sob `base`,
      em ordem de caminho relativo
    - documentos de overlay com a mesma identidade são aplicados por
      deep-merge sobre o documento base; os demais são acrescentados

Invariantes:
    - A mesma árvore produz sempre o mesmo ResourceSet
    - Nenhum arquivo é escrito
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import yaml  # PyYAML

from ..bundle.types import ResourceKey, ResourceSet
from ..config.errors import ConfigTypeConflictError
from ..config.merge import deep_merge
from ..exceptions import ValidationError


_SUFFIXES = {".yaml", ".yml", ".json"}


@runtime_checkable
class Renderer(Protocol):
    """Contrato do renderer externo: base + overlay → ResourceSet."""

    def render(self, base: Path, overlay: Optional[Path] = None) -> ResourceSet:
        ...


def _manifest_files(root: Path) -> List[Path]:
    if root.is_file():
        return [root]
    if not root.is_dir():
        raise ValidationError(f"bundle path does not exist: {root}", details={"path": str(root)})
    files = [
        p for p in root.rglob("*")
        if p.is_file() and p.suffix.lower() in _SUFFIXES
        and not any(part.startswith(".") for part in p.relative_to(root).parts)
    ]
    return sorted(files, key=lambda p: p.relative_to(root).as_posix())


def _load_documents(path: Path) -> List[Dict[str, Any]]:
    try:
        with path.open("r", encoding="utf-8") as f:
            # JSON é subconjunto de YAML
            docs = list(yaml.safe_load_all(f))
    except yaml.YAMLError as e:
        raise ValidationError(f"cannot parse {path.name}: {e}", details={"file": str(path)}) from e

    result: List[Dict[str, Any]] = []
    for doc in docs:
        if doc is None:
            continue
        if isinstance(doc, list):
            items = doc
        elif isinstance(doc, dict) and doc.get("kind") == "List" and isinstance(doc.get("items"), list):
            items = doc["items"]
        else:
            items = [doc]
        for item in items:
            if not isinstance(item, dict):
                raise ValidationError(
                    f"{path.name}: every document must be a mapping",
                    details={"file": str(path), "type": type(item).__name__},
                )
            result.append(item)
    return result


class YamlOverlayRenderer:
    """Renderer padrão: documentos YAML/JSON + overlay por deep-merge."""

    def render(self, base: Path, overlay: Optional[Path] = None) -> ResourceSet:
        docs: List[Dict[str, Any]] = []
        index: Dict[ResourceKey, int] = {}
        for f in _manifest_files(base):
            for doc in _load_documents(f):
                index[ResourceKey.of(doc)] = len(docs)
                docs.append(doc)

        if overlay is not None:
            for f in _manifest_files(overlay):
                for patch in _load_documents(f):
                    key = ResourceKey.of(patch)
                    if key not in index:
                        index[key] = len(docs)
                        docs.append(patch)
                        continue
                    try:
                        docs[index[key]] = deep_merge(docs[index[key]], patch)
                    except ConfigTypeConflictError as e:
                        raise ValidationError(
                            f"overlay conflicts with base for {key}: {e}",
                            details={"resource": str(key)},
                        ) from e

        return ResourceSet.from_manifests(docs)
