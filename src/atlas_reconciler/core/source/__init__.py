# src/atlas_reconciler/core/source/__init__.py
"""
Fonte declarativa do Atlas Reconciler.

Componentes:
    - watcher  → DirectorySource (SourceWatcher) e SourceSnapshot
    - renderer → protocolo Renderer e YamlOverlayRenderer padrão
    - manifest → leitura do manifest de dependências de bundles

Limites explícitos:
    - O templating completo de overlays é um colaborador externo
    - Nenhum acesso ao sistema alvo acontece aqui
"""

from .manifest import parse_bundle, parse_bundle_manifest
from .renderer import Renderer, YamlOverlayRenderer
from .watcher import DEFAULT_MANIFEST_FILE, DirectorySource, SourceSnapshot, compute_revision

__all__ = [
    "DEFAULT_MANIFEST_FILE",
    "DirectorySource",
    "Renderer",
    "SourceSnapshot",
    "YamlOverlayRenderer",
    "compute_revision",
    "parse_bundle",
    "parse_bundle_manifest",
]
