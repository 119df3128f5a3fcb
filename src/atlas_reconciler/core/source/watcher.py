# src/atlas_reconciler/core/source/watcher.py
"""
SourceWatcher — conteúdo atual da árvore declarativa + revisão.

Este módulo lê a árvore declarativa a partir de um diretório local
(tipicamente um checkout), calcula uma revisão content-addressed e
renderiza o ResourceSet de cada bundle declarado no manifest de
dependências.

Revisão:
    sha256 da serialização canônica da lista ordenada de pares
    (caminho relativo, sha256 do conteúdo) de todos os arquivos regulares
    sob a raiz, ignorando entradas ocultas. Revisões só são comparadas
    por igualdade.

Decisões arquiteturais:
    - Falhas de render de um bundle são capturadas por bundle e nunca
      impedem o render dos demais
    - Caminhos de bundle não podem escapar da raiz da árvore
    - `poll()` só produz snapshot quando a revisão muda

Limites explícitos:
    - Não faz clone/fetch de repositórios remotos
    - Não agenda nada (apenas notifica o Engine)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

import yaml  # PyYAML

from ..bundle.types import DEFAULT_POLL_INTERVAL, Bundle, ResourceSet
from ..config.errors import ConfigError
from ..config.hashing import compute_content_hash, sha256_hex
from ..config.loader import load_document
from ..exceptions import ReconcileException, ValidationError
from .manifest import parse_bundle_manifest
from .renderer import Renderer, YamlOverlayRenderer


DEFAULT_MANIFEST_FILE = "bundles.yaml"


@dataclass(frozen=True)
class SourceSnapshot:
    """
    Estado da árvore declarativa em uma revisão.

    Campos:
        - revision: identificador content-addressed
        - bundles: bundles válidos em ordem de declaração
        - resource_sets: nome → ResourceSet renderizado
        - errors: nome → erro de definição ou de render do bundle
    """

    revision: str
    bundles: Tuple[Bundle, ...]
    resource_sets: Mapping[str, ResourceSet] = field(default_factory=dict)
    errors: Mapping[str, ReconcileException] = field(default_factory=dict)


def compute_revision(root: Path) -> str:
    """Revisão content-addressed da árvore sob `root`."""
    entries: List[Tuple[str, str]] = []
    for p in sorted(root.rglob("*")):
        rel = p.relative_to(root)
        if any(part.startswith(".") for part in rel.parts) or not p.is_file():
            continue
        entries.append((rel.as_posix(), sha256_hex(p.read_bytes())))
    entries.sort()
    return compute_content_hash(entries)


class DirectorySource:
    """SourceWatcher sobre um diretório local."""

    def __init__(
        self,
        root: str | Path,
        *,
        manifest_file: str = DEFAULT_MANIFEST_FILE,
        renderer: Optional[Renderer] = None,
        default_poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.root = Path(root)
        self.manifest_file = manifest_file
        self.renderer: Renderer = renderer or YamlOverlayRenderer()
        self.default_poll_interval = default_poll_interval
        self._last_revision: Optional[str] = None

    @property
    def last_revision(self) -> Optional[str]:
        return self._last_revision

    def revision(self) -> str:
        if not self.root.is_dir():
            raise ValidationError(f"source root does not exist: {self.root}", details={"root": str(self.root)})
        return compute_revision(self.root)

    def _resolve(self, relative: str) -> Path:
        path = (self.root / relative).resolve()
        root = self.root.resolve()
        if path != root and root not in path.parents:
            raise ValidationError(f"path escapes the source root: {relative}", details={"path": relative})
        return path

    def snapshot(self) -> SourceSnapshot:
        """
        Lê o manifest, renderiza cada bundle e calcula a revisão.

        Raises:
            ValidationError: Se a raiz ou o manifest de dependências forem inválidos.
        """
        revision = self.revision()
        # uma revisão inválida é reportada uma única vez por poll()
        self._last_revision = revision

        manifest_path = self.root / self.manifest_file
        if not manifest_path.is_file():
            raise ValidationError(
                f"dependency manifest not found: {self.manifest_file}",
                details={"root": str(self.root)},
            )
        try:
            data = load_document(manifest_path)
        except (ConfigError, yaml.YAMLError, ValueError) as e:
            raise ValidationError(str(e), details={"file": self.manifest_file}) from e

        bundles, invalid = parse_bundle_manifest(data, default_poll_interval=self.default_poll_interval)

        errors: Dict[str, ReconcileException] = dict(invalid)
        resource_sets: Dict[str, ResourceSet] = {}
        for b in bundles:
            if b.name in resource_sets or b.name in errors:
                # nome duplicado: a primeira declaração vence
                continue
            try:
                overlay = self._resolve(b.overlay_path) if b.overlay_path else None
                resource_sets[b.name] = self.renderer.render(self._resolve(b.source_path), overlay)
            except ReconcileException as e:
                errors[b.name] = e

        return SourceSnapshot(
            revision=revision,
            bundles=tuple(bundles),
            resource_sets=resource_sets,
            errors=errors,
        )

    def poll(self) -> Optional[SourceSnapshot]:
        """Snapshot somente quando a revisão mudou desde a última leitura."""
        if self._last_revision is not None and self.revision() == self._last_revision:
            return None
        return self.snapshot()
