# src/atlas_reconciler/core/bundle/registry.py
"""
Registro estrutural de bundles.

Este módulo define o `BundleRegistry`, responsável por registrar bundles
na ordem de declaração e validar a unicidade de nomes antes de qualquer
planejamento de grafo.

Decisões arquiteturais:
    - A ordem de declaração é preservada (é o desempate do DependencyGraph)
    - Nomes duplicados são erro de validação
    - O registry não resolve dependências nem executa bundles

Invariantes:
    - Cada bundle registrado possui nome único
    - `list()` reflete exatamente a ordem de registro
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from ..exceptions import DuplicateBundleError, ValidationError
from .types import Bundle


@dataclass
class BundleRegistry:
    """Registro canônico de bundles, em ordem de declaração."""

    _bundles: Dict[str, Bundle] = field(default_factory=dict, init=False, repr=False)
    _order: List[str] = field(default_factory=list, init=False, repr=False)

    @classmethod
    def of(cls, bundles: Iterable[Bundle]) -> "BundleRegistry":
        registry = cls()
        for b in bundles:
            registry.add(b)
        return registry

    def add(self, bundle: Bundle) -> None:
        name = getattr(bundle, "name", None)
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("bundle.name must be a non-empty string")

        if name in self._bundles:
            raise DuplicateBundleError(f"Duplicate bundle name: {name}", details={"bundle": name})

        self._bundles[name] = bundle
        self._order.append(name)

    def get(self, name: str) -> Bundle:
        return self._bundles[name]

    def __contains__(self, name: object) -> bool:
        return name in self._bundles

    def __len__(self) -> int:
        return len(self._order)

    def names(self) -> List[str]:
        return list(self._order)

    def list(self) -> List[Bundle]:
        return [self._bundles[n] for n in self._order]
