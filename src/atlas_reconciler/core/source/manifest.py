# src/atlas_reconciler/core/source/manifest.py
"""
Leitura do manifest de dependências da árvore declarativa.

O manifest (YAML ou JSON) declara os bundles:

    bundles:
      - name: infra
        path: infrastructure/base
        pollInterval: 5m
        prune: true
      - name: apps
        path: apps/base
        overlay: apps/production
        dependsOn: [infra]
        decryptionKeyId: prod
        healthChecks:
          - apiVersion: apps/v1
            kind: Deployment
            namespace: web
            name: frontend

Decisões arquiteturais:
    - Um erro estrutural na raiz (sem lista `bundles`) invalida o manifest inteiro
    - Um erro em uma entrada nomeada invalida apenas aquele bundle
    - Entradas sem nome não podem ser isoladas e invalidam o manifest

Invariantes:
    - A ordem de declaração é preservada
    - Nenhum valor inválido é corrigido silenciosamente
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..bundle.types import DEFAULT_POLL_INTERVAL, Bundle, HealthCheckSpec
from ..clock import parse_duration
from ..exceptions import ValidationError


_KNOWN_FIELDS = {
    "name",
    "path",
    "dependsOn",
    "pollInterval",
    "prune",
    "healthChecks",
    "overlay",
    "decryptionKeyId",
}


def parse_bundle(entry: Mapping[str, Any], *, default_poll_interval: float = DEFAULT_POLL_INTERVAL) -> Bundle:
    """
    Converte uma entrada do manifest em `Bundle`.

    Raises:
        ValidationError: Se algum campo for inválido.
    """
    name = entry.get("name")
    unknown = sorted(set(entry) - _KNOWN_FIELDS)
    if unknown:
        raise ValidationError(
            f"Bundle '{name}' declares unknown fields: {', '.join(unknown)}",
            details={"bundle": name, "fields": unknown},
        )

    path = entry.get("path")
    if not isinstance(path, str) or not path.strip():
        raise ValidationError(f"Bundle '{name}' requires a non-empty 'path'", details={"bundle": name})

    depends_on = entry.get("dependsOn") or []
    if not isinstance(depends_on, list) or not all(isinstance(d, str) and d for d in depends_on):
        raise ValidationError(f"Bundle '{name}': 'dependsOn' must be a list of names", details={"bundle": name})

    raw_interval = entry.get("pollInterval")
    try:
        poll_interval = default_poll_interval if raw_interval is None else parse_duration(raw_interval)
    except ValueError as e:
        raise ValidationError(f"Bundle '{name}': {e}", details={"bundle": name}) from e
    if poll_interval <= 0:
        raise ValidationError(f"Bundle '{name}': pollInterval must be positive", details={"bundle": name})

    prune = entry.get("prune", False)
    if not isinstance(prune, bool):
        raise ValidationError(f"Bundle '{name}': 'prune' must be a boolean", details={"bundle": name})

    checks = entry.get("healthChecks") or []
    if not isinstance(checks, list):
        raise ValidationError(f"Bundle '{name}': 'healthChecks' must be a list", details={"bundle": name})

    overlay = entry.get("overlay")
    if overlay is not None and (not isinstance(overlay, str) or not overlay.strip()):
        raise ValidationError(f"Bundle '{name}': 'overlay' must be a path", details={"bundle": name})

    key_id = entry.get("decryptionKeyId")
    if key_id is not None and not isinstance(key_id, str):
        raise ValidationError(f"Bundle '{name}': 'decryptionKeyId' must be a string", details={"bundle": name})

    return Bundle(
        name=name,
        source_path=path,
        depends_on=tuple(depends_on),
        poll_interval=poll_interval,
        prune_enabled=prune,
        health_checks=tuple(HealthCheckSpec.from_dict(c) for c in checks),
        overlay_path=overlay,
        decryption_key_id=key_id,
    )


def parse_bundle_manifest(
    data: Any,
    *,
    default_poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> Tuple[List[Bundle], Dict[str, ValidationError]]:
    """
    Converte o documento do manifest em bundles válidos + erros por bundle.

    Returns:
        Tuple[List[Bundle], Dict[str, ValidationError]]: bundles válidos em
        ordem de declaração e, para entradas nomeadas porém inválidas,
        o erro correspondente.

    Raises:
        ValidationError: Se a raiz for inválida ou uma entrada não tiver nome.
    """
    if not isinstance(data, Mapping) or not isinstance(data.get("bundles"), list):
        raise ValidationError("dependency manifest must contain a 'bundles' list")

    bundles: List[Bundle] = []
    invalid: Dict[str, ValidationError] = {}
    for i, entry in enumerate(data["bundles"]):
        name: Optional[str] = entry.get("name") if isinstance(entry, Mapping) else None
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(
                "every bundle entry requires a non-empty 'name'",
                details={"index": i},
            )
        try:
            bundles.append(parse_bundle(entry, default_poll_interval=default_poll_interval))
        except ValidationError as e:
            invalid[name] = e
    return bundles, invalid
