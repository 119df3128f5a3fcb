# tests/core/source/test_renderer.py
"""
Testes do renderer padrão (YamlOverlayRenderer).

O renderer é a fronteira com o colaborador externo de templating. A
implementação padrão cobre árvores sem templating:
    - documentos base em ordem de caminho relativo
    - overlay por deep-merge para a mesma identidade; os demais são acrescentados

Invariantes:
    - A mesma árvore produz sempre o mesmo ResourceSet
    - Identidades repetidas no resultado são erro de validação
"""

from pathlib import Path

import pytest
import yaml

from tests._builders import configmap, deployment, namespace

try:
    from atlas_reconciler.core.bundle.types import ResourceKey
    from atlas_reconciler.core.exceptions import ValidationError
    from atlas_reconciler.core.source.renderer import Renderer, YamlOverlayRenderer
except Exception as e:  # noqa: BLE001
    ResourceKey = None
    ValidationError = None
    Renderer = None
    YamlOverlayRenderer = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Missing renderer module. Implement:\n"
            "- src/atlas_reconciler/core/source/renderer.py (YamlOverlayRenderer)\n"
            f"Import error: {_IMPORT_ERR}"
        )


def _write(path: Path, docs) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump_all(docs, sort_keys=False), encoding="utf-8")


def test_renders_documents_in_path_order(tmp_path: Path):
    _require_imports()
    base = tmp_path / "base"
    _write(base / "b.yaml", [configmap("second")])
    _write(base / "a.yaml", [namespace("web"), configmap("first")])
    (base / "README.md").write_text("ignored", encoding="utf-8")
    _write(base / ".hidden" / "x.yaml", [configmap("hidden")])

    rs = YamlOverlayRenderer().render(base)
    assert [k.name for k in rs.keys()] == ["web", "first", "second"]
    assert isinstance(YamlOverlayRenderer(), Renderer)


def test_overlay_merges_same_identity_and_appends_new(tmp_path: Path):
    """
    O overlay de produção sobe as réplicas do Deployment base e acrescenta
    um ConfigMap que não existe na base.
    """
    _require_imports()
    _write(tmp_path / "base" / "app.yaml", [deployment("web", replicas=1)])
    _write(
        tmp_path / "prod" / "patch.yaml",
        [
            {"apiVersion": "apps/v1", "kind": "Deployment", "metadata": {"name": "web", "namespace": "default"},
             "spec": {"replicas": 3}},
            configmap("prod-only", mode="prod"),
        ],
    )

    rs = YamlOverlayRenderer().render(tmp_path / "base", tmp_path / "prod")
    web = rs.get(ResourceKey("apps", "Deployment", "default", "web"))
    assert web.manifest["spec"]["replicas"] == 3
    assert web.manifest["spec"]["template"]["spec"]["containers"][0]["image"] == "app:1"
    assert [k.name for k in rs.keys()] == ["web", "prod-only"]


def test_list_documents_are_flattened(tmp_path: Path):
    _require_imports()
    base = tmp_path / "base"
    base.mkdir()
    (base / "list.yaml").write_text(
        yaml.safe_dump({"apiVersion": "v1", "kind": "List", "items": [configmap("a"), configmap("b")]}),
        encoding="utf-8",
    )
    rs = YamlOverlayRenderer().render(base)
    assert [k.name for k in rs.keys()] == ["a", "b"]


def test_same_tree_renders_same_checksums(tmp_path: Path):
    _require_imports()
    _write(tmp_path / "base" / "all.yaml", [configmap("a", k="v"), deployment("web")])
    first = YamlOverlayRenderer().render(tmp_path / "base")
    second = YamlOverlayRenderer().render(tmp_path / "base")
    assert first == second
    assert [r.checksum for r in first] == [r.checksum for r in second]


@pytest.mark.parametrize(
    "content",
    [
        "kind: ConfigMap\nmetadata: {name: x}\n",
        "- just a string\n",
        "apiVersion: v1\nkind: ConfigMap\nmetadata: [unclosed\n",
    ],
)
def test_malformed_documents_raise_validation_error(tmp_path: Path, content):
    _require_imports()
    base = tmp_path / "base"
    base.mkdir()
    (base / "bad.yaml").write_text(content, encoding="utf-8")
    with pytest.raises(ValidationError):
        YamlOverlayRenderer().render(base)


def test_duplicate_identity_in_bundle_raises(tmp_path: Path):
    _require_imports()
    _write(tmp_path / "base" / "a.yaml", [configmap("same")])
    _write(tmp_path / "base" / "b.yaml", [configmap("same")])
    with pytest.raises(ValidationError):
        YamlOverlayRenderer().render(tmp_path / "base")


def test_missing_base_raises(tmp_path: Path):
    _require_imports()
    with pytest.raises(ValidationError):
        YamlOverlayRenderer().render(tmp_path / "nope")


def test_overlay_type_conflict_is_validation_error(tmp_path: Path):
    _require_imports()
    _write(tmp_path / "base" / "cm.yaml", [configmap("cfg", key="value")])
    _write(
        tmp_path / "over" / "cm.yaml",
        [{"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "cfg", "namespace": "default"}, "data": "oops"}],
    )
    with pytest.raises(ValidationError):
        YamlOverlayRenderer().render(tmp_path / "base", tmp_path / "over")
