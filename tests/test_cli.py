# tests/test_cli.py
"""
Testes da CLI `atlas-reconciler` (plan / reconcile --once / status).

A CLI usa um alvo em memória persistido em JSON (`--state`), o que
permite encadear invocações como se fossem ciclos de um processo longo.
"""

import json

import pytest

from tests._builders import configmap

try:
    from atlas_reconciler.cli import main
    from atlas_reconciler.core.bundle.types import SecretRef
    from atlas_reconciler.core.secrets.decryptor import encrypt_value
    from atlas_reconciler.core.secrets.keyring import Keyring
except Exception as e:  # noqa: BLE001
    main = None
    SecretRef = None
    encrypt_value = None
    Keyring = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Missing CLI. Implement:\n"
            "- src/atlas_reconciler/cli.py (main)\n"
            f"Import error: {_IMPORT_ERR}"
        )


def _config(tmp_path, **extra_lines):
    lines = [
        "health:",
        "  timeout: 1s",
        "  poll_interval: 100ms",
        "audit:",
        f"  path: {json.dumps(str(tmp_path / 'audit.json'))}",
    ]
    for section, body in extra_lines.items():
        lines.append(f"{section}:")
        lines.extend(f"  {line}" for line in body)
    path = tmp_path / "engine.yaml"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_plan_prints_layers(tree, capsys):
    _require_imports()
    tree.bundle("infra", [configmap("base")])
    tree.bundle("apps", [configmap("cfg")], dependsOn=["infra"])
    tree.bundle("jobs", [configmap("job")], dependsOn=["infra"])
    root = tree.write()

    assert main(["plan", str(root), "--json"]) == 0

    out = json.loads(capsys.readouterr().out)
    assert out["layers"] == [["infra"], ["apps", "jobs"]]
    assert out["rejected"] == {}


def test_plan_reports_rejections(tree, capsys):
    _require_imports()
    tree.bundle("a", [configmap("a")], dependsOn=["b"])
    tree.bundle("b", [configmap("b")], dependsOn=["a"])
    root = tree.write()

    assert main(["plan", str(root)]) == 1

    out = capsys.readouterr().out
    assert "REJECTED a: Cycle detected" in out
    assert "REJECTED b: Cycle detected" in out


def test_plan_on_missing_manifest_fails(tmp_path, capsys):
    _require_imports()
    (tmp_path / "empty").mkdir()
    assert main(["plan", str(tmp_path / "empty")]) == 2
    assert "dependency manifest not found" in capsys.readouterr().err


def test_reconcile_once_then_status(tree, tmp_path, capsys):
    """
    `reconcile --once` aplica a árvore, grava o estado do alvo e a trilha;
    `status` lê a trilha gravada.
    """
    _require_imports()
    tree.bundle("infra", [configmap("base")])
    tree.bundle("apps", [configmap("cfg", a="1")], dependsOn=["infra"])
    root = tree.write()
    state = tmp_path / "state.json"
    config = _config(tmp_path)

    code = main(["reconcile", str(root), "--state", str(state), "--config", str(config), "--once", "--json"])

    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert {n: b["status"] for n, b in out["bundles"].items()} == {"infra": "ready", "apps": "ready"}
    saved = json.loads(state.read_text(encoding="utf-8"))
    assert sorted(saved["inventory"]) == ["apps", "infra"]

    assert main(["status", "--audit", str(tmp_path / "audit.json"), "--json"]) == 0
    bundles = json.loads(capsys.readouterr().out)
    assert bundles["apps"]["status"] == "ready"
    assert bundles["apps"]["last_applied_revision"] == out["bundles"]["apps"]["last_applied_revision"]


def test_reconcile_restores_state_between_invocations(tree, tmp_path, capsys):
    """Segunda invocação com o mesmo estado não muda nada no alvo."""
    _require_imports()
    tree.bundle("apps", [configmap("cfg", a="1")], prune=True)
    root = tree.write()
    state = tmp_path / "state.json"
    args = ["reconcile", str(root), "--state", str(state), "--once"]

    assert main(args) == 0
    first = json.loads(state.read_text(encoding="utf-8"))["target"]
    assert main(args) == 0
    second = json.loads(state.read_text(encoding="utf-8"))["target"]
    capsys.readouterr()

    assert [o["metadata"]["resourceVersion"] for o in first["objects"]] == [
        o["metadata"]["resourceVersion"] for o in second["objects"]
    ]

    tree.bundle("apps", [configmap("other")], prune=True)
    tree.write()
    assert main(args) == 0
    names = [o["metadata"]["name"] for o in json.loads(state.read_text(encoding="utf-8"))["target"]["objects"]]
    assert names == ["other"]


def test_reconcile_decrypts_with_configured_key_file(tree, tmp_path, capsys):
    _require_imports()
    key = Keyring.generate_key()
    (tmp_path / "keys").mkdir()
    (tmp_path / "keys" / "prod.key").write_text(key, encoding="ascii")
    ref = encrypt_value(Keyring({"prod": key}), "prod", "s3cr3t")
    tree.bundle("apps", [configmap("db", password=ref.to_manifest_node())])
    root = tree.write()
    state = tmp_path / "state.json"
    config = _config(tmp_path, secrets=["keys:", "  prod: keys/prod.key"])

    code = main([
        "reconcile", str(root), "--state", str(state), "--config", str(config),
        "--key-dir", str(tmp_path), "--once",
    ])

    assert code == 0
    assert capsys.readouterr().out.strip() == "apps: ready"
    [obj] = json.loads(state.read_text(encoding="utf-8"))["target"]["objects"]
    assert obj["data"]["password"] == "s3cr3t"
    assert "s3cr3t" not in (tmp_path / "audit.json").read_text(encoding="utf-8")


def test_reconcile_with_failed_bundle_exits_non_zero(tree, tmp_path, capsys):
    _require_imports()
    tree.raw_entry({"name": "ghost", "path": "bundles/missing"})
    root = tree.write()

    code = main(["reconcile", str(root), "--state", str(tmp_path / "state.json"), "--once"])

    assert code == 1
    assert "ghost: failed (RENDER_ERROR" in capsys.readouterr().out


def test_reconcile_rejects_unresolvable_key(tree, tmp_path, capsys):
    _require_imports()
    root = tree.bundle("apps", [configmap("cfg")]).write()
    config = _config(tmp_path, secrets=["keys:", "  prod: keys/missing.key"])

    code = main(["reconcile", str(root), "--state", str(tmp_path / "s.json"), "--config", str(config), "--once"])

    assert code == 2
    assert "key file not found" in capsys.readouterr().err


def test_status_without_audit_file(tmp_path, capsys):
    _require_imports()
    assert main(["status", "--audit", str(tmp_path / "nope.json")]) == 2
    assert "audit file not found" in capsys.readouterr().err
