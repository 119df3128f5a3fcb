# tests/core/traceability/test_audit_trail.py
"""
Testes da trilha de auditoria (AuditTrail).

Este módulo valida:
- criação da trilha com metadados da engine
- Event Log ordenado (logs, transições, operações de apply, runs)
- limites de eventos e de runs para processos de longa duração
- round-trip de persistência em JSON determinístico

Decisões arquiteturais:
    - UTC é o timezone canônico
    - A trilha não emite eventos implicitamente

Invariantes:
    - A ordem do Event Log reflete a ordem real de chamada
    - save → load preserva o conteúdo
"""

import dataclasses
import json
from datetime import datetime, timezone

import pytest

from tests._builders import configmap

try:
    from atlas_reconciler import __version__
    from atlas_reconciler.core.bundle.types import (
        BundleState,
        Operation,
        ReconciliationRun,
        ResourceKey,
        RunOutcome,
    )
    from atlas_reconciler.core.traceability.audit import create_audit, load_audit, save_audit
except Exception as e:  # noqa: BLE001
    __version__ = None
    BundleState = None
    Operation = None
    ReconciliationRun = None
    ResourceKey = None
    RunOutcome = None
    create_audit = None
    load_audit = None
    save_audit = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    """
    Garante que a trilha de auditoria esteja disponível para os testes.

    Falha imediatamente quando `core.traceability.audit` não pode ser
    importado, sem fallback.
    """
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Missing audit trail. Implement:\n"
            "- src/atlas_reconciler/core/traceability/audit.py\n"
            f"Import error: {_IMPORT_ERR}"
        )


def test_create_audit_metadata():
    """
    A trilha nasce com versão da engine, hash da configuração e início
    em UTC, e sem nenhum evento.
    """
    _require_imports()
    started = datetime(2026, 1, 2, 3, 4, 5)
    trail = create_audit(config_hash="abc", started_at=started)
    assert trail.engine == {
        "atlas_reconciler_version": __version__,
        "config_hash": "abc",
        "started_at": "2026-01-02T03:04:05+00:00",
    }
    assert trail.events == []
    assert trail.runs == []


def test_event_log_order_and_payloads():
    _require_imports()
    trail = create_audit()
    trail.log("info", "new source revision", revision="r1")
    trail.transition("apps", None, BundleState.PENDING, reason="discovered")
    trail.transition("apps", BundleState.PENDING, BundleState.RENDERING, reason="revision")
    trail.record_operation("apps", ResourceKey("", "ConfigMap", "default", "cfg"), Operation.CREATE, "succeeded")

    assert [e["event_type"] for e in trail.events] == ["log", "state_transition", "state_transition", "apply_operation"]
    assert trail.events[0]["payload"] == {"level": "info", "message": "new source revision", "revision": "r1"}
    assert trail.events[2]["payload"] == {"old": "pending", "new": "rendering", "reason": "revision"}
    assert trail.events[3]["payload"]["resource"] == {
        "apiGroup": "", "kind": "ConfigMap", "namespace": "default", "name": "cfg",
    }
    assert trail.bundles["apps"]["status"] == "rendering"
    assert datetime.fromisoformat(trail.events[0]["timestamp"]).tzinfo == timezone.utc


def test_unknown_log_level_is_rejected():
    _require_imports()
    with pytest.raises(ValueError):
        create_audit().log("verbose", "nope")


def test_record_run_and_queries():
    _require_imports()
    trail = create_audit()
    run = ReconciliationRun(run_id="r-1", bundle="apps", revision="rev", started_at=1.0, finished_at=2.0,
                            outcome=RunOutcome.SUCCEEDED, trigger="drift")
    trail.record_run(run)
    trail.log("warning", "other bundle", bundle="infra")

    assert trail.runs_for("apps") == [run.to_dict()]
    assert [e["event_type"] for e in trail.events_for("apps")] == ["run_finished"]
    assert trail.events_for("infra", "run_finished") == []


def test_max_events_drops_oldest():
    _require_imports()
    trail = create_audit(max_events=3)
    for i in range(5):
        trail.log("debug", f"tick {i}")
    assert [e["payload"]["message"] for e in trail.events] == ["tick 2", "tick 3", "tick 4"]


def test_max_runs_drops_oldest():
    _require_imports()
    trail = create_audit(max_runs=2)
    for i in range(4):
        trail.record_run(ReconciliationRun(run_id=f"r-{i}", bundle="apps", revision="rev", started_at=float(i)))
    assert [r["run_id"] for r in trail.runs] == ["r-2", "r-3"]
    assert [e["payload"]["run_id"] for e in trail.events] == ["r-0", "r-1", "r-2", "r-3"]


def test_engine_trail_honours_configured_limits(tree, make_engine, settings):
    """
    A engine cria a trilha com os limites de `audit.max_events` e
    `audit.max_runs`: reconciliar vários bundles não cresce além deles.
    """
    _require_imports()
    for name in ("a", "b", "c"):
        tree.bundle(name, [configmap(name)])
    engine = make_engine(tree.write(), settings=dataclasses.replace(settings, audit_max_events=5, audit_max_runs=2))

    runs = engine.step()

    assert len(runs) == 3
    assert len(engine.audit.runs) == 2
    assert {r["bundle"] for r in engine.audit.runs} < {"a", "b", "c"}
    assert len(engine.audit.events) == 5


def test_forget_bundle():
    _require_imports()
    trail = create_audit()
    trail.set_bundle("apps", last_applied_revision="r1", status=BundleState.READY)
    assert trail.bundles["apps"]["status"] == "ready"
    trail.forget_bundle("apps")
    assert "apps" not in trail.bundles
    assert trail.events[-1]["event_type"] == "bundle_removed"


def test_save_and_load_round_trip(tmp_path):
    """
    A persistência é JSON determinístico (chaves ordenadas) e o
    carregamento reconstrói a mesma trilha.
    """
    _require_imports()
    trail = create_audit(config_hash="h")
    trail.transition("apps", None, BundleState.PENDING)
    trail.set_bundle("apps", last_error={"type": "TRANSIENT_ERROR"})
    path = tmp_path / "out" / "audit.json"

    save_audit(trail, path)
    loaded = load_audit(path)

    assert loaded.to_dict() == trail.to_dict()
    raw = path.read_text(encoding="utf-8")
    assert raw == json.dumps(json.loads(raw), ensure_ascii=False, indent=2, sort_keys=True)
