# src/atlas_reconciler/cli.py
"""Command-line interface for Atlas Reconciler."""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from atlas_reconciler import __version__
from atlas_reconciler.core.apply.target import InMemoryTarget
from atlas_reconciler.core.bundle.types import BundleState
from atlas_reconciler.core.config.errors import ConfigError
from atlas_reconciler.core.config.loader import load_config
from atlas_reconciler.core.engine.engine import ReconcileEngine
from atlas_reconciler.core.engine.planner import plan_graph
from atlas_reconciler.core.exceptions import ReconcileException
from atlas_reconciler.core.source.watcher import DEFAULT_MANIFEST_FILE, DirectorySource
from atlas_reconciler.core.traceability.audit import load_audit


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True))


def _load_engine_config(args: argparse.Namespace) -> Dict[str, Any]:
    if not args.config:
        return {}
    local = Path(args.local_config) if args.local_config else None
    return load_config(defaults_path=Path(args.config), local_path=local)


def _load_state(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    return json.loads(path.read_text(encoding="utf-8"))


def _save_state(path: Path, engine: ReconcileEngine, target: InMemoryTarget) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    state = {"target": target.dump(), "inventory": engine.applier.export_inventory()}
    path.write_text(json.dumps(state, ensure_ascii=False, indent=2, sort_keys=True), encoding="utf-8")


def cmd_plan(args: argparse.Namespace) -> int:
    source = DirectorySource(args.source, manifest_file=args.manifest_file)
    try:
        snapshot = source.snapshot()
    except ReconcileException as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    plan = plan_graph(snapshot.bundles)
    rejected = {name: str(exc) for name, exc in plan.rejected.items()}
    rejected.update({name: str(exc) for name, exc in snapshot.errors.items()})

    if args.json:
        _print_json({
            "revision": snapshot.revision,
            "layers": plan.graph.layers(),
            "rejected": rejected,
        })
    else:
        print(f"revision: {snapshot.revision}")
        for i, layer in enumerate(plan.graph.layers()):
            print(f"layer {i}: {', '.join(layer)}")
        for name in sorted(rejected):
            print(f"REJECTED {name}: {rejected[name]}")
    return 1 if rejected else 0


def cmd_reconcile(args: argparse.Namespace) -> int:
    state_path = Path(args.state)
    try:
        config = _load_engine_config(args)
        state = _load_state(state_path)
        target = InMemoryTarget.from_dump(state.get("target") or {})
        source = DirectorySource(args.source, manifest_file=args.manifest_file)
        engine = ReconcileEngine.from_config(source, target, config, key_base_dir=args.key_dir)
    except (ConfigError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    engine.applier.restore_inventory(state.get("inventory") or {})

    if args.once:
        try:
            engine.step()
        finally:
            engine.close()
            _save_state(state_path, engine, target)
    else:
        stop = threading.Event()

        def _stop(signum, frame):  # noqa: ARG001
            engine.stop(stop)

        signal.signal(signal.SIGINT, _stop)
        signal.signal(signal.SIGTERM, _stop)
        try:
            engine.serve_forever(stop)
        finally:
            _save_state(state_path, engine, target)

    statuses = engine.status()
    if args.json:
        _print_json({
            "source_error": engine.source_error,
            "bundles": {n: s.to_dict() for n, s in statuses.items()},
        })
    else:
        if engine.source_error:
            print(f"SOURCE ERROR: {engine.source_error['message']}", file=sys.stderr)
        for name, st in statuses.items():
            line = f"{name}: {st.status.value}"
            if st.last_error:
                line += f" ({st.last_error.get('type')}: {st.last_error.get('message')})"
            print(line)

    all_ready = bool(statuses) and all(s.status is BundleState.READY for s in statuses.values())
    return 0 if all_ready and not engine.source_error else 1


def cmd_status(args: argparse.Namespace) -> int:
    path = Path(args.audit)
    if not path.exists():
        print(f"ERROR: audit file not found: {path}", file=sys.stderr)
        return 2
    trail = load_audit(path)
    if args.json:
        _print_json(trail.bundles)
        return 0
    for name in sorted(trail.bundles):
        entry = trail.bundles[name]
        revision: Optional[str] = entry.get("last_applied_revision")
        print(f"{name}: {entry.get('status', 'unknown')} revision={revision[:12] if revision else '-'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="atlas-reconciler")
    parser.add_argument("--version", action="version", version=f"atlas-reconciler {__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    plan = sub.add_parser("plan", help="Show the bundle dependency layers of a declarative tree")
    plan.add_argument("source", help="Declarative tree root")
    plan.add_argument("--manifest-file", default=DEFAULT_MANIFEST_FILE)
    plan.add_argument("--json", action="store_true")
    plan.set_defaults(func=cmd_plan)

    reconcile = sub.add_parser("reconcile", help="Reconcile a declarative tree into a JSON-file backed target")
    reconcile.add_argument("source", help="Declarative tree root")
    reconcile.add_argument("--state", required=True, help="JSON file holding the live target state")
    reconcile.add_argument("--config", help="Engine defaults file (YAML/JSON)")
    reconcile.add_argument("--local-config", help="Local override merged over --config")
    reconcile.add_argument("--key-dir", help="Base directory for relative key file references")
    reconcile.add_argument("--manifest-file", default=DEFAULT_MANIFEST_FILE)
    reconcile.add_argument("--once", action="store_true", help="Run a single reconciliation step and exit")
    reconcile.add_argument("--json", action="store_true")
    reconcile.set_defaults(func=cmd_reconcile)

    status = sub.add_parser("status", help="Print per-bundle status from an audit file")
    status.add_argument("--audit", required=True)
    status.add_argument("--json", action="store_true")
    status.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
