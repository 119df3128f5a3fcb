# tests/core/health/test_health_checker.py
"""
Testes do HealthChecker (gate de readiness de um bundle).

Decisões arquiteturais:
    - Bundle sem health checks é saudável imediatamente
    - Recurso referenciado inexistente é não saudável
    - Timeout não levanta exceção: o relatório volta com `healthy=False`
"""

import pytest

from tests._builders import configmap, deployment

try:
    from atlas_reconciler.core.apply.target import InMemoryTarget
    from atlas_reconciler.core.bundle.types import HealthCheckSpec, ResourceKey
    from atlas_reconciler.core.health.checker import HealthChecker
except Exception as e:  # noqa: BLE001
    InMemoryTarget = None
    HealthCheckSpec = None
    ResourceKey = None
    HealthChecker = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Missing health checker. Implement:\n"
            "- src/atlas_reconciler/core/health/checker.py (HealthChecker)\n"
            f"Import error: {_IMPORT_ERR}"
        )


WEB_CHECK = {"apiVersion": "apps/v1", "kind": "Deployment", "namespace": "default", "name": "web"}


def test_no_checks_is_healthy_immediately(target, clock, make_bundle):
    _require_imports()
    checker = HealthChecker(target, clock=clock)
    report = checker.await_healthy(make_bundle("infra"), timeout=60)
    assert report.healthy
    assert report.attempts == 1
    assert report.elapsed == 0


def test_healthy_after_rollout_completes(clock, make_bundle):
    """
    O Deployment começa sem réplicas disponíveis; o "controller" completa
    o rollout enquanto o checker espera. Cada espera avança o relógio em
    `poll_interval`.
    """
    _require_imports()
    target = InMemoryTarget(simulate_controllers=False)
    target.create(deployment("web", replicas=2))
    key = ResourceKey.of(deployment("web"))
    bundle = make_bundle("apps", health_checks=(HealthCheckSpec.from_dict(WEB_CHECK),))

    class RollingClock:
        def __init__(self, inner):
            self.inner = inner
            self.sleeps = 0

        def now(self):
            return self.inner.now()

        def sleep(self, seconds):
            self.sleeps += 1
            self.inner.sleep(seconds)
            if self.sleeps == 2:
                target.set_status(key, {"observedGeneration": 1, "updatedReplicas": 2, "availableReplicas": 2})

    checker = HealthChecker(target, clock=RollingClock(clock), poll_interval=5)
    report = checker.await_healthy(bundle, timeout=60)

    assert report.healthy
    assert report.attempts == 3
    assert report.elapsed == pytest.approx(10.0)


def test_timeout_reports_failing_checks(clock, make_bundle):
    _require_imports()
    target = InMemoryTarget(simulate_controllers=False)
    target.create(deployment("web"))
    bundle = make_bundle(
        "apps",
        health_checks=(
            HealthCheckSpec.from_dict(WEB_CHECK),
            HealthCheckSpec(kind="ConfigMap", namespace="default", name="missing"),
        ),
    )
    start = clock.now()

    report = HealthChecker(target, clock=clock, poll_interval=5).await_healthy(bundle, timeout=12)

    assert not report.healthy
    assert clock.now() - start == pytest.approx(12.0)
    assert report.attempts == 4
    assert report.failing == ["apps/Deployment/default/web", "core/ConfigMap/default/missing"]


def test_check_single_pass(target, clock, make_bundle):
    _require_imports()
    target.create(configmap("cfg"))
    bundle = make_bundle("apps", health_checks=(HealthCheckSpec(kind="ConfigMap", namespace="default", name="cfg"),))
    assert HealthChecker(target, clock=clock).check(bundle) == {"core/ConfigMap/default/cfg": True}


def test_poll_interval_must_be_positive(target):
    _require_imports()
    with pytest.raises(ValueError):
        HealthChecker(target, poll_interval=0)
