# tests/core/config/test_settings.py
"""
Testes dos settings tipados da engine (EngineSettings, BackoffPolicy).

Decisões arquiteturais:
    - Durações aceitam número (segundos) ou string (`30s`, `5m`, `250ms`)
    - Seções ausentes assumem `DEFAULTS`
    - Valores inválidos levantam `InvalidSettingError` na construção

Invariantes:
    - `config/defaults.yaml` e `DEFAULTS` descrevem a mesma engine
    - `max_attempts == 0` significa backoff sem limite
"""

from pathlib import Path

import pytest

try:
    from atlas_reconciler.core.clock import parse_duration
    from atlas_reconciler.core.config.errors import InvalidSettingError
    from atlas_reconciler.core.config.loader import load_config
    from atlas_reconciler.core.config.settings import DEFAULTS, BackoffPolicy, EngineSettings
except Exception as e:  # noqa: BLE001
    parse_duration = None
    InvalidSettingError = None
    load_config = None
    DEFAULTS = None
    BackoffPolicy = None
    EngineSettings = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


REPO_DEFAULTS = Path(__file__).resolve().parents[3] / "config" / "defaults.yaml"


def _require_imports():
    if _IMPORT_ERR is not None:
        pytest.fail(
            "Missing settings module. Implement:\n"
            "- src/atlas_reconciler/core/config/settings.py (EngineSettings, BackoffPolicy)\n"
            f"Import error: {_IMPORT_ERR}"
        )


def test_empty_config_uses_defaults():
    _require_imports()
    s = EngineSettings.from_config({})
    assert s.max_workers == 4
    assert s.default_poll_interval == 60.0
    assert s.drift_interval == 10.0
    assert s.health_timeout == 300.0
    assert s.retry.base_delay == 0.5
    assert s.retry.max_attempts == 5
    assert s.failure_backoff.max_attempts == 0
    assert s.secret_keys == {}
    assert s.audit_path is None
    assert s.audit_max_events == 10000
    assert s.audit_max_runs == 1000


def test_repo_defaults_file_matches_defaults_dict():
    """
    O arquivo versionado `config/defaults.yaml` e o dicionário `DEFAULTS`
    não podem divergir: a CLI lê o arquivo, a engine embarcada lê o dict.
    """
    _require_imports()
    assert load_config(defaults_path=str(REPO_DEFAULTS)) == DEFAULTS
    assert EngineSettings.from_config(load_config(defaults_path=str(REPO_DEFAULTS))) == EngineSettings.from_config({})


def test_partial_section_keeps_sibling_defaults():
    _require_imports()
    s = EngineSettings.from_config({"health": {"timeout": "30s"}, "engine": {"max_workers": 2}})
    assert s.health_timeout == 30.0
    assert s.health_poll_interval == 5.0
    assert s.max_workers == 2


@pytest.mark.parametrize(
    "value, expected",
    [(5, 5.0), (0.25, 0.25), ("250ms", 0.25), ("30s", 30.0), ("5m", 300.0), ("1h", 3600.0), ("12", 12.0)],
)
def test_parse_duration(value, expected):
    _require_imports()
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["-1s", "soon", "", None, True, -3])
def test_parse_duration_rejects_invalid(value):
    _require_imports()
    with pytest.raises(ValueError):
        parse_duration(value)


@pytest.mark.parametrize(
    "config",
    [
        {"engine": {"max_workers": 0}},
        {"engine": {"max_workers": True}},
        {"engine": {"drift_interval": "0s"}},
        {"health": {"poll_interval": "never"}},
        {"retry": {"multiplier": 0.5}},
        {"retry": {"max_attempts": -1}},
        {"failure_backoff": {"base_delay": "10m", "max_delay": "1m"}},
        {"secrets": {"keys": ["prod"]}},
        {"audit": {"path": 42}},
        {"audit": {"max_events": 0}},
        {"audit": {"max_runs": "many"}},
        {"engine": "fast"},
    ],
)
def test_invalid_settings_raise(config):
    """
    Nenhum valor é corrigido silenciosamente: toda violação semântica
    vira `InvalidSettingError` (subclasse de `ConfigError`).
    """
    _require_imports()
    with pytest.raises(InvalidSettingError):
        EngineSettings.from_config(config)


def test_backoff_delay_is_exponential_and_capped():
    _require_imports()
    policy = BackoffPolicy(base_delay=1.0, multiplier=2.0, max_delay=5.0, max_attempts=4)
    assert [policy.delay(n) for n in range(0, 6)] == [0.0, 1.0, 2.0, 4.0, 5.0, 5.0]
    assert not policy.exhausted(3)
    assert policy.exhausted(4)


def test_backoff_zero_attempts_is_unbounded():
    _require_imports()
    policy = BackoffPolicy(max_attempts=0)
    assert not policy.exhausted(10_000)


def test_audit_limits_accept_null_as_unbounded():
    _require_imports()
    s = EngineSettings.from_config({"audit": {"max_events": None, "max_runs": 50}})
    assert s.audit_max_events is None
    assert s.audit_max_runs == 50
