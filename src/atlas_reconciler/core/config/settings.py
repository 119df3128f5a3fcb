# src/atlas_reconciler/core/config/settings.py
"""
Settings tipados da engine de reconciliação.

Este módulo converte a configuração efetiva (dict resolvido pelo loader)
em uma estrutura imutável e validada, consumida por Scheduler, Applier,
HealthChecker, DriftDetector e Keyring.

Seções reconhecidas:
    - engine:           max_workers, default_poll_interval, drift_interval
    - health:           timeout, poll_interval
    - retry:            backoff por operação do Applier (erros transitórios)
    - failure_backoff:  backoff entre runs falhos de um bundle
    - secrets.keys:     mapa keyId → referência da chave (arquivo ou `env:VAR`)
    - audit.path:       destino opcional da trilha de auditoria em JSON
    - audit.max_events, audit.max_runs: limites da trilha em memória
      (`null` = sem limite)

Decisões arquiteturais:
    - Durações aceitam número (segundos) ou string (`30s`, `5m`)
    - Valores inválidos levantam `InvalidSettingError` imediatamente
    - Chaves ausentes assumem os valores de `DEFAULTS`

Invariantes:
    - Uma instância de `EngineSettings` nunca é alterada após criada
    - `failure_backoff.max_attempts == 0` significa retry sem limite
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from ..clock import parse_duration
from .errors import InvalidSettingError


DEFAULTS: Dict[str, Any] = {
    "engine": {
        "max_workers": 4,
        "default_poll_interval": "1m",
        "drift_interval": "10s",
    },
    "health": {
        "timeout": "5m",
        "poll_interval": "5s",
    },
    "retry": {
        "max_attempts": 5,
        "base_delay": "500ms",
        "multiplier": 2.0,
        "max_delay": "30s",
    },
    "failure_backoff": {
        "max_attempts": 0,
        "base_delay": "5s",
        "multiplier": 2.0,
        "max_delay": "5m",
    },
    "secrets": {
        "keys": {},
    },
    "audit": {
        "path": None,
        "max_events": 10000,
        "max_runs": 1000,
    },
}


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Política de backoff exponencial.

    `delay(attempt)` retorna a espera antes da tentativa seguinte, sendo
    `attempt` o número (1-based) de tentativas já falhas:
    `min(max_delay, base_delay * multiplier ** (attempt - 1))`.
    """

    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 30.0
    max_attempts: int = 5

    def delay(self, attempt: int) -> float:
        if attempt < 1:
            return 0.0
        return min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts > 0 and attempt >= self.max_attempts


@dataclass(frozen=True)
class EngineSettings:
    """Configuração efetiva e validada da engine."""

    max_workers: int = 4
    default_poll_interval: float = 60.0
    drift_interval: float = 10.0
    health_timeout: float = 300.0
    health_poll_interval: float = 5.0
    retry: BackoffPolicy = field(default_factory=BackoffPolicy)
    failure_backoff: BackoffPolicy = field(
        default_factory=lambda: BackoffPolicy(base_delay=5.0, multiplier=2.0, max_delay=300.0, max_attempts=0)
    )
    secret_keys: Mapping[str, str] = field(default_factory=dict)
    audit_path: Optional[str] = None
    audit_max_events: Optional[int] = 10000
    audit_max_runs: Optional[int] = 1000

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "EngineSettings":
        """
        Constrói settings a partir da configuração efetiva.

        Raises:
            InvalidSettingError: Se algum valor for inválido.
        """
        effective = dict(config or {})

        engine = _section(effective, "engine")
        health = _section(effective, "health")
        secrets = _section(effective, "secrets")
        audit = _section(effective, "audit")

        max_workers = engine.get("max_workers")
        if not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers < 1:
            raise InvalidSettingError(f"engine.max_workers deve ser inteiro >= 1, recebido: {max_workers!r}")

        keys = secrets.get("keys") or {}
        if not isinstance(keys, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in keys.items()):
            raise InvalidSettingError("secrets.keys deve mapear keyId (str) para referência de chave (str)")

        audit_path = audit.get("path")
        if audit_path is not None and not isinstance(audit_path, str):
            raise InvalidSettingError("audit.path deve ser string ou null")

        return cls(
            max_workers=max_workers,
            default_poll_interval=_positive_duration(engine, "default_poll_interval", "engine"),
            drift_interval=_positive_duration(engine, "drift_interval", "engine"),
            health_timeout=_duration(health, "timeout", "health"),
            health_poll_interval=_positive_duration(health, "poll_interval", "health"),
            retry=_backoff(_section(effective, "retry"), "retry"),
            failure_backoff=_backoff(_section(effective, "failure_backoff"), "failure_backoff"),
            secret_keys=dict(keys),
            audit_path=audit_path,
            audit_max_events=_limit(audit, "max_events", "audit"),
            audit_max_runs=_limit(audit, "max_runs", "audit"),
        )


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    # merge raso por seção: durações podem vir como número ou string
    value = config.get(name) or {}
    if not isinstance(value, dict):
        raise InvalidSettingError(f"seção '{name}' deve ser um mapa")
    return {**DEFAULTS[name], **value}


def _limit(section: Dict[str, Any], key: str, prefix: str) -> Optional[int]:
    value = section.get(key)
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise InvalidSettingError(f"{prefix}.{key} deve ser inteiro >= 1 ou null, recebido: {value!r}")
    return value


def _duration(section: Dict[str, Any], key: str, prefix: str) -> float:
    try:
        return parse_duration(section.get(key))
    except ValueError as e:
        raise InvalidSettingError(f"{prefix}.{key}: {e}") from e


def _positive_duration(section: Dict[str, Any], key: str, prefix: str) -> float:
    value = _duration(section, key, prefix)
    if value <= 0:
        raise InvalidSettingError(f"{prefix}.{key} deve ser maior que zero")
    return value


def _backoff(section: Dict[str, Any], prefix: str) -> BackoffPolicy:
    max_attempts = section.get("max_attempts")
    if not isinstance(max_attempts, int) or isinstance(max_attempts, bool) or max_attempts < 0:
        raise InvalidSettingError(f"{prefix}.max_attempts deve ser inteiro >= 0")

    multiplier = section.get("multiplier")
    if not isinstance(multiplier, (int, float)) or isinstance(multiplier, bool) or multiplier < 1:
        raise InvalidSettingError(f"{prefix}.multiplier deve ser número >= 1")

    base_delay = _duration(section, "base_delay", prefix)
    max_delay = _duration(section, "max_delay", prefix)
    if max_delay < base_delay:
        raise InvalidSettingError(f"{prefix}.max_delay deve ser >= base_delay")

    return BackoffPolicy(
        base_delay=base_delay,
        multiplier=float(multiplier),
        max_delay=max_delay,
        max_attempts=max_attempts,
    )
