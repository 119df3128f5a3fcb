# src/atlas_reconciler/core/clock.py
"""
Relógio injetável da engine de reconciliação.

Toda noção de tempo da engine (timers de poll, backoff entre tentativas,
polling de health checks, intervalo do DriftDetector) passa por um `Clock`
explícito, nunca por `time.time()`/`time.sleep()` espalhados pelo código.

Componentes:
    - Clock        → protocolo mínimo (`now`, `sleep`)
    - SystemClock  → relógio real (monotônico)
    - ManualClock  → relógio controlado por testes; `sleep` avança o tempo
    - parse_duration → conversão de durações declarativas em segundos

Invariantes:
    - `now()` nunca retrocede
    - Com `ManualClock`, nenhuma espera real acontece
"""

from __future__ import annotations

import re
import threading
import time
from typing import Protocol, Union, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Contrato mínimo de relógio: instante atual e espera."""

    def now(self) -> float:
        ...

    def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    """Relógio real baseado em `time.monotonic`."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class ManualClock:
    """
    Relógio determinístico para testes.

    `sleep` não bloqueia: apenas avança o instante corrente. Isso permite
    exercitar backoff e timeouts de health check sem espera real e
    single-step do Scheduler via `advance`.
    """

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def sleep(self, seconds: float) -> None:
        self.advance(seconds)

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("cannot move a clock backwards")
        with self._lock:
            self._now += float(seconds)


_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Union[int, float, str]) -> float:
    """
    Converte uma duração declarativa em segundos.

    Aceita números (segundos) ou strings `250ms`, `30s`, `5m`, `1h`
    (sem unidade = segundos). Valores negativos ou malformados são
    rejeitados com `ValueError`.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"invalid duration: {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    match = _DURATION_RE.match(value.lower())
    if match is None:
        raise ValueError(f"invalid duration: '{value}' (use e.g. 30s, 5m or 250ms)")
    number, unit = match.groups()
    return float(number) * _UNIT_SECONDS[unit or "s"]
