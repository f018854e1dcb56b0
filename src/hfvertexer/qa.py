"""Observability sinks for QA counters and value fills.

Processing code only talks to the `QASink` protocol; `NullSink` drops
everything and `CounterSink` keeps in-memory counts and filled values behind
a lock so it can be shared by worker threads.
"""

from __future__ import annotations

import threading
from collections import Counter
from typing import Protocol


class QASink(Protocol):
    """Label-addressed counter and value-fill interface."""

    def increment(self, label: str, amount: int = 1) -> None:
        ...

    def fill(self, name: str, value: float) -> None:
        ...


class NullSink:
    """Sink that ignores every call."""

    def increment(self, label: str, amount: int = 1) -> None:
        return None

    def fill(self, name: str, value: float) -> None:
        return None


class CounterSink:
    """Thread-safe in-memory sink."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Counter[str] = Counter()
        self._values: dict[str, list[float]] = {}

    def increment(self, label: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[label] += amount

    def fill(self, name: str, value: float) -> None:
        with self._lock:
            self._values.setdefault(name, []).append(float(value))

    def counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def values(self, name: str) -> list[float]:
        with self._lock:
            return list(self._values.get(name, ()))

