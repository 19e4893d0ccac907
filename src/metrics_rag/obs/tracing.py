"""Latency timing helpers."""

from __future__ import annotations

import time


class Timer:
    """Context timer used around embedding, search, tool and model calls."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def over_budget(elapsed_ms: float, budget_seconds: float) -> bool:
    return elapsed_ms > budget_seconds * 1000.0
