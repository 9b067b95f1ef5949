"""Timing, correlation ids and token estimation."""

from __future__ import annotations

import math
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_CHARS_PER_TOKEN = 4

_correlation_id: ContextVar[str | None] = ContextVar("opti_context_correlation_id", default=None)


class Timer:
    """Simple context timer used by the pipeline stages."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


class StageTimings:
    """Collects per-stage wall-clock timings for diagnostics."""

    def __init__(self) -> None:
        self._timings: dict[str, float] = {}

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        with Timer() as timer:
            yield
        self._timings[name] = self._timings.get(name, 0.0) + timer.elapsed_ms

    def as_dict(self) -> dict[str, float]:
        return dict(self._timings)


def estimate_token_count(text: str) -> int:
    """Rough token estimate (~4 characters per token, never below 1)."""
    return max(1, math.ceil(len(text or "") / _CHARS_PER_TOKEN))


def new_correlation_id(prefix: str | None = None) -> str:
    value = str(uuid.uuid4())
    return f"{prefix}-{value}" if prefix else value


def get_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Bind ``correlation_id`` for the current task and its callees."""

    token = _correlation_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id.reset(token)
