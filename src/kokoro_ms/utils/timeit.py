"""
Timing helpers.

    with timeit("phonemize") as t:
        seq = phonemizer.phonemize(text)
    timings["phonemize"] = t.seconds

``StageTimer`` collects several named stages into one dict, which is
what services and logs report per request.
"""
from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass
class Timing:
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None


class timeit:
    """
    Context manager measuring wall-clock time with perf_counter().

    The timing is recorded even when the block raises.
    """

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        assert self._t0 is not None
        self.timing = Timing(name=self.name, seconds=perf_counter() - self._t0, meta=self.meta)

    @property
    def seconds(self) -> float:
        """Elapsed seconds, or -1.0 while the block is still running."""
        return self.timing.seconds if self.timing else -1.0


class StageTimer:
    """
    Accumulates named stage durations.

    Example:
        stages = StageTimer()
        with stages("normalize"):
            ...
        with stages("phonemize"):
            ...
        stages.as_dict()  # {"normalize": 0.0001, "phonemize": 0.0021}
    """

    def __init__(self) -> None:
        self._t0 = perf_counter()
        self._stages: Dict[str, float] = {}

    def __call__(self, name: str) -> "_Stage":
        return _Stage(self, name)

    def add(self, name: str, seconds: float) -> None:
        self._stages[name] = self._stages.get(name, 0.0) + seconds

    def elapsed(self) -> float:
        return perf_counter() - self._t0

    def as_dict(self, ndigits: int = 4) -> Dict[str, float]:
        return {k: round(v, ndigits) for k, v in self._stages.items()}


class _Stage:
    def __init__(self, owner: StageTimer, name: str):
        self._owner = owner
        self._name = name
        self._t0 = 0.0

    def __enter__(self) -> "_Stage":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._owner.add(self._name, perf_counter() - self._t0)
