"""Process-wide random source for market noise and event rolls.

The default source wraps ``numpy.random.default_rng`` behind a lock so ticks
and player actions can draw from it concurrently. Tests install a seeded or
scripted source with ``set_random_source``.
"""

from __future__ import annotations

import threading
from typing import Optional, Protocol

import numpy as np

from stanks.core.config import settings


class RandomSource(Protocol):
    def random(self) -> float:
        """Uniform float in [0, 1)."""
        ...


class SharedRandom:
    """Lock-guarded numpy generator."""

    def __init__(self, seed: Optional[int] = None):
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    def random(self) -> float:
        with self._lock:
            return float(self._rng.random())


_source: Optional[RandomSource] = None
_source_lock = threading.Lock()


def get_random_source() -> RandomSource:
    """Shared source, created on first use from ``settings.random_seed``."""
    global _source
    with _source_lock:
        if _source is None:
            _source = SharedRandom(settings.random_seed)
        return _source


def set_random_source(source: Optional[RandomSource]) -> None:
    """Replace the shared source; ``None`` resets to a fresh default."""
    global _source
    with _source_lock:
        _source = source


def pick_index(rng: RandomSource, count: int) -> int:
    """Uniform index in [0, count) drawn from ``rng.random()``."""
    if count <= 0:
        raise ValueError("count must be positive")
    return min(int(rng.random() * count), count - 1)
