"""
Uniform-variate sources for the forest engine.

RandomSource wraps numpy.random.Generator and hands out draw streams:

- mode="stream": one seeded generator per partition; every site-level draw
  comes from it in program order.
- mode="site": every (iteration, global site, phase) gets its own generator
  keyed by the run seed. Outcomes then do not depend on how the lattice is
  split into partitions.

Draws that concern the whole lattice (external seed rain, initial germination)
always come from a global keyed generator so that all partitions agree on them.
"""

from __future__ import annotations

from enum import IntEnum

import numpy as np


class Phase(IntEnum):
    DISPERSE = 1
    GERMINATE = 2
    UPDATE = 3
    TREEFALL = 4
    RAIN = 5
    INIT = 6
    DATA = 7


class Draws:
    """Thin draw interface over a Generator."""

    __slots__ = ("_gen",)

    def __init__(self, gen: np.random.Generator) -> None:
        self._gen = gen

    def uniform(self) -> float:
        """Uniform draw in the open interval (0, 1)."""
        u = self._gen.random()
        while u == 0.0:
            u = self._gen.random()
        return float(u)

    def integer(self, n: int) -> int:
        """Uniform integer in [0, n)."""
        return int(self._gen.integers(0, n))

    def integers(self, n: int, size: int) -> np.ndarray:
        return self._gen.integers(0, n, size=size)


class RandomSource:
    def __init__(self, seed: int, rank: int = 0, mode: str = "stream") -> None:
        if mode not in ("stream", "site"):
            raise ValueError(f"RandomSource mode must be 'stream' or 'site', got {mode!r}")
        self.seed = int(seed)
        self.rank = int(rank)
        self.mode = mode
        self._stream = Draws(np.random.default_rng([self.seed, self.rank]))

    def for_site(self, iteration: int, global_site: int, phase: Phase) -> Draws:
        if self.mode == "stream":
            return self._stream
        return Draws(np.random.default_rng([self.seed, int(iteration), int(global_site), int(phase)]))

    def global_stream(self, iteration: int, phase: Phase) -> Draws:
        return Draws(np.random.default_rng([self.seed, int(iteration), int(phase)]))

    def __repr__(self) -> str:
        return f"RandomSource(seed={self.seed}, rank={self.rank}, mode={self.mode!r})"
