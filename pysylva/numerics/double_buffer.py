"""
DoubleBufferingArray (DBA): a field with a readable and a writable buffer.

Used for fields whose producers and consumers run in different timesteps: the
treefall-impact field is written while trees fall in step N, becomes readable
after swap(), and is consumed by mortality in step N+1. Readers never observe a
half-written step.

- .read is the committed step, .write the one being produced
- mark_max() max-combines into .write
- the write buffer is lazily synced from .read on the first mark after a swap,
  unless zero_write() already reset it
"""

from __future__ import annotations

from typing import Any

import numpy as _np


class DoubleBufferingArray:
    """
    Double-buffered ND array with O(1) swap.

      impact = DoubleBufferingArray((rows, cols), dtype=np.int32)
      impact.zero_write()
      impact.mark_max((r, c), 12)
      impact.swap()
      impact.read[r, c]  # -> 12
    """

    __slots__ = ("_a", "_b", "_read_idx", "_write_synced", "__weakref__")

    def __init__(self, shape: tuple[int, ...], dtype: Any = _np.float64, initial_value: Any = 0):
        self._a = _np.full(shape, initial_value, dtype=dtype)
        self._b = _np.full(shape, initial_value, dtype=dtype)
        self._read_idx = 0
        self._write_synced = False

    @property
    def read(self) -> _np.ndarray:
        return self._a if self._read_idx == 0 else self._b

    @property
    def write(self) -> _np.ndarray:
        return self._b if self._read_idx == 0 else self._a

    def swap(self) -> None:
        self._read_idx ^= 1
        self._write_synced = False

    @property
    def shape(self) -> tuple[int, ...]:
        return self.read.shape

    @property
    def dtype(self) -> _np.dtype:
        return self.read.dtype

    def zero_write(self) -> None:
        self.write[...] = 0
        self._write_synced = True

    def _sync(self) -> None:
        if not self._write_synced:
            self.write[...] = self.read
            self._write_synced = True

    def mark_max(self, key, value) -> None:
        """write[key] = max(write[key], value); marks from several producers commute."""
        self._sync()
        w = self.write
        w[key] = _np.maximum(w[key], value)

    def __repr__(self) -> str:
        return (
            f"DoubleBufferingArray(shape={self.shape}, dtype={self.dtype}, "
            f"read=buf{self._read_idx}, write=buf{1 ^ self._read_idx})"
        )
