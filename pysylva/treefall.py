"""
Treefall impact field.

A fallen tree marks the sites its stem and crown land on with an impact
height; a live tree at such a site may die in the next step when its height is
small relative to the impact (see Tree.update). Marks are written during the
treefall pass of step N and read by mortality in step N+1, so the field is a
DoubleBufferingArray:

  impact.begin()                 # zero the write buffer
  impact.mark(grow, col, value)  # max-combined, global coordinates
  ...exchange ghost bands, impact.merge(side, band)...
  impact.commit()                # swap: marks become readable
  impact.hurt_at(local_row, col)

The buffer covers this stripe plus the full extent of each adjacent stripe
(the ghost bands). Marks landing beyond the adjacent stripes are dropped and
counted in `lost`.
"""

from __future__ import annotations

import numpy as np

from .errors import AllocationError
from .numerics import DoubleBufferingArray


class ImpactField:
    def __init__(self, *, row0: int, nrows: int, cols: int, north_rows: int = 0, south_rows: int = 0) -> None:
        self.row0 = int(row0)
        self.nrows = int(nrows)
        self.cols = int(cols)
        self.north_rows = int(north_rows)
        self.south_rows = int(south_rows)
        shape = (self.north_rows + self.nrows + self.south_rows, self.cols)
        try:
            self.field = DoubleBufferingArray(shape, dtype=np.int32)
        except MemoryError as e:
            raise AllocationError(f"ImpactField {shape}: {e}") from e
        self.lost = 0

    @property
    def first_row(self) -> int:
        return self.row0 - self.north_rows

    @property
    def interior(self) -> slice:
        return slice(self.north_rows, self.north_rows + self.nrows)

    def begin(self) -> None:
        self.field.zero_write()

    def mark(self, grow: int, col: int, value: int) -> None:
        if not 0 <= col < self.cols:
            return
        r = int(grow) - self.first_row
        if not 0 <= r < self.field.shape[0]:
            self.lost += 1
            return
        self.field.mark_max((r, int(col)), int(value))

    def ghost(self, side: str) -> np.ndarray:
        """Marks this stripe made in the neighbour's rows (a copy)."""
        w = self.field.write
        if side == "north":
            return w[: self.north_rows].copy()
        if side == "south":
            return w[self.north_rows + self.nrows :].copy()
        raise ValueError(f"side must be 'north' or 'south', got {side!r}")

    def merge(self, received: np.ndarray) -> None:
        """Max-merge a neighbour's marks on this stripe into the write buffer."""
        received = np.asarray(received)
        if received.shape != (self.nrows, self.cols):
            raise ValueError(f"impact band shape {received.shape} != {(self.nrows, self.cols)}")
        self.field.mark_max(self.interior, received)

    def commit(self) -> None:
        self.field.swap()

    def hurt_at(self, local_row: int, col: int) -> int:
        return int(self.field.read[self.north_rows + local_row, col])

    def interior_read(self) -> np.ndarray:
        return self.field.read[self.interior]
