"""
Negative density dependence (NDD) field.

For every site and species, the sum over conspecific trees within NDD_RADIUS
cells of basal area divided by distance:

  ndd[sp, site] = sum_j  pi * dbh_j^2 / 4 / d(site, j),   0 < d <= R

The basal-area map is a per-species array over the stripe plus R ghost rows on
each side; the ghost rows are filled by the halo exchange before the
correlation, and rows beyond the lattice stay zero.
"""

from __future__ import annotations

from functools import lru_cache

import numpy as np
from scipy import ndimage

from . import constants as const
from .errors import AllocationError


@lru_cache(maxsize=4)
def ndd_kernel(radius: int = const.NDD_RADIUS) -> np.ndarray:
    r = int(radius)
    dy, dx = np.mgrid[-r : r + 1, -r : r + 1]
    d = np.sqrt((dx * dx + dy * dy).astype(np.float64))
    k = np.zeros_like(d)
    inside = (d > 0.0) & (d <= r)
    k[inside] = 1.0 / d[inside]
    k.setflags(write=False)
    return k


class NDDField:
    def __init__(self, numesp: int, nrows: int, cols: int, radius: int = const.NDD_RADIUS) -> None:
        self.numesp = int(numesp)
        self.nrows = int(nrows)
        self.cols = int(cols)
        self.radius = int(radius)
        try:
            self.basal_area = np.zeros((self.numesp + 1, self.nrows + 2 * self.radius, self.cols))
            self.pressure = np.zeros((self.numesp + 1, self.nrows, self.cols))
        except MemoryError as e:
            raise AllocationError(f"NDDField: {e}") from e

    def deposit(self, trees) -> None:
        """Rebuild the basal-area map from live trees (local row via tree.site)."""
        ba = self.basal_area
        ba[...] = 0.0
        R = self.radius
        for t in trees:
            if t.occupied:
                row, col = divmod(t.site, self.cols)
                ba[t.species, R + row, col] += const.PI * t.dbh * t.dbh * 0.25

    def border_band(self, side: str) -> np.ndarray:
        """The R interior rows adjacent to the neighbour on `side`."""
        R = self.radius
        if side == "north":
            return self.basal_area[:, R : 2 * R].copy()
        if side == "south":
            return self.basal_area[:, self.nrows : self.nrows + R].copy()
        raise ValueError(f"side must be 'north' or 'south', got {side!r}")

    def set_ghost(self, side: str, data: np.ndarray) -> None:
        R = self.radius
        if side == "north":
            self.basal_area[:, :R] = data
        elif side == "south":
            self.basal_area[:, self.nrows + R :] = data
        else:
            raise ValueError(f"side must be 'north' or 'south', got {side!r}")

    def compute(self) -> np.ndarray:
        k = ndd_kernel(self.radius)
        R = self.radius
        for sp in range(1, self.numesp + 1):
            full = ndimage.correlate(self.basal_area[sp], k, mode="constant", cval=0.0)
            self.pressure[sp] = full[R : R + self.nrows]
        return self.pressure

    def at(self, site: int, species: int) -> float:
        row, col = divmod(site, self.cols)
        return float(self.pressure[species, row, col])
