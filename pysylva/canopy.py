"""
Canopy leaf-area field.

The field is a dense voxel array LAI[h, r, c] over one partition's stripe:
  h in [0, HEIGHT]              vertical cells
  r in [0, nrows + 2*rmax)      local rows, rmax border rows on each side
  c in [0, cols)                columns

Each rebuild deposits every live crown (a vertical cylinder sampled on a
discrete disk footprint), optionally merges border contributions from the
neighbouring stripes, and then takes one top-down cumulative sum so that
LAI[h] is the leaf area at or above layer h. Light then follows Beer-Lambert:
  PPFD = Wmax * exp(-k * LAI)
with microclimate (VPD, temperature) derived from the same LAI.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

import numpy as np

from . import constants as const
from .climate import Environment
from .config import ForestConfig, GlobalParams
from .errors import AllocationError, ConfigurationError, NumericalError


@dataclass(frozen=True)
class FieldSizes:
    """Vertical extent and maximal crown/border radius, derived from species maxima."""

    height: int
    rmax: int

    @classmethod
    def derive(cls, species: Iterable, gp_scaled: GlobalParams, cfg: ForestConfig) -> FieldSizes:
        sp = [s for s in species if s is not None]
        if not sp:
            raise ConfigurationError("Cannot size the canopy field without species")
        height = 0
        r = 0.0
        for s in sp:
            dlim = 1.5 * s.dmax
            height = max(height, int(s.hmax * dlim / (dlim + s.ah)))
            r = max(r, gp_scaled.ra0 + dlim * gp_scaled.ra1)
        rmax = int(r + cfg.p_nonvert * cfg.nh * cfg.lv * height)
        return cls(height=height, rmax=rmax)

    def check(self, rows: int) -> FieldSizes:
        if self.rmax > rows:
            raise ConfigurationError(f"RMAX={self.rmax} exceeds lattice rows={rows}")
        if self.height > rows:
            raise ConfigurationError(f"HEIGHT={self.height} exceeds lattice rows={rows}")
        return self


@dataclass(frozen=True)
class LightSample:
    ppfd: float
    vpd: float
    temperature: float


_DISKS: dict[int, tuple[np.ndarray, np.ndarray]] = {}


def disk_offsets(r: int, *, include_centre: bool = True) -> tuple[np.ndarray, np.ndarray]:
    """(dy, dx) offsets with dx^2 + dy^2 <= r^2, row-major order."""
    r = int(r)
    if r not in _DISKS:
        dy, dx = np.mgrid[-r : r + 1, -r : r + 1]
        m = dx * dx + dy * dy <= r * r
        _DISKS[r] = (dy[m].astype(np.intp), dx[m].astype(np.intp))
    dy, dx = _DISKS[r]
    if include_centre:
        return dy, dx
    keep = (dy != 0) | (dx != 0)
    return dy[keep], dx[keep]


class CanopyField:
    def __init__(
        self,
        *,
        height: int,
        rmax: int,
        nrows: int,
        cols: int,
        row0: int = 0,
        total_rows: int | None = None,
        klight: float,
    ) -> None:
        self.height = int(height)
        self.rmax = int(rmax)
        self.nrows = int(nrows)
        self.cols = int(cols)
        self.row0 = int(row0)
        self.total_rows = int(total_rows if total_rows is not None else nrows)
        self.klight = float(klight)
        shape = (self.height + 1, self.nrows + 2 * self.rmax, self.cols)
        try:
            self.lai = np.zeros(shape, dtype=np.float64)
        except MemoryError as e:
            raise AllocationError(f"CanopyField {shape}: {e}") from e

    # ---- geometry ----
    def _footprint(self, grow: int, col: int, radius: float) -> tuple[np.ndarray, np.ndarray]:
        """Local (extended) row and column indices of a crown disk, clipped to the lattice."""
        r = min(int(radius), self.rmax)
        dy, dx = disk_offsets(r)
        rows = grow + dy
        cols = col + dx
        ok = (rows >= 0) & (rows < self.total_rows) & (cols >= 0) & (cols < self.cols)
        return rows[ok] - self.row0 + self.rmax, cols[ok]

    @property
    def interior(self) -> slice:
        return slice(self.rmax, self.rmax + self.nrows)

    # ---- build ----
    def clear(self) -> None:
        self.lai[...] = 0.0

    def add_crown(self, grow: int, col: int, H: float, CD: float, CR: float, dens: float) -> None:
        """Deposit one crown's leaf density into the (not yet accumulated) layers."""
        rr, cc = self._footprint(grow, col, CR)
        top = min(int(H), self.height)
        base = min(int(H - CD), self.height)
        lai = self.lai
        if top == base:
            lai[top, rr, cc] += dens * CD
            return
        lai[top, rr, cc] += dens * (H - top)
        lai[base, rr, cc] += dens * (base + 1 - (H - CD))
        for h in range(base + 1, top):
            lai[h, rr, cc] += dens

    def accumulate(self) -> None:
        """Top-down cumulative sum: LAI[h] becomes the leaf area at or above h."""
        self.lai[...] = np.cumsum(self.lai[::-1], axis=0)[::-1]
        if not np.all(np.isfinite(self.lai)) or np.any(self.lai < 0.0):
            bad = np.argwhere(~np.isfinite(self.lai) | (self.lai < 0.0))[0]
            raise NumericalError(f"Invalid LAI at (h, row, col)={tuple(int(i) for i in bad)}")

    def rebuild(
        self,
        crowns: Iterable[tuple[int, int, float, float, float, float]],
        merge: Callable[[CanopyField], None] | None = None,
    ) -> None:
        """
        Rebuild from (global_row, col, H, CD, CR, dens) tuples. merge, when
        given, runs between deposition and accumulation (halo exchange).
        """
        self.clear()
        for grow, col, H, CD, CR, dens in crowns:
            self.add_crown(grow, col, H, CD, CR, dens)
        if merge is not None:
            merge(self)
        self.accumulate()

    # ---- halo bands ----
    def border_band(self, side: str) -> np.ndarray:
        """Copy of the 2*rmax rows this stripe shares with the neighbour on `side`."""
        return self.lai[:, self._band(side), :].copy()

    def add_band(self, side: str, data: np.ndarray) -> None:
        self.lai[:, self._band(side), :] += data

    def _band(self, side: str) -> slice:
        if side == "north":
            return slice(0, 2 * self.rmax)
        if side == "south":
            return slice(self.nrows, self.nrows + 2 * self.rmax)
        raise ValueError(f"side must be 'north' or 'south', got {side!r}")

    # ---- queries ----
    def lai_at(self, h: int, grow: int, col: int) -> float:
        if h >= self.height:
            return 0.0
        return float(self.lai[h, grow - self.row0 + self.rmax, col])

    def flux(self, grow: int, col: int, h: int, crown_radius: float, env: Environment) -> LightSample:
        """Mean light, VPD and temperature over the crown footprint at layer h."""
        rr, cc = self._footprint(grow, col, crown_radius)
        if h < self.height:
            absorb = self.lai[h, rr, cc]
        else:
            absorb = np.zeros(rr.shape, dtype=np.float64)
        n = float(absorb.size)
        flux = float(np.sum(np.exp(-absorb * self.klight))) * env.Wmax / n
        vpd = (
            float(np.sum(0.25 + np.sqrt(np.maximum(0.0, const.VPD_LAI_SLOPE * (const.LAI_SATURATION - absorb)))))
            * env.VPDmax
            / n
        )
        temp = float(np.sum(env.tmax - const.TEMPERATURE_LAI_SLOPE * np.minimum(const.LAI_SATURATION, absorb))) / n
        return LightSample(ppfd=flux, vpd=vpd, temperature=temp)

    def ground_flux(self, env: Environment) -> np.ndarray:
        """PPFD reaching the ground for every interior column, shape (nrows, cols)."""
        ground = self.lai[0, self.interior, :]
        return env.Wmax * np.exp(-np.maximum(0.0, ground) * self.klight)

    def crown_force(
        self, grow: int, col: int, crown_radius: float, base: int, top: int, dens: float
    ) -> tuple[float, float]:
        """
        Inverse-distance directional pull of dense neighbouring canopy on a crown,
        summed over layers base..top. Only voxels whose own layer density exceeds
        dens contribute.
        """
        r = min(int(crown_radius), self.rmax)
        if r == 0:
            return 0.0, 0.0
        dy, dx = disk_offsets(r, include_centre=False)
        rows = grow + dy
        cols = col + dx
        ok = (rows >= 0) & (rows < self.total_rows) & (cols >= 0) & (cols < self.cols)
        dy, dx = dy[ok], dx[ok]
        rr = rows[ok] - self.row0 + self.rmax
        cc = cols[ok]
        inv = 1.0 / np.sqrt((dx * dx + dy * dy).astype(np.float64))
        # pull points from the neighbour towards the focal crown
        wx = -dx * inv
        wy = -dy * inv
        fx = 0.0
        fy = 0.0
        for h in range(max(0, base), min(top, self.height) + 1):
            if h < self.height:
                layer = self.lai[h, rr, cc] - self.lai[h + 1, rr, cc]
            else:
                layer = self.lai[h, rr, cc]
            dense = layer > dens
            fx += float(np.sum(wx[dense]))
            fy += float(np.sum(wy[dense]))
        return fx, fy

    def layer_profile(self) -> np.ndarray:
        """Sum of LAI over interior columns, per layer (shape HEIGHT+1)."""
        return self.lai[:, self.interior, :].sum(axis=(1, 2))
