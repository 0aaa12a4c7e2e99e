"""
Per-step aggregated forest statistics.

ForestStatistics.collect(forest) gathers raw sums over one partition; reduce()
adds partitions together; per_hectare() converts a species vector using the
total simulated area. Carbon fluxes are reported in Mg (g * 1e-6) per step,
basal area in m2, above-ground biomass after Chave et al. (2014, eq. 4).

Species vectors have length numesp + 1; index 0 holds the total over species.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING

import numpy as np

from . import constants as const
from .tree import DeathCause

if TYPE_CHECKING:  # pragma: no cover
    from .forest import Forest


@dataclass
class StepCounters:
    """Event counts for one step on one partition."""

    dead_natural: int = 0
    dead_natural10: int = 0
    dead_damage: int = 0
    dead_damage10: int = 0
    treefalls: int = 0
    treefalls10: int = 0
    germinations: int = 0
    seeds_produced: int = 0
    seeds_deposited: int = 0
    seeds_lost: int = 0
    seeds_rain: int = 0

    def reset(self) -> None:
        for f in fields(self):
            setattr(self, f.name, 0)

    def record_death(self, cause: DeathCause, dbh_m: float) -> None:
        big = dbh_m > 0.1
        if cause is DeathCause.NATURAL:
            self.dead_natural += 1
            self.dead_natural10 += big
        elif cause is DeathCause.DAMAGE:
            self.dead_damage += 1
            self.dead_damage10 += big
        else:
            self.treefalls += 1
            self.treefalls10 += big

    def as_dict(self) -> dict[str, int]:
        return {f.name: int(getattr(self, f.name)) for f in fields(self)}


_SPECIES_SUMS = ("nbind", "n10", "n30", "ba", "ba10", "agb", "gpp", "npp", "rday", "rnight", "rstem", "litter")


@dataclass
class ForestStatistics:
    iteration: int
    numesp: int
    area_ha: float
    nbind: np.ndarray
    n10: np.ndarray
    n30: np.ndarray
    ba: np.ndarray
    ba10: np.ndarray
    agb: np.ndarray
    gpp: np.ndarray
    npp: np.ndarray
    rday: np.ndarray
    rnight: np.ndarray
    rstem: np.ndarray
    litter: np.ndarray
    dbh_hist: np.ndarray
    lai_profile: np.ndarray
    ground_ppfd_sum: float = 0.0
    ground_ppfd_sq: float = 0.0
    ground_cells: int = 0
    counters: dict[str, int] = field(default_factory=dict)

    @classmethod
    def collect(cls, forest: Forest) -> ForestStatistics:
        n = forest.numesp + 1
        lh, lv = forest.lh, forest.lv
        sums = {name: np.zeros(n) for name in _SPECIES_SUMS}
        nbins = int(100.0 * 1.5 * max(sp.dmax for sp in forest.species[1:]) * lh) + 1
        hist = np.zeros(nbins, dtype=np.int64)

        for t in forest.trees:
            if not t.occupied:
                continue
            k = t.species
            sp = forest.species[k]
            d = t.dbh * lh
            sums["nbind"][k] += 1
            if d >= 0.1:
                sums["n10"][k] += 1
                sums["ba10"][k] += const.PI * 0.25 * d * d
            if d >= 0.3:
                sums["n30"][k] += 1
            sums["ba"][k] += const.PI * 0.25 * d * d
            sums["agb"][k] += 0.0673 * (sp.wsg * t.height * lv * d * d * 10000.0) ** 0.976
            sums["gpp"][k] += t.gpp * 1.0e-6
            sums["npp"][k] += t.npp * 1.0e-6
            sums["rday"][k] += t.rday * 1.0e-6
            sums["rnight"][k] += t.rnight * 1.0e-6
            sums["rstem"][k] += t.rstem * 1.0e-6
            sums["litter"][k] += t.litter * 1.0e-6
            # centimetre bins, rounded down; oversize stems go to the last bin
            hist[min(int(100.0 * d), nbins - 1)] += 1

        for v in sums.values():
            v[0] = v[1:].sum()

        ground = forest.canopy.ground_flux(forest.env)
        return cls(
            iteration=forest.iteration,
            numesp=forest.numesp,
            area_ha=forest.nrows * forest.cols * lh * lh * 1.0e-4,
            dbh_hist=hist,
            lai_profile=forest.canopy.layer_profile(),
            ground_ppfd_sum=float(ground.sum()),
            ground_ppfd_sq=float(np.square(ground).sum()),
            ground_cells=int(ground.size),
            counters=forest.counters.as_dict(),
            **sums,
        )

    @classmethod
    def reduce(cls, parts: list[ForestStatistics]) -> ForestStatistics:
        """Sum statistics of the partitions of one step."""
        if not parts:
            raise ValueError("nothing to reduce")
        first = parts[0]
        if any(p.iteration != first.iteration for p in parts):
            raise ValueError(f"cannot reduce statistics of different iterations: {[p.iteration for p in parts]}")
        if len(parts) == 1:
            return first
        counters: dict[str, int] = {}
        for p in parts:
            for k, v in p.counters.items():
                counters[k] = counters.get(k, 0) + v
        nbins = max(p.dbh_hist.size for p in parts)
        hist = np.zeros(nbins, dtype=np.int64)
        for p in parts:
            hist[: p.dbh_hist.size] += p.dbh_hist
        return cls(
            iteration=first.iteration,
            numesp=first.numesp,
            area_ha=sum(p.area_ha for p in parts),
            dbh_hist=hist,
            lai_profile=np.sum([p.lai_profile for p in parts], axis=0),
            ground_ppfd_sum=sum(p.ground_ppfd_sum for p in parts),
            ground_ppfd_sq=sum(p.ground_ppfd_sq for p in parts),
            ground_cells=sum(p.ground_cells for p in parts),
            counters=counters,
            **{name: np.sum([getattr(p, name) for p in parts], axis=0) for name in _SPECIES_SUMS},
        )

    def per_hectare(self, name: str) -> np.ndarray:
        if name not in _SPECIES_SUMS:
            raise KeyError(name)
        return getattr(self, name) / self.area_ha

    @property
    def ground_ppfd_mean(self) -> float:
        return self.ground_ppfd_sum / self.ground_cells if self.ground_cells else 0.0

    @property
    def ground_ppfd_sd(self) -> float:
        if self.ground_cells < 2:
            return 0.0
        m = self.ground_ppfd_mean
        var = (self.ground_ppfd_sq - self.ground_cells * m * m) / (self.ground_cells - 1)
        return float(np.sqrt(max(0.0, var)))

    @property
    def live_trees(self) -> int:
        return int(self.nbind[0])

    def summary(self) -> str:
        return (
            f"iter={self.iteration} trees={self.live_trees} "
            f"ba={self.ba[0] / self.area_ha:.2f} m2/ha agb={self.agb[0] / self.area_ha:.1f} t/ha "
            f"npp={self.npp[0]:.4f} Mg ground_ppfd={self.ground_ppfd_mean:.1f}"
        )
