"""
Species table: immutable traits, derived physiology and the per-site seed bank.

Species labels run from 1 to numesp; label 0 means "no species" and is never
instantiated. Lengths are converted to lattice cells once, when the Species is
built, so every downstream formula works in cell units:
  dbh, crown radius, ds    -> horizontal cells (x NH)
  height, crown depth      -> vertical cells   (x NV)
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from . import constants as const
from .config import ForestConfig, GlobalParams
from .errors import AllocationError, ConfigurationError


@dataclass(frozen=True)
class SpeciesParams:
    """One row of the species table, in physical units."""

    name: str
    Nmass: float  # leaf nitrogen (g/g)
    LMA: float  # leaf mass per area (g/m2)
    wsg: float  # wood specific gravity (g/cm3)
    dmax: float  # maximal dbh (m)
    hmax: float  # asymptotic height (m)
    ah: float  # height-dbh curvature (m)
    dorm_duration: int  # seed dormancy, in iterations
    regional_freq: float  # relative abundance in the regional pool
    ds: float  # mean dispersal distance (m)
    Pmass: float  # leaf phosphorus (g/g)
    g1: float  # stomatal slope
    seedmass: float  # seed volume, read as fresh mass (g)

    @classmethod
    def from_row(cls, row: Sequence) -> SpeciesParams:
        """Build from a table row: name followed by the twelve numeric columns."""
        if len(row) < 13:
            raise ConfigurationError(f"Species row needs 13 columns, got {len(row)}: {row!r}")
        name, *vals = row[:13]
        v = [float(x) for x in vals]
        return cls(
            name=str(name),
            Nmass=v[0],
            LMA=v[1],
            wsg=v[2],
            dmax=v[3],
            hmax=v[4],
            ah=v[5],
            dorm_duration=int(v[6]),
            regional_freq=v[7],
            ds=v[8],
            Pmass=v[9],
            g1=v[10],
            seedmass=v[11],
        )

    def validate(self) -> SpeciesParams:
        positive = ("Nmass", "LMA", "wsg", "dmax", "hmax", "ah", "Pmass", "g1", "seedmass")
        bad = [n for n in positive if not getattr(self, n) > 0.0]
        if self.ds < 0.0:
            bad.append("ds")
        if self.regional_freq < 0.0:
            bad.append("regional_freq")
        if self.dorm_duration < 1:
            bad.append("dorm_duration")
        if bad:
            raise ConfigurationError(f"Species {self.name!r}: out-of-range {', '.join(bad)}")
        return self


class SeedBank:
    """
    Per-site seed record for one species on one partition.

    Presence accounting (default): 0 = no seed, k >= 1 = age of the youngest
    seed in iterations. Seeds are cleared once they reach the dormancy duration.
    Mass accounting (seed tradeoff): the value is a seed count, reset each step.
    """

    def __init__(self, shape: tuple[int, int], *, tradeoff: bool, dorm_duration: int) -> None:
        try:
            self.seeds = np.zeros(shape, dtype=np.int32)
        except MemoryError as e:
            raise AllocationError(f"SeedBank {shape}: {e}") from e
        self.tradeoff = bool(tradeoff)
        self.dorm_duration = int(dorm_duration)
        self._aged_iteration: int | None = None
        self.deposited = 0

    def deposit(self, site: int, amount: int = 1) -> None:
        flat = self.seeds.reshape(-1)
        if self.tradeoff:
            flat[site] += int(amount)
        elif amount > 0:
            flat[site] = 1
        self.deposited += int(amount)

    def merge_ghost(self, received: np.ndarray) -> int:
        """Fold seeds a neighbour dispersed into this stripe; returns the seed count merged."""
        received = np.asarray(received)
        if received.shape != self.seeds.shape:
            raise ValueError(f"ghost shape {received.shape} != seed bank shape {self.seeds.shape}")
        if self.tradeoff:
            self.seeds += received.astype(self.seeds.dtype)
        else:
            # a fresh seed resets the youngest-seed age to 1
            self.seeds[received > 0] = 1
        n = int(received.sum())
        self.deposited += n
        return n

    def age(self, iteration: int) -> None:
        if self._aged_iteration == iteration:
            return
        self._aged_iteration = iteration
        if self.tradeoff:
            self.seeds[...] = 0
            return
        s = self.seeds
        expired = s == self.dorm_duration
        s[(s != 0) & ~expired] += 1
        s[expired] = 0

    def clear(self, site: int) -> None:
        self.seeds.reshape(-1)[site] = 0

    def present(self, site: int) -> int:
        return int(self.seeds.reshape(-1)[site])

    def total(self) -> int:
        return int(self.seeds.sum())


@dataclass
class Species:
    """A species with traits scaled to lattice cells and its mutable state."""

    label: int
    params: SpeciesParams
    # scaled allometry
    dmax: float
    hmax: float
    ah: float
    ds: float
    wsg: float
    LMA: float
    # leaf phenology (iterations)
    leaflifespan: float
    time_young: float
    time_mature: float
    time_old: float
    # photosynthetic capacity
    Vcmax: float
    Jmax: float
    Rdark: float
    LCP: float
    g1: float
    seedmass: float
    iseedmass: float
    nbext: int
    # mutable
    nbind: int = 0
    seed_bank: SeedBank | None = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return self.params.name

    @classmethod
    def build(
        cls, label: int, params: SpeciesParams, gp: GlobalParams, cfg: ForestConfig
    ) -> Species:
        p = params.validate()
        lh = cfg.lh
        leaflifespan = 1.5 + 10.0 ** (7.18 + 3.03 * math.log10(p.LMA * 0.0001))
        time_young = 1.0
        time_mature = leaflifespan / 3.0
        time_old = leaflifespan - time_mature - time_young

        sla = 10000.0 / p.LMA
        vcmaxm = 10.0 ** min(
            -1.56 + 0.43 * math.log10(p.Nmass * 1000.0) + 0.37 * math.log10(sla),
            -0.80 + 0.45 * math.log10(p.Pmass * 1000.0) + 0.25 * math.log10(sla),
        )
        jmaxm = 10.0 ** min(
            -1.50 + 0.41 * math.log10(p.Nmass * 1000.0) + 0.45 * math.log10(sla),
            -0.74 + 0.44 * math.log10(p.Pmass * 1000.0) + 0.32 * math.log10(sla),
        )
        rdark = (
            p.LMA
            * (
                8.5341
                - 130.6 * p.Nmass
                - 567.0 * p.Pmass
                - 0.0137 * p.LMA
                + 11.1 * vcmaxm
                + 187600.0 * p.Nmass * p.Pmass
            )
            * 0.001
        )
        seedmass = p.seedmass * const.SEEDMASS_DRY_FRACTION
        nbext = int(p.regional_freq * gp.Cseedrain * (cfg.sites * lh * lh / 10000.0))

        return cls(
            label=int(label),
            params=p,
            dmax=p.dmax * cfg.nh,
            hmax=p.hmax * cfg.nv,
            ah=p.ah * cfg.nv * lh,
            ds=p.ds * cfg.nh,
            wsg=p.wsg,
            LMA=p.LMA,
            leaflifespan=leaflifespan,
            time_young=time_young,
            time_mature=time_mature,
            time_old=time_old,
            Vcmax=vcmaxm * p.LMA,
            Jmax=jmaxm * p.LMA,
            Rdark=rdark,
            LCP=rdark / gp.phi,
            g1=p.g1,
            seedmass=seedmass,
            iseedmass=1.0 / seedmass,
            nbext=nbext,
        )

    def attach_seed_bank(self, shape: tuple[int, int], tradeoff: bool) -> SeedBank:
        self.seed_bank = SeedBank(shape, tradeoff=tradeoff, dorm_duration=self.params.dorm_duration)
        return self.seed_bank


def build_species_table(
    rows: Sequence[SpeciesParams], gp: GlobalParams, cfg: ForestConfig
) -> list[Species | None]:
    """Return [None, sp1, ..., spN] so that the list index equals the species label."""
    if not rows:
        raise ConfigurationError("At least one species is required")
    table: list[Species | None] = [None]
    for i, p in enumerate(rows, start=1):
        table.append(Species.build(i, p, gp, cfg))
    return table
