"""
Run configuration for the forest engine (env-driven).

Three layers, all frozen dataclasses with a from_env() classmethod:

- ForestConfig: lattice size, run length, resolution, partitions and random streams.
- ForestPolicy: behavioural switches (treefall model, seed accounting, density
  dependence, diurnal light averaging), resolved once at startup.
- GlobalParams: traits shared by every species. These are empirically fitted
  numbers, so they are validated against documented ranges before a run starts.

Environment variables use the SV_ prefix, e.g. SV_ROWS=200 SV_TREEFALL=basic.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum

from . import constants as const
from .errors import ConfigurationError


def _ibool(name: str, default: str = "1") -> bool:
    try:
        return int(os.getenv(name, default)) == 1
    except Exception:
        return default == "1"


def _int(name: str, default: str) -> int:
    try:
        return int(os.getenv(name, default))
    except Exception:
        return int(default)


def _float(name: str, default: str) -> float:
    try:
        return float(os.getenv(name, default))
    except Exception:
        return float(default)


def _str(name: str, default: str) -> str:
    return os.getenv(name, default).strip().lower() or default


class TreefallMode(Enum):
    NONE = "none"
    BASIC = "basic"  # height-vs-threshold draw
    MECHANICAL = "mechanical"  # basic draw gated by the neighbour force field

    @classmethod
    def parse(cls, value: str | TreefallMode) -> TreefallMode:
        if isinstance(value, TreefallMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown treefall mode {value!r}; expected one of {[m.value for m in cls]}"
            ) from None


@dataclass(frozen=True)
class ForestPolicy:
    treefall: TreefallMode = TreefallMode.NONE
    seed_tradeoff: bool = False
    ndd: bool = False
    daily_light: bool = True

    @property
    def basic_treefall(self) -> bool:
        # mechanical treefall is layered on top of the basic draw
        return self.treefall in (TreefallMode.BASIC, TreefallMode.MECHANICAL)

    @property
    def mechanical_treefall(self) -> bool:
        return self.treefall is TreefallMode.MECHANICAL

    @classmethod
    def from_env(cls) -> ForestPolicy:
        return cls(
            treefall=TreefallMode.parse(_str("SV_TREEFALL", "none")),
            seed_tradeoff=_ibool("SV_SEED_TRADEOFF", "0"),
            ndd=_ibool("SV_NDD", "0"),
            daily_light=_ibool("SV_DAILY_LIGHT", "1"),
        )


@dataclass(frozen=True)
class GlobalParams:
    """Traits shared by all species, in physical units (m, years, micromol)."""

    klight: float = 0.9  # light extinction coefficient
    phi: float = 0.06  # apparent quantum yield (mol C / mol photon)
    vC: float = 0.021  # variance of the treefall threshold
    DBH0: float = 0.005  # initial dbh (m)
    H0: float = 0.95  # initial height (m)
    ra0: float = 0.29  # initial crown radius (m)
    ra1: float = 0.75  # crown radius / dbh slope
    de0: float = 0.10  # initial crown depth (m)
    dens: float = 0.8  # initial leaf density (m2/m3)
    fallocwood: float = 0.35  # NPP fraction to wood
    falloccanopy: float = 0.25  # NPP fraction to canopy
    Cseedrain: float = 50000.0  # external seeds per hectare per step
    nbs0: int = 10  # seeds per reproducing tree (no tradeoff)
    m: float = 0.035  # basal mortality
    m1: float = 0.035  # wood-density slope of mortality
    Cair: float = 360.0  # atmospheric CO2 (ppm)
    daily_light: tuple[float, ...] = field(default=const.DAILY_LIGHT)
    daily_vpd: tuple[float, ...] = field(default=const.DAILY_VPD)
    daily_T: tuple[float, ...] = field(default=const.DAILY_T)

    @property
    def alpha(self) -> float:
        # four electrons per RuBP regenerated
        return 4.0 * self.phi

    def scaled(self, nv: float, nh: float) -> GlobalParams:
        """Return a copy with lengths expressed in lattice cells."""
        return replace(
            self,
            DBH0=self.DBH0 * nh,
            H0=self.H0 * nv,
            ra0=self.ra0 * nh,
            de0=self.de0 * nv,
        )

    def validate(self) -> GlobalParams:
        checks = [
            ("klight", self.klight > 0.0),
            ("phi", 0.0 < self.phi <= 1.0),
            ("vC", self.vC >= 0.0),
            ("DBH0", self.DBH0 > 0.0),
            ("H0", self.H0 > 0.0),
            ("ra0", self.ra0 >= 0.0),
            ("ra1", self.ra1 >= 0.0),
            ("de0", self.de0 > 0.0),
            ("dens", self.dens > 0.0),
            ("fallocwood", 0.0 <= self.fallocwood <= 1.0),
            ("falloccanopy", 0.0 <= self.falloccanopy <= 1.0),
            ("Cseedrain", self.Cseedrain >= 0.0),
            ("nbs0", self.nbs0 >= 0),
            ("m", self.m >= 0.0),
            ("m1", self.m1 >= 0.0),
            ("Cair", self.Cair > 0.0),
        ]
        bad = [name for name, ok in checks if not ok]
        if bad:
            raise ConfigurationError(f"GlobalParams out of range: {', '.join(bad)}")
        for name in ("daily_light", "daily_vpd", "daily_T"):
            curve = getattr(self, name)
            if len(curve) != const.DIURNAL_SAMPLES:
                raise ConfigurationError(
                    f"{name} must have {const.DIURNAL_SAMPLES} samples, got {len(curve)}"
                )
        return self

    @classmethod
    def from_env(cls) -> GlobalParams:
        d = cls()
        return cls(
            klight=_float("SV_KLIGHT", str(d.klight)),
            phi=_float("SV_PHI", str(d.phi)),
            vC=_float("SV_VC", str(d.vC)),
            DBH0=_float("SV_DBH0", str(d.DBH0)),
            H0=_float("SV_H0", str(d.H0)),
            ra0=_float("SV_RA0", str(d.ra0)),
            ra1=_float("SV_RA1", str(d.ra1)),
            de0=_float("SV_DE0", str(d.de0)),
            dens=_float("SV_DENS", str(d.dens)),
            fallocwood=_float("SV_FALLOCWOOD", str(d.fallocwood)),
            falloccanopy=_float("SV_FALLOCCANOPY", str(d.falloccanopy)),
            Cseedrain=_float("SV_CSEEDRAIN", str(d.Cseedrain)),
            nbs0=_int("SV_NBS0", str(d.nbs0)),
            m=_float("SV_M", str(d.m)),
            m1=_float("SV_M1", str(d.m1)),
            Cair=_float("SV_CAIR", str(d.Cair)),
        )


RNG_MODES = ("stream", "site")


@dataclass(frozen=True)
class ForestConfig:
    """Lattice and run control (env-driven)."""

    rows: int = 100
    cols: int = 100
    nbiter: int = 120
    iterperyear: int = 12
    nv: float = 1.0  # vertical cells per metre
    nh: float = 1.0  # horizontal cells per metre
    p_nonvert: float = 0.05  # share of crown spread not covered by the vertical cylinder
    seed: int = 1
    n_partitions: int = 1
    rng_mode: str = "stream"
    halo_timeout: float = 60.0
    diag: bool = False
    policy: ForestPolicy = field(default_factory=ForestPolicy)

    @property
    def timestep(self) -> float:
        """Duration of one iteration, in years."""
        return 1.0 / float(self.iterperyear)

    @property
    def lv(self) -> float:
        return 1.0 / self.nv

    @property
    def lh(self) -> float:
        return 1.0 / self.nh

    @property
    def sites(self) -> int:
        return self.rows * self.cols

    def validate(self) -> ForestConfig:
        if self.rows <= 0 or self.cols <= 0:
            raise ConfigurationError(f"Lattice must be non-empty, got {self.rows}x{self.cols}")
        if self.nbiter < 0:
            raise ConfigurationError(f"nbiter must be >= 0, got {self.nbiter}")
        if self.iterperyear <= 0:
            raise ConfigurationError(f"iterperyear must be > 0, got {self.iterperyear}")
        if self.nv <= 0.0 or self.nh <= 0.0:
            raise ConfigurationError(f"Resolution must be positive, got nv={self.nv} nh={self.nh}")
        if not 0.0 <= self.p_nonvert <= 1.0:
            raise ConfigurationError(f"p_nonvert must lie in [0, 1], got {self.p_nonvert}")
        if not 1 <= self.n_partitions <= self.rows:
            raise ConfigurationError(
                f"n_partitions must lie in [1, rows={self.rows}], got {self.n_partitions}"
            )
        if self.rng_mode not in RNG_MODES:
            raise ConfigurationError(f"rng_mode must be one of {RNG_MODES}, got {self.rng_mode!r}")
        if self.halo_timeout <= 0.0:
            raise ConfigurationError(f"halo_timeout must be > 0, got {self.halo_timeout}")
        return self

    @classmethod
    def from_env(cls) -> ForestConfig:
        return cls(
            rows=_int("SV_ROWS", "100"),
            cols=_int("SV_COLS", "100"),
            nbiter=_int("SV_NBITER", "120"),
            iterperyear=_int("SV_ITERPERYEAR", "12"),
            nv=_float("SV_NV", "1.0"),
            nh=_float("SV_NH", "1.0"),
            p_nonvert=_float("SV_P_NONVERT", "0.05"),
            seed=_int("SV_SEED", "1"),
            n_partitions=_int("SV_PARTITIONS", "1"),
            rng_mode=_str("SV_RNG_MODE", "stream"),
            halo_timeout=_float("SV_HALO_TIMEOUT", "60"),
            diag=_ibool("SV_DIAG", "0"),
            policy=ForestPolicy.from_env(),
        )
