"""
Per-site tree agent and its lifecycle.

State machine:
  EMPTY --birth--> GROWING --death--> DEAD --birth--> GROWING ...
A DEAD site is as free as an EMPTY one; the state only records history.

Trees never touch module-level state: every operation receives the partition
it lives on (a Forest) and reads species, canopy, climate snapshot and policy
from it. Stochastic operations receive their draw stream explicitly so the
caller decides which stream (per partition, or per site and phase) is used.

Units follow the lattice: dbh and crown radius in horizontal cells, height and
crown depth in vertical cells, leaf areas in m2, carbon fluxes in g per step.
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from . import constants as const
from .physiology import (
    assimilation,
    death_rate,
    leaf_respiration_factor,
    stem_respiration_factor,
)
from .rng import Draws

if TYPE_CHECKING:  # pragma: no cover
    from .forest import Forest
    from .species import Species


class TreeState(Enum):
    EMPTY = auto()
    GROWING = auto()
    DEAD = auto()


class DeathCause(Enum):
    NATURAL = auto()  # mortality draw
    DAMAGE = auto()  # hit by a neighbour's fall in the previous step
    FELLED = auto()  # the tree itself fell


def _sapwood(dbh: float) -> float:
    return 0.5 * dbh if dbh < 0.08 else const.SAPWOOD_THICKNESS


@dataclass
class Tree:
    site: int  # local site index on the partition
    row: int  # global row
    col: int
    state: TreeState = TreeState.EMPTY
    species: int = 0
    age: float = 0.0
    dbh: float = 0.0
    ddbh: float = 0.0
    dbh_thresh: float = 0.0
    height: float = 0.0
    hmature: float = 0.0
    crown_radius: float = 0.0
    crown_depth: float = 0.0
    young_la: float = 0.0
    mature_la: float = 0.0
    old_la: float = 0.0
    leafarea: float = 0.0
    dens: float = 0.0
    litter: float = 0.0
    gpp: float = 0.0
    npp: float = 0.0
    rday: float = 0.0
    rnight: float = 0.0
    rstem: float = 0.0
    ppfd: float = 0.0
    vpd: float = 0.0
    temperature: float = 0.0
    npp_neg: int = 0
    hurt: int = 0
    ct: float = 0.0  # treefall threshold
    from_data: bool = False

    @property
    def occupied(self) -> bool:
        return self.age > 0

    @property
    def effective_leafarea(self) -> float:
        # young and old leaves photosynthesise at half the mature rate
        return 0.5 * self.young_la + self.mature_la + 0.5 * self.old_la

    def _species(self, forest: Forest) -> Species:
        return forest.species[self.species]

    def _light(self, forest: Forest, h: int):
        return forest.canopy.flux(self.row, self.col, h, self.crown_radius, forest.env)

    # ------------------------------------------------------------------
    # birth
    # ------------------------------------------------------------------
    def _reset(self, label: int) -> None:
        self.species = int(label)
        self.state = TreeState.GROWING
        self.age = 1.0
        self.npp_neg = 0
        self.hurt = 0
        self.ddbh = 0.0
        self.litter = 0.0
        self.from_data = False

    def _first_production(self, forest: Forest, sp: Species, sapthick: float, stem_core: float) -> None:
        """Production and respiration of the first step, from the light at crown top."""
        env = forest.env
        ts = forest.timestep
        light = self._light(forest, int(self.height) + 1)
        self.ppfd, self.vpd, self.temperature = light.ppfd, light.vpd, light.temperature
        A, rday = assimilation(sp, light.ppfd, light.vpd, light.temperature, forest.gp, forest.policy)
        eff = self.effective_leafarea
        conv = const.GPP_TO_G_PER_YEAR * ts
        self.gpp = A * eff * conv
        self.rnight = sp.Rdark * leaf_respiration_factor(env.tnight) * eff * conv
        self.rday = rday * eff * conv * const.DAY_RESPIRATION_FRACTION
        self.rstem = (
            const.STEM_RESPIRATION_RATE
            * sapthick
            * const.PI
            * stem_core
            * (self.height - self.crown_depth)
            * stem_respiration_factor(env.temp)
            * const.RSTEM_TO_G_PER_YEAR
            * ts
        )
        self.npp = const.GROWTH_RESPIRATION * (
            self.gpp
            - const.LEAF_ROOT_FACTOR * (self.rday + self.rnight)
            - const.STEM_ROOT_FACTOR * self.rstem
        )

    def _set_maturity(self, forest: Forest, sp: Species, draws: Draws) -> None:
        hrealmax = sp.hmax * self.dbh_thresh / (self.dbh_thresh + sp.ah)
        # Wright et al. (2005) reproductive height, with a small individual spread
        self.hmature = (
            (-11.47 + 0.90 * hrealmax * forest.lv)
            * forest.nv
            * max(0.0, 1.0 + math.log(draws.uniform()) * 0.01)
        )
        if forest.policy.basic_treefall:
            self.ct = hrealmax * max(0.0, 1.0 - forest.gp.vC * math.sqrt(-math.log(draws.uniform())))
        else:
            self.ct = 0.0

    def birth(self, forest: Forest, label: int, draws: Draws) -> None:
        if self.occupied:
            raise ValueError(f"birth on occupied site {self.site} (species {self.species})")
        sp = forest.species[label]
        gp = forest.gp
        lh, lv = forest.lh, forest.lv
        self._reset(label)
        self.dbh = gp.DBH0
        self.dbh_thresh = (sp.dmax - self.dbh) * max(0.0, 1.0 + math.log(draws.uniform()) * 0.01) + self.dbh
        self.height = gp.H0
        self.crown_radius = gp.ra0
        self.crown_depth = gp.de0
        self.dens = gp.dens
        # all leaves start young
        self.young_la = self.dens * const.PI * (self.crown_radius * lh) ** 2 * self.crown_depth * lv
        self.mature_la = 0.0
        self.old_la = 0.0
        self.leafarea = self.young_la
        self._first_production(forest, sp, 0.5 * self.dbh, self.dbh - 0.5 * self.dbh)
        self._set_maturity(forest, sp, draws)
        sp.nbind += 1

    def birth_from_data(self, forest: Forest, label: int, dbh: float, draws: Draws) -> None:
        """Birth with a measured dbh (lattice units); the rest follows allometry."""
        if self.occupied:
            raise ValueError(f"birth on occupied site {self.site} (species {self.species})")
        sp = forest.species[label]
        lh, lv = forest.lh, forest.lv
        self._reset(label)
        self.from_data = True
        if 1.5 * sp.dmax > dbh:
            self.dbh = float(dbh)
        else:
            warnings.warn(
                f"measured dbh {dbh:.3f} >= 1.5*dmax for species {sp.name!r}; set to dmax",
                stacklevel=2,
            )
            self.dbh = sp.dmax
        self.dbh_thresh = sp.dmax
        self.height = sp.hmax * self.dbh / (self.dbh + sp.ah)
        self.crown_radius = 0.80 + 10.47 * self.dbh - 3.33 * self.dbh * self.dbh
        if self.height < 5.0:
            self.crown_depth = 0.133 + 0.168 * self.height
        else:
            self.crown_depth = -0.48 + 0.26 * self.height
        self.dens = forest.gp.dens
        self.leafarea = self.dens * const.PI * (self.crown_radius * lh) ** 2 * self.crown_depth * lv
        self.young_la = 0.25 * self.leafarea
        self.mature_la = 0.5 * self.leafarea
        self.old_la = 0.25 * self.leafarea
        sapthick = _sapwood(self.dbh)
        self._first_production(forest, sp, sapthick, self.dbh - sapthick)
        self._set_maturity(forest, sp, draws)
        sp.nbind += 1

    # ------------------------------------------------------------------
    # growth / update / death
    # ------------------------------------------------------------------
    def growth(self, forest: Forest) -> None:
        sp = self._species(forest)
        gp = forest.gp
        env = forest.env
        ts = forest.timestep
        lh, lv, nh = forest.lh, forest.lv, forest.nh

        crown_base = int(self.height - self.crown_depth) + 1
        crown_top = int(self.height) + 1
        top = self._light(forest, crown_top)
        self.ppfd, self.vpd, self.temperature = top.ppfd, top.vpd, top.temperature
        self.age += ts

        gpp = 0.0
        rday = 0.0
        for h in range(crown_base, crown_top + 1):
            s = self._light(forest, h)
            a, r = assimilation(sp, s.ppfd, s.vpd, s.temperature, gp, forest.policy)
            gpp += a
            rday += r
        inb = 1.0 / float(crown_top - crown_base + 1)
        eff = self.effective_leafarea
        conv = const.GPP_TO_G_PER_YEAR * ts
        sapthick = _sapwood(self.dbh)

        self.gpp = gpp * inb * eff * conv
        self.rstem = (
            const.STEM_RESPIRATION_RATE
            * sapthick
            * const.PI
            * (self.dbh - sapthick)
            * (self.height - self.crown_depth)
            * const.RSTEM_TO_G_PER_YEAR
            * ts
            * stem_respiration_factor(env.temp)
        )
        self.rday = rday * inb * const.DAY_RESPIRATION_FRACTION * eff * conv
        self.rnight = sp.Rdark * leaf_respiration_factor(env.tnight) * eff * conv
        gross = self.gpp - const.LEAF_ROOT_FACTOR * (self.rday + self.rnight) - const.STEM_ROOT_FACTOR * self.rstem
        self.npp = const.GROWTH_RESPIRATION * gross
        self.ddbh = 0.0
        flush = 0.0

        if self.npp < 0.0:
            self.npp_neg += 1
            self.npp = gross
        else:
            self.npp_neg = 0
            # carbon -> biomass -> m3 of wood
            volume = 2.0 * self.npp / sp.wsg * gp.fallocwood * 1.0e-6
            if self.dbh > self.dbh_thresh:
                volume *= max(0.0, 3.0 - 2.0 * self.dbh / self.dbh_thresh)
            # isometric growth: dV = 3/4 pi dbh h ddbh
            self.ddbh = (
                max(
                    0.0,
                    volume / (0.559 * self.dbh * lh * self.height * lv * (3.0 - self.dbh / (self.dbh + sp.ah))),
                )
                * nh
            )
            self.dbh += self.ddbh
            self.height = sp.hmax * self.dbh / (self.dbh + sp.ah)
            if self.height < 5.0:
                self.crown_depth = 0.17 + 0.13 * self.height
            else:
                self.crown_depth = -0.48 + 0.26 * self.height
            self.crown_radius = 0.80 + 10.47 * self.dbh - 3.33 * self.dbh * self.dbh
            flush = 2.0 * self.npp * gp.falloccanopy * const.LEAF_FRACTION_OF_CANOPY / sp.LMA

        # leaf conveyor: young -> mature -> old -> litter
        litter = self.old_la / sp.time_old
        new_mature = self.young_la / sp.time_young
        new_old = self.mature_la / sp.time_mature
        self.young_la += flush - new_mature
        self.mature_la += new_mature - new_old
        self.old_la += new_old - litter
        self.leafarea = self.young_la + self.mature_la + self.old_la
        self.litter = litter * sp.LMA
        crown_volume = const.PI * (self.crown_radius * lh) ** 2 * self.crown_depth * lv
        self.dens = self.leafarea / crown_volume

    def update(self, forest: Forest, draws: Draws) -> DeathCause | None:
        """One step of mortality or growth. Returns the death cause, if any."""
        if not self.occupied:
            return None
        sp = self._species(forest)
        policy = forest.policy
        pressure = forest.ndd_pressure(self.site, self.species) if policy.ndd else self.npp_neg
        dr = death_rate(
            sp, self.ppfd, self.dbh, pressure, policy=policy, gp=forest.gp, timestep=forest.timestep
        )
        if draws.uniform() + dr >= 1.0:
            forest.counters.record_death(DeathCause.NATURAL, self.dbh * forest.lh)
            self.death(forest)
            return DeathCause.NATURAL
        if policy.basic_treefall and self.height < 2.0 * self.hurt * draws.uniform():
            forest.counters.record_death(DeathCause.DAMAGE, self.dbh * forest.lh)
            self.death(forest)
            return DeathCause.DAMAGE
        self.hurt = 0
        self.growth(forest)
        return None

    def death(self, forest: Forest) -> None:
        # the species label is kept as the site's last occupant
        sp = self._species(forest)
        self.state = TreeState.DEAD
        self.age = 0.0
        self.dbh = self.height = self.crown_radius = self.crown_depth = 0.0
        self.hurt = 0
        self.ct = 0.0
        if sp.nbind > 0:
            sp.nbind -= 1

    # ------------------------------------------------------------------
    # reproduction
    # ------------------------------------------------------------------
    def disperse_seeds(self, forest: Forest, draws: Draws) -> int:
        """Scatter this step's seeds; returns the number produced."""
        if not self.occupied:
            return 0
        sp = self._species(forest)
        if not (self.height >= self.hmature and self.ppfd > 2.0 * sp.LCP):
            return 0
        if forest.policy.seed_tradeoff:
            nbs = int(
                self.npp * 2.0 * forest.gp.falloccanopy * const.SEED_FRACTION_OF_CANOPY * 0.5 * sp.iseedmass
            )
        else:
            nbs = forest.gp.nbs0
        nbs = max(0, nbs)
        scale = 2.0 * (sp.ds + self.crown_radius)
        for _ in range(nbs):
            # P(rho) ~ rho * exp(-rho^2)
            rho = scale * math.sqrt(abs(math.log(draws.uniform() / const.PI)))
            theta = const.TWO_PI * draws.uniform()
            forest.route_seed(
                self.species,
                self.row + int(rho * math.sin(theta)),
                self.col + int(rho * math.cos(theta)),
            )
        return nbs

    # ------------------------------------------------------------------
    # treefall
    # ------------------------------------------------------------------
    def couple(self, forest: Forest) -> int:
        """Mechanical stress from dense neighbouring canopy."""
        if int(self.crown_radius) == 0:
            return 0
        fx, fy = forest.canopy.crown_force(
            self.row,
            self.col,
            self.crown_radius,
            int(self.height - self.crown_depth),
            int(self.height),
            forest.gp.dens,
        )
        return int(math.sqrt(fx * fx + fy * fy) * self.height)

    def fall(self, forest: Forest, draws: Draws) -> bool:
        """Possibly fall; marks stem and crown damage for the next step. Returns True if fallen."""
        if not self.occupied or not forest.policy.basic_treefall:
            return False
        if forest.policy.mechanical_treefall and not self.couple(forest) > self.ct:
            return False
        if not draws.uniform() * self.height > self.ct:
            return False

        angle = const.TWO_PI * draws.uniform()
        ca, sa = math.cos(angle), math.sin(angle)
        H = self.height
        forest.counters.record_death(DeathCause.FELLED, self.dbh * forest.lh)
        stem = int(H)
        forest.mark_impact(self.row, self.col, stem)

        reach = H * forest.lv * forest.nh  # stem length in horizontal cells
        for h in range(1, int(reach)):
            xx = max(int(self.col + h * ca), 0)
            if xx < forest.cols:
                forest.mark_impact(int(self.row + h * sa), xx, stem)

        cx = self.col + int((reach - self.crown_radius) * ca)
        cy = self.row + int((reach - self.crown_radius) * sa)
        r = int(self.crown_radius)
        crown = int((H - self.crown_radius * forest.nv * forest.lh) * 0.5)
        for c in range(max(0, cx - r), min(forest.cols, cx + r + 1)):
            for rr in range(cy - r, cy + r + 1):
                if (c - cx) * (c - cx) + (rr - cy) * (rr - cy) < r * r:
                    forest.mark_impact(rr, c, crown)

        self.death(forest)
        return True
