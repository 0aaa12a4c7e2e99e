"""
Forest: the explicit simulation state of one partition and its step engine.

A Forest owns one row stripe of the lattice: the trees of its sites, a private
species table (live counts and seed banks are per partition), the canopy field
with its border rows, the treefall impact field, the NDD field, a random
source and, when the lattice is split, a HaloLink to its neighbours.

Coordinates: trees carry their global (row, col); the local site index is
  site = col + cols * (row - row0)
Seed targets, impact marks and canopy footprints are computed in global
coordinates, so the outcome of a step does not depend on the partitioning
(exactly so with rng_mode="site").

One timestep, in order (EvolutionLoop drives these through step()):
  prepare(iter)          climate snapshot, counters reset
  rebuild_canopy()       + halo add-merge of the 2*rmax border bands
  compute_ndd()          + halo copy of R ghost rows (policy.ndd)
  disperse_seeds()       + halo exchange of seeds landing in neighbour stripes
  external_rain()
  germinate()
  update_trees()         mortality or growth for every live tree
  age_seeds()
  treefall()             + halo max-merge of impact marks, buffer swap
  statistics()
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from . import constants as const
from .canopy import CanopyField, FieldSizes
from .climate import ClimateTable
from .config import ForestConfig, GlobalParams
from .errors import ConfigurationError
from .halo import HaloLink, Stripe, StripeDecomposition
from .ndd import NDDField
from .rng import Draws, Phase, RandomSource
from .species import Species, SpeciesParams, build_species_table
from .stats import ForestStatistics, StepCounters
from .treefall import ImpactField
from .tree import Tree


class Forest:
    def __init__(
        self,
        config: ForestConfig,
        params: GlobalParams,
        species_params: Sequence[SpeciesParams],
        climate: ClimateTable,
        *,
        stripe: Stripe | None = None,
        link: HaloLink | None = None,
    ) -> None:
        self.config = config.validate()
        self.policy = config.policy
        self.params = params.validate()
        self.gp = self.params.scaled(config.nv, config.nh)
        if climate.iterperyear != config.iterperyear:
            raise ConfigurationError(
                f"Climate table has {climate.iterperyear} entries per year, config expects {config.iterperyear}"
            )
        self.climate = climate
        self.species: list[Species | None] = build_species_table(species_params, self.params, config)
        self.numesp = len(self.species) - 1

        self.stripe = stripe if stripe is not None else StripeDecomposition(config.rows, 1).stripe(0)
        self.link = link
        self.row0 = self.stripe.row0
        self.nrows = self.stripe.nrows
        self.cols = config.cols
        self.rows = config.rows

        self.sizes = FieldSizes.derive(self.species, self.gp, config).check(config.rows)
        self.canopy = CanopyField(
            height=self.sizes.height,
            rmax=self.sizes.rmax,
            nrows=self.nrows,
            cols=self.cols,
            row0=self.row0,
            total_rows=self.rows,
            klight=self.gp.klight,
        )
        self.trees = [
            Tree(site=s, row=self.row0 + s // self.cols, col=s % self.cols) for s in range(self.nrows * self.cols)
        ]
        for sp in self.species[1:]:
            sp.attach_seed_bank((self.nrows, self.cols), self.policy.seed_tradeoff)

        self.impact: ImpactField | None = None
        if self.policy.basic_treefall:
            self.impact = ImpactField(
                row0=self.row0,
                nrows=self.nrows,
                cols=self.cols,
                north_rows=self.stripe.north_rows,
                south_rows=self.stripe.south_rows,
            )
        self.ndd: NDDField | None = NDDField(self.numesp, self.nrows, self.cols) if self.policy.ndd else None

        self._seed_ghost = {
            "north": np.zeros((self.numesp + 1, self.stripe.north_rows, self.cols), dtype=np.int64),
            "south": np.zeros((self.numesp + 1, self.stripe.south_rows, self.cols), dtype=np.int64),
        }
        self.rng = RandomSource(config.seed, self.stripe.rank, config.rng_mode)
        self.counters = StepCounters()
        self.iteration = 0
        self.env = climate.snapshot(0)

        if config.diag:
            print(
                f"[Forest] partition {self.stripe.rank}: rows {self.row0}..{self.row0 + self.nrows - 1} "
                f"x {self.cols} cols, species={self.numesp}, HEIGHT={self.sizes.height}, RMAX={self.sizes.rmax}"
            )

    # ---- lattice units ----
    @property
    def timestep(self) -> float:
        return self.config.timestep

    @property
    def lv(self) -> float:
        return self.config.lv

    @property
    def lh(self) -> float:
        return self.config.lh

    @property
    def nv(self) -> float:
        return self.config.nv

    @property
    def nh(self) -> float:
        return self.config.nh

    @property
    def rank(self) -> int:
        return self.stripe.rank

    @property
    def partitioned(self) -> bool:
        return self.link is not None

    def local_site(self, grow: int, col: int) -> int:
        if not (self.stripe.owns(grow) and 0 <= col < self.cols):
            raise ValueError(f"({grow}, {col}) is not on partition {self.rank}")
        return col + self.cols * (grow - self.row0)

    def tree_at(self, grow: int, col: int) -> Tree:
        return self.trees[self.local_site(grow, col)]

    def _draws(self, tree: Tree, phase: Phase) -> Draws:
        return self.rng.for_site(self.iteration, tree.col + self.cols * tree.row, phase)

    def live_trees(self) -> list[Tree]:
        return [t for t in self.trees if t.occupied]

    # ---- services used by Tree ----
    def ndd_pressure(self, site: int, species: int) -> float:
        if self.ndd is None:
            return 0.0
        return self.ndd.at(site, species)

    def route_seed(self, label: int, grow: int, col: int) -> None:
        """Deliver one seed to global (grow, col): local bank, neighbour ghost, or lost."""
        c = self.counters
        c.seeds_produced += 1
        # columns left of the lattice land on column 0
        col = max(int(col), 0)
        if not (col < self.cols and 0 <= grow < self.rows):
            c.seeds_lost += 1
            return
        s = self.stripe
        if s.owns(grow):
            self.species[label].seed_bank.deposit(col + self.cols * (grow - self.row0))
            c.seeds_deposited += 1
        elif s.north is not None and s.row0 - s.north_rows <= grow < s.row0:
            self._seed_ghost["north"][label, grow - (s.row0 - s.north_rows), col] += 1
        elif s.south is not None and s.row_end <= grow < s.row_end + s.south_rows:
            self._seed_ghost["south"][label, grow - s.row_end, col] += 1
        else:
            # beyond the adjacent stripe
            c.seeds_lost += 1

    def mark_impact(self, grow: int, col: int, value: int) -> None:
        if self.impact is not None:
            self.impact.mark(grow, col, value)

    # ---- initialisation ----
    def plant(self, label: int, grow: int, col: int, dbh: float | None = None) -> Tree:
        """Birth at a global position; dbh (lattice units) selects the from-data allometry."""
        if not 1 <= label <= self.numesp:
            raise ValueError(f"species label must lie in [1, {self.numesp}], got {label}")
        tree = self.tree_at(grow, col)
        draws = self._draws(tree, Phase.DATA)
        if dbh is None:
            tree.birth(self, label, draws)
        else:
            tree.birth_from_data(self, label, dbh, draws)
        return tree

    def initial_germination(self) -> int:
        """Germinate the external seed rain of the first step on free sites."""
        positions = self.rng.global_stream(0, Phase.INIT)
        born = 0
        for sp in self.species[1:]:
            for _ in range(max(0, sp.nbext)):
                gsite = positions.integer(self.rows * self.cols)
                grow, col = divmod(gsite, self.cols)
                if not self.stripe.owns(grow):
                    continue
                tree = self.tree_at(grow, col)
                if not tree.occupied:
                    tree.birth(self, sp.label, self.rng.for_site(0, gsite, Phase.INIT))
                    born += 1
        if self.config.diag:
            print(f"[Forest] partition {self.rank}: initial germination {born} trees")
        return born

    # ---- one timestep ----
    def prepare(self, iteration: int) -> None:
        self.iteration = int(iteration)
        self.env = self.climate.snapshot(iteration)
        self.counters.reset()

    def rebuild_canopy(self) -> None:
        crowns = (
            (t.row, t.col, t.height, t.crown_depth, t.crown_radius, t.dens) for t in self.trees if t.occupied
        )
        self.canopy.rebuild(crowns, merge=self._merge_canopy if self.partitioned else None)

    def _merge_canopy(self, canopy: CanopyField) -> None:
        s = self.stripe
        to_north = canopy.border_band("north") if s.north is not None else None
        to_south = canopy.border_band("south") if s.south is not None else None
        band = (canopy.height + 1, 2 * canopy.rmax, canopy.cols)
        from_north, from_south = self.link.exchange(
            "canopy", to_north, to_south, north_shape=band, south_shape=band
        )
        if from_north is not None:
            canopy.add_band("north", from_north)
        if from_south is not None:
            canopy.add_band("south", from_south)

    def compute_ndd(self) -> None:
        if self.ndd is None:
            return
        ndd = self.ndd
        ndd.deposit(self.trees)
        if self.partitioned:
            s = self.stripe
            band = (self.numesp + 1, ndd.radius, self.cols)
            from_north, from_south = self.link.exchange(
                "ndd",
                ndd.border_band("north") if s.north is not None else None,
                ndd.border_band("south") if s.south is not None else None,
                north_shape=band,
                south_shape=band,
            )
            if from_north is not None:
                ndd.set_ghost("north", from_north)
            if from_south is not None:
                ndd.set_ghost("south", from_south)
        ndd.compute()

    def disperse_seeds(self) -> None:
        for g in self._seed_ghost.values():
            g[...] = 0
        for t in self.trees:
            if t.occupied:
                t.disperse_seeds(self, self._draws(t, Phase.DISPERSE))
        if not self.partitioned:
            return
        s = self.stripe
        own = (self.numesp + 1, self.nrows, self.cols)
        from_north, from_south = self.link.exchange(
            "seeds",
            self._seed_ghost["north"] if s.north is not None else None,
            self._seed_ghost["south"] if s.south is not None else None,
            north_shape=own,
            south_shape=own,
        )
        for received in (from_north, from_south):
            if received is None:
                continue
            for sp in self.species[1:]:
                self.counters.seeds_deposited += sp.seed_bank.merge_ghost(received[sp.label])

    def external_rain(self) -> None:
        """Seed rain from the regional pool, drawn identically on every partition."""
        positions = self.rng.global_stream(self.iteration, Phase.RAIN)
        total = self.rows * self.cols
        for sp in self.species[1:]:
            if sp.nbext <= 0:
                continue
            for gsite in positions.integers(total, sp.nbext):
                grow, col = divmod(int(gsite), self.cols)
                if self.stripe.owns(grow):
                    sp.seed_bank.deposit(col + self.cols * (grow - self.row0))
                    self.counters.seeds_rain += 1

    def _choose_species(self, tree: Tree, draws: Draws) -> Species | None:
        site = tree.site
        present = [sp for sp in self.species[1:] if sp.seed_bank.present(site)]
        if not present:
            return None
        if not self.policy.seed_tradeoff:
            return present[draws.integer(len(present))]
        weights = []
        for sp in present:
            w = sp.seed_bank.present(site) * sp.seedmass
            if self.policy.ndd:
                w /= self.ndd_pressure(site, sp.label) * const.NDD_GERMINATION_SCALE + 1.0
            weights.append(w)
        cum = np.cumsum(weights)
        p = draws.uniform() * cum[-1]
        k = int(np.searchsorted(cum, p, side="left"))
        return present[min(k, len(present) - 1)]

    def germinate(self) -> int:
        ground = self.canopy.ground_flux(self.env)
        born = 0
        for t in self.trees:
            if t.occupied:
                if not self.policy.seed_tradeoff:
                    for sp in self.species[1:]:
                        sp.seed_bank.clear(t.site)
                continue
            draws = self._draws(t, Phase.GERMINATE)
            sp = self._choose_species(t, draws)
            if sp is None:
                continue
            row, col = divmod(t.site, self.cols)
            if ground[row, col] > sp.LCP:
                t.birth(self, sp.label, draws)
                born += 1
        self.counters.germinations += born
        return born

    def update_trees(self) -> None:
        for t in self.trees:
            if t.occupied:
                t.update(self, self._draws(t, Phase.UPDATE))

    def age_seeds(self) -> None:
        for sp in self.species[1:]:
            sp.seed_bank.age(self.iteration)

    def treefall(self) -> None:
        impact = self.impact
        if impact is None:
            return
        impact.begin()
        for t in self.trees:
            if t.occupied:
                t.fall(self, self._draws(t, Phase.TREEFALL))
        if self.partitioned:
            s = self.stripe
            own = (self.nrows, self.cols)
            from_north, from_south = self.link.exchange(
                "treefall",
                impact.ghost("north") if s.north is not None else None,
                impact.ghost("south") if s.south is not None else None,
                north_shape=own,
                south_shape=own,
            )
            for received in (from_north, from_south):
                if received is not None:
                    impact.merge(received)
        impact.commit()
        for t in self.trees:
            if t.occupied:
                row, col = divmod(t.site, self.cols)
                t.hurt = impact.hurt_at(row, col)

    def statistics(self) -> ForestStatistics:
        return ForestStatistics.collect(self)

    def step(self, iteration: int) -> ForestStatistics:
        self.prepare(iteration)
        self.rebuild_canopy()
        self.compute_ndd()
        self.disperse_seeds()
        self.external_rain()
        self.germinate()
        self.update_trees()
        self.age_seeds()
        self.treefall()
        return self.statistics()
