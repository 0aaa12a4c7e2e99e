"""
EvolutionLoop: owns the partitions of one run and advances them in lock-step.

With one partition the Forest is stepped inline. With several, each partition
runs in its own thread over the same iteration range; the halo exchanges inside
Forest.step are the only synchronisation points. A failure in any partition
aborts the network (waking neighbours blocked on a receive) and is re-raised
here once all threads have stopped.

Usage:
  loop = EvolutionLoop(ForestConfig.from_env(), GlobalParams.from_env(), species, climate)
  loop.plant(label=1, col=5, row=5)
  history = loop.run(3)          # one reduced ForestStatistics per step
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator, Sequence

from . import constants as const
from .climate import ClimateTable
from .config import ForestConfig, GlobalParams
from .errors import HaloExchangeError
from .forest import Forest
from .halo import PartitionNetwork, StripeDecomposition
from .species import SpeciesParams
from .stats import ForestStatistics
from .tree import Tree


class EvolutionLoop:
    def __init__(
        self,
        config: ForestConfig,
        params: GlobalParams,
        species_params: Sequence[SpeciesParams],
        climate: ClimateTable,
    ) -> None:
        self.config = config.validate()
        self.decomposition = StripeDecomposition(config.rows, config.n_partitions)
        n = len(self.decomposition)
        self.network = PartitionNetwork(self.decomposition, config.halo_timeout) if n > 1 else None
        self.forests = [
            Forest(
                config,
                params,
                species_params,
                climate,
                stripe=self.decomposition.stripe(k),
                link=self.network.link(k) if self.network is not None else None,
            )
            for k in range(n)
        ]
        rmax = self.forests[0].sizes.rmax
        self.decomposition.require_min_rows(2 * rmax, "the canopy border band (2*RMAX)")
        if config.policy.ndd:
            self.decomposition.require_min_rows(const.NDD_RADIUS, "the NDD radius")
        self.history: list[ForestStatistics] = []
        self.iteration = 0
        self._initialised = False

        if config.diag:
            print(
                f"[Halo] {n} partition(s), stripe rows={self.decomposition.sizes}, "
                f"rng_mode={config.rng_mode}"
            )
            sizes = self.forests[0].sizes
            print(f"[Canopy] HEIGHT={sizes.height} RMAX={sizes.rmax}")

    # ---- lattice access ----
    def forest_for(self, row: int) -> Forest:
        return self.forests[self.decomposition.owner(row)]

    def plant(self, label: int, col: int, row: int, dbh: float | None = None) -> Tree:
        """Place a tree at lattice (col, row); dbh in lattice units selects the from-data birth."""
        return self.forest_for(row).plant(label, row, col, dbh)

    def trees(self) -> Iterator[Tree]:
        """Every site's tree, in global row-major order."""
        for forest in self.forests:
            yield from forest.trees

    def tree_table(self) -> list[tuple[int, int, int, float, float]]:
        """(row, col, species, dbh, height) of every live tree."""
        return [(t.row, t.col, t.species, t.dbh, t.height) for t in self.trees() if t.occupied]

    def species_counts(self) -> list[int]:
        numesp = self.forests[0].numesp
        return [sum(f.species[k].nbind for f in self.forests) if k else 0 for k in range(numesp + 1)]

    # ---- driving ----
    def initialise(self) -> None:
        """Initial germination from the regional seed rain; runs once."""
        if self._initialised:
            return
        for forest in self.forests:
            forest.initial_germination()
        self._initialised = True

    def step(self) -> ForestStatistics:
        return self.run(1)[0]

    def run(self, n: int | None = None) -> list[ForestStatistics]:
        self.initialise()
        n = self.config.nbiter if n is None else int(n)
        iterations = range(self.iteration, self.iteration + n)
        t0 = time.perf_counter()
        if self.config.diag:
            print(f"[Evolution] iterations {iterations.start}..{iterations.stop - 1} on {len(self.forests)} partition(s)")

        if len(self.forests) == 1:
            per_partition = [[self.forests[0].step(i) for i in iterations]]
        else:
            per_partition = self._run_threads(iterations)

        steps = [ForestStatistics.reduce(list(parts)) for parts in zip(*per_partition)]
        self.history.extend(steps)
        self.iteration += n

        if self.config.diag:
            for s in steps:
                print(f"[Forest] {s.summary()}")
            print(f"[Evolution] {n} step(s) in {time.perf_counter() - t0:.2f}s")
        return steps

    def _run_threads(self, iterations: range) -> list[list[ForestStatistics]]:
        results: list[list[ForestStatistics]] = [[] for _ in self.forests]
        errors: list[tuple[int, Exception]] = []
        lock = threading.Lock()

        def _worker(forest: Forest, out: list[ForestStatistics]) -> None:
            try:
                for i in iterations:
                    out.append(forest.step(i))
            except Exception as e:
                with lock:
                    errors.append((forest.rank, e))
                self.network.abort()

        threads = [
            threading.Thread(target=_worker, args=(f, results[f.rank]), name=f"sylva-partition-{f.rank}", daemon=True)
            for f in self.forests
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        if errors:
            # prefer the root cause over the aborts it triggered in neighbours
            errors.sort(key=lambda re: (isinstance(re[1], HaloExchangeError), re[0]))
            rank, err = errors[0]
            if self.config.diag:
                print(f"[Evolution] partition {rank} failed: {err!r}")
            raise err
        return results
