from __future__ import annotations

# Re-export public API for pysylva

from .canopy import CanopyField, FieldSizes, LightSample
from .climate import ClimateTable, Environment
from .config import ForestConfig, ForestPolicy, GlobalParams, TreefallMode
from .errors import (
    AllocationError,
    ConfigurationError,
    HaloExchangeError,
    NumericalError,
    SylvaError,
)
from .evolution import EvolutionLoop
from .forest import Forest
from .halo import HaloLink, HaloMessage, PartitionNetwork, Stripe, StripeDecomposition
from .inventory import TreeRecord, initialise_from_data, read_tree_list
from .rng import Draws, Phase, RandomSource
from .species import SeedBank, Species, SpeciesParams, build_species_table
from .stats import ForestStatistics, StepCounters
from .tree import DeathCause, Tree, TreeState

__all__ = [
    "CanopyField",
    "FieldSizes",
    "LightSample",
    "ClimateTable",
    "Environment",
    "ForestConfig",
    "ForestPolicy",
    "GlobalParams",
    "TreefallMode",
    "SylvaError",
    "ConfigurationError",
    "AllocationError",
    "HaloExchangeError",
    "NumericalError",
    "EvolutionLoop",
    "Forest",
    "HaloLink",
    "HaloMessage",
    "PartitionNetwork",
    "Stripe",
    "StripeDecomposition",
    "TreeRecord",
    "read_tree_list",
    "initialise_from_data",
    "Draws",
    "Phase",
    "RandomSource",
    "SeedBank",
    "Species",
    "SpeciesParams",
    "build_species_table",
    "ForestStatistics",
    "StepCounters",
    "DeathCause",
    "Tree",
    "TreeState",
]
