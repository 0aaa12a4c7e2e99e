"""
pytest configuration

Goals:
- keep tests fast and deterministic
- small lattice and quiet diagnostics unless a test overrides explicitly
- shared species/parameter/climate fixtures sized so HEIGHT and RMAX fit a 10x10 lattice
"""

import os
import sys

import pytest

# Ensure project root on sys.path for 'pysylva' imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


@pytest.fixture(autouse=True)
def _sylva_env(monkeypatch):
    # Small lattice by default (tests can override via monkeypatch in the test)
    monkeypatch.setenv("SV_ROWS", os.getenv("SV_ROWS", "10"))
    monkeypatch.setenv("SV_COLS", os.getenv("SV_COLS", "10"))
    monkeypatch.setenv("SV_NBITER", os.getenv("SV_NBITER", "3"))
    monkeypatch.setenv("SV_PARTITIONS", os.getenv("SV_PARTITIONS", "1"))
    # No diagnostics chatter in test output
    monkeypatch.setenv("SV_DIAG", "0")
    # Short halo timeout so a broken exchange fails fast
    monkeypatch.setenv("SV_HALO_TIMEOUT", os.getenv("SV_HALO_TIMEOUT", "20"))
    yield


def make_species(name="sp", **over):
    from pysylva.species import SpeciesParams

    base = dict(
        name=name,
        Nmass=0.02,
        LMA=100.0,
        wsg=0.6,
        dmax=0.25,
        hmax=6.0,
        ah=0.1,
        dorm_duration=3,
        regional_freq=0.5,
        ds=1.0,
        Pmass=0.001,
        g1=3.77,
        seedmass=0.05,
    )
    base.update(over)
    return SpeciesParams(**base)


@pytest.fixture
def species_pair():
    """Two small species: HEIGHT=4, RMAX=0 on a unit-resolution lattice."""
    return [make_species("Alpha"), make_species("Beta", wsg=0.5, LMA=90.0, ds=2.0)]


@pytest.fixture
def wide_species_pair():
    """Species with dmax=1 m so RMAX=1 and HEIGHT=5 (canopy border bands are non-empty)."""
    return [make_species("Gamma", dmax=1.0), make_species("Delta", dmax=1.0, wsg=0.5, ds=1.5)]


@pytest.fixture
def quiet_params():
    """No mortality, no seed production, no seed rain: a closed, deterministic stand."""
    from pysylva.config import GlobalParams

    return GlobalParams(DBH0=0.01, m=0.0, m1=0.0, nbs0=0, Cseedrain=0.0)


@pytest.fixture
def climate():
    from pysylva.climate import ClimateTable

    return ClimateTable.constant(12, max_irradiance=800.0)


@pytest.fixture
def small_config():
    from pysylva.config import ForestConfig

    return ForestConfig.from_env()
