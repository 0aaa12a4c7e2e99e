import math

import numpy as np
import pytest

from conftest import make_species
from pysylva.config import ForestConfig, ForestPolicy, GlobalParams
from pysylva.errors import ConfigurationError
from pysylva.physiology import (
    assimilation,
    daily_averaged_assimilation,
    death_rate,
    leaf_assimilation,
    leaf_respiration_factor,
    stem_respiration_factor,
)
from pysylva.species import Species, SpeciesParams, build_species_table


@pytest.fixture
def sp():
    return Species.build(1, make_species(), GlobalParams(), ForestConfig(rows=10, cols=10))


def test_derived_traits(sp):
    p = sp.params
    assert sp.leaflifespan == pytest.approx(1.5 + 10.0 ** (7.18 + 3.03 * math.log10(p.LMA * 1e-4)))
    assert sp.time_young == 1.0
    assert sp.time_young + sp.time_mature + sp.time_old == pytest.approx(sp.leaflifespan)
    assert sp.LCP == pytest.approx(sp.Rdark / GlobalParams().phi)
    assert sp.seedmass == pytest.approx(0.4 * p.seedmass)
    assert sp.iseedmass == pytest.approx(1.0 / sp.seedmass)
    assert sp.Vcmax > 0 and sp.Jmax > 0 and sp.Rdark > 0


def test_lengths_scale_with_resolution():
    p = make_species()
    cfg = ForestConfig(rows=10, cols=10, nv=2.0, nh=4.0)
    s = Species.build(1, p, GlobalParams(), cfg)
    assert s.dmax == pytest.approx(p.dmax * 4.0)
    assert s.hmax == pytest.approx(p.hmax * 2.0)
    assert s.ds == pytest.approx(p.ds * 4.0)
    assert s.ah == pytest.approx(p.ah * 2.0 * 0.25)


def test_external_rain_rate_uses_lattice_area():
    p = make_species(regional_freq=0.5)
    s = Species.build(1, p, GlobalParams(Cseedrain=1000.0), ForestConfig(rows=100, cols=100))
    # 1 ha lattice at 1 m resolution
    assert s.nbext == 500


def test_species_row_parsing_and_validation():
    row = ["Dicorynia", 0.02, 100, 0.6, 0.5, 30, 0.3, 3, 0.1, 5, 0.001, 3.77, 0.1]
    p = SpeciesParams.from_row(row)
    assert p.name == "Dicorynia"
    assert p.dorm_duration == 3
    assert p.validate() is p
    with pytest.raises(ConfigurationError):
        SpeciesParams.from_row(row[:5])
    with pytest.raises(ConfigurationError):
        make_species(wsg=0.0).validate()


def test_species_table_is_label_indexed(species_pair):
    table = build_species_table(species_pair, GlobalParams(), ForestConfig(rows=10, cols=10))
    assert table[0] is None
    assert [s.label for s in table[1:]] == [1, 2]
    assert table[2].name == "Beta"
    with pytest.raises(ConfigurationError):
        build_species_table([], GlobalParams(), ForestConfig())


def test_no_light_no_assimilation(sp):
    A, rday = leaf_assimilation(sp, 0.0, 1.0, 25.0, 360.0, 0.24)
    assert A == pytest.approx(0.0, abs=1e-12)
    assert rday == pytest.approx(sp.Rdark)


def test_assimilation_saturates_with_light(sp):
    values = [leaf_assimilation(sp, ppfd, 1.0, 28.0, 360.0, 0.24)[0] for ppfd in (50, 200, 800, 2000, 5000)]
    assert np.all(np.diff(values) >= 0)
    assert values[1] > values[0]
    # levels off at the Rubisco/RuBP-regeneration limit
    assert values[-1] - values[-2] < values[1] - values[0]


def test_daily_average_is_mean_of_curve(sp):
    gp = GlobalParams()
    A, rday = daily_averaged_assimilation(sp, 800.0, 1.2, 28.0, gp)
    samples = [
        leaf_assimilation(sp, 800.0 * l, 1.2 * v, 28.0 * t, gp.Cair, gp.alpha)
        for l, v, t in zip(gp.daily_light, gp.daily_vpd, gp.daily_T)
    ]
    assert A == pytest.approx(np.mean([a for a, _ in samples]))
    assert rday == pytest.approx(np.mean([r for _, r in samples]))
    # dispatch follows the policy
    assert assimilation(sp, 800.0, 1.2, 28.0, gp, ForestPolicy(daily_light=True))[0] == pytest.approx(A)
    inst = assimilation(sp, 800.0, 1.2, 28.0, gp, ForestPolicy(daily_light=False))
    assert inst == pytest.approx(leaf_assimilation(sp, 800.0, 1.2, 28.0, gp.Cair, gp.alpha))


def test_dark_diurnal_samples_are_skipped(sp):
    gp = GlobalParams()
    # below the threshold at every sample: no assimilation, no day respiration
    assert daily_averaged_assimilation(sp, 0.1, 1.0, 28.0, gp) == (0.0, 0.0)

    # at dawn light only the brighter samples count, still divided by all 24
    ppfd = 1.0
    lit = [(l, v, t) for l, v, t in zip(gp.daily_light, gp.daily_vpd, gp.daily_T) if ppfd * l > 0.1]
    assert 0 < len(lit) < len(gp.daily_light)
    A, rday = daily_averaged_assimilation(sp, ppfd, 1.0, 28.0, gp)
    expected = [leaf_assimilation(sp, ppfd * l, v, 28.0 * t, gp.Cair, gp.alpha) for l, v, t in lit]
    assert rday == pytest.approx(sum(r for _, r in expected) / len(gp.daily_light))
    assert A == pytest.approx(sum(a for a, _ in expected) / len(gp.daily_light))


def test_respiration_factors_are_one_at_25c():
    assert leaf_respiration_factor(25.0) == pytest.approx(1.0)
    assert stem_respiration_factor(25.0) == pytest.approx(1.0)
    assert stem_respiration_factor(35.0) == pytest.approx(2.0)


def test_death_rate_carbon_starvation(sp):
    gp = GlobalParams(m=0.035, m1=0.035)
    pol = ForestPolicy(ndd=False)
    ts = 1.0 / 12.0
    base = death_rate(sp, 500.0, 0.1, 0, policy=pol, gp=gp, timestep=ts)
    assert base == pytest.approx((gp.m - gp.m1 * sp.wsg) * ts)
    starving = death_rate(sp, 500.0, 0.1, sp.leaflifespan + 1, policy=pol, gp=gp, timestep=ts)
    assert starving == pytest.approx(base + 1.0)


def test_death_rate_ndd_only_hits_small_stems(sp):
    gp = GlobalParams()
    pol = ForestPolicy(ndd=True)
    ts = 1.0 / 12.0
    basal = (0.001 + gp.m * (1.0 - sp.wsg / 0.85)) * ts
    big = death_rate(sp, 500.0, 0.5 * sp.dmax, 10.0, policy=pol, gp=gp, timestep=ts)
    assert big == pytest.approx(basal)
    small_low = death_rate(sp, 500.0, 0.01, 0.0, policy=pol, gp=gp, timestep=ts)
    small_high = death_rate(sp, 500.0, 0.01, 5.0, policy=pol, gp=gp, timestep=ts)
    assert small_low == pytest.approx(basal)
    assert small_high > small_low
