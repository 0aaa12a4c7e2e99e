import math

import numpy as np
import pytest

from pysylva.config import ForestConfig, ForestPolicy, TreefallMode
from pysylva.forest import Forest
from pysylva.treefall import ImpactField


def test_marks_are_max_combined_and_hidden_until_commit():
    f = ImpactField(row0=4, nrows=3, cols=5, north_rows=4, south_rows=3)
    assert f.field.shape == (10, 5)
    assert f.first_row == 0
    f.begin()
    f.mark(5, 2, 3)
    f.mark(5, 2, 1)
    f.mark(5, 2, 2)
    assert f.hurt_at(1, 2) == 0  # still in the write buffer
    f.commit()
    assert f.hurt_at(1, 2) == 3
    # the next step starts from a clean slate
    f.begin()
    f.commit()
    assert not f.interior_read().any()


def test_marks_beyond_adjacent_stripes_are_lost():
    f = ImpactField(row0=4, nrows=3, cols=5, north_rows=2, south_rows=2)
    f.begin()
    f.mark(1, 0, 5)  # above the northern neighbour
    f.mark(9, 0, 5)  # below the southern neighbour
    f.mark(5, 7, 5)  # off the lattice sideways
    assert f.lost == 2
    f.commit()
    assert not f.field.read.any()


def test_ghost_bands_and_merge():
    north = ImpactField(row0=0, nrows=3, cols=4, south_rows=3)
    south = ImpactField(row0=3, nrows=3, cols=4, north_rows=3)
    north.begin()
    south.begin()
    north.mark(4, 1, 6)  # lands in the southern stripe
    south.mark(4, 1, 2)
    south.mark(2, 3, 4)  # lands in the northern stripe

    to_south = north.ghost("south")
    to_north = south.ghost("north")
    assert to_south.shape == (3, 4) and to_north.shape == (3, 4)
    with pytest.raises(ValueError):
        north.ghost("east")

    north.merge(to_north)
    south.merge(to_south)
    north.commit()
    south.commit()
    assert south.hurt_at(1, 1) == 6
    assert north.hurt_at(2, 3) == 4
    with pytest.raises(ValueError):
        south.merge(np.zeros((2, 4), dtype=np.int32))


def test_fallen_tree_hurts_neighbours_in_the_next_step(species_pair, quiet_params, climate):
    cfg = ForestConfig(rows=10, cols=10, policy=ForestPolicy(treefall=TreefallMode.BASIC))
    f = Forest(cfg, quiet_params, species_pair, climate)
    faller = f.plant(1, 5, 5, dbh=0.2)
    faller.ct = 0.0
    stem = int(faller.height)
    assert stem >= 3
    victims = [f.plant(2, r, c) for r in range(3, 8) for c in range(3, 8) if (r, c) != (5, 5)]

    f.prepare(0)
    assert not f.impact.interior_read().any()
    f.treefall()

    assert not faller.occupied
    assert f.counters.treefalls == 1
    assert f.impact.hurt_at(5, 5) == stem
    hurt = [v.hurt for v in victims]
    assert max(hurt) == stem
    # seedlings never fall: only the one stem left marks
    assert set(hurt) <= {0, stem}

    f.prepare(1)
    f.treefall()
    assert not f.impact.interior_read().any()
    assert all(v.hurt == 0 for v in victims if v.occupied)


class _Scripted:
    """Draws stand-in returning fixed uniforms in order."""

    def __init__(self, *values):
        self._values = list(values)

    def uniform(self):
        return self._values.pop(0)


def test_stem_falling_off_the_west_edge_marks_column_zero(species_pair, quiet_params, climate):
    cfg = ForestConfig(rows=10, cols=10, policy=ForestPolicy(treefall=TreefallMode.BASIC))
    f = Forest(cfg, quiet_params, species_pair, climate)
    faller = f.plant(1, 5, 0, dbh=0.2)
    faller.ct = 0.0
    stem = int(faller.height)
    assert faller.height * f.lv * f.nh >= 3

    # fall towards cos = -0.8, sin = 0.6: the second stem cell lies at column -1.6
    angle = (math.pi - math.atan2(0.6, 0.8)) / (2.0 * math.pi)
    f.prepare(0)
    f.impact.begin()
    assert faller.fall(f, _Scripted(0.9, angle))
    f.impact.commit()
    assert f.impact.hurt_at(5, 0) == stem
    assert f.impact.hurt_at(6, 0) == stem


def _mechanical_stand(wide_species_pair, quiet_params, climate, mode):
    cfg = ForestConfig(rows=10, cols=10, policy=ForestPolicy(treefall=mode))
    f = Forest(cfg, quiet_params, wide_species_pair, climate)
    focal = f.plant(1, 5, 5, dbh=0.4)
    focal.ct = 0.0
    return f, focal


def test_mechanical_treefall_needs_a_dense_neighbourhood(wide_species_pair, quiet_params, climate):
    f, focal = _mechanical_stand(wide_species_pair, quiet_params, climate, TreefallMode.MECHANICAL)
    f.prepare(0)
    f.rebuild_canopy()
    # alone, nothing pulls on the crown
    assert focal.couple(f) == 0
    f.treefall()
    assert focal.occupied
    assert f.counters.treefalls == 0

    # the basic draw alone would have felled it
    f, focal = _mechanical_stand(wide_species_pair, quiet_params, climate, TreefallMode.BASIC)
    f.prepare(0)
    f.rebuild_canopy()
    f.treefall()
    assert not focal.occupied


def test_mechanical_treefall_under_one_sided_crowding(wide_species_pair, quiet_params, climate):
    f, focal = _mechanical_stand(wide_species_pair, quiet_params, climate, TreefallMode.MECHANICAL)
    # a block of equal crowns to the north only
    neighbours = [f.plant(2, r, c, dbh=0.4) for r in (3, 4) for c in (4, 5, 6)]
    f.prepare(0)
    f.rebuild_canopy()
    couple = focal.couple(f)
    assert couple > 0

    # a threshold above the couple keeps it standing
    focal.ct = float(couple)
    for t in neighbours:
        t.ct = 1.0e9
    f.treefall()
    assert focal.occupied
    assert f.counters.treefalls == 0

    focal.ct = 0.0
    f.treefall()
    assert not focal.occupied
    assert f.counters.treefalls == 1
    assert f.impact.hurt_at(5, 5) == int(4.8)
