from types import SimpleNamespace

import numpy as np
import pytest

from pysylva.ndd import NDDField, ndd_kernel


def _tree(site, species, dbh):
    return SimpleNamespace(site=site, species=species, dbh=dbh, occupied=True)


def test_kernel_is_inverse_distance_without_centre():
    k = ndd_kernel(3)
    assert k.shape == (7, 7)
    assert k[3, 3] == 0.0
    assert k[3, 4] == pytest.approx(1.0)
    assert k[4, 4] == pytest.approx(1.0 / np.sqrt(2.0))
    assert k[4, 5] == pytest.approx(1.0 / np.sqrt(5.0))
    assert k[0, 3] == pytest.approx(1.0 / 3.0)
    assert k[0, 0] == 0.0  # corner lies beyond the radius
    assert not k.flags.writeable


def test_single_tree_pressure_falls_with_distance():
    f = NDDField(numesp=2, nrows=6, cols=6, radius=3)
    dbh = 0.2
    ba = np.pi * dbh * dbh / 4.0
    f.deposit([_tree(2 * 6 + 2, 1, dbh), SimpleNamespace(site=0, species=1, dbh=5.0, occupied=False)])
    p = f.compute()
    assert p.shape == (3, 6, 6)
    assert f.at(2 * 6 + 2, 1) == 0.0  # a tree does not weigh on its own site
    assert f.at(2 * 6 + 3, 1) == pytest.approx(ba)
    assert f.at(4 * 6 + 2, 1) == pytest.approx(ba / 2.0)
    assert f.at(5 * 6 + 5, 1) == 0.0
    # other species feel nothing
    assert not p[2].any()


def test_ghost_rows_carry_a_neighbours_basal_area():
    R = 3
    north = NDDField(numesp=1, nrows=4, cols=5, radius=R)
    south = NDDField(numesp=1, nrows=4, cols=5, radius=R)
    whole = NDDField(numesp=1, nrows=8, cols=5, radius=R)

    north.deposit([_tree(3 * 5 + 1, 1, 0.3)])  # last row of the northern stripe
    south.deposit([_tree(0 * 5 + 4, 1, 0.1)])  # first row of the southern stripe
    whole.deposit([_tree(3 * 5 + 1, 1, 0.3), _tree(4 * 5 + 4, 1, 0.1)])

    band = north.border_band("south")
    assert band.shape == (2, R, 5)
    south.set_ghost("north", band)
    north.set_ghost("south", south.border_band("north"))

    north.compute()
    south.compute()
    whole.compute()
    np.testing.assert_allclose(north.pressure[1], whole.pressure[1, :4])
    np.testing.assert_allclose(south.pressure[1], whole.pressure[1, 4:])


def test_bad_side_is_rejected():
    f = NDDField(numesp=1, nrows=4, cols=4, radius=2)
    with pytest.raises(ValueError):
        f.border_band("west")
    with pytest.raises(ValueError):
        f.set_ghost("up", np.zeros((2, 2, 4)))
