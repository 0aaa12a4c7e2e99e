import pytest

from pysylva.config import ForestConfig
from pysylva.evolution import EvolutionLoop
from pysylva.inventory import TreeRecord, initialise_from_data, read_tree_list


def _write(tmp_path, lines):
    path = tmp_path / "trees.txt"
    path.write_text("x y dbh sp extra\n" + "\n".join(lines) + "\n")
    return path


def test_read_tree_list_skips_header_and_extra_columns(tmp_path):
    path = _write(tmp_path, ["1.2 3.6 150 1 0.3", "4 5 80 2 7"])
    recs = read_tree_list(path)
    assert recs == [TreeRecord(1.2, 3.6, 150.0, 1), TreeRecord(4.0, 5.0, 80.0, 2)]


def test_single_line_file(tmp_path):
    path = _write(tmp_path, ["2 2 100 1 0"])
    assert len(read_tree_list(path)) == 1


def test_initialise_plants_valid_records(tmp_path, species_pair, quiet_params, climate):
    loop = EvolutionLoop(ForestConfig(rows=10, cols=10), quiet_params, species_pair, climate)
    path = _write(
        tmp_path,
        [
            "1.2 3.6 150 1 0",  # -> (row 4, col 1)
            "1.4 3.8 90 2 0",  # same site: first record wins
            "4 5 80 2 0",
            "9.7 2 50 1 0",  # rounds off the lattice
            "-1 2 50 1 0",
            "3 3 50 7 0",  # unknown species
        ],
    )
    read, planted = initialise_from_data(loop, read_tree_list(path))
    assert (read, planted) == (6, 2)

    t = loop.forest_for(4).tree_at(4, 1)
    assert t.occupied and t.species == 1 and t.from_data
    assert t.dbh == pytest.approx(0.150)
    assert loop.forest_for(5).tree_at(5, 4).dbh == pytest.approx(0.080)
    assert loop.species_counts() == [0, 1, 1]


def test_oversize_dbh_is_clamped_with_warning(species_pair, quiet_params, climate):
    loop = EvolutionLoop(ForestConfig(rows=10, cols=10), quiet_params, species_pair, climate)
    with pytest.warns(UserWarning, match="dmax"):
        initialise_from_data(loop, [TreeRecord(2, 2, 900.0, 1)])
    t = loop.forest_for(2).tree_at(2, 2)
    assert t.dbh == pytest.approx(loop.forests[0].species[1].dmax)


def test_reading_stops_at_lattice_size(quiet_params, species_pair, climate):
    loop = EvolutionLoop(ForestConfig(rows=4, cols=4), quiet_params, species_pair, climate)
    records = [TreeRecord(i % 4, i // 4 % 4, 50.0, 1) for i in range(40)]
    read, planted = initialise_from_data(loop, records)
    assert read == 16
    assert planted == 16
