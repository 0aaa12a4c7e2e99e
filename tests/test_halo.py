import threading
import time

import numpy as np
import pytest

from pysylva.errors import ConfigurationError, HaloExchangeError
from pysylva.halo import HaloMessage, PartitionNetwork, StripeDecomposition


@pytest.mark.parametrize("rows,n", [(10, 1), (10, 3), (7, 7), (100, 6)])
def test_stripes_cover_lattice_contiguously(rows, n):
    d = StripeDecomposition(rows, n)
    stripes = list(d)
    assert sum(s.nrows for s in stripes) == rows
    assert max(s.nrows for s in stripes) - min(s.nrows for s in stripes) <= 1
    assert stripes[0].row0 == 0 and stripes[0].north is None
    assert stripes[-1].south is None
    for a, b in zip(stripes, stripes[1:]):
        assert a.row_end == b.row0
        assert a.south == b.rank and b.north == a.rank
        assert a.south_rows == b.nrows and b.north_rows == a.nrows


def test_owner_lookup():
    d = StripeDecomposition(10, 3)  # 4, 3, 3
    assert d.sizes == [4, 3, 3]
    assert [d.owner(r) for r in range(10)] == [0, 0, 0, 0, 1, 1, 1, 2, 2, 2]
    with pytest.raises(ValueError):
        d.owner(10)


def test_decomposition_rejects_bad_counts():
    with pytest.raises(ConfigurationError):
        StripeDecomposition(5, 0)
    with pytest.raises(ConfigurationError):
        StripeDecomposition(5, 6)
    with pytest.raises(ConfigurationError):
        StripeDecomposition(10, 4).require_min_rows(4, "the canopy border band")
    # a single stripe has no neighbours to overlap
    StripeDecomposition(3, 1).require_min_rows(8, "the canopy border band")


def test_message_checks_tag_shape_and_checksum():
    band = np.arange(12, dtype=np.float64).reshape(3, 4)
    msg = HaloMessage.pack("canopy", band)
    band[...] = -1  # packing copies
    np.testing.assert_array_equal(msg.unpack("canopy", (3, 4)), np.arange(12).reshape(3, 4))

    with pytest.raises(HaloExchangeError):
        msg.unpack("seeds")
    with pytest.raises(HaloExchangeError):
        msg.unpack("canopy", (4, 3))

    msg.data[1, 1] = 99.0  # corrupted in flight
    with pytest.raises(HaloExchangeError):
        msg.unpack("canopy")


def test_symmetric_exchange_between_threads():
    d = StripeDecomposition(9, 3)
    net = PartitionNetwork(d, timeout=10.0)
    links = [net.link(k) for k in range(3)]
    got = {}

    def run(k):
        to_n = np.full((2, 2), 10 * k + 1)  # northbound
        to_s = np.full((2, 2), 10 * k + 2)  # southbound
        got[k] = links[k].exchange("band", to_n, to_s, north_shape=(2, 2), south_shape=(2, 2))

    threads = [threading.Thread(target=run, args=(k,)) for k in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert got[0][0] is None
    assert got[2][1] is None
    # each partition receives what its neighbours sent towards it
    np.testing.assert_array_equal(got[0][1], 11)
    np.testing.assert_array_equal(got[1][0], 2)
    np.testing.assert_array_equal(got[1][1], 21)
    np.testing.assert_array_equal(got[2][0], 12)


def test_missing_neighbour_times_out():
    net = PartitionNetwork(StripeDecomposition(4, 2), timeout=0.2)
    link = net.link(0)
    t0 = time.monotonic()
    with pytest.raises(HaloExchangeError):
        link.exchange("canopy", None, np.zeros(3))
    assert time.monotonic() - t0 < 5.0


def test_abort_wakes_blocked_receiver():
    net = PartitionNetwork(StripeDecomposition(4, 2), timeout=30.0)
    link = net.link(1)
    threading.Timer(0.1, net.abort).start()
    with pytest.raises(HaloExchangeError):
        link.recv(0, "seeds")
    assert net.aborted
