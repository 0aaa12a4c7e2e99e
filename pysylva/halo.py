"""
Row-stripe domain decomposition and halo exchange between partitions.

The lattice is cut into contiguous row stripes, one per partition; sizes differ
by at most one row and there is no wraparound. Partitions run as threads in
lock-step (SPMD); adjacent partitions talk through a pair of blocking queues.
Every payload travels as a HaloMessage carrying its tag, shape and a CRC32 of
the bytes, so a mismatched phase, a resized band or a corrupted buffer fails
loudly instead of silently merging the wrong data.

Exchange order is symmetric: each partition first sends to both neighbours,
then receives from both. Queues are unbounded, so sends never block and the
exchange cannot deadlock.
"""

from __future__ import annotations

import queue
import threading
import time
import zlib
from dataclasses import dataclass

import numpy as np

from .errors import ConfigurationError, HaloExchangeError


@dataclass(frozen=True)
class Stripe:
    rank: int
    row0: int
    nrows: int
    north: int | None  # rank owning the rows above, if any
    south: int | None
    north_rows: int = 0  # row count of the northern neighbour
    south_rows: int = 0

    @property
    def row_end(self) -> int:
        return self.row0 + self.nrows

    def owns(self, grow: int) -> bool:
        return self.row0 <= grow < self.row_end


class StripeDecomposition:
    def __init__(self, rows: int, n: int) -> None:
        rows = int(rows)
        n = int(n)
        if n < 1:
            raise ConfigurationError(f"Number of partitions must be >= 1, got {n}")
        if n > rows:
            raise ConfigurationError(f"Cannot split {rows} rows into {n} stripes")
        self.rows = rows
        self.n = n
        base, extra = divmod(rows, n)
        self.sizes = [base + (1 if k < extra else 0) for k in range(n)]
        self.offsets = [sum(self.sizes[:k]) for k in range(n)]

    def __len__(self) -> int:
        return self.n

    def __iter__(self):
        return (self.stripe(k) for k in range(self.n))

    def stripe(self, rank: int) -> Stripe:
        if not 0 <= rank < self.n:
            raise ValueError(f"rank {rank} out of range [0, {self.n})")
        north = rank - 1 if rank > 0 else None
        south = rank + 1 if rank < self.n - 1 else None
        return Stripe(
            rank=rank,
            row0=self.offsets[rank],
            nrows=self.sizes[rank],
            north=north,
            south=south,
            north_rows=self.sizes[north] if north is not None else 0,
            south_rows=self.sizes[south] if south is not None else 0,
        )

    def owner(self, grow: int) -> int:
        if not 0 <= grow < self.rows:
            raise ValueError(f"row {grow} outside lattice [0, {self.rows})")
        for k in range(self.n - 1, -1, -1):
            if grow >= self.offsets[k]:
                return k
        return 0

    def require_min_rows(self, min_rows: int, what: str) -> None:
        if self.n > 1 and min(self.sizes) < min_rows:
            raise ConfigurationError(
                f"Stripe of {min(self.sizes)} rows is thinner than {what} ({min_rows} rows); "
                f"use fewer partitions"
            )


@dataclass(frozen=True)
class HaloMessage:
    tag: str
    shape: tuple[int, ...]
    dtype: str
    checksum: int
    data: np.ndarray

    @classmethod
    def pack(cls, tag: str, array: np.ndarray) -> HaloMessage:
        data = np.ascontiguousarray(array).copy()
        return cls(
            tag=tag,
            shape=tuple(data.shape),
            dtype=data.dtype.str,
            checksum=zlib.crc32(data.tobytes()),
            data=data,
        )

    def unpack(self, tag: str, shape: tuple[int, ...] | None = None) -> np.ndarray:
        if self.tag != tag:
            raise HaloExchangeError(f"expected halo tag {tag!r}, got {self.tag!r}")
        if tuple(self.data.shape) != self.shape or (shape is not None and tuple(shape) != self.shape):
            raise HaloExchangeError(
                f"halo {tag!r}: shape {tuple(self.data.shape)} (declared {self.shape}), expected {shape}"
            )
        if zlib.crc32(np.ascontiguousarray(self.data).tobytes()) != self.checksum:
            raise HaloExchangeError(f"halo {tag!r}: checksum mismatch")
        return self.data


class PartitionNetwork:
    """Channels between adjacent partitions of one decomposition."""

    def __init__(self, decomposition: StripeDecomposition, timeout: float = 60.0) -> None:
        self.decomposition = decomposition
        self.timeout = float(timeout)
        self._queues: dict[tuple[int, int], queue.Queue] = {}
        for k in range(decomposition.n - 1):
            self._queues[(k, k + 1)] = queue.Queue()
            self._queues[(k + 1, k)] = queue.Queue()
        self._abort = threading.Event()

    def abort(self) -> None:
        """Wake every blocked receiver; used when one partition fails."""
        self._abort.set()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def link(self, rank: int) -> HaloLink:
        return HaloLink(self, self.decomposition.stripe(rank))

    def _channel(self, src: int, dst: int) -> queue.Queue:
        try:
            return self._queues[(src, dst)]
        except KeyError:
            raise HaloExchangeError(f"no halo channel {src} -> {dst}") from None


class HaloLink:
    """One partition's view of the network."""

    _POLL = 0.05

    def __init__(self, network: PartitionNetwork, stripe: Stripe) -> None:
        self.network = network
        self.stripe = stripe

    @property
    def rank(self) -> int:
        return self.stripe.rank

    def send(self, dst: int, tag: str, array: np.ndarray) -> None:
        self.network._channel(self.rank, dst).put(HaloMessage.pack(tag, array))

    def recv(self, src: int, tag: str, shape: tuple[int, ...] | None = None) -> np.ndarray:
        ch = self.network._channel(src, self.rank)
        deadline = time.monotonic() + self.network.timeout
        while True:
            if self.network.aborted:
                raise HaloExchangeError(f"partition {self.rank}: exchange {tag!r} aborted")
            remaining = deadline - time.monotonic()
            if remaining <= 0.0:
                raise HaloExchangeError(
                    f"partition {self.rank}: no {tag!r} band from partition {src} "
                    f"within {self.network.timeout:.1f}s"
                )
            try:
                msg = ch.get(timeout=min(self._POLL, remaining))
            except queue.Empty:
                continue
            return msg.unpack(tag, shape)

    def exchange(
        self,
        tag: str,
        to_north: np.ndarray | None,
        to_south: np.ndarray | None,
        *,
        north_shape: tuple[int, ...] | None = None,
        south_shape: tuple[int, ...] | None = None,
    ) -> tuple[np.ndarray | None, np.ndarray | None]:
        """Send both bands, then receive both. Missing neighbours yield None."""
        s = self.stripe
        if s.north is not None and to_north is not None:
            self.send(s.north, tag, to_north)
        if s.south is not None and to_south is not None:
            self.send(s.south, tag, to_south)
        from_north = self.recv(s.north, tag, north_shape) if s.north is not None else None
        from_south = self.recv(s.south, tag, south_shape) if s.south is not None else None
        return from_north, from_south
