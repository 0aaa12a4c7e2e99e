"""
Tree-list initialisation.

A tree list is a whitespace-delimited text file whose first line is a header;
each following line starts with

  x  y  dbh  label  [anything else...]

where x is the column, y the row (lattice cells, rounded to the nearest site),
dbh is in millimetres and label is the 1-based species label. Rows with an
unknown label or a position outside the lattice are skipped; a site that is
already occupied keeps its tree. At most rows*cols lines are read.
"""

from __future__ import annotations

from dataclasses import dataclass
from os import PathLike

import numpy as np


@dataclass(frozen=True)
class TreeRecord:
    x: float
    y: float
    dbh_mm: float
    label: int


def read_tree_list(path: str | PathLike) -> list[TreeRecord]:
    data = np.loadtxt(path, skiprows=1, usecols=(0, 1, 2, 3), ndmin=2, dtype=np.float64)
    return [TreeRecord(x=float(r[0]), y=float(r[1]), dbh_mm=float(r[2]), label=int(r[3])) for r in data]


def initialise_from_data(loop, records, *, diag: bool | None = None) -> tuple[int, int]:
    """
    Plant recorded trees into an EvolutionLoop with the from-data allometry.

    Returns (rows read, trees planted).
    """
    cfg = loop.config
    numesp = loop.forests[0].numesp
    diag = cfg.diag if diag is None else diag
    limit = cfg.rows * cfg.cols
    read = 0
    planted = 0
    hmax = 0.0
    for rec in records:
        if read >= limit:
            break
        read += 1
        if not (0 < rec.label <= numesp and 0 <= rec.x < cfg.cols and 0 <= rec.y < cfg.rows):
            continue
        col = int(rec.x + 0.5)
        row = int(rec.y + 0.5)
        if col >= cfg.cols or row >= cfg.rows:
            continue
        forest = loop.forest_for(row)
        if forest.tree_at(row, col).occupied:
            continue
        # mm -> m -> horizontal cells
        tree = loop.plant(rec.label, col, row, dbh=rec.dbh_mm * 0.001 * cfg.nh)
        hmax = max(hmax, tree.height)
        planted += 1
    if diag:
        print(f"[Forest] tree list: {read} rows read, {planted} trees planted, tallest {hmax:.2f} cells")
    return read, planted
