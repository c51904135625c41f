# phin/io/graph_fns.py
"""
Geometry functions for turning a host neighbor list into a graph.

These are the single source of truth for:
- the lattice matrix of the host box (rows are lattice vectors)
- the edge list (dense node indices) and the integer periodic image shifts
- edge vectors reconstructed from dense positions + shifts

Shift convention: for an edge ``(src, dst, S)`` the neighbor image is
``pos[dst] + S @ cell``, i.e. the edge vector is
``pos[dst] + S @ cell - pos[src]``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from phin.errors import ConfigurationError, GraphConstructionError
from phin.host import HostBox, NeighborList
from phin.indexing import TagIndex
from phin.io.buffers import BufferArena

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CellGeometry:
    """
    Attributes:
        matrix: (3,3) lattice vectors as rows
        inverse_transpose: (3,3) inv(matrix).T, maps a Cartesian column vector
            to fractional coordinates
    """
    matrix: np.ndarray
    inverse_transpose: np.ndarray

    @property
    def volume(self) -> float:
        return float(abs(np.linalg.det(self.matrix)))

    def fractional(self, disp: np.ndarray) -> np.ndarray:
        """(..., 3) Cartesian displacements -> (..., 3) fractional coordinates."""
        return np.asarray(disp) @ self.inverse_transpose.T

    def cartesian(self, frac: np.ndarray) -> np.ndarray:
        return np.asarray(frac) @ self.matrix


def cell_from_box(box: HostBox) -> CellGeometry:
    """
    Build the lattice matrix of a (possibly triclinic) host box.

    C[0] = (Lx, 0, 0), C[1] = (xy, Ly, 0), C[2] = (xz, yz, Lz)

    Raises:
        ConfigurationError: if any box length is non-positive or not finite.
    """
    lo = np.asarray(box.boxlo, dtype=np.float64)
    hi = np.asarray(box.boxhi, dtype=np.float64)
    lengths = hi - lo
    if lengths.shape != (3,) or not np.all(np.isfinite(lengths)) or np.any(lengths <= 0.0):
        raise ConfigurationError(f"Invalid box lengths {lengths.tolist()}; all must be positive.")
    tilts = np.array([box.xy, box.xz, box.yz], dtype=np.float64)
    if not np.all(np.isfinite(tilts)):
        raise ConfigurationError(f"Invalid tilt factors {tilts.tolist()}.")

    cell = np.zeros((3, 3), dtype=np.float64)
    cell[0, 0] = lengths[0]
    cell[1, 0] = box.xy
    cell[1, 1] = lengths[1]
    cell[2, 0] = box.xz
    cell[2, 1] = box.yz
    cell[2, 2] = lengths[2]

    inv_t = np.linalg.inv(cell).T
    return CellGeometry(matrix=cell, inverse_transpose=inv_t)


@dataclass
class EdgeList:
    """
    Attributes:
        edge_index: (2, E) int64 dense node indices, row 0 source, row 1 destination
        shifts: (E, 3) float64 integer-valued image shifts of the destination
        n_candidates: number of neighbor-list entries inspected
    """
    edge_index: np.ndarray
    shifts: np.ndarray
    n_candidates: int

    @property
    def n_edges(self) -> int:
        return int(self.edge_index.shape[1])


def build_edge_list(
    *,
    x: np.ndarray,
    pos: np.ndarray,
    nlist: NeighborList,
    tag_index: TagIndex,
    cell: CellGeometry,
    cutoff: float,
    arena: Optional[BufferArena] = None,
    debug: bool = False,
) -> EdgeList:
    """
    Filter the host neighbor list by the cutoff and resolve periodic shifts.

    Args:
        x: (ntotal, 3) host positions, ghosts included
        pos: (N, 3) dense-ordered positions of the local atoms
        nlist: full neighbor list
        tag_index: this step's dense <-> local map
        cell: lattice of this step
        cutoff: interaction radius; pairs with r < cutoff become edges
        arena: scratch buffers reused across steps
        debug: dump the edge table to the logger

    Returns:
        EdgeList with freshly allocated arrays.

    Raises:
        GraphConstructionError: if no pair is within the cutoff.
    """
    if arena is None:
        arena = BufferArena()

    i_loc, j_loc = nlist.flatten()
    n_cand = int(i_loc.shape[0])

    # Pessimistic working buffers, sized by the raw neighbor count
    src = arena.view("edge_src", n_cand, np.int64)
    dst = arena.view("edge_dst", n_cand, np.int64)
    shift = arena.view("edge_shift", n_cand, np.float64, (3,))

    d = x[i_loc] - x[j_loc]
    rsq = np.einsum("ij,ij->i", d, d)
    keep = rsq < cutoff * cutoff
    n_edges = int(np.count_nonzero(keep))
    if n_edges == 0:
        raise GraphConstructionError(n_cand, cutoff)

    j_keep = j_loc[keep]
    src[:n_edges] = tag_index.dense_of(i_loc[keep])
    dst[:n_edges] = tag_index.dense_of(j_keep)
    if dst[:n_edges].min() < 0 or dst[:n_edges].max() >= pos.shape[0]:
        raise ConfigurationError(
            "Neighbor atom ID outside 1..nlocal; ghost atoms must carry the ID of a local atom."
        )

    # Ghost image minus its canonical copy is an integer lattice combination
    image = x[j_keep] - pos[dst[:n_edges]]
    np.rint(cell.fractional(image), out=shift[:n_edges])

    # Compact into exact-size arrays that do not alias the scratch space
    edge_index = np.stack([src[:n_edges], dst[:n_edges]], axis=0)
    shifts = shift[:n_edges].copy()

    if debug:
        _log_edges(pos, edge_index, shifts, np.sqrt(rsq[keep]))

    return EdgeList(edge_index=edge_index, shifts=shifts, n_candidates=n_cand)


def edge_vectors(
    pos: np.ndarray,
    edge_index: np.ndarray,
    shifts: np.ndarray,
    cell_matrix: np.ndarray,
) -> np.ndarray:
    """(E, 3) vectors from each source to its destination image."""
    src, dst = edge_index
    return pos[dst] + shifts @ cell_matrix - pos[src]


def _log_edges(pos, edge_index, shifts, r) -> None:
    lines = ["PHIN edges: i j xi[:] xj[:] cell_shift[:] rij"]
    for e in range(edge_index.shape[1]):
        i, j = int(edge_index[0, e]), int(edge_index[1, e])
        vals = list(pos[i]) + list(pos[j]) + list(shifts[e]) + [r[e]]
        lines.append(f"{i} {j} " + " ".join(f"{v:.10g}" for v in vals))
    lines.append("end PHIN edges")
    logger.debug("\n".join(lines))
