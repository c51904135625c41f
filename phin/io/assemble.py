# phin/io/assemble.py
"""
Graph assembly: host arrays -> named model input tensors.

This is the host -> device boundary. Everything upstream is numpy on the host
side; everything handed to the model is a fresh torch tensor on the model
device that does not alias host or scratch memory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np
import torch

from phin import keys
from phin.host import HostAtoms, HostBox, NeighborList
from phin.indexing import TagIndex
from phin.io.buffers import BufferArena
from phin.io.graph_fns import CellGeometry, EdgeList, build_edge_list, cell_from_box
from phin.type_mapper import TypeMapper

logger = logging.getLogger(__name__)


@dataclass
class GraphInput:
    """Model input for one configuration, dense (tag) node order."""
    positions: torch.Tensor        # (N, 3) float
    atom_types: torch.Tensor       # (N,) int64
    edge_index: torch.Tensor       # (2, E) int64
    edge_cell_shift: torch.Tensor  # (E, 3) float, integer valued
    cell: torch.Tensor             # (3, 3) float

    @property
    def n_nodes(self) -> int:
        return int(self.positions.shape[0])

    @property
    def n_edges(self) -> int:
        return int(self.edge_index.shape[1])

    def as_dict(self) -> Dict[str, torch.Tensor]:
        return {
            keys.POSITIONS_KEY: self.positions,
            keys.ATOM_TYPES_KEY: self.atom_types,
            keys.EDGE_INDEX_KEY: self.edge_index,
            keys.EDGE_CELL_SHIFT_KEY: self.edge_cell_shift,
            keys.CELL_KEY: self.cell,
        }


def _to_device(x: np.ndarray, dtype: torch.dtype, device: torch.device) -> torch.Tensor:
    """Copy a numpy array into a new tensor on ``device``.

    torch.as_tensor would share memory with the scratch buffers on CPU, which
    are overwritten on the next step; always copy here.
    """
    return torch.tensor(np.ascontiguousarray(x), dtype=dtype, device=device)


class GraphTensorAssembler:
    """
    Builds :class:`GraphInput` from the host state of one step.

    Owns the scratch buffers (dense positions, types and the edge working
    set); they grow with the largest configuration seen and are reused.
    """

    def __init__(
        self,
        *,
        device: torch.device = torch.device("cpu"),
        dtype: torch.dtype = torch.float32,
        debug: bool = False,
    ):
        self.device = torch.device(device)
        self.dtype = dtype
        self.debug = debug
        self.arena = BufferArena()

    def assemble(
        self,
        atoms: HostAtoms,
        nlist: NeighborList,
        box: HostBox,
        *,
        type_mapper: TypeMapper,
        cutoff: float,
    ) -> Tuple[GraphInput, TagIndex]:
        """
        Returns:
            graph: tensors on ``self.device``
            tag_index: the dense -> local map needed to scatter results back

        Raises:
            ConfigurationError: bad tags, unmapped types, bad box.
            GraphConstructionError: no edges within the cutoff.
        """
        atoms.validate()
        n = int(atoms.nlocal)
        ilist = np.asarray(nlist.ilist, dtype=np.int64)
        tag_index = TagIndex.build(ilist, atoms.tag, n)

        dense = tag_index.dense_of(ilist)
        pos = self.arena.view("pos", n, np.float64, (3,))
        pos[dense] = atoms.x[ilist]
        types = self.arena.view("types", n, np.int64)
        types[dense] = type_mapper.map_types(atoms.type[ilist])

        cell = cell_from_box(box)
        edges = build_edge_list(
            x=atoms.x,
            pos=pos,
            nlist=nlist,
            tag_index=tag_index,
            cell=cell,
            cutoff=cutoff,
            arena=self.arena,
            debug=self.debug,
        )
        graph = self.to_tensors(pos, types, edges, cell)

        if self.debug:
            logger.debug(
                "PHIN model input:\npos:\n%s\nedge_index:\n%s\nedge_cell_shift:\n%s\ncell:\n%s\natom_types:\n%s",
                graph.positions, graph.edge_index, graph.edge_cell_shift, graph.cell, graph.atom_types,
            )
        return graph, tag_index

    def to_tensors(
        self,
        pos: np.ndarray,
        types: np.ndarray,
        edges: EdgeList,
        cell: CellGeometry,
    ) -> GraphInput:
        return GraphInput(
            positions=_to_device(pos, self.dtype, self.device),
            atom_types=_to_device(types, torch.long, self.device),
            edge_index=_to_device(edges.edge_index, torch.long, self.device),
            edge_cell_shift=_to_device(edges.shifts, self.dtype, self.device),
            cell=_to_device(cell.matrix, self.dtype, self.device),
        )

    def capacities(self) -> Dict[str, int]:
        return self.arena.capacities()
