# tests/utils.py
from typing import Dict

import numpy as np
import torch

from phin.host import HostAtoms, HostBox, NeighborList
from phin.torch.model import ModelConfig


class HarmonicPairModel(torch.nn.Module):
    """Analytic pair potential speaking the deployed-model protocol.

    E = sum over unordered pairs of 0.5 * k * (r - r0)**2 plus a constant per
    model type. Each unordered pair shows up as two directed edges, hence the
    0.25 factor per edge.
    """

    def __init__(self, n_species: int = 2, r0: float = 1.0, k: float = 1.0):
        super().__init__()
        self.r0 = r0
        self.k = k
        self.register_buffer(
            "type_energy", torch.arange(n_species, dtype=torch.float64) * 0.1 - 1.0
        )

    def forward(self, data: Dict[str, torch.Tensor]) -> Dict[str, torch.Tensor]:
        pos = data["positions"]
        types = data["atom_types"]
        edge_index = data["edge_index"]
        shift = data["edge_cell_shift"]
        cell = data["cell"]

        src = edge_index[0]
        dst = edge_index[1]
        vec = pos[dst] + shift @ cell - pos[src]
        r = torch.sqrt((vec * vec).sum(dim=1))
        dr = r - self.r0

        n = pos.shape[0]
        e_edge = 0.25 * self.k * dr * dr
        atomic = torch.zeros(n, dtype=pos.dtype, device=pos.device).index_add(0, src, e_edge)
        atomic = atomic + self.type_energy.to(pos.dtype)[types]

        g = (0.5 * self.k * dr / r).unsqueeze(1) * vec
        forces = torch.zeros(n, 3, dtype=pos.dtype, device=pos.device)
        forces = forces.index_add(0, src, g).index_add(0, dst, -g)
        virial = -(g.unsqueeze(2) * vec.unsqueeze(1)).sum(dim=0)

        coordination = torch.zeros(n, dtype=pos.dtype, device=pos.device).index_add(
            0, src, torch.ones_like(r)
        )
        return {
            "forces": forces,
            "total_energy": atomic.sum().reshape(1),
            "atomic_energy": atomic.unsqueeze(1),
            "virial": virial.unsqueeze(0),
            "uncertainties": coordination.unsqueeze(1),
        }


def pair_energy(positions, cell, pbc, r_max=3.0, r0=1.0, k=1.0, images=2):
    """Reference energy by explicit image summation (type constants excluded)."""
    positions = np.asarray(positions, dtype=float)
    n = len(positions)
    rng = range(-images, images + 1) if pbc else range(0, 1)
    e = 0.0
    for a in rng:
        for b in rng:
            for c in rng:
                t = np.array([a, b, c], dtype=float) @ np.asarray(cell, dtype=float)
                for i in range(n):
                    for j in range(n):
                        if i == j and a == b == c == 0:
                            continue
                        r = np.linalg.norm(positions[j] + t - positions[i])
                        if r < r_max:
                            e += 0.25 * k * (r - r0) ** 2
    return e


def deploy_model(path, type_names=("H", "O"), r_max=3.0, r0=1.0, k=1.0, **meta):
    """Script the harmonic model and save it with deployment metadata.

    Extra keyword arguments override metadata entries; None drops one.
    """
    model = torch.jit.script(HarmonicPairModel(n_species=len(type_names), r0=r0, k=k))
    extra = ModelConfig(
        r_max=r_max,
        n_species=len(type_names),
        type_names=tuple(type_names),
        version="0.1.0",
    ).to_metadata()
    extra.update(meta)
    extra = {key: value for key, value in extra.items() if value is not None}
    torch.jit.save(model, str(path), _extra_files=extra)
    return str(path)


def two_atom_frame():
    """10 A cube, atoms at x=0 (tag 1) and x=9 (tag 2), one ghost image each."""
    x = np.array(
        [
            [0.0, 0.0, 0.0],   # local, tag 1
            [9.0, 0.0, 0.0],   # local, tag 2
            [-1.0, 0.0, 0.0],  # ghost of tag 2
            [10.0, 0.0, 0.0],  # ghost of tag 1
        ]
    )
    atoms = HostAtoms(
        x=x,
        f=np.zeros_like(x),
        tag=np.array([1, 2, 2, 1]),
        type=np.array([1, 1, 1, 1]),
        nlocal=2,
        nghost=2,
    )
    nlist = NeighborList(
        ilist=np.array([0, 1]),
        firstneigh=[np.array([1, 2]), np.array([0, 3])],
    )
    box = HostBox(boxlo=(0.0, 0.0, 0.0), boxhi=(10.0, 10.0, 10.0))
    return atoms, nlist, box


def shuffle_frame(atoms: HostAtoms, nlist: NeighborList, seed=0):
    """Renumber host slots (locals among locals, ghosts among ghosts).

    Returns the shuffled frame and ``perm`` with new slot s holding old slot
    ``perm[s]``.
    """
    rng = np.random.default_rng(seed)
    n, nt = atoms.nlocal, atoms.ntotal
    perm = np.concatenate([rng.permutation(n), n + rng.permutation(atoms.nghost)])
    inv = np.empty_like(perm)
    inv[perm] = np.arange(nt)

    shuffled = HostAtoms(
        x=atoms.x[perm].copy(),
        f=np.zeros((nt, 3)),
        tag=atoms.tag[perm].copy(),
        type=atoms.type[perm].copy(),
        nlocal=n,
        nghost=atoms.nghost,
    )
    firstneigh = [None] * n
    for old_i in range(n):
        firstneigh[inv[old_i]] = inv[np.asarray(nlist.firstneigh[old_i], dtype=np.int64)]
    ilist = rng.permutation(inv[np.asarray(nlist.ilist, dtype=np.int64)])
    return shuffled, NeighborList(ilist=ilist, firstneigh=firstneigh), perm
