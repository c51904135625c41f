# phin/torch/calculator.py
"""
ASE front-end: runs the pair style on an ``ase.Atoms`` object.

ASE plays the host here. Each call turns the Atoms into host storage the way
an MD engine would hold it (local atoms inside a lower-triangular box, ghost
replicas at periodic images, a full neighbor list from
``ase.neighborlist.neighbor_list``) and then runs :class:`PairPHIN` on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from ase.calculators.calculator import Calculator, all_changes
from ase.neighborlist import neighbor_list

from phin.errors import ConfigurationError
from phin.host import HostAtoms, HostBox, HostSettings, NeighborList, StepFlags
from phin.torch.pair import PairPHIN


@dataclass
class HostFrame:
    """
    Host view of one ASE configuration.

    ``rotation`` maps original Cartesian row vectors to the host frame:
    ``x_host = x_orig @ rotation``.
    """
    atoms: HostAtoms
    nlist: NeighborList
    box: HostBox
    rotation: np.ndarray
    periodic: bool


def lower_triangular_cell(cell: np.ndarray):
    """
    Re-express a cell with a along x and b in the xy plane.

    Returns:
        host_cell: (3,3) rows (lx,0,0), (xy,ly,0), (xz,yz,lz)
        rotation: (3,3) with ``cell @ rotation == host_cell``
    """
    a, b, c = np.asarray(cell, dtype=np.float64)
    lx = np.linalg.norm(a)
    xy = np.dot(b, a) / lx
    ly = np.sqrt(np.dot(b, b) - xy * xy)
    xz = np.dot(c, a) / lx
    yz = (np.dot(b, c) - xy * xz) / ly
    lz = np.sqrt(np.dot(c, c) - xz * xz - yz * yz)
    host_cell = np.array([[lx, 0.0, 0.0], [xy, ly, 0.0], [xz, yz, lz]])
    rotation = np.linalg.solve(np.asarray(cell, dtype=np.float64), host_cell)
    return host_cell, rotation


def build_host_frame(atoms, elements: Sequence[str], cutoff: float) -> HostFrame:
    """
    Build host storage for ``atoms``.

    Args:
        atoms: ase.Atoms, fully periodic or fully non-periodic
        elements: element of each host type; type ids are positions + 1
        cutoff: neighbor search radius (model cutoff plus skin)

    Raises:
        ConfigurationError: mixed periodicity, or a species not in ``elements``.
    """
    from ase import Atoms

    n = len(atoms)
    pbc = np.asarray(atoms.get_pbc(), dtype=bool)
    symbols = atoms.get_chemical_symbols()
    type_of = {e: t for t, e in enumerate(elements, start=1)}
    unknown = sorted(set(symbols) - set(type_of))
    if unknown:
        raise ConfigurationError(f"Species {unknown} are not assigned to any atom type {list(elements)}.")
    types = np.array([type_of[s] for s in symbols], dtype=np.int32)

    if pbc.all():
        periodic = True
        host_cell, rotation = lower_triangular_cell(atoms.cell.array)
        pos = atoms.get_scaled_positions(wrap=True) @ host_cell
        lo = np.zeros(3)
        box = HostBox(
            boxlo=lo,
            boxhi=np.diag(host_cell).copy(),
            xy=float(host_cell[1, 0]),
            xz=float(host_cell[2, 0]),
            yz=float(host_cell[2, 1]),
        )
    elif not pbc.any():
        periodic = False
        rotation = np.eye(3)
        pos = np.array(atoms.get_positions(), dtype=np.float64)
        lo = pos.min(axis=0) - cutoff
        hi = pos.max(axis=0) + cutoff
        host_cell = np.diag(hi - lo)
        box = HostBox(boxlo=lo, boxhi=hi)
    else:
        raise ConfigurationError(f"Mixed periodic boundary conditions {pbc.tolist()} are not supported.")

    search = Atoms(numbers=atoms.numbers, positions=pos, cell=host_cell, pbc=periodic)
    i, j, S = neighbor_list("ijS", search, cutoff)

    # Every (atom, image) pair outside the home cell becomes one ghost
    slot = j.astype(np.int64).copy()
    image = np.any(S != 0, axis=1)
    if image.any():
        img_keys = np.concatenate([j[image, None], S[image]], axis=1)
        uniq, inverse = np.unique(img_keys, axis=0, return_inverse=True)
        ghost_owner = uniq[:, 0].astype(np.int64)
        ghost_x = pos[ghost_owner] + uniq[:, 1:] @ host_cell
        slot[image] = n + inverse.reshape(-1)
    else:
        ghost_owner = np.zeros((0,), dtype=np.int64)
        ghost_x = np.zeros((0, 3))

    order = np.argsort(i, kind="stable")
    counts = np.bincount(i, minlength=n)
    firstneigh = np.split(slot[order], np.cumsum(counts)[:-1])

    nghost = int(ghost_owner.shape[0])
    host_atoms = HostAtoms(
        x=np.concatenate([pos, ghost_x], axis=0),
        f=np.zeros((n + nghost, 3)),
        tag=np.concatenate([np.arange(1, n + 1), ghost_owner + 1]).astype(np.int64),
        type=np.concatenate([types, types[ghost_owner]]),
        nlocal=n,
        nghost=nghost,
    )
    nlist = NeighborList(ilist=np.arange(n, dtype=np.int64), firstneigh=firstneigh)
    return HostFrame(atoms=host_atoms, nlist=nlist, box=box, rotation=rotation, periodic=periodic)


def voigt_stress_from_virial(virial6: np.ndarray, volume: float, rotation: np.ndarray) -> np.ndarray:
    """Host virial (xx, yy, zz, xy, xz, yz) -> ASE stress [xx, yy, zz, yz, xz, xy]."""
    xx, yy, zz, xy, xz, yz = virial6
    w = np.array([[xx, xy, xz], [xy, yy, yz], [xz, yz, zz]])
    sigma = -w / volume
    # back to the original frame
    sigma = rotation @ sigma @ rotation.T
    return np.array(
        [sigma[0, 0], sigma[1, 1], sigma[2, 2], sigma[1, 2], sigma[0, 2], sigma[0, 1]],
        dtype=float,
    )


class PhinCalculator(Calculator):
    """ASE calculator backed by a configured :class:`PairPHIN`.

    Computes:
      - energy / free_energy: model total energy
      - energies: per-atom model energies
      - forces: model forces, rotated back to the Atoms frame
      - stress: from the model virial, periodic systems only
    """

    implemented_properties = ["energy", "free_energy", "energies", "forces", "stress"]

    def __init__(self, pair: PairPHIN, elements: Sequence[str], *, skin: float = 1.0, **kwargs):
        super().__init__(**kwargs)
        if pair.context is None:
            raise ConfigurationError("PhinCalculator needs a pair style with coefficients set.")
        self.pair = pair
        self.elements = tuple(elements)
        self.skin = float(skin)

    def calculate(self, atoms=None, properties=("energy",), system_changes=all_changes):
        super().calculate(atoms, properties, system_changes)

        frame = build_host_frame(self.atoms, self.elements, self.pair.cutoff + self.skin)
        need_stress = "stress" in properties and frame.periodic
        flags = StepFlags(
            eflag_global=True,
            eflag_atom="energies" in properties,
            vflag_global=need_stress,
        )
        self.pair.compute(frame.atoms, frame.nlist, frame.box, flags)

        n = frame.atoms.nlocal
        energy = float(self.pair.eng_vdwl)
        self.results["energy"] = energy
        self.results["free_energy"] = energy
        self.results["forces"] = frame.atoms.f[:n] @ frame.rotation.T
        if flags.eflag_atom:
            self.results["energies"] = self.pair.eatom[:n].copy()
        if need_stress:
            volume = abs(np.linalg.det(self.atoms.cell.array))
            self.results["stress"] = voigt_stress_from_virial(self.pair.virial, volume, frame.rotation)


def get_calc(spec, **kwargs):
    """Factory used by phin.get_calc().

    ``spec`` is a :class:`~phin.io.spec.PairSpec`, a settings mapping, or the
    path of a settings YAML.
    """
    from phin.io.spec import PairSpec, parse_pair_spec, read_pair_spec

    if isinstance(spec, str):
        spec = read_pair_spec(spec)
    elif not isinstance(spec, PairSpec):
        spec = parse_pair_spec(spec)

    pair = PairPHIN(device=spec.device, dtype=spec.dtype, peratom_outputs=spec.peratom_outputs)
    pair.coeff(["*", "*", spec.model, *spec.elements], ntypes=len(spec.elements))
    pair.init_style(HostSettings())
    return PhinCalculator(pair, spec.elements, skin=spec.skin, **kwargs)
