# phin/host.py
"""
Records describing what the MD host hands over each step.

These mirror the host's own storage: per-atom arrays indexed by host slot
(local atoms first, ghost replicas after), the simulation box and a full
neighbor list. The bridge reads positions/tags/types and writes forces back
into ``HostAtoms.f``; it never owns the arrays.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .errors import ConfigurationError

# Top two bits of a neighbor entry carry special-bond flags on the host side
NEIGHMASK = 0x1FFFFFFF


@dataclass
class HostAtoms:
    """
    Per-atom host storage.

    Attributes:
        x: (ntotal, 3) positions, ghosts included
        f: (ntotal, 3) forces, written for local slots only
        tag: (ntotal,) stable 1-based atom IDs; ghosts carry their owner's tag
        type: (ntotal,) 1-based host type ids
        nlocal: number of local (owned) atoms, slots [0, nlocal)
        nghost: number of ghost replicas, slots [nlocal, nlocal + nghost)
    """
    x: np.ndarray
    f: np.ndarray
    tag: np.ndarray
    type: np.ndarray
    nlocal: int
    nghost: int = 0

    @property
    def ntotal(self) -> int:
        return int(self.nlocal) + int(self.nghost)

    @property
    def nmax(self) -> int:
        # Allocated capacity of the host arrays
        return int(self.x.shape[0])

    def validate(self) -> None:
        n = self.ntotal
        for name in ("x", "f", "tag", "type"):
            arr = getattr(self, name)
            if arr.shape[0] < n:
                raise ConfigurationError(
                    f"Host array '{name}' holds {arr.shape[0]} entries, need {n}."
                )
        if self.x.ndim != 2 or self.x.shape[1] != 3:
            raise ConfigurationError(f"Host positions must be (n,3), got {self.x.shape}.")
        if self.f.ndim != 2 or self.f.shape[1] != 3:
            raise ConfigurationError(f"Host forces must be (n,3), got {self.f.shape}.")


@dataclass(frozen=True)
class HostBox:
    """Box bounds and tilt factors (zero tilts for an orthogonal box)."""
    boxlo: Sequence[float]
    boxhi: Sequence[float]
    xy: float = 0.0
    xz: float = 0.0
    yz: float = 0.0


@dataclass
class NeighborList:
    """
    Full neighbor list over local atoms.

    ``ilist`` gives the local slots in neighbor-list order. ``firstneigh[i]``
    holds the neighbor slots (local or ghost) of local slot ``i``.
    """
    ilist: np.ndarray
    firstneigh: Sequence[np.ndarray]

    @property
    def inum(self) -> int:
        return int(len(self.ilist))

    def numneigh(self) -> np.ndarray:
        counts = np.zeros(len(self.firstneigh), dtype=np.int64)
        for i in np.asarray(self.ilist, dtype=np.int64):
            counts[i] = len(self.firstneigh[i])
        return counts

    def flatten(self):
        """
        Flatten to CSR-style pair arrays in neighbor-list order.

        Returns:
            i: (P,) local slot of the center atom
            j: (P,) neighbor slot with special bits stripped
        """
        ilist = np.asarray(self.ilist, dtype=np.int64)
        if ilist.size == 0:
            empty = np.zeros((0,), dtype=np.int64)
            return empty, empty
        counts = np.array([len(self.firstneigh[i]) for i in ilist], dtype=np.int64)
        i = np.repeat(ilist, counts)
        if counts.sum() == 0:
            return i, np.zeros((0,), dtype=np.int64)
        j = np.concatenate([np.asarray(self.firstneigh[ii], dtype=np.int64) for ii in ilist])
        return i, j & NEIGHMASK


@dataclass(frozen=True)
class HostSettings:
    """Host-wide switches the bridge depends on."""
    tag_enable: bool = True
    newton_pair: bool = False


@dataclass(frozen=True)
class StepFlags:
    """What the host wants computed on this step."""
    eflag_global: bool = True
    eflag_atom: bool = False
    vflag_global: bool = False
    vflag_atom: bool = False


def check_host_settings(host: HostSettings, owner: str = "Pair style phin") -> None:
    """Refuse host modes the bridge cannot work with."""
    if not host.tag_enable:
        raise ConfigurationError(f"{owner} requires atom IDs")
    # Forces are computed in full on local atoms; there is no reverse
    # communication of ghost contributions
    if host.newton_pair:
        raise ConfigurationError(f"{owner} requires newton pair off")
