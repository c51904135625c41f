# phin/torch/scatter.py
"""
Write model results back into host-indexed storage.

Model outputs are in dense (tag) order; the host wants them in its own slot
order. The per-step :class:`~phin.indexing.TagIndex` is the only bridge
between the two.
"""

from __future__ import annotations

from typing import Mapping, Optional

import numpy as np

from phin.errors import OutputShapeError
from phin.host import HostAtoms, StepFlags
from phin.indexing import TagIndex
from phin.torch.model import ModelOutput


def check_requested_outputs(flags: StepFlags) -> None:
    """Fail before running the model on requests the bridge cannot serve."""
    if flags.vflag_atom:
        raise OutputShapeError("Pair style phin does not support per-atom virial")


def virial_to_host(virial: np.ndarray) -> np.ndarray:
    """
    3x3 symmetric virial -> host 6-vector (xx, yy, zz, xy, xz, yz).

    A pure reindex: the model's ``virial`` is already in the host's sign
    convention.
    """
    v = np.asarray(virial, dtype=np.float64)
    if v.size != 9:
        raise OutputShapeError(f"Virial must have 9 components, got shape {v.shape}")
    v = v.reshape(3, 3)
    return np.array([v[0, 0], v[1, 1], v[2, 2], v[0, 1], v[0, 2], v[1, 2]], dtype=np.float64)


def scatter_results(
    output: ModelOutput,
    tag_index: TagIndex,
    atoms: HostAtoms,
    *,
    eatom: Optional[np.ndarray] = None,
    peratom: Optional[Mapping[str, np.ndarray]] = None,
) -> None:
    """
    Scatter per-node outputs into host slots.

    Args:
        output: model results, dense order
        tag_index: this step's dense -> local map
        atoms: host storage; ``atoms.f`` is overwritten for local atoms
        eatom: per-atom energy array indexed by host slot, written if given
        peratom: name -> per-atom array indexed by host slot, written for
            every name present in ``output.peratom``
    """
    local = tag_index.dense_to_local
    atoms.f[local, 0:3] = output.forces

    if eatom is not None:
        eatom[local] = output.atomic_energy[:, 0]

    if peratom:
        for name, values in output.peratom.items():
            target = peratom.get(name)
            if target is not None:
                target[local] = values[:, 0]
