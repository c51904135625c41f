# phin/indexing.py
"""
The three index spaces of the bridge.

- ``Tag``: stable 1-based atom ID owned by the host, shared by an atom and all
  of its ghost replicas.
- ``LocalIndex``: the host storage slot of an atom on this step. Slots are
  renumbered by the host between steps and must never outlive a step.
- ``DenseIndex``: the 0-based node index the model sees, ``tag - 1``.

Tag <-> dense is fixed arithmetic and is the source of truth. The mapping
from dense index to local slot is rebuilt every step in ``TagIndex``.
"""

from __future__ import annotations

from typing import NewType

import numpy as np

from .errors import ConfigurationError

Tag = NewType("Tag", int)
LocalIndex = NewType("LocalIndex", int)
DenseIndex = NewType("DenseIndex", int)


def tag_to_dense(tag):
    """Tag (scalar or array) -> dense node index."""
    return tag - 1


def dense_to_tag(dense):
    """Dense node index (scalar or array) -> tag."""
    return dense + 1


class TagIndex:
    """
    Per-step map between dense node indices and host-local slots.

    Build it once per step with :meth:`build`; it is only valid for the
    host arrays it was built from.
    """

    def __init__(self, dense_to_local: np.ndarray, tags: np.ndarray):
        self._dense_to_local = dense_to_local
        self._tags = tags

    @classmethod
    def build(cls, ilist: np.ndarray, tag: np.ndarray, nlocal: int) -> "TagIndex":
        """
        Args:
            ilist: (inum,) local slots in neighbor-list order
            tag: (ntotal,) host tags
            nlocal: number of local atoms

        Raises:
            ConfigurationError: if tags of local atoms are not exactly 1..nlocal.
        """
        ilist = np.asarray(ilist, dtype=np.int64)
        if ilist.shape[0] != nlocal:
            raise ConfigurationError(
                f"Neighbor list covers {ilist.shape[0]} atoms but the host has {nlocal} local atoms; "
                "a full neighbor list over all local atoms is required."
            )
        tags = np.asarray(tag, dtype=np.int64)
        local_tags = tags[ilist]
        if nlocal and (local_tags.min() < 1 or local_tags.max() > nlocal):
            raise ConfigurationError(
                f"Atom IDs must be 1..{nlocal} for the local atoms, "
                f"got range [{local_tags.min()}, {local_tags.max()}]."
            )

        dense = tag_to_dense(local_tags)
        dense_to_local = np.full((nlocal,), -1, dtype=np.int64)
        dense_to_local[dense] = ilist
        if nlocal and (dense_to_local < 0).any():
            # Some tag was seen twice, so another one is missing
            missing = dense_to_tag(np.flatnonzero(dense_to_local < 0))
            raise ConfigurationError(f"Duplicate atom IDs among local atoms; missing IDs {missing.tolist()[:10]}.")
        return cls(dense_to_local, tags)

    @property
    def n(self) -> int:
        return int(self._dense_to_local.shape[0])

    @property
    def dense_to_local(self) -> np.ndarray:
        """(N,) host slot of every dense node; read-only view."""
        view = self._dense_to_local.view()
        view.flags.writeable = False
        return view

    def local(self, dense) -> np.ndarray:
        """Dense node index (scalar or array) -> host-local slot."""
        return self._dense_to_local[dense]

    def dense_of(self, local) -> np.ndarray:
        """Host slot (local or ghost; scalar or array) -> dense node index."""
        return tag_to_dense(self._tags[local])

    def tag_of(self, local) -> np.ndarray:
        return self._tags[local]
