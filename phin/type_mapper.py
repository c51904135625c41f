# phin/type_mapper.py
from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class TypeMapper:
    """
    Lookup table host type id (1-based) -> model type index.

    Slot 0 is unused. Unmapped host types hold -1. Built once per
    ``pair_coeff``; read-only afterwards.
    """

    def __init__(self, mapper: np.ndarray, elements: Sequence[str]):
        self._mapper = mapper
        self._mapper.flags.writeable = False
        self.elements = tuple(elements)

    @classmethod
    def from_names(cls, elements: Sequence[str], type_names: Sequence[str]) -> "TypeMapper":
        """
        Match host element names against the model's type names.

        Args:
            elements: element name of host types 1..ntypes, in order
            type_names: model type names; position = model type index
        """
        ntypes = len(elements)
        mapper = np.full((ntypes + 1,), -1, dtype=np.int64)
        for model_idx, name in enumerate(type_names):
            for itype in range(1, ntypes + 1):
                if elements[itype - 1] == name:
                    mapper[itype] = model_idx

        for itype in range(1, ntypes + 1):
            if mapper[itype] < 0:
                logger.warning(
                    "type %d (%s) is not a model type %s; left unmapped",
                    itype, elements[itype - 1], list(type_names),
                )
            else:
                logger.info("type %d is element %s -> model type %d",
                            itype, elements[itype - 1], mapper[itype])
        return cls(mapper, elements)

    @property
    def ntypes(self) -> int:
        return int(self._mapper.shape[0] - 1)

    @property
    def table(self) -> np.ndarray:
        return self._mapper

    def __getitem__(self, itype: int) -> int:
        return int(self._mapper[itype])

    def covered(self, itype: int, jtype: int) -> bool:
        """A type pair uses this potential only if both types are mapped."""
        return self._mapper[itype] >= 0 and self._mapper[jtype] >= 0

    def setflag(self) -> np.ndarray:
        """(ntypes+1, ntypes+1) bool matrix, upper triangle i <= j filled."""
        n = self.ntypes
        flags = np.zeros((n + 1, n + 1), dtype=bool)
        for i in range(1, n + 1):
            for j in range(i, n + 1):
                flags[i, j] = self.covered(i, j)
        return flags

    def map_types(self, types: np.ndarray) -> np.ndarray:
        """
        Vectorised host type -> model type.

        Raises:
            ConfigurationError: if any type is out of range or unmapped.
        """
        types = np.asarray(types, dtype=np.int64)
        if types.size and (types.min() < 1 or types.max() > self.ntypes):
            raise ConfigurationError(
                f"Host atom types must be in 1..{self.ntypes}, got [{types.min()}, {types.max()}]."
            )
        mapped = self._mapper[types]
        if (mapped < 0).any():
            bad = sorted(set(types[mapped < 0].tolist()))
            raise ConfigurationError(
                f"Atom types {bad} have no model type mapping; "
                "every local atom must be covered by pair style phin."
            )
        return mapped
