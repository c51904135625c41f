# phin/io/buffers.py
"""
Growable scratch buffers for per-step graph construction.

Buffers grow to the high-water mark and are never shrunk, so a run with a
stable atom count allocates once. Callers only ever get a view of exactly the
requested length.
"""

from __future__ import annotations

import math
from typing import Dict, Tuple

import numpy as np


class GrowableBuffer:
    """A numpy array with amortized growth along the first axis."""

    def __init__(self, dtype, trailing: Tuple[int, ...] = (), growth: float = 1.5, fill=None):
        self.dtype = np.dtype(dtype)
        self.trailing = tuple(trailing)
        self.growth = float(growth)
        self.fill = fill
        self._data = np.empty((0,) + self.trailing, dtype=self.dtype)
        self.n_grow = 0

    @property
    def capacity(self) -> int:
        return int(self._data.shape[0])

    def reserve(self, n: int) -> None:
        if n <= self.capacity:
            return
        new_cap = max(int(n), int(math.ceil(self.capacity * self.growth)))
        data = np.empty((new_cap,) + self.trailing, dtype=self.dtype)
        if self.fill is not None:
            data[...] = self.fill
        data[: self.capacity] = self._data
        self._data = data
        self.n_grow += 1

    def view(self, n: int) -> np.ndarray:
        """First ``n`` rows, growing the storage if needed."""
        if n < 0:
            raise ValueError(f"Buffer length must be >= 0, got {n}")
        self.reserve(n)
        return self._data[:n]

    @property
    def storage(self) -> np.ndarray:
        """Whole allocation (host-style per-atom arrays are indexed by slot)."""
        return self._data


class BufferArena:
    """Named buffers owned by one assembler."""

    def __init__(self):
        self._buffers: Dict[str, GrowableBuffer] = {}

    def buffer(self, name: str, dtype, trailing: Tuple[int, ...] = ()) -> GrowableBuffer:
        buf = self._buffers.get(name)
        if buf is None:
            buf = GrowableBuffer(dtype, trailing)
            self._buffers[name] = buf
        return buf

    def view(self, name: str, n: int, dtype, trailing: Tuple[int, ...] = ()) -> np.ndarray:
        return self.buffer(name, dtype, trailing).view(n)

    def capacities(self) -> Dict[str, int]:
        return {k: b.capacity for k, b in self._buffers.items()}
