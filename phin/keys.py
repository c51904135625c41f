# phin/keys.py
"""Names of the tensors exchanged with a deployed model."""

from typing import Final

# [N, 3] node positions, dense (tag) order
POSITIONS_KEY: Final[str] = "positions"
# [N] model type index per node
ATOM_TYPES_KEY: Final[str] = "atom_types"
# [2, E] source -> destination dense node indices
EDGE_INDEX_KEY: Final[str] = "edge_index"
# [E, 3] lattice-vector images added to the destination of each edge
EDGE_CELL_SHIFT_KEY: Final[str] = "edge_cell_shift"
# [3, 3] lattice vectors as rows
CELL_KEY: Final[str] = "cell"

FORCES_KEY: Final[str] = "forces"
TOTAL_ENERGY_KEY: Final[str] = "total_energy"
ATOMIC_ENERGY_KEY: Final[str] = "atomic_energy"
# [1, 3, 3]
VIRIAL_KEY: Final[str] = "virial"

UNCERTAINTIES_KEY: Final[str] = "uncertainties"

INPUT_KEYS = (
    POSITIONS_KEY,
    ATOM_TYPES_KEY,
    EDGE_INDEX_KEY,
    EDGE_CELL_SHIFT_KEY,
    CELL_KEY,
)
