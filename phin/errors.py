# phin/errors.py
"""
Error taxonomy for the PHIN bridge.

Every error raised here is fatal for the current step: a force field cannot
continue from partial or corrupted force data, so nothing in the package
catches these.
"""

from __future__ import annotations


class PhinError(RuntimeError):
    """Base class for all PHIN bridge errors."""


class ConfigurationError(PhinError):
    """Host or model misconfiguration detected before per-step work.

    Examples: atom IDs disabled, newton pair on, non-positive box lengths,
    malformed model metadata, an unmapped type on a local atom.
    """


class GraphConstructionError(PhinError):
    """No edge survived the cutoff filter for a non-empty configuration."""

    def __init__(self, n_candidates: int, cutoff: float):
        super().__init__(
            f"No edges detected: 0 of {n_candidates} neighbor-list entries "
            f"are within the cutoff {cutoff:g}."
        )
        self.n_candidates = n_candidates
        self.cutoff = cutoff


class ModelInvocationError(PhinError):
    """The model backend failed or returned missing/malformed outputs."""


class OutputShapeError(PhinError):
    """An unsupported output shape was requested (e.g. per-atom virial)."""


__all__ = [
    "PhinError",
    "ConfigurationError",
    "GraphConstructionError",
    "ModelInvocationError",
    "OutputShapeError",
]
