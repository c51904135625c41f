# -*- coding: utf-8 -*-
#
__version__ = '0.1.0'

from .errors import (
    PhinError,
    ConfigurationError,
    GraphConstructionError,
    ModelInvocationError,
    OutputShapeError,
)
from .log import setup_logging


def _load_spec(spec):
    from .io.spec import PairSpec, parse_pair_spec, read_pair_spec

    if isinstance(spec, str):
        spec = read_pair_spec(spec)
    elif not isinstance(spec, PairSpec):
        spec = parse_pair_spec(spec)
    if spec.log_level is not None:
        setup_logging(spec.log_level, log_file=spec.log_file)
    return spec


def get_pair(spec, **kwargs):
    """Return a PairPHIN with its coefficients set.

    Parameters
    ----------
    spec : PairSpec, dict or str
        Pair settings, a settings mapping, or the path of a settings YAML.
        Must name at least ``model`` and ``elements``.

    **kwargs
        Passed to the PairPHIN constructor (e.g. ``debug``).
    """
    from .torch.pair import PairPHIN

    spec = _load_spec(spec)
    pair = PairPHIN(
        device=spec.device,
        dtype=spec.dtype,
        peratom_outputs=spec.peratom_outputs,
        **kwargs,
    )
    pair.coeff(["*", "*", spec.model, *spec.elements], ntypes=len(spec.elements))
    return pair


def get_compute(spec, quantity, size_vector, **kwargs):
    """Return a ComputePHIN evaluating ``quantity`` into a vector of ``size_vector``."""
    from .torch.compute import ComputePHIN
    from .torch.model import InferenceContext

    spec = _load_spec(spec)
    ctx = InferenceContext.from_file(spec.model, spec.elements, device=spec.device, dtype=spec.dtype)
    return ComputePHIN(ctx, quantity, size_vector, **kwargs)


def get_calc(spec, **kwargs):
    """Return an ASE calculator for a deployed model.

    **kwargs are passed to the ASE calculator constructor.
    """
    from .torch.calculator import get_calc as torch_get_calc

    return torch_get_calc(_load_spec(spec), **kwargs)
