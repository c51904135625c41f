# phin/torch/compute.py
from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from phin.env import debug_enabled
from phin.errors import ConfigurationError, ModelInvocationError
from phin.host import HostAtoms, HostBox, HostSettings, NeighborList, check_host_settings
from phin.io.assemble import GraphTensorAssembler
from phin.torch.model import InferenceContext, ModelInvoker

logger = logging.getLogger(__name__)


class ComputePHIN:
    """
    Evaluate one named model output into a fixed-length global vector.

    ``compute ID all phin model.pth quantity length elem_1 ... elem_ntypes``
    """

    def __init__(
        self,
        context: InferenceContext,
        quantity: str,
        size_vector: int,
        *,
        debug: Optional[bool] = None,
    ):
        if size_vector <= 0:
            raise ConfigurationError("Incorrect vector length!")
        self.context = context
        self.quantity = str(quantity)
        self.size_vector = int(size_vector)
        self.vector = np.zeros(self.size_vector, dtype=np.float64)
        self.assembler = GraphTensorAssembler(
            device=context.device,
            dtype=context.dtype,
            debug=debug_enabled() if debug is None else bool(debug),
        )
        self.invoker = ModelInvoker(context.model)
        logger.info("compute phin will evaluate the quantity %s", self.quantity)

    @classmethod
    def from_args(
        cls,
        args: Sequence[str],
        ntypes: int,
        *,
        device: Optional[str] = None,
        dtype="float32",
    ) -> "ComputePHIN":
        args = [str(a) for a in args]
        if len(args) != 6 + ntypes:
            raise ConfigurationError("Incorrect args for compute phin")
        if args[1] != "all":
            raise ConfigurationError("compute phin can only operate on group 'all'")
        try:
            size_vector = int(args[5])
        except ValueError as exc:
            raise ConfigurationError("Incorrect vector length!") from exc
        if size_vector <= 0:
            raise ConfigurationError("Incorrect vector length!")
        ctx = InferenceContext.from_file(args[3], args[6:], device=device, dtype=dtype)
        return cls(ctx, args[4], size_vector)

    def init(self, host: HostSettings) -> None:
        check_host_settings(host, owner="Compute style phin")

    def compute_vector(
        self,
        atoms: HostAtoms,
        nlist: NeighborList,
        box: HostBox,
        host: HostSettings = HostSettings(),
    ) -> np.ndarray:
        check_host_settings(host, owner="Compute style phin")
        graph, _ = self.assembler.assemble(
            atoms, nlist, box,
            type_mapper=self.context.type_mapper,
            cutoff=self.context.cutoff,
        )
        values = self.invoker.fetch(graph, self.quantity)
        if values.shape[0] < self.size_vector:
            raise ModelInvocationError(
                f"Quantity '{self.quantity}' has {values.shape[0]} values, "
                f"compute phin asks for {self.size_vector}."
            )
        self.vector[:] = values[: self.size_vector]
        return self.vector
