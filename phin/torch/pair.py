# phin/torch/pair.py
"""
Pair style driver: the host-facing lifecycle of the bridge.

    pair = PairPHIN()
    pair.settings([])
    pair.coeff(["*", "*", "deployed.pth", "H", "O"], ntypes=2)
    pair.init_style(HostSettings(tag_enable=True, newton_pair=False))
    ...
    pair.compute(atoms, nlist, box, flags)     # every step

Each step runs assemble -> invoke -> scatter in sequence.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence

import numpy as np

from phin.env import debug_enabled
from phin.errors import ConfigurationError
from phin.host import HostAtoms, HostBox, HostSettings, NeighborList, StepFlags, check_host_settings
from phin.io.assemble import GraphTensorAssembler
from phin.io.buffers import GrowableBuffer
from phin.torch.device import resolve_device, resolve_dtype
from phin.torch.model import InferenceContext, ModelInvoker, ModelOutput
from phin.torch.scatter import check_requested_outputs, scatter_results, virial_to_host

logger = logging.getLogger(__name__)


class PairPHIN:
    """
    Learned-potential pair style.

    Attributes after ``compute``:
        eng_vdwl: total energy of the step
        virial: (6,) host virial (xx, yy, zz, xy, xz, yz), zero unless requested
        eatom: per-atom energies by host slot, valid when eflag_atom was set
    """

    def __init__(
        self,
        *,
        device: Optional[str] = None,
        dtype="float32",
        peratom_outputs: Sequence[str] = (),
        debug: Optional[bool] = None,
    ):
        self.device = resolve_device(device)
        self.dtype = resolve_dtype(dtype)
        self.peratom_outputs = tuple(peratom_outputs)
        self.debug = debug_enabled() if debug is None else bool(debug)
        logger.info("PHIN is using device %s", self.device)
        if self.debug:
            logger.info("PairPHIN is in DEBUG mode")

        self.context: Optional[InferenceContext] = None
        self.assembler: Optional[GraphTensorAssembler] = None
        self.invoker: Optional[ModelInvoker] = None
        self.cutoff = 0.0
        self.setflag: Optional[np.ndarray] = None

        self.eng_vdwl = 0.0
        self.virial = np.zeros(6, dtype=np.float64)
        self.nmax = 0
        self._eatom = GrowableBuffer(np.float64, fill=0.0)
        self._peratom: Dict[str, GrowableBuffer] = {
            name: GrowableBuffer(np.float64, fill=0.0) for name in self.peratom_outputs
        }

    # ------------------------------------------------------------------
    # configuration

    def settings(self, args: Sequence[str]) -> None:
        """``pair_style phin`` takes no arguments."""
        if len(args) > 0:
            raise ConfigurationError("Illegal pair_style command")

    def coeff(self, args: Sequence[str], ntypes: int) -> None:
        """
        ``pair_coeff * * model.pth elem_1 ... elem_ntypes``

        Loads the model and maps every host type to a model type by name.
        """
        args = [str(a) for a in args]
        if len(args) != 3 + ntypes:
            raise ConfigurationError("Incorrect args for pair coefficients")
        if args[0] != "*" or args[1] != "*":
            raise ConfigurationError("Incorrect args for pair coefficients")

        elements = args[3:]
        for itype, ele in enumerate(elements, start=1):
            logger.info("PHIN Coeff: type %d is element %s", itype, ele)

        ctx = InferenceContext.from_file(args[2], elements, device=str(self.device), dtype=self.dtype)
        self.set_context(ctx)

    def set_context(self, context: InferenceContext) -> None:
        """Install an already-built context (model, metadata, type map)."""
        self.context = context
        self.cutoff = float(context.cutoff)
        self.setflag = context.type_mapper.setflag()
        self.assembler = GraphTensorAssembler(
            device=context.device, dtype=context.dtype, debug=self.debug
        )
        self.invoker = ModelInvoker(context.model)

    def init_style(self, host: HostSettings) -> None:
        check_host_settings(host)
        if self.context is None:
            raise ConfigurationError("All pair coeffs are not set")

    def init_one(self, i: int, j: int) -> float:
        return self.cutoff

    # ------------------------------------------------------------------
    # per step

    @property
    def eatom(self) -> np.ndarray:
        return self._eatom.storage

    def extract_peratom(self, name: str) -> Optional[np.ndarray]:
        """Per-atom auxiliary output by name, indexed by host slot."""
        buf = self._peratom.get(name)
        return None if buf is None else buf.storage

    def _grow(self, nmax: int) -> None:
        if nmax > self.nmax:
            self.nmax = nmax
            self._eatom.reserve(nmax)
            for buf in self._peratom.values():
                buf.reserve(nmax)

    def compute(
        self,
        atoms: HostAtoms,
        nlist: NeighborList,
        box: HostBox,
        flags: StepFlags = StepFlags(),
        host: HostSettings = HostSettings(),
    ) -> Optional[ModelOutput]:
        """
        Evaluate the model for this step and write results into host storage.

        Returns the raw model output (None when there are no local atoms).
        """
        if self.context is None:
            raise ConfigurationError("All pair coeffs are not set")
        check_host_settings(host)
        check_requested_outputs(flags)

        self.eng_vdwl = 0.0
        self.virial[:] = 0.0
        self._grow(atoms.nmax)
        if flags.eflag_atom:
            self._eatom.storage[: atoms.ntotal] = 0.0

        if atoms.nlocal == 0:
            return None

        graph, tag_index = self.assembler.assemble(
            atoms, nlist, box,
            type_mapper=self.context.type_mapper,
            cutoff=self.cutoff,
        )
        output = self.invoker(
            graph,
            compute_virial=flags.vflag_global,
            peratom=self.peratom_outputs,
        )

        if self.debug:
            logger.debug(
                "PHIN model output:\nforces: %s\ntotal_energy: %s\natomic_energy: %s\nvirial: %s",
                output.forces, output.total_energy, output.atomic_energy, output.virial,
            )

        self.eng_vdwl = output.total_energy
        if flags.vflag_global:
            self.virial[:] = virial_to_host(output.virial)

        scatter_results(
            output,
            tag_index,
            atoms,
            eatom=self._eatom.storage if flags.eflag_atom else None,
            peratom={name: buf.storage for name, buf in self._peratom.items()},
        )
        return output
