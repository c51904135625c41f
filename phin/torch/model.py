# phin/torch/model.py
"""
Deployed model handling: metadata, loading, and the forward call.

A deployed model is a TorchScript file whose ``forward`` takes a dict of named
tensors (see :mod:`phin.keys`) and returns a dict of named tensors. Its
metadata travels in the archive as extra files.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import torch

from phin import keys
from phin.errors import ConfigurationError, ModelInvocationError
from phin.io.assemble import GraphInput
from phin.torch.device import resolve_device, resolve_dtype
from phin.type_mapper import TypeMapper

logger = logging.getLogger(__name__)

METADATA_KEYS = (
    "config",
    "phin_version",
    "r_max",
    "n_species",
    "type_names",
    "_jit_fusion_strategy",
    "allow_tf32",
)

DEFAULT_FUSION_STRATEGY = (("DYNAMIC", 3),)


def _text(v: Any) -> str:
    if isinstance(v, bytes):
        v = v.decode("utf-8")
    return "" if v is None else str(v).strip()


@dataclass(frozen=True)
class ModelConfig:
    """
    Typed view of a deployed model's metadata.

    Attributes:
        r_max: cutoff radius; pairs closer than this become edges
        n_species: number of model atom types
        type_names: model type names, position = model type index
        version: version string of the deploying package (required)
        config: free-form training config, kept for traceability
        jit_fusion_strategy: ((kind, depth), ...) for torch.jit.set_fusion_strategy
        allow_tf32: allow TF32 matmuls/convolutions on CUDA
    """
    r_max: float
    n_species: int
    type_names: Tuple[str, ...]
    version: str
    config: str = ""
    jit_fusion_strategy: Tuple[Tuple[str, int], ...] = DEFAULT_FUSION_STRATEGY
    allow_tf32: bool = False

    @classmethod
    def from_metadata(cls, meta: Mapping[str, Any]) -> "ModelConfig":
        """
        Parse metadata values (str or bytes) into a ModelConfig.

        Raises:
            ConfigurationError: on missing required fields or malformed values.
        """
        raw = {k: _text(v) for k, v in meta.items()}

        version = raw.get("phin_version", "")
        if not version:
            raise ConfigurationError(
                "The model file does not appear to be a deployed PHIN model "
                "(no 'phin_version' in its metadata)."
            )

        missing = [k for k in ("r_max", "n_species", "type_names") if not raw.get(k)]
        if missing:
            raise ConfigurationError(f"Model metadata is missing required fields: {missing}")

        try:
            r_max = float(raw["r_max"])
            n_species = int(float(raw["n_species"]))
        except ValueError as exc:
            raise ConfigurationError(f"Malformed model metadata: {exc}") from exc
        if not np.isfinite(r_max) or r_max <= 0.0:
            raise ConfigurationError(f"Model cutoff r_max must be positive, got {r_max}.")

        type_names = tuple(raw["type_names"].split())
        if len(type_names) != n_species:
            raise ConfigurationError(
                f"Model declares n_species={n_species} but lists {len(type_names)} type names {list(type_names)}."
            )

        return cls(
            r_max=r_max,
            n_species=n_species,
            type_names=type_names,
            version=version,
            config=raw.get("config", ""),
            jit_fusion_strategy=_parse_fusion_strategy(raw.get("_jit_fusion_strategy", "")),
            allow_tf32=_parse_flag(raw.get("allow_tf32", ""), default=False),
        )

    def to_metadata(self) -> Dict[str, str]:
        """Inverse of :meth:`from_metadata`, as written into a deployed file."""
        return {
            "config": self.config,
            "phin_version": self.version,
            "r_max": repr(float(self.r_max)),
            "n_species": str(self.n_species),
            "type_names": " ".join(self.type_names),
            "_jit_fusion_strategy": ";".join(f"{k},{d}" for k, d in self.jit_fusion_strategy),
            "allow_tf32": str(int(self.allow_tf32)),
        }


def _parse_fusion_strategy(text: str) -> Tuple[Tuple[str, int], ...]:
    # "DYNAMIC,3;STATIC,2"
    if not text:
        return DEFAULT_FUSION_STRATEGY
    out = []
    for item in text.split(";"):
        item = item.strip()
        if not item:
            continue
        kind, _, depth = item.partition(",")
        kind = kind.strip().upper()
        if kind not in ("DYNAMIC", "STATIC"):
            raise ConfigurationError(f"Unknown fusion behavior {kind!r} in _jit_fusion_strategy.")
        try:
            out.append((kind, int(depth)))
        except ValueError as exc:
            raise ConfigurationError(f"Malformed _jit_fusion_strategy {text!r}") from exc
    return tuple(out) or DEFAULT_FUSION_STRATEGY


def _parse_flag(text: str, default: bool) -> bool:
    # Saved as an int 0/1
    if not text:
        return default
    try:
        return bool(int(float(text)))
    except ValueError as exc:
        raise ConfigurationError(f"Malformed boolean metadata value {text!r}") from exc


def apply_jit_settings(config: ModelConfig) -> None:
    """Process-wide TorchScript/TF32 settings requested by the model."""
    torch.jit.set_fusion_strategy([(k, d) for k, d in config.jit_fusion_strategy])
    torch.backends.cuda.matmul.allow_tf32 = config.allow_tf32
    torch.backends.cudnn.allow_tf32 = config.allow_tf32


def load_deployed_model(path: str, device: Optional[str] = None):
    """
    Load a deployed TorchScript model and its metadata.

    Args:
        path: model file
        device: device string, see :func:`resolve_device`

    Returns:
        (model, config): frozen ScriptModule in eval mode and its ModelConfig

    Raises:
        FileNotFoundError: if ``path`` does not exist.
        ConfigurationError: if the metadata is incomplete.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Missing deployed model: {path}")

    dev = resolve_device(device)
    logger.info("Loading model from %s on %s", path, dev)

    extra_files = {k: "" for k in METADATA_KEYS}
    model = torch.jit.load(path, map_location=dev, _extra_files=extra_files)
    model.eval()

    config = ModelConfig.from_metadata(extra_files)
    logger.info(
        "Model metadata: version=%s r_max=%g type_names=%s",
        config.version, config.r_max, " ".join(config.type_names),
    )

    # Frozen modules no longer carry the `training` attribute
    if model._c.hasattr("training"):
        logger.info("Freezing TorchScript model...")
        model = torch.jit.freeze(model)

    apply_jit_settings(config)
    return model, config


@dataclass
class InferenceContext:
    """
    Everything fixed at coefficient time and needed on every step.

    Created once by ``pair_coeff`` (or the calculator) and passed into each
    step; nothing about the model lives in module globals.
    """
    model: Callable[[Dict[str, torch.Tensor]], Mapping[str, torch.Tensor]]
    config: ModelConfig
    type_mapper: TypeMapper
    device: torch.device = field(default_factory=lambda: torch.device("cpu"))
    dtype: torch.dtype = torch.float32

    @property
    def cutoff(self) -> float:
        return self.config.r_max

    @classmethod
    def from_file(
        cls,
        path: str,
        elements: Sequence[str],
        *,
        device: Optional[str] = None,
        dtype="float32",
    ) -> "InferenceContext":
        model, config = load_deployed_model(path, device)
        return cls(
            model=model,
            config=config,
            type_mapper=TypeMapper.from_names(elements, config.type_names),
            device=resolve_device(device),
            dtype=resolve_dtype(dtype),
        )


@dataclass
class ModelOutput:
    """Model results on the host side (numpy, float64, dense node order)."""
    total_energy: float
    atomic_energy: np.ndarray         # (N, 1)
    forces: np.ndarray                # (N, 3)
    virial: Optional[np.ndarray] = None   # (3, 3)
    peratom: Dict[str, np.ndarray] = field(default_factory=dict)  # name -> (N, 1)


class ModelInvoker:
    """
    Runs the model on one :class:`GraphInput` and validates what comes back.

    Optional outputs (virial, auxiliary per-atom scalars) are only read when
    requested. A failure is never retried: the same inputs would fail again.
    """

    def __init__(self, model: Callable[[Dict[str, torch.Tensor]], Mapping[str, torch.Tensor]]):
        self.model = model

    def _forward(self, graph: GraphInput) -> Mapping[str, torch.Tensor]:
        try:
            out = self.model(graph.as_dict())
        except Exception as exc:
            raise ModelInvocationError(f"Model forward failed: {exc}") from exc
        if not isinstance(out, Mapping):
            raise ModelInvocationError(
                f"Model must return a mapping of named tensors, got {type(out).__name__}."
            )
        return out

    def __call__(
        self,
        graph: GraphInput,
        *,
        compute_virial: bool = False,
        peratom: Sequence[str] = (),
    ) -> ModelOutput:
        out = self._forward(graph)

        n = graph.n_nodes
        forces = _fetch(out, keys.FORCES_KEY, (n, 3), strict=True)
        total_energy = _fetch(out, keys.TOTAL_ENERGY_KEY, (1,))
        atomic_energy = _fetch(out, keys.ATOMIC_ENERGY_KEY, (n, 1))

        virial = _fetch(out, keys.VIRIAL_KEY, (3, 3)) if compute_virial else None
        extras = {name: _fetch(out, name, (n, 1)) for name in peratom}

        return ModelOutput(
            total_energy=float(total_energy[0]),
            atomic_energy=atomic_energy,
            forces=forces,
            virial=virial,
            peratom=extras,
        )

    def fetch(self, graph: GraphInput, name: str) -> np.ndarray:
        """Run the model and return one named output, flattened."""
        out = self._forward(graph)
        if name not in out:
            raise ModelInvocationError(f"Model output has no quantity '{name}'.")
        return out[name].detach().cpu().to(torch.float64).numpy().reshape(-1)


def _fetch(
    out: Mapping[str, torch.Tensor],
    key: str,
    shape: Tuple[int, ...],
    strict: bool = False,
) -> np.ndarray:
    """Named output -> float64 numpy of ``shape``.

    Leading/trailing singleton axes are tolerated ([1,3,3] virial, [] energy),
    a different number of elements is not.
    """
    if key not in out:
        raise ModelInvocationError(f"Model output is missing '{key}' (got {sorted(out.keys())}).")
    t = out[key]
    if not isinstance(t, torch.Tensor):
        raise ModelInvocationError(f"Model output '{key}' is not a tensor.")
    expected = int(np.prod(shape))
    if t.numel() != expected or (strict and tuple(t.shape) != shape):
        raise ModelInvocationError(
            f"Model output '{key}' has shape {tuple(t.shape)}, expected {shape}."
        )
    return t.detach().cpu().to(torch.float64).numpy().reshape(shape)
