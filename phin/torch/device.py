# phin/torch/device.py
from __future__ import annotations

import os
import torch
from typing import Optional


def resolve_device(device: Optional[str] = None) -> torch.device:
    """
    Resolve the inference device from a user string.

    Rules:
      - None or "auto": CUDA if available, otherwise CPU
      - "cuda" / "cuda:1" / "cpu" / ...: honored as given
      - env PHIN_DEVICE overrides both (e.g. "cuda:0")
    """
    if device is None:
        device = "auto"

    env = os.environ.get("PHIN_DEVICE", "").strip()
    if env:
        device = env

    dev = str(device).strip().lower()
    if dev == "auto":
        if torch.cuda.is_available():
            return torch.device("cuda")
        return torch.device("cpu")

    return torch.device(dev)


def resolve_dtype(dtype) -> torch.dtype:
    """"float32"/"float64" (or a torch.dtype) -> torch.dtype."""
    if isinstance(dtype, torch.dtype):
        return dtype
    table = {
        "float32": torch.float32,
        "float": torch.float32,
        "float64": torch.float64,
        "double": torch.float64,
    }
    key = str(dtype).strip().lower()
    if key not in table:
        raise ValueError(f"Unsupported dtype {dtype!r}; use float32 or float64.")
    return table[key]
