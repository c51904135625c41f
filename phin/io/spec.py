# phin/io/spec.py
"""
Pair settings file parsing.

A settings YAML names the deployed model, the element of each host type (in
type order) and runtime knobs:

    model: deployed.pth          # relative paths resolve against the YAML
    elements: [H, O]             # host type 1 is H, type 2 is O
    device: auto                 # or cpu / cuda / cuda:1
    dtype: float32               # float32 or float64, must match the model
    peratom_outputs: [uncertainties]
    skin: 1.0                    # extra neighbor-search radius (ASE only)
    log_level: INFO              # optional; installs the phin log handler
    log_file: phin.log           # optional
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from phin.errors import ConfigurationError


@dataclass(frozen=True)
class PairSpec:
    """
    Normalized pair settings.

    Attributes:
        model: path to the deployed model file.
        elements: element name of each host type, type 1 first.
        device: device string for :func:`phin.torch.device.resolve_device`.
        dtype: float dtype of positions/cell handed to the model.
        peratom_outputs: auxiliary per-atom model outputs to read each step.
        skin: neighbor-search margin beyond the cutoff (ASE calculator only).
        log_level: console log level, None leaves logging alone.
        log_file: optional log file.
        yml_path: source file, if any.
    """
    model: str
    elements: Tuple[str, ...]
    device: str = "auto"
    dtype: str = "float32"
    peratom_outputs: Tuple[str, ...] = ()
    skin: float = 1.0
    log_level: Optional[str] = None
    log_file: Optional[str] = None
    yml_path: Optional[str] = None


def read_yaml(path: str) -> Dict[str, Any]:
    """
    Read a YAML file into a dict.

    Raises:
        FileNotFoundError: if path doesn't exist.
        yaml.YAMLError: for invalid YAML.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Pair settings YAML not found: {path}")
    with p.open("r", encoding="utf-8") as f:
        obj = yaml.safe_load(f)
    return dict(obj or {})


def _str_list(raw: Mapping[str, Any], key: str, where: str) -> Tuple[str, ...]:
    value = raw.get(key, [])
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split()
    if not isinstance(value, (list, tuple)):
        raise ConfigurationError(f"Invalid '{key}' in {where}: must be a list of names.")
    return tuple(str(v) for v in value)


def parse_pair_spec(raw: Mapping[str, Any], yml_path: Optional[str] = None) -> PairSpec:
    """
    Normalize a settings mapping into a PairSpec.

    Raises:
        ConfigurationError: on missing or malformed fields.
    """
    where = yml_path or "pair settings"

    model = raw.get("model")
    if not isinstance(model, str) or not model:
        raise ConfigurationError(f"Invalid pair settings in {where}: 'model' must be a non-empty path.")
    if yml_path is not None and not Path(model).is_absolute():
        model = str(Path(yml_path).parent / model)

    elements = _str_list(raw, "elements", where)
    if not elements:
        raise ConfigurationError(f"Invalid pair settings in {where}: 'elements' must list one name per atom type.")

    try:
        skin = float(raw.get("skin", 1.0))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid 'skin' in {where}: {exc}") from exc
    if skin < 0.0:
        raise ConfigurationError(f"Invalid 'skin' in {where}: must be >= 0.")

    log_level = raw.get("log_level")
    log_file = raw.get("log_file")
    return PairSpec(
        model=model,
        elements=elements,
        device=str(raw.get("device", "auto")),
        dtype=str(raw.get("dtype", "float32")),
        peratom_outputs=_str_list(raw, "peratom_outputs", where),
        skin=skin,
        log_level=None if log_level is None else str(log_level),
        log_file=None if log_file is None else str(log_file),
        yml_path=None if yml_path is None else str(yml_path),
    )


def read_pair_spec(yml_path: str) -> PairSpec:
    return parse_pair_spec(read_yaml(yml_path), yml_path=str(yml_path))
