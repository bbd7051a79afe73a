#!/usr/bin/env python3
"""
Pipeline Configuration
Defaults, JSON config files, NPU_SEG_* environment variables and CLI overrides
"""
import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from common.errors import ConfigError, InvalidShapeError
from common.tensor_types import TensorShape

ENV_PREFIX = "NPU_SEG_"

BACKENDS = ("rknn", "torch")
IMAGE_BACKENDS = ("pillow", "opencv")


@dataclass
class PipelineConfig:
    """Settings for one segmentation run"""
    output_path: str = "seg_mask.png"
    palette: Union[str, Dict[int, Tuple[int, int, int]]] = "binary"
    backend: str = "rknn"
    image_backend: str = "pillow"
    input_shape: Optional[TensorShape] = None
    output_shape: Optional[TensorShape] = None
    timeout: Optional[float] = None
    device: Optional[str] = None
    save_metadata: bool = False
    comparison_path: Optional[str] = None
    log_level: str = "INFO"

    def validate(self) -> "PipelineConfig":
        if self.backend not in BACKENDS:
            raise ConfigError(f"Unknown backend '{self.backend}', expected one of {BACKENDS}")
        if self.image_backend not in IMAGE_BACKENDS:
            raise ConfigError(
                f"Unknown image backend '{self.image_backend}', expected one of {IMAGE_BACKENDS}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"Timeout must be positive, got {self.timeout}")
        if not self.output_path:
            raise ConfigError("Output path must not be empty")
        return self


def _parse_shape(value) -> Optional[TensorShape]:
    if value is None or isinstance(value, TensorShape):
        return value
    if isinstance(value, str):
        value = value.replace("x", ",").split(",")
    try:
        return TensorShape.from_dims(value)
    except (TypeError, ValueError, InvalidShapeError) as e:
        raise ConfigError(f"Invalid tensor shape {value!r}: {e}")


def _parse_palette(value):
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith("{"):
            try:
                value = json.loads(stripped)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Invalid palette JSON: {e}")
        else:
            return stripped
    if isinstance(value, dict):
        try:
            return {int(k): tuple(int(c) for c in v) for k, v in value.items()}
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid palette mapping: {e}")
    raise ConfigError(f"Palette must be a preset name or a mapping, got {type(value).__name__}")


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _coerce(name: str, value):
    """Convert raw JSON/env/CLI values into field types"""
    if name in ("input_shape", "output_shape"):
        return _parse_shape(value)
    if name == "palette":
        return _parse_palette(value)
    if name == "timeout":
        if value is None or value == "":
            return None
        try:
            return float(value)
        except ValueError:
            raise ConfigError(f"Invalid timeout {value!r}")
    if name == "save_metadata":
        return _parse_bool(value)
    return value


def load_config_file(path: str) -> Dict:
    """Read a JSON config file, rejecting unknown keys"""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")

    known = {f.name for f in fields(PipelineConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys in {config_path}: {', '.join(unknown)}")
    return data


def _env_overrides(environ: Dict[str, str]) -> Dict:
    overrides = {}
    for f in fields(PipelineConfig):
        key = ENV_PREFIX + f.name.upper()
        if key in environ:
            overrides[f.name] = environ[key]
    return overrides


def build_config(config_file: Optional[str] = None,
                 cli_overrides: Optional[Dict] = None,
                 environ: Optional[Dict[str, str]] = None) -> PipelineConfig:
    """Layer defaults <- config file <- environment <- CLI flags"""
    environ = os.environ if environ is None else environ
    layers: List[Dict] = []
    if config_file:
        layers.append(load_config_file(config_file))
    layers.append(_env_overrides(environ))
    if cli_overrides:
        layers.append({k: v for k, v in cli_overrides.items() if v is not None})

    config = PipelineConfig()
    for layer in layers:
        config = replace(config, **{k: _coerce(k, v) for k, v in layer.items()})
    return config.validate()
