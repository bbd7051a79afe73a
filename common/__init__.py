"""
Shared Components
Errors, tensor types, configuration and logging used by every package
"""

from .errors import (
    PipelineError, LoadError, DecodeError, ShapeQueryError, BindError,
    InferenceError, InvalidShapeError, EncodeError, PaletteMismatchError,
    ConfigError
)
from .tensor_types import TensorKind, TensorShape, DeviceBuffer

__all__ = [
    'PipelineError',
    'LoadError',
    'DecodeError',
    'ShapeQueryError',
    'BindError',
    'InferenceError',
    'InvalidShapeError',
    'EncodeError',
    'PaletteMismatchError',
    'ConfigError',
    'TensorKind',
    'TensorShape',
    'DeviceBuffer'
]
