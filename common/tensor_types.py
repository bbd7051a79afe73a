#!/usr/bin/env python3
"""
Tensor Bookkeeping Types
Shapes, slot kinds and host-visible device buffers
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np

from common.errors import InvalidShapeError


class TensorKind(Enum):
    """Tensor slot kinds a device session can report and bind"""
    INPUT = "input"
    OUTPUT = "output"
    NATIVE_NHWC_OUTPUT = "native_nhwc_output"

    @property
    def is_output(self) -> bool:
        return self is not TensorKind.INPUT


@dataclass(frozen=True)
class TensorShape:
    """Height/width/channels geometry of one tensor slot"""
    height: int
    width: int
    channels: int

    def __post_init__(self):
        for name in ("height", "width", "channels"):
            value = getattr(self, name)
            if int(value) != value or value < 0:
                raise InvalidShapeError(f"{name} must be a non-negative integer, got {value!r}")

    @property
    def size(self) -> int:
        return self.height * self.width * self.channels

    @property
    def pixels(self) -> int:
        return self.height * self.width

    def is_degenerate(self) -> bool:
        return self.height == 0 or self.width == 0 or self.channels == 0

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.height, self.width, self.channels)

    @classmethod
    def from_dims(cls, dims: Sequence[int]) -> "TensorShape":
        """Build from NHWC dims (batch dimension ignored) or plain HWC dims"""
        dims = [int(d) for d in dims]
        if len(dims) == 4:
            dims = dims[1:]
        if len(dims) != 3:
            raise InvalidShapeError(f"Expected NHWC or HWC dims, got {dims}")
        return cls(*dims)

    def __str__(self) -> str:
        return f"{self.height} x {self.width} x {self.channels}"


Slot = Tuple[TensorKind, int]


class DeviceBuffer:
    """Host-addressable memory bound to at most one tensor slot of one session"""

    def __init__(self, size: int, handle: object = None):
        if size < 0:
            raise InvalidShapeError(f"Buffer size must be non-negative, got {size}")
        self.data = np.zeros(size, dtype=np.uint8)
        self.handle = handle
        self.slot: Optional[Slot] = None

    @property
    def size(self) -> int:
        return self.data.size

    def view(self, shape: TensorShape) -> np.ndarray:
        """Shape-annotated [h][w][c] view over the buffer, no copy"""
        if shape.size != self.size:
            raise InvalidShapeError(
                f"Shape {shape} needs {shape.size} bytes, buffer holds {self.size}")
        return self.data.reshape(shape.as_tuple())

    def write(self, pixels: np.ndarray):
        flat = np.ascontiguousarray(pixels, dtype=np.uint8).reshape(-1)
        if flat.size != self.size:
            raise InvalidShapeError(
                f"Cannot copy {flat.size} bytes into a {self.size}-byte buffer")
        self.data[:] = flat

    def __repr__(self) -> str:
        return f"DeviceBuffer(size={self.size}, slot={self.slot})"
