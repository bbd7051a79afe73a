#!/usr/bin/env python3
"""
Tensor Binder
Allocates host buffers sized from the session's reported shapes and binds them to tensor slots
"""
import logging
from contextlib import contextmanager
from typing import Iterator, List

import numpy as np

from common.errors import BindError, PipelineError, ShapeQueryError
from common.tensor_types import DeviceBuffer, TensorKind, TensorShape
from device.session import DeviceSession


class TensorBinder:
    """Owns every buffer it binds until release() is called for it"""

    def __init__(self, session: DeviceSession):
        self.session = session
        self.logger = logging.getLogger(__name__)
        self._live: List[DeviceBuffer] = []

    @property
    def live_buffers(self) -> int:
        return len(self._live)

    def query_shape(self, kind: TensorKind, index: int = 0) -> TensorShape:
        """Ask the session for the geometry of one tensor slot"""
        try:
            shape = self.session.query_tensor_shape(kind, index)
        except ShapeQueryError:
            raise
        except PipelineError as e:
            raise ShapeQueryError(f"Could not query {kind.value}[{index}] shape: {e}") from e
        if shape is None:
            raise ShapeQueryError(f"Session reported no shape for {kind.value}[{index}]")
        return shape

    def bind_input(self, pixels: np.ndarray, shape: TensorShape,
                   kind: TensorKind = TensorKind.INPUT) -> DeviceBuffer:
        """Allocate, fill with pixels and bind to the input slot"""
        if np.asarray(pixels).size != shape.size:
            raise BindError(
                f"Input holds {np.asarray(pixels).size} bytes, shape {shape} needs {shape.size}")
        return self._bind(kind, shape, pixels)

    def bind_output(self, shape: TensorShape,
                    kind: TensorKind = TensorKind.NATIVE_NHWC_OUTPUT) -> DeviceBuffer:
        """Allocate an uninitialised buffer and bind it to the output slot"""
        return self._bind(kind, shape, None)

    def _bind(self, kind: TensorKind, shape: TensorShape, pixels) -> DeviceBuffer:
        try:
            buffer = self.session.create_buffer(shape.size)
        except BindError:
            raise
        except PipelineError as e:
            raise BindError(f"Could not allocate {shape.size} bytes for {kind.value}: {e}") from e

        try:
            if pixels is not None:
                buffer.write(pixels)
            self.session.bind(buffer, kind, 0)
        except PipelineError as e:
            # The buffer never reached the caller, so it is freed here
            self.session.free_buffer(buffer)
            if isinstance(e, BindError):
                raise
            raise BindError(f"Could not bind {kind.value} buffer: {e}") from e

        self._live.append(buffer)
        self.logger.debug(f"Bound {shape.size} bytes to {kind.value}[0]")
        return buffer

    def release(self, buffer: DeviceBuffer):
        """Unbind and free a buffer created by this binder, exactly once"""
        if not any(b is buffer for b in self._live):
            raise BindError("Buffer is not live; it was never bound or was already released")
        self._live = [b for b in self._live if b is not buffer]
        self.session.free_buffer(buffer)

    @contextmanager
    def bound_input(self, pixels: np.ndarray, shape: TensorShape) -> Iterator[DeviceBuffer]:
        buffer = self.bind_input(pixels, shape)
        try:
            yield buffer
        finally:
            self.release(buffer)

    @contextmanager
    def bound_output(self, shape: TensorShape) -> Iterator[DeviceBuffer]:
        buffer = self.bind_output(shape)
        try:
            yield buffer
        finally:
            self.release(buffer)
