#!/usr/bin/env python3
"""
Device Session Capability
Loads a compiled graph, reports tensor shapes, binds host buffers and runs inference
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import numpy as np

from common.errors import BindError, InferenceError, LoadError, ShapeQueryError
from common.tensor_types import DeviceBuffer, Slot, TensorKind, TensorShape
from device.layout import to_score_layout

# Status code reported when a run is attempted without complete bindings
STATUS_UNBOUND = -2
# Status code reported when a session that timed out is run again
STATUS_ABANDONED = -4


class DeviceSession(ABC):
    """Base class for accelerator sessions

    Subclasses implement the runtime-specific hooks (_load, _query_shape,
    _execute, _teardown). The base class owns the binding table so every
    backend enforces the same buffer discipline: one buffer per slot, no
    double free, everything still bound is freed on close().

    A run that outlives its caller (see abandon()) keeps the runtime alive:
    close() then frees the host buffers but defers _teardown until the
    in-flight run returns.
    """

    output_layout = "nhwc"

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._opened = False
        self._closed = False
        self._buffers: List[DeviceBuffer] = []
        self._bindings: Dict[Slot, DeviceBuffer] = {}
        self._shapes: Dict[Slot, TensorShape] = {}
        self._lock = threading.Lock()
        self._running = False
        self._abandoned = False
        self._teardown_pending = False

    # -- runtime hooks -------------------------------------------------

    @abstractmethod
    def _load(self, graph_bytes: bytes):
        """Load and initialise the compiled graph"""

    @abstractmethod
    def _query_shape(self, kind: TensorKind, index: int) -> TensorShape:
        """Report the geometry of one tensor slot"""

    @abstractmethod
    def _execute(self, inputs: Dict[int, np.ndarray]) -> Dict[int, np.ndarray]:
        """Run one forward pass; returns raw outputs keyed by output index"""

    def _teardown(self):
        """Release runtime resources"""

    # -- capability ----------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    def open(self, graph_bytes: bytes) -> "DeviceSession":
        if self._opened:
            raise LoadError("Session already opened")
        if not graph_bytes:
            raise LoadError("Model graph is empty")
        self._load(graph_bytes)
        self._opened = True
        self.logger.info(f"{type(self).__name__} loaded graph ({len(graph_bytes)} bytes)")
        return self

    def query_tensor_shape(self, kind: TensorKind, index: int = 0) -> TensorShape:
        if not self.is_open:
            raise ShapeQueryError("Session is not initialised")
        slot = (kind, index)
        if slot not in self._shapes:
            self._shapes[slot] = self._query_shape(kind, index)
        return self._shapes[slot]

    def create_buffer(self, size: int) -> DeviceBuffer:
        if not self.is_open:
            raise BindError("Cannot allocate a buffer on a closed session")
        buffer = DeviceBuffer(size)
        self._buffers.append(buffer)
        return buffer

    def bind(self, buffer: DeviceBuffer, kind: TensorKind, index: int = 0):
        if not self.is_open:
            raise BindError("Cannot bind a buffer on a closed session")
        if not self._owns(buffer):
            raise BindError("Buffer was not created by this session")
        slot = (kind, index)
        if buffer.slot is not None:
            raise BindError(f"Buffer already bound to {buffer.slot[0].value}[{buffer.slot[1]}]")
        if slot in self._bindings:
            raise BindError(f"Slot {kind.value}[{index}] already has a buffer bound")
        shape = self.query_tensor_shape(kind, index)
        if buffer.size != shape.size:
            raise BindError(
                f"Buffer of {buffer.size} bytes does not match {kind.value}[{index}] shape {shape}")
        self._bindings[slot] = buffer
        buffer.slot = slot

    def run(self):
        if not self.is_open:
            raise InferenceError("Session is not initialised", STATUS_UNBOUND)
        if self._abandoned:
            raise InferenceError("Session was abandoned by a timed-out run", STATUS_ABANDONED)

        inputs = {}
        outputs = {}
        for (kind, index), buffer in self._bindings.items():
            if kind.is_output:
                outputs[index] = (buffer, self.query_tensor_shape(kind, index))
            else:
                inputs[index] = buffer.view(self.query_tensor_shape(kind, index))
        if not inputs or not outputs:
            raise InferenceError("Input and output buffers must be bound before run", STATUS_UNBOUND)

        with self._lock:
            self._running = True
        try:
            results = self._execute(inputs)
            for index, (buffer, shape) in outputs.items():
                if index not in results:
                    raise InferenceError(f"Runtime produced no output {index}")
                buffer.write(to_score_layout(results[index], shape, self.output_layout))
        finally:
            with self._lock:
                self._running = False
                deferred = self._teardown_pending
                self._teardown_pending = False
            if deferred:
                self.logger.info("In-flight run returned, releasing runtime")
                self._teardown()

    def abandon(self):
        """Mark the session unusable after its caller stopped waiting on run()"""
        self._abandoned = True

    @property
    def is_running(self) -> bool:
        return self._running

    def free_buffer(self, buffer: DeviceBuffer):
        if not self._owns(buffer):
            raise BindError("Buffer is not live in this session")
        if buffer.slot is not None:
            self._bindings.pop(buffer.slot, None)
            buffer.slot = None
        self._buffers = [b for b in self._buffers if b is not buffer]

    def close(self):
        if self._closed:
            return
        leaked = list(self._buffers)
        for buffer in leaked:
            self.free_buffer(buffer)
        if leaked:
            self.logger.warning(f"Freed {len(leaked)} buffer(s) still live at session close")
        with self._lock:
            self._closed = True
            defer = self._opened and self._running
            self._teardown_pending = defer
        if defer:
            self.logger.warning("Run still in flight at session close, runtime release deferred")
        elif self._opened:
            self._teardown()

    def bound_buffer(self, kind: TensorKind, index: int = 0) -> Optional[DeviceBuffer]:
        return self._bindings.get((kind, index))

    def _owns(self, buffer: DeviceBuffer) -> bool:
        return any(b is buffer for b in self._buffers)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
