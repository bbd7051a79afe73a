"""
Shared pytest fixtures
An in-memory device session that records every call and can be told to fail
"""
import time

import numpy as np
import pytest
from PIL import Image

from common.errors import BindError, InferenceError, LoadError, ShapeQueryError
from common.tensor_types import TensorKind, TensorShape
from device.session import DeviceSession


class RecordingSession(DeviceSession):
    """Device session double driven entirely from host memory"""

    def __init__(self, input_shape=TensorShape(2, 2, 3), output_shape=TensorShape(2, 2, 2),
                 scores=None, fail=(), run_status=None, run_delay=0.0):
        super().__init__()
        self.input_shape = input_shape
        self.output_shape = output_shape
        if scores is None:
            scores = np.zeros(output_shape.as_tuple(), dtype=np.uint8)
        self.scores = np.asarray(scores, dtype=np.uint8)
        self.fail = set(fail)
        self.run_status = run_status
        self.run_delay = run_delay
        self.calls = []
        self.freed = []
        self.last_input = None
        self.executing = False
        self.teardowns = []

    def open(self, graph_bytes):
        self.calls.append('open')
        return super().open(graph_bytes)

    def query_tensor_shape(self, kind, index=0):
        self.calls.append(('query', kind))
        return super().query_tensor_shape(kind, index)

    def create_buffer(self, size):
        self.calls.append('create_buffer')
        if 'create_buffer' in self.fail:
            raise BindError("device out of memory")
        return super().create_buffer(size)

    def bind(self, buffer, kind, index=0):
        self.calls.append(('bind', kind))
        if ('bind', kind) in self.fail:
            raise BindError(f"set_io_mem rejected {kind.value}")
        return super().bind(buffer, kind, index)

    def run(self):
        self.calls.append('run')
        return super().run()

    def free_buffer(self, buffer):
        self.calls.append('free')
        self.freed.append(buffer)
        return super().free_buffer(buffer)

    def close(self):
        self.calls.append('close')
        return super().close()

    def _load(self, graph_bytes):
        if 'load' in self.fail:
            raise LoadError("rknn_init failed: -1")

    def _query_shape(self, kind, index):
        if 'query' in self.fail:
            raise ShapeQueryError("context not initialised")
        return self.input_shape if kind is TensorKind.INPUT else self.output_shape

    def _execute(self, inputs):
        self.executing = True
        try:
            if self.run_delay:
                time.sleep(self.run_delay)
        finally:
            self.executing = False
        if self.run_status is not None:
            raise InferenceError("rknn_run failed", self.run_status)
        self.last_input = inputs[0].copy()
        return {0: self.scores}

    def _teardown(self):
        # Whether the runtime was still executing when it was released
        self.teardowns.append(self.executing)

    def free_count(self, buffer) -> int:
        return sum(1 for b in self.freed if b is buffer)


@pytest.fixture
def make_session():
    return RecordingSession


@pytest.fixture
def opened_session():
    session = RecordingSession()
    session.open(b"graph")
    yield session
    session.close()


@pytest.fixture
def model_file(tmp_path):
    path = tmp_path / "model.rknn"
    path.write_bytes(b"\x00RKNN-test-graph")
    return path


@pytest.fixture
def image_file(tmp_path):
    path = tmp_path / "input.png"
    Image.new("RGB", (8, 6), (255, 0, 0)).save(path)
    return path
