#!/usr/bin/env python3
"""
Tests for the TorchScript session backend
"""
import io

import numpy as np
import pytest

torch = pytest.importorskip("torch")
import torch.nn as nn

from common.errors import LoadError, ShapeQueryError
from common.tensor_types import TensorKind, TensorShape
from device.torch_session import TorchScriptSession, get_device
from inference.post_processing import reduce


class TinySegmenter(nn.Module):
    """1x1 conv head that always favours class 1"""

    def __init__(self):
        super().__init__()
        self.head = nn.Conv2d(3, 2, kernel_size=1)
        with torch.no_grad():
            self.head.weight.zero_()
            self.head.bias.copy_(torch.tensor([0.0, 5.0]))
        self.pool = nn.AvgPool2d(2)

    def forward(self, x):
        return self.pool(self.head(x))


@pytest.fixture
def graph_bytes():
    scripted = torch.jit.script(TinySegmenter().eval())
    buffer = io.BytesIO()
    torch.jit.save(scripted, buffer)
    return buffer.getvalue()


def test_get_device_explicit():
    assert get_device('cpu').type == 'cpu'


def test_reports_shapes(graph_bytes):
    with TorchScriptSession(TensorShape(8, 6, 3), device='cpu') as session:
        session.open(graph_bytes)
        assert session.query_tensor_shape(TensorKind.INPUT) == TensorShape(8, 6, 3)
        assert session.query_tensor_shape(TensorKind.NATIVE_NHWC_OUTPUT) == TensorShape(4, 3, 2)


def test_run_produces_uint8_nhwc_scores(graph_bytes):
    with TorchScriptSession(TensorShape(8, 6, 3), device='cpu') as session:
        session.open(graph_bytes)
        in_shape = session.query_tensor_shape(TensorKind.INPUT)
        out_shape = session.query_tensor_shape(TensorKind.NATIVE_NHWC_OUTPUT)

        inp = session.create_buffer(in_shape.size)
        inp.write(np.full(in_shape.as_tuple(), 128, dtype=np.uint8))
        out = session.create_buffer(out_shape.size)
        session.bind(inp, TensorKind.INPUT)
        session.bind(out, TensorKind.NATIVE_NHWC_OUTPUT)
        session.run()

        scores = out.view(out_shape)
        assert (scores[:, :, 1] > scores[:, :, 0]).all()
        assert reduce(scores).tolist() == [1] * out_shape.pixels


def test_input_shape_required(graph_bytes):
    with TorchScriptSession(device='cpu') as session:
        session.open(graph_bytes)
        with pytest.raises(ShapeQueryError):
            session.query_tensor_shape(TensorKind.NATIVE_NHWC_OUTPUT)


def test_invalid_graph():
    with pytest.raises(LoadError):
        TorchScriptSession(TensorShape(8, 6, 3), device='cpu').open(b"definitely not a graph")
