#!/usr/bin/env python3
"""
Rockchip NPU Session
Runs a compiled .rknn graph through rknn-toolkit-lite2
"""
import os
import tempfile
from typing import Dict, Optional

import numpy as np

from common.errors import InferenceError, LoadError, ShapeQueryError
from common.tensor_types import TensorKind, TensorShape
from device.session import DeviceSession

RKNN_SUCC = 0


class RKNNLiteSession(DeviceSession):
    """Device session backed by RKNNLite

    The Python runtime does not expose tensor attribute queries, so shapes
    have to be supplied by the caller.
    """

    def __init__(self, input_shape: Optional[TensorShape] = None,
                 output_shape: Optional[TensorShape] = None,
                 output_layout: str = "nchw",
                 core_mask: Optional[int] = None):
        super().__init__()
        self.input_shape = input_shape
        self.output_shape = output_shape
        self.output_layout = output_layout
        self.core_mask = core_mask
        self._rknn = None

    def _load(self, graph_bytes: bytes):
        try:
            from rknnlite.api import RKNNLite
        except ImportError as e:
            raise LoadError(f"rknn-toolkit-lite2 is not installed: {e}")

        self._rknn = RKNNLite()

        # load_rknn only accepts a path
        fd, graph_path = tempfile.mkstemp(suffix=".rknn")
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(graph_bytes)
            ret = self._rknn.load_rknn(graph_path)
        finally:
            os.remove(graph_path)
        if ret != RKNN_SUCC:
            raise LoadError(f"load_rknn failed: {ret}")

        if self.core_mask is None:
            ret = self._rknn.init_runtime()
        else:
            ret = self._rknn.init_runtime(core_mask=self.core_mask)
        if ret != RKNN_SUCC:
            raise LoadError(f"init_runtime failed: {ret}")

    def _query_shape(self, kind: TensorKind, index: int) -> TensorShape:
        if index != 0:
            raise ShapeQueryError(f"Only tensor index 0 is supported, got {index}")
        shape = self.input_shape if kind is TensorKind.INPUT else self.output_shape
        if shape is None:
            raise ShapeQueryError(
                f"RKNNLite cannot report the {kind.value} shape; configure it explicitly")
        return shape

    def _execute(self, inputs: Dict[int, np.ndarray]) -> Dict[int, np.ndarray]:
        batch = [np.expand_dims(inputs[i], 0) for i in sorted(inputs)]
        outputs = self._rknn.inference(inputs=batch, data_format='nhwc')
        if outputs is None:
            raise InferenceError("rknn inference failed", -1)
        return {i: output for i, output in enumerate(outputs)}

    def _teardown(self):
        if self._rknn is not None:
            self._rknn.release()
            self._rknn = None
