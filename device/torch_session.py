#!/usr/bin/env python3
"""
TorchScript Session
Executes a TorchScript graph on CUDA or CPU for hosts without an NPU
"""
import io
from typing import Dict, Optional

import numpy as np
import torch

from common.errors import InferenceError, LoadError, ShapeQueryError
from common.tensor_types import TensorKind, TensorShape
from device.session import DeviceSession


def get_device(device: Optional[str] = None) -> torch.device:
    """Pick the requested device, else CUDA when available, else CPU"""
    if device is not None:
        return torch.device(device)
    if torch.cuda.is_available():
        torch.backends.cudnn.benchmark = True
        return torch.device('cuda')
    return torch.device('cpu')


class TorchScriptSession(DeviceSession):
    """Device session backed by a scripted or traced torch module"""

    output_layout = "nchw"

    def __init__(self, input_shape: Optional[TensorShape] = None, device: Optional[str] = None):
        super().__init__()
        self.input_shape = input_shape
        self.device = get_device(device)
        self.model = None

    def _load(self, graph_bytes: bytes):
        try:
            self.model = torch.jit.load(io.BytesIO(graph_bytes), map_location=self.device)
        except Exception as e:
            raise LoadError(f"Could not load TorchScript graph: {e}") from e
        self.model.eval()

    def _query_shape(self, kind: TensorKind, index: int) -> TensorShape:
        if index != 0:
            raise ShapeQueryError(f"Only tensor index 0 is supported, got {index}")
        if self.input_shape is None:
            raise ShapeQueryError("TorchScript graphs do not record an input shape; configure it")
        if kind is TensorKind.INPUT:
            return self.input_shape

        # One forward pass over a blank frame reveals the output geometry
        blank = np.zeros(self.input_shape.as_tuple(), dtype=np.uint8)
        try:
            output = self._forward(blank)
        except InferenceError as e:
            raise ShapeQueryError(f"Output shape query failed: {e}")
        if output.ndim != 4:
            raise ShapeQueryError(f"Expected NCHW output, got shape {tuple(output.shape)}")
        _, channels, height, width = output.shape
        return TensorShape(height, width, channels)

    def _forward(self, image: np.ndarray) -> np.ndarray:
        tensor = torch.from_numpy(np.ascontiguousarray(image)).permute(2, 0, 1).float() / 255.0
        tensor = tensor.unsqueeze(0).to(self.device)
        try:
            with torch.no_grad():
                output = self.model(tensor)
        except RuntimeError as e:
            raise InferenceError(f"TorchScript forward failed: {e}", -1)

        # torchvision segmentation models return {'out': ..., 'aux': ...}
        if isinstance(output, dict):
            output = output['out']
        elif isinstance(output, (tuple, list)):
            output = output[0]
        return output.detach().cpu().numpy()

    def _execute(self, inputs: Dict[int, np.ndarray]) -> Dict[int, np.ndarray]:
        return {0: self._forward(inputs[0])}

    def _teardown(self):
        self.model = None
        if self.device.type == 'cuda':
            torch.cuda.empty_cache()
