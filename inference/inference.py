#!/usr/bin/env python3
"""
Segmentation Inference Pipeline
Load model -> bind input -> run on device -> argmax -> colorized mask image
"""
import json
import logging
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

import numpy as np

from common.config import PipelineConfig
from common.errors import EncodeError, InvalidShapeError, LoadError
from common.tensor_types import TensorKind, TensorShape
from device import create_session
from device.session import DeviceSession
from imaging.image_supplier import ImageSupplier, get_image_supplier
from inference.inference_runner import InferenceRunner
from inference.mask_encoder import ColorPalette, MaskEncoder
from inference.post_processing import PostProcessor
from inference.tensor_binder import TensorBinder


def load_model_file(model_path: str) -> bytes:
    """Read the compiled graph into memory"""
    path = Path(model_path)
    if not path.is_file():
        raise LoadError(f"Model file not found: {path}")
    try:
        data = path.read_bytes()
    except OSError as e:
        raise LoadError(f"Failed to load model file {path}: {e}")
    if not data:
        raise LoadError(f"Model file is empty: {path}")
    return data


@dataclass
class PipelineTimings:
    """Advisory per-phase timings in milliseconds"""
    preprocess_ms: float = 0.0
    inference_ms: float = 0.0
    postprocess_ms: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return {
            'preprocess_ms': round(self.preprocess_ms, 3),
            'inference_ms': round(self.inference_ms, 3),
            'postprocess_ms': round(self.postprocess_ms, 3)
        }


@dataclass
class PipelineResult:
    mask: np.ndarray
    pixels: np.ndarray
    input_shape: TensorShape
    output_shape: TensorShape
    output_path: str
    timings: PipelineTimings
    metrics: Dict = field(default_factory=dict)
    comparison_path: Optional[str] = None

    def save_metadata(self, path: str) -> str:
        metadata = {
            'output_path': self.output_path,
            'input_shape': list(self.input_shape.as_tuple()),
            'output_shape': list(self.output_shape.as_tuple()),
            'timings': self.timings.as_dict(),
            'metrics': self.metrics,
            'comparison_path': self.comparison_path,
            'timestamp': datetime.now().isoformat()
        }
        try:
            with open(path, 'w') as f:
                json.dump(metadata, f, indent=2)
        except OSError as e:
            raise EncodeError(f"Failed to save metadata: {path} ({e})")
        return str(path)


class SegmentationPipeline:
    """Single-shot segmentation of one still image on an accelerator"""

    def __init__(self, config: Optional[PipelineConfig] = None,
                 session_factory: Optional[Callable[[], DeviceSession]] = None,
                 image_supplier: Optional[ImageSupplier] = None):
        self.config = config or PipelineConfig()
        self.session_factory = session_factory or (lambda: create_session(self.config))
        self.image_supplier = image_supplier or get_image_supplier(self.config.image_backend)
        self.palette = ColorPalette.from_config(self.config.palette)

        self.runner = InferenceRunner(self.config.timeout)
        self.post_processor = PostProcessor()
        self.encoder = MaskEncoder(self.palette)
        self.logger = logging.getLogger(__name__)

    def run(self, model_path: str, image_path: str) -> PipelineResult:
        timings = PipelineTimings()
        start = time.perf_counter()

        # Read the model before touching the device so a bad path costs nothing
        graph = load_model_file(model_path)
        self.logger.info(f"Loaded model {model_path} ({len(graph)} bytes)")

        with ExitStack() as stack:
            session = self.session_factory()
            stack.callback(session.close)
            session.open(graph)
            del graph

            binder = TensorBinder(session)
            input_shape = self._checked_shape(binder, TensorKind.INPUT)
            self.logger.info(f"Model input: {input_shape}")

            image = self.image_supplier.load_and_resize(
                image_path, input_shape.height, input_shape.width, input_shape.channels)
            stack.enter_context(binder.bound_input(image, input_shape))

            output_shape = self._checked_shape(binder, TensorKind.NATIVE_NHWC_OUTPUT)
            self.logger.info(f"Model output: {output_shape}")
            self.palette.validate(output_shape.channels)
            output_buffer = stack.enter_context(binder.bound_output(output_shape))
            timings.preprocess_ms = (time.perf_counter() - start) * 1000.0

            timings.inference_ms = self.runner.run(session)

            start = time.perf_counter()
            mask = self.post_processor.reduce(output_buffer.view(output_shape))
            pixels = self.encoder.encode(mask, output_shape)
            output_path = self.encoder.write(
                self.config.output_path, pixels, output_shape.width, output_shape.height)
            timings.postprocess_ms = (time.perf_counter() - start) * 1000.0

        result = PipelineResult(
            mask=mask,
            pixels=pixels,
            input_shape=input_shape,
            output_shape=output_shape,
            output_path=output_path,
            timings=timings,
            metrics=self.post_processor.calculate_class_metrics(mask, output_shape.channels)
        )

        if self.config.comparison_path:
            result.comparison_path = self.encoder.save_comparison(
                image, pixels, output_shape, self.config.comparison_path, Path(image_path).name)
        if self.config.save_metadata:
            metadata_path = str(Path(output_path).with_suffix('.json'))
            result.save_metadata(metadata_path)
            self.logger.info(f"Metadata saved to {metadata_path}")

        self._log_timings(timings)
        return result

    def _checked_shape(self, binder: TensorBinder, kind: TensorKind) -> TensorShape:
        shape = binder.query_shape(kind)
        if shape.is_degenerate():
            raise InvalidShapeError(f"Model {kind.value} shape {shape} has a zero dimension")
        return shape

    def _log_timings(self, timings: PipelineTimings):
        self.logger.debug(f"Preprocess time: {timings.preprocess_ms:.2f} ms")
        self.logger.debug(f"Inference time: {timings.inference_ms:.2f} ms")
        self.logger.debug(f"Postprocess time: {timings.postprocess_ms:.2f} ms")
