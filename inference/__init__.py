"""
Inference System Package
Tensor binding, device execution, argmax post-processing and mask encoding
"""

from .tensor_binder import TensorBinder
from .inference_runner import InferenceRunner
from .post_processing import PostProcessor, reduce
from .mask_encoder import ColorPalette, MaskEncoder, get_palette_configs
from .inference import SegmentationPipeline, PipelineResult, PipelineTimings

__all__ = [
    'TensorBinder',
    'InferenceRunner',
    'PostProcessor',
    'reduce',
    'ColorPalette',
    'MaskEncoder',
    'get_palette_configs',
    'SegmentationPipeline',
    'PipelineResult',
    'PipelineTimings'
]
