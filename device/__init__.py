"""
Device Package
Accelerator session capability and its runtime backends
"""

from common.config import PipelineConfig
from common.errors import ConfigError

from .session import DeviceSession
from .rknn_session import RKNNLiteSession


def create_session(config: PipelineConfig) -> DeviceSession:
    """Build an unopened session for the configured backend"""
    if config.backend == "rknn":
        return RKNNLiteSession(config.input_shape, config.output_shape)
    if config.backend == "torch":
        # torch is heavy; only import it when that backend is selected
        from .torch_session import TorchScriptSession
        return TorchScriptSession(config.input_shape, config.device)
    raise ConfigError(f"Unknown backend '{config.backend}'")


__all__ = [
    'DeviceSession',
    'RKNNLiteSession',
    'create_session'
]
