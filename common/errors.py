#!/usr/bin/env python3
"""
Error Taxonomy for the Segmentation Pipeline
Every failure is fatal to a run; the CLI maps them to a non-zero exit code
"""
from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline failures"""


class LoadError(PipelineError):
    """Model or image file unreadable"""


class DecodeError(LoadError):
    """Image file present but could not be decoded"""


class ShapeQueryError(PipelineError):
    """Device session cannot report tensor geometry"""


class BindError(PipelineError):
    """Buffer allocation or slot binding rejected by the device"""


class InferenceError(PipelineError):
    """Device reported a non-success status for a run"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is None:
            return base
        return f"{base} (status {self.status_code})"


class InvalidShapeError(PipelineError):
    """Degenerate tensor dimensions"""


class EncodeError(PipelineError):
    """Output image serialization failed"""


class PaletteMismatchError(PipelineError):
    """Color palette does not cover every class the model produces"""


class ConfigError(PipelineError):
    """Invalid configuration file, environment value or flag"""
