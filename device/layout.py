#!/usr/bin/env python3
"""
Output Layout Conversion
Brings raw runtime outputs into the uint8 [h][w][c] score layout
"""
import numpy as np

from common.errors import InferenceError
from common.tensor_types import TensorShape

# Dense ranks of up to this many channels fit in a uint8 score
MAX_RANKED_CHANNELS = 256


def _rank_scores(scores: np.ndarray) -> np.ndarray:
    """Replace each pixel's channel scores with their dense per-pixel rank

    Equal values share a rank and any strict difference, however small,
    keeps a strict order, so argmax (ties to the lowest channel) is the
    same on the ranks as on the raw scores.
    """
    if scores.shape[-1] > MAX_RANKED_CHANNELS:
        raise InferenceError(
            f"Cannot rank {scores.shape[-1]} channels into uint8 scores")
    rows = scores.reshape(-1, scores.shape[-1])
    order = np.argsort(rows, axis=-1, kind="stable")
    ordered = np.take_along_axis(rows, order, axis=-1)
    steps = np.zeros(ordered.shape, dtype=np.int64)
    steps[:, 1:] = ordered[:, 1:] != ordered[:, :-1]
    ranks = np.empty(rows.shape, dtype=np.uint8)
    np.put_along_axis(ranks, order, np.cumsum(steps, axis=-1).astype(np.uint8), axis=-1)
    return ranks.reshape(scores.shape)


def to_score_layout(output: np.ndarray, shape: TensorShape, layout: str = "nhwc") -> np.ndarray:
    """Convert one runtime output to a contiguous uint8 HWC array matching shape"""
    array = np.asarray(output)
    if array.ndim == 4:
        if array.shape[0] != 1:
            raise InferenceError(f"Expected batch size 1, got output of shape {array.shape}")
        array = array[0]
    if array.ndim != 3:
        raise InferenceError(f"Expected a 3-D output tensor, got shape {array.shape}")

    if layout == "nchw":
        array = array.transpose(1, 2, 0)
    elif layout != "nhwc":
        raise InferenceError(f"Unknown output layout '{layout}'")

    if array.shape != shape.as_tuple():
        raise InferenceError(
            f"Output of shape {array.shape} does not match expected {shape.as_tuple()}")

    if array.dtype == np.uint8:
        scores = array
    elif array.dtype == np.int8:
        # Order-preserving shift into the unsigned range
        scores = (array.astype(np.int16) + 128).astype(np.uint8)
    elif np.issubdtype(array.dtype, np.floating) or np.issubdtype(array.dtype, np.integer):
        scores = _rank_scores(array)
    else:
        raise InferenceError(f"Unsupported output dtype {array.dtype}")
    return np.ascontiguousarray(scores)
