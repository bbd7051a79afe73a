#!/usr/bin/env python3
"""
Post-processing for Segmentation Outputs
Reduces per-pixel class scores to a class mask and summarises it
"""
from typing import Dict

import numpy as np

from common.errors import InvalidShapeError

# Class indices are stored as uint8
MAX_CLASSES = 256


class PostProcessor:
    """Argmax reduction over the channel dimension of an [h][w][c] score tensor"""

    def validate(self, scores: np.ndarray):
        if scores.ndim != 3:
            raise InvalidShapeError(f"Expected an [h][w][c] score tensor, got shape {scores.shape}")
        height, width, channels = scores.shape
        if height == 0 or width == 0 or channels == 0:
            raise InvalidShapeError(f"Degenerate score tensor shape {height} x {width} x {channels}")
        if channels > MAX_CLASSES:
            raise InvalidShapeError(f"{channels} channels exceed the {MAX_CLASSES}-class mask range")

    def reduce(self, scores: np.ndarray) -> np.ndarray:
        """Pick the winning class per pixel

        Scores compare as plain unsigned 8-bit integers. When several
        channels share the maximum, the lowest index wins (numpy.argmax
        returns the first occurrence). Returns a flat row-major uint8 mask
        of height * width entries. Non-uint8 scores raise TypeError.
        """
        scores = np.asarray(scores)
        self.validate(scores)
        if scores.dtype != np.uint8:
            raise TypeError(f"Scores must be uint8, got {scores.dtype}")
        return np.argmax(scores, axis=-1).astype(np.uint8).reshape(-1)

    def calculate_class_metrics(self, mask: np.ndarray, num_classes: int) -> Dict:
        """Per-class pixel counts and percentages"""
        mask = np.asarray(mask).reshape(-1)
        total_pixels = int(mask.size)
        counts = np.bincount(mask, minlength=num_classes)[:num_classes]

        classes = {}
        for class_id, count in enumerate(counts):
            classes[class_id] = {
                'pixels': int(count),
                'percentage': (float(count) / total_pixels * 100) if total_pixels > 0 else 0.0
            }

        return {
            'total_pixels': total_pixels,
            'num_classes': num_classes,
            'dominant_class': int(np.argmax(counts)) if total_pixels > 0 else None,
            'classes': classes
        }


_default_processor = PostProcessor()


def reduce(scores: np.ndarray) -> np.ndarray:
    """Module-level shortcut for PostProcessor().reduce"""
    return _default_processor.reduce(scores)
