#!/usr/bin/env python3
"""
Image Suppliers
Decode an image file and resize it to the model's fixed input geometry
"""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from common.errors import ConfigError, DecodeError, LoadError

PIL_MODES = {1: "L", 2: "LA", 3: "RGB", 4: "RGBA"}


class ImageSupplier(ABC):
    """Produces an owned, contiguous uint8 (h, w, c) buffer per image"""

    name = "base"

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def load_and_resize(self, path: str, target_h: int, target_w: int, channels: int) -> np.ndarray:
        image_path = Path(path)
        if not image_path.is_file():
            raise LoadError(f"Image file not found: {image_path}")
        if channels not in PIL_MODES:
            raise DecodeError(f"Unsupported channel count {channels} for {image_path}")

        decoded, original = self._decode(image_path, channels)
        resized = self._resize(decoded, target_h, target_w)

        # Always hand back a fresh buffer, never a view over the decoded source
        pixels = np.array(resized, dtype=np.uint8, copy=True).reshape(target_h, target_w, channels)
        self.logger.info(
            f"Loaded image {image_path} ({original[1]} x {original[0]} x {original[2]}), "
            f"resized to {target_w} x {target_h} x {channels} [{self.name}]")
        return pixels

    @abstractmethod
    def _decode(self, path: Path, channels: int) -> Tuple[object, Tuple[int, int, int]]:
        """Return the decoded image and its original (h, w, c)"""

    @abstractmethod
    def _resize(self, image, target_h: int, target_w: int) -> np.ndarray:
        """Resize to the target geometry"""


class PillowImageSupplier(ImageSupplier):
    """Lightweight decoder and resizer built on Pillow"""

    name = "pillow"

    def _decode(self, path: Path, channels: int):
        try:
            with Image.open(path) as image:
                original_channels = len(image.getbands())
                converted = image.convert(PIL_MODES[channels])
        except (UnidentifiedImageError, OSError) as e:
            raise DecodeError(f"Failed to load image: {path} ({e})")
        return converted, (converted.height, converted.width, original_channels)

    def _resize(self, image, target_h: int, target_w: int) -> np.ndarray:
        return np.asarray(image.resize((target_w, target_h), Image.BILINEAR))


class OpenCVImageSupplier(ImageSupplier):
    """Decoder and resizer built on OpenCV"""

    name = "opencv"

    def _decode(self, path: Path, channels: int):
        flags = cv2.IMREAD_GRAYSCALE if channels == 1 else cv2.IMREAD_UNCHANGED
        image = cv2.imread(str(path), flags)
        if image is None:
            raise DecodeError(f"Failed to load image: {path}")

        original_channels = 1 if image.ndim == 2 else image.shape[2]
        original = (image.shape[0], image.shape[1], original_channels)
        return self._to_channels(image, channels), original

    @staticmethod
    def _to_channels(image: np.ndarray, channels: int) -> np.ndarray:
        """Convert OpenCV's BGR(A)/grey output to RGB(A)/grey order"""
        if image.dtype != np.uint8:
            image = cv2.convertScaleAbs(image, alpha=255.0 / max(float(image.max()), 1.0))
        if channels == 1:
            return image

        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGRA)
        elif image.shape[2] == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2BGRA)

        if channels == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2RGB)
        if channels == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
        # Grey plus alpha
        grey = cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        return np.dstack([grey, image[:, :, 3]])

    def _resize(self, image, target_h: int, target_w: int) -> np.ndarray:
        return cv2.resize(image, (target_w, target_h), interpolation=cv2.INTER_LINEAR)


def get_image_supplier(name: str) -> ImageSupplier:
    """Select an image supplier by name"""
    suppliers = {
        PillowImageSupplier.name: PillowImageSupplier,
        OpenCVImageSupplier.name: OpenCVImageSupplier,
    }
    if name not in suppliers:
        raise ConfigError(f"Unknown image backend '{name}', expected one of {sorted(suppliers)}")
    return suppliers[name]()
