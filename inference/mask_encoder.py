#!/usr/bin/env python3
"""
Mask Encoder
Maps class indices to RGB colors and writes the colorized mask image
"""
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple, Union

import cv2
import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from common.errors import ConfigError, EncodeError, InvalidShapeError, PaletteMismatchError
from common.tensor_types import TensorShape

RGB = Tuple[int, int, int]


def create_pascal_label_colormap(size: int = 256) -> np.ndarray:
    """PASCAL VOC segmentation benchmark colormap"""
    colormap = np.zeros((size, 3), dtype=int)
    indices = np.arange(size, dtype=int)

    for shift in reversed(range(8)):
        for channel in range(3):
            colormap[:, channel] |= ((indices >> channel) & 1) << shift
        indices >>= 3

    return colormap.astype(np.uint8)


def get_palette_configs() -> Dict[str, Dict[int, RGB]]:
    """Named palette presets"""
    pascal = create_pascal_label_colormap()
    return {
        'binary': {
            0: (255, 0, 255),
            1: (0, 0, 0),
        },
        'pascal': {i: tuple(int(c) for c in pascal[i]) for i in range(len(pascal))},
    }


class ColorPalette:
    """Dense class index -> RGB lookup table"""

    def __init__(self, colors: Mapping[int, RGB]):
        if not colors:
            raise ConfigError("Palette must define at least one class")
        keys = sorted(int(k) for k in colors)
        if keys != list(range(len(keys))):
            raise ConfigError(f"Palette classes must be contiguous from 0, got {keys}")

        table = np.zeros((len(keys), 3), dtype=np.uint8)
        for class_id, color in colors.items():
            if len(color) != 3 or any(not 0 <= int(c) <= 255 for c in color):
                raise ConfigError(f"Class {class_id} color must be three 0-255 values, got {color}")
            table[int(class_id)] = [int(c) for c in color]
        self.table = table

    @classmethod
    def from_config(cls, palette: Union[str, Mapping[int, RGB]]) -> "ColorPalette":
        if isinstance(palette, str):
            presets = get_palette_configs()
            if palette not in presets:
                raise ConfigError(f"Unknown palette '{palette}', expected one of {sorted(presets)}")
            return cls(presets[palette])
        return cls(palette)

    def __len__(self) -> int:
        return len(self.table)

    def color(self, class_id: int) -> RGB:
        return tuple(int(c) for c in self.table[class_id])

    def validate(self, channels: int):
        """Fail fast when the model can emit classes the palette has no color for"""
        if channels > len(self):
            raise PaletteMismatchError(
                f"Palette defines {len(self)} classes but the model outputs {channels} channels")


class MaskEncoder:
    """Colorizes segmentation masks and serializes them to image files"""

    def __init__(self, palette: ColorPalette):
        self.palette = palette
        self.logger = logging.getLogger(__name__)

    def encode(self, mask: np.ndarray, shape: TensorShape) -> np.ndarray:
        """Interleaved row-major RGB buffer of width * height * 3 bytes"""
        mask = np.asarray(mask, dtype=np.uint8).reshape(-1)
        if mask.size != shape.pixels:
            raise InvalidShapeError(f"Mask has {mask.size} entries, shape {shape} needs {shape.pixels}")
        assert mask.size == 0 or int(mask.max()) < len(self.palette), "class index outside palette"
        return self.palette.table[mask].reshape(-1)

    def write(self, path: str, pixels: np.ndarray, width: int, height: int) -> str:
        """Write an RGB buffer as an image, overwriting any existing file"""
        pixels = np.asarray(pixels, dtype=np.uint8)
        if pixels.size != width * height * 3:
            raise EncodeError(f"Pixel buffer of {pixels.size} bytes does not match {width} x {height} x 3")

        image_bgr = cv2.cvtColor(pixels.reshape(height, width, 3), cv2.COLOR_RGB2BGR)
        try:
            ok = cv2.imwrite(str(path), image_bgr)
        except cv2.error as e:
            raise EncodeError(f"Failed to save image: {path} ({e})")
        if not ok:
            raise EncodeError(f"Failed to save image: {path}")

        self.logger.debug(f"Saved colored mask: {path}")
        return str(path)

    def save_comparison(self, image: np.ndarray, pixels: np.ndarray, shape: TensorShape,
                        save_path: str, title: Optional[str] = None) -> str:
        """Save the model input and the colorized mask side by side"""
        mask_rgb = np.asarray(pixels, dtype=np.uint8).reshape(shape.height, shape.width, 3)

        fig, axes = plt.subplots(1, 2, figsize=(10, 5))
        if image.ndim == 3 and image.shape[2] == 1:
            axes[0].imshow(image[:, :, 0], cmap='gray')
        else:
            axes[0].imshow(image[:, :, :3])
        axes[0].set_title('Model Input')
        axes[0].axis('off')

        axes[1].imshow(mask_rgb)
        axes[1].set_title('Segmentation Mask')
        axes[1].axis('off')

        if title:
            fig.suptitle(title)
        plt.tight_layout()

        try:
            Path(save_path).parent.mkdir(parents=True, exist_ok=True)
            plt.savefig(save_path, dpi=150, bbox_inches='tight')
        except (OSError, ValueError) as e:
            # matplotlib raises ValueError for unknown file extensions
            raise EncodeError(f"Failed to save comparison: {save_path} ({e})")
        finally:
            plt.close(fig)

        self.logger.info(f"Saved comparison: {save_path}")
        return str(save_path)
