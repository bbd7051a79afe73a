"""
Imaging Package
Interchangeable image decoding and resizing backends
"""

from .image_supplier import (
    ImageSupplier, PillowImageSupplier, OpenCVImageSupplier, get_image_supplier
)

__all__ = [
    'ImageSupplier',
    'PillowImageSupplier',
    'OpenCVImageSupplier',
    'get_image_supplier'
]
