"""Image sources used to resolve tile requests."""

from .base import ImageSource, PyramidLevel
from .loader import backend_for, open_image, register_backend
from .pillow_source import PillowImageSource

__all__ = [
    "ImageSource",
    "PyramidLevel",
    "PillowImageSource",
    "backend_for",
    "open_image",
    "register_backend",
]
