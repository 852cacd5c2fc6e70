from __future__ import annotations

import numpy as np
from PIL import Image

from .base import ImageSource, PyramidLevel


class PillowImageSource(ImageSource):
    """Single-resolution image decoded fully into memory with Pillow."""

    def __init__(self, path) -> None:
        super().__init__(path)
        self._image: Image.Image | None = None

    def _open(self) -> list[PyramidLevel]:
        try:
            with Image.open(self.path) as img:
                self._image = img.convert("RGB")
        except FileNotFoundError:
            raise
        except OSError as e:
            raise ValueError(f"Cannot open image {self.path}: {e}") from e
        width, height = self._image.size
        return [PyramidLevel(downsample=1.0, width=width, height=height)]

    def _read(self, x: int, y: int, level: int, width: int, height: int) -> np.ndarray:
        if level != 0 or self._image is None:
            raise ValueError(f"{self.path} has a single level, got level {level}")
        # crop() fills anything outside the image with black
        return np.asarray(self._image.crop((x, y, x + width, y + height)))

    def close(self) -> None:
        if self._image is not None:
            self._image.close()
            self._image = None
        self._levels = None
