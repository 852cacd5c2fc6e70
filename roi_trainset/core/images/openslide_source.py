from __future__ import annotations

import numpy as np

try:
    import openslide
except ImportError as e:
    raise ImportError(
        "Reading slides needs OpenSlide. Install with: pip install openslide-python openslide-bin"
    ) from e

from .base import ImageSource, PyramidLevel


class OpenSlideImageSource(ImageSource):
    """Multi-resolution whole-slide image read through OpenSlide."""

    def __init__(self, path) -> None:
        super().__init__(path)
        self._slide: openslide.OpenSlide | None = None

    def _open(self) -> list[PyramidLevel]:
        try:
            self._slide = openslide.OpenSlide(self.path)
        except openslide.OpenSlideError as e:
            raise ValueError(f"OpenSlide cannot read {self.path}: {e}") from e
        return [
            PyramidLevel(downsample=float(ds), width=int(w), height=int(h))
            for ds, (w, h) in zip(self._slide.level_downsamples, self._slide.level_dimensions)
        ]

    def _read(self, x: int, y: int, level: int, width: int, height: int) -> np.ndarray:
        if self._slide is None:
            raise RuntimeError(f"{self.path} is closed")
        # transparent (unscanned) pixels come back as black
        return np.asarray(self._slide.read_region((x, y), level, (width, height)).convert("RGB"))

    def close(self) -> None:
        if self._slide is not None:
            self._slide.close()
            self._slide = None
        self._levels = None
