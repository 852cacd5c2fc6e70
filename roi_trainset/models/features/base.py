from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import replace

import numpy as np

from roi_trainset.core.images import ImageSource
from roi_trainset.core.models import TileRequest

logger = logging.getLogger("roi_trainset.models.features")


class FeatureExtractor(ABC):
    """Base interface for tile-level, per-pixel feature extractors.

    ``input_width``/``input_height`` are the tile size (at the working downsample)
    the extractor wants to receive; the returned feature grid may be smaller when
    the extractor pools internally.
    """

    name: str
    input_width: int
    input_height: int
    # Context pixels (at the working downsample) read on every side of a tile.
    padding: int = 0

    @property
    def identity(self) -> str:
        """Identifier of this extractor instance; changes invalidate cached features."""
        return f"{self.name}@{id(self):x}"

    @property
    def n_features(self) -> int | None:
        return None

    @abstractmethod
    def calculate_features(self, image: ImageSource, request: TileRequest) -> np.ndarray:
        """Return the (rows, cols, channels) feature grid for ``request``.

        May raise ``OSError`` (e.g. ``TileComputeError``) when the tile cannot be read.
        """

    def channel_names(self) -> list[str]:
        """Column names of the feature matrix; generic when the extractor has none."""
        n = self.n_features
        return [f"feature_{i}" for i in range(n)] if n else []

    def padded_request(self, request: TileRequest) -> TileRequest:
        """``request`` widened by ``padding`` output pixels on every side."""
        if self.padding <= 0:
            return request
        pad = int(math.ceil(self.padding * request.downsample))
        return replace(
            request,
            x=request.x - pad,
            y=request.y - pad,
            width=request.width + 2 * pad,
            height=request.height + 2 * pad,
        )

    def cleanup(self) -> None:
        """Optional clean-up hook."""
        return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name} {self.input_width}x{self.input_height}>"


def as_feature_grid(block: np.ndarray) -> np.ndarray:
    """Coerce an extractor result to a float32 (rows, cols, channels) grid."""
    arr = np.asarray(block)
    if arr.ndim == 2:
        arr = arr[:, :, None]
    if arr.ndim != 3:
        raise ValueError(f"Feature block must be 2-D or 3-D, got shape {arr.shape}")
    return arr.astype(np.float32, copy=False)


def crop_window(rows: int, cols: int, request: TileRequest) -> tuple[slice, slice]:
    """Row and column slices that centre-crop a ``padded_request(request)`` grid to ``request``."""
    out_w, out_h = request.output_size
    if rows < out_h or cols < out_w:
        raise ValueError(f"Grid {cols}x{rows} is smaller than the tile {out_w}x{out_h}")
    top = (rows - out_h) // 2
    left = (cols - out_w) // 2
    return slice(top, top + out_h), slice(left, left + out_w)
