from __future__ import annotations

import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass

import cv2
import numpy as np

from roi_trainset.core.exceptions import TileComputeError
from roi_trainset.core.models import TileRequest

# Levels within this much of the requested downsample count as exact matches.
LEVEL_TOLERANCE = 0.01


@dataclass(frozen=True)
class PyramidLevel:
    downsample: float
    width: int
    height: int


class ImageSource(ABC):
    """An image that tile requests are resolved against.

    Backends open lazily in ``_open`` (returning their resolution pyramid,
    finest level first) and read raw RGB regions in ``_read``; level selection
    and resizing to the requested downsample happen in ``read_region``.
    """

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = str(path)
        self._levels: list[PyramidLevel] | None = None
        self._open_lock = threading.Lock()

    @property
    def identity(self) -> str:
        """Stable identifier used to decide whether cached features still apply."""
        return self.path

    @property
    def levels(self) -> list[PyramidLevel]:
        if self._levels is None:
            with self._open_lock:
                if self._levels is None:
                    self._levels = self._open()
        return self._levels

    @property
    def size(self) -> tuple[int, int]:
        """(width, height) at full resolution."""
        base = self.levels[0]
        return base.width, base.height

    @abstractmethod
    def _open(self) -> list[PyramidLevel]:
        """Open the backend and describe its pyramid."""

    @abstractmethod
    def _read(self, x: int, y: int, level: int, width: int, height: int) -> np.ndarray:
        """Read a (height, width, 3) uint8 region; ``x``/``y`` are full-resolution pixels."""

    @abstractmethod
    def close(self) -> None:
        """Release backend resources; the source reopens on next use."""

    def level_for(self, downsample: float) -> int:
        """Coarsest level that is still at least as fine as ``downsample``."""
        chosen = 0
        for i, level in enumerate(self.levels):
            if level.downsample <= downsample + LEVEL_TOLERANCE:
                chosen = i
        return chosen

    def read_region(self, request: TileRequest) -> np.ndarray:
        """Pixels of ``request`` at its downsample, shaped (height, width, 3).

        Raises
        ------
        TileComputeError
            If the backend cannot read the region.
        """
        level = self.level_for(request.downsample)
        level_ds = self.levels[level].downsample
        read_w = max(1, int(round(request.width / level_ds)))
        read_h = max(1, int(round(request.height / level_ds)))
        try:
            region = self._read(request.x, request.y, level, read_w, read_h)
        except Exception as e:  # noqa: BLE001
            raise TileComputeError(f"Failed to read {request} from {self.path}: {e}") from e

        out_w, out_h = request.output_size
        if region.shape[:2] != (out_h, out_w):
            shrinking = out_w < region.shape[1] or out_h < region.shape[0]
            region = cv2.resize(
                region,
                (out_w, out_h),
                interpolation=cv2.INTER_AREA if shrinking else cv2.INTER_CUBIC,
            )
        return region

    def __enter__(self) -> ImageSource:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.path}>"
