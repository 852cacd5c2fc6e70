"""Pure ROI geometry: shape classification, bounds and rasterizable shapes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from roi_trainset.core.exceptions import UnsupportedGeometryError
from roi_trainset.core.models import AREA_KINDS, LINE_KINDS, ROI

# Vertices used to approximate an ellipse outline.
ELLIPSE_VERTICES = 72


class ShapeKind(str, Enum):
    AREA = "area"
    LINE = "line"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class RasterShape:
    """Shape in full-resolution coordinates, ready to be filled or stroked.

    ``rings`` are closed outer boundaries for areas, or open paths for lines.
    ``holes`` only apply to areas.
    """

    kind: ShapeKind
    rings: tuple[np.ndarray, ...]
    holes: tuple[np.ndarray, ...] = ()

    def transformed(self, dx: float, dy: float, scale: float) -> RasterShape:
        """Translate by (dx, dy), then divide by ``scale``."""
        offset = np.array([dx, dy], dtype=np.float64)
        return RasterShape(
            kind=self.kind,
            rings=tuple((r + offset) / scale for r in self.rings),
            holes=tuple((h + offset) / scale for h in self.holes),
        )


def classify_shape(roi: ROI) -> ShapeKind:
    if roi.kind in AREA_KINDS:
        return ShapeKind.AREA
    if roi.kind in LINE_KINDS:
        return ShapeKind.LINE
    return ShapeKind.UNSUPPORTED


def bounding_box(roi: ROI) -> tuple[float, float, float, float]:
    """Return (x, y, w, h) of the ROI in full-resolution coordinates."""
    x0, y0 = roi.points.min(axis=0)
    x1, y1 = roi.points.max(axis=0)
    return float(x0), float(y0), float(x1 - x0), float(y1 - y0)


def _ellipse_ring(x: float, y: float, w: float, h: float) -> np.ndarray:
    theta = np.linspace(0.0, 2.0 * np.pi, ELLIPSE_VERTICES, endpoint=False)
    cx, cy = x + w / 2.0, y + h / 2.0
    return np.stack([cx + (w / 2.0) * np.cos(theta), cy + (h / 2.0) * np.sin(theta)], axis=1)


def raster_shape(roi: ROI) -> RasterShape:
    """Build the fillable (area) or strokable (line) shape for ``roi``.

    Raises
    ------
    UnsupportedGeometryError
        For ROI kinds that are neither areas nor lines (e.g. points).
    """
    kind = classify_shape(roi)
    if kind is ShapeKind.UNSUPPORTED:
        raise UnsupportedGeometryError(roi)

    if roi.kind == "rectangle":
        x, y, w, h = bounding_box(roi)
        ring = np.array([(x, y), (x + w, y), (x + w, y + h), (x, y + h)], dtype=np.float64)
        return RasterShape(kind=kind, rings=(ring,))
    if roi.kind == "ellipse":
        return RasterShape(kind=kind, rings=(_ellipse_ring(*bounding_box(roi)),))
    if kind is ShapeKind.AREA:
        return RasterShape(kind=kind, rings=(np.array(roi.points),), holes=tuple(roi.holes))
    return RasterShape(kind=kind, rings=(np.array(roi.points),))
