from __future__ import annotations

import logging

import cv2
import numpy as np

from roi_trainset.core.geometry import RasterShape, ShapeKind, raster_shape
from roi_trainset.core.models import ROI, TileRequest

logger = logging.getLogger("roi_trainset.masking")

# Drawing happens on a canvas this many times finer than the mask, then is
# area-averaged back down; fractional fixed-point bits passed to OpenCV.
_SUPERSAMPLE = 4
_SHIFT = 4
_AREA_THRESHOLD = 127
_LINE_THRESHOLD = 0


def mask_scale(request: TileRequest, target_width: int, target_height: int) -> float:
    """Average of the horizontal and vertical tile-to-grid ratios."""
    return 0.5 * (request.width / float(target_width)) + 0.5 * (
        request.height / float(target_height)
    )


def _to_fixed(ring: np.ndarray) -> np.ndarray:
    pts = (ring * _SUPERSAMPLE - 0.5) * (1 << _SHIFT)
    return np.round(pts).astype(np.int32).reshape(-1, 1, 2)


def draw_shape(shape: RasterShape, width: int, height: int, *, stroke_width: float = 1.0) -> np.ndarray:
    """Render ``shape`` (canvas coordinates, pixel edges on integers) as a 0/255 mask.

    Areas keep pixels at least half covered; lines keep any pixel the stroke touches.
    """
    ss = _SUPERSAMPLE
    canvas = np.zeros((height * ss, width * ss), dtype=np.uint8)
    if shape.kind is ShapeKind.AREA:
        for ring in shape.rings:
            cv2.fillPoly(canvas, [_to_fixed(ring)], 255, lineType=cv2.LINE_8, shift=_SHIFT)
        for hole in shape.holes:
            cv2.fillPoly(canvas, [_to_fixed(hole)], 0, lineType=cv2.LINE_8, shift=_SHIFT)
        threshold = _AREA_THRESHOLD
    elif shape.kind is ShapeKind.LINE:
        thickness = max(1, int(round(stroke_width * ss)))
        cv2.polylines(
            canvas,
            [_to_fixed(r) for r in shape.rings],
            isClosed=False,
            color=255,
            thickness=thickness,
            lineType=cv2.LINE_8,
            shift=_SHIFT,
        )
        threshold = _LINE_THRESHOLD
    else:
        raise ValueError(f"Cannot draw shape of kind {shape.kind}")

    coverage = cv2.resize(canvas, (width, height), interpolation=cv2.INTER_AREA)
    return np.where(coverage > threshold, 255, 0).astype(np.uint8)


def rasterize(
    roi: ROI,
    request: TileRequest,
    target_width: int,
    target_height: int,
    *,
    shape: RasterShape | None = None,
) -> np.ndarray:
    """Binary (0/255) mask of ``roi`` over ``request``, shaped (target_height, target_width).

    The shape is drawn at the tile footprint divided by the averaged scale factor;
    if that canvas does not match the feature grid it is resized to the grid with
    nearest-neighbour interpolation. Lines are stroked ``scale`` source pixels wide,
    i.e. one grid pixel.
    """
    if target_width <= 0 or target_height <= 0:
        raise ValueError(f"Target grid must be non-empty, got {target_width}x{target_height}")
    if shape is None:
        shape = raster_shape(roi)

    scale = mask_scale(request, target_width, target_height)
    canvas_w = max(1, int(round(request.width / scale)))
    canvas_h = max(1, int(round(request.height / scale)))
    local = shape.transformed(-request.x, -request.y, scale)
    # A stroke ``scale`` source pixels wide is one canvas pixel.
    mask = draw_shape(local, canvas_w, canvas_h, stroke_width=1.0)

    if mask.shape[0] != target_height or mask.shape[1] != target_width:
        logger.debug(
            "Resizing mask %sx%s -> feature grid %sx%s for %s",
            canvas_w,
            canvas_h,
            target_width,
            target_height,
            request,
        )
        mask = cv2.resize(mask, (target_width, target_height), interpolation=cv2.INTER_NEAREST)
    return mask
