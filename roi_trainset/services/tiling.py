from __future__ import annotations

import math

from roi_trainset.core.geometry import bounding_box
from roi_trainset.core.models import ROI, TileRequest


def tile_size_for(input_width: int, input_height: int, downsample: float) -> tuple[int, int]:
    """Full-resolution tile footprint for an extractor input size at ``downsample``."""
    tw = max(1, int(round(input_width * downsample)))
    th = max(1, int(round(input_height * downsample)))
    return tw, th


def compute_tiles(
    roi: ROI, tile_width: int, tile_height: int, downsample: float
) -> list[TileRequest]:
    """Cover the ROI bounding box with a regular grid of equally sized tiles.

    The grid is anchored at the bounding box top-left corner rather than a global
    image grid; tiles may extend past the ROI (and the image), but every pixel of
    the bounding box lies in exactly one tile.
    """
    if tile_width <= 0 or tile_height <= 0:
        raise ValueError(f"Tile size must be positive, got {tile_width}x{tile_height}")
    x, y, w, h = bounding_box(roi)
    x0, y0 = int(x), int(y)
    x_end = int(math.ceil(x + w))
    y_end = int(math.ceil(y + h))
    # Degenerate (zero width/height) bounds still need the tile holding them.
    x_end = max(x_end, x0 + 1)
    y_end = max(y_end, y0 + 1)

    requests: list[TileRequest] = []
    for ty in range(y0, y_end, tile_height):
        for tx in range(x0, x_end, tile_width):
            requests.append(
                TileRequest(
                    x=tx,
                    y=ty,
                    width=tile_width,
                    height=tile_height,
                    z=roi.z,
                    t=roi.t,
                    downsample=float(downsample),
                )
            )
    return requests
