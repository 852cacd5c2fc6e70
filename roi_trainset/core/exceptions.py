from __future__ import annotations


class UnsupportedGeometryError(ValueError):
    """Raised when an ROI is neither an area nor a line."""

    def __init__(self, roi) -> None:
        super().__init__(f"{roi!r} is neither an area nor a line")
        self.roi = roi


class TileComputeError(OSError):
    """Raised by image sources and extractors when a tile cannot be computed."""
