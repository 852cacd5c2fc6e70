"""Core configuration, domain models and geometry."""

from .config import (
    AppConfig,
    AssemblyConfig,
    FeatureExtractionConfig,
    OutputConfig,
    PreprocessingConfig,
)
from .exceptions import TileComputeError, UnsupportedGeometryError
from .geometry import RasterShape, ShapeKind, bounding_box, classify_shape, raster_shape
from .models import (
    ROI,
    AnnotationClass,
    AssemblyKey,
    ClassLabel,
    RowBlock,
    TileRequest,
    TrainingSet,
)

__all__ = [
    "AppConfig",
    "AssemblyConfig",
    "FeatureExtractionConfig",
    "OutputConfig",
    "PreprocessingConfig",
    "TileComputeError",
    "UnsupportedGeometryError",
    "RasterShape",
    "ShapeKind",
    "bounding_box",
    "classify_shape",
    "raster_shape",
    "ROI",
    "AnnotationClass",
    "AssemblyKey",
    "ClassLabel",
    "RowBlock",
    "TileRequest",
    "TrainingSet",
]
