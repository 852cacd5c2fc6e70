"""Service implementations for tiling, masking, caching, assembly, preprocessing and export."""

from .annotations import Annotation, AnnotationSet, load_geojson
from .assembler import AssemblyStats, TrainingSetAssembler
from .cache import FeatureCache
from .preprocessing import FeaturePreprocessor
from .storage import TrainingSetWriter, read_training_set
from .tracker import ChangeTracker, TrackerState
from .training_data import TrainingData, TrainingDataService

__all__ = [
    "Annotation",
    "AnnotationSet",
    "load_geojson",
    "AssemblyStats",
    "TrainingSetAssembler",
    "FeatureCache",
    "FeaturePreprocessor",
    "TrainingSetWriter",
    "read_training_set",
    "ChangeTracker",
    "TrackerState",
    "TrainingData",
    "TrainingDataService",
]
