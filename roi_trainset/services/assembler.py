from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Collection, Iterable, Mapping

import numpy as np
from tqdm import tqdm

from roi_trainset.core.exceptions import UnsupportedGeometryError
from roi_trainset.core.geometry import RasterShape, raster_shape
from roi_trainset.core.images import ImageSource
from roi_trainset.core.models import (
    ROI,
    AnnotationClass,
    AssemblyKey,
    ClassLabel,
    RowBlock,
    TileRequest,
    TrainingSet,
)
from roi_trainset.models.features import FeatureExtractor, as_feature_grid
from roi_trainset.services.cache import FeatureCache
from roi_trainset.services.masking import rasterize
from roi_trainset.services.tiling import compute_tiles, tile_size_for

logger = logging.getLogger("roi_trainset.assembler")


@dataclass
class AssemblyStats:
    rois_cached: int = 0
    rois_computed: int = 0
    rois_skipped: int = 0
    rois_empty: int = 0
    tiles_computed: int = 0
    tiles_failed: int = 0


def ordered_classes(class_mapping: Mapping[AnnotationClass, Collection[ROI]]) -> list[AnnotationClass]:
    """Classes in label order (sorted by name)."""
    return sorted(class_mapping.keys(), key=lambda c: c.name)


class TrainingSetAssembler:
    """Turns class-labelled ROIs into a (features, labels) training set.

    Features are computed per tile by an external extractor, masked by the ROI
    shape at the feature grid's resolution and memoised per ROI in a
    ``FeatureCache``. Not thread-safe: callers serialise ``assemble``.
    """

    def __init__(
        self,
        image: ImageSource,
        extractor: FeatureExtractor,
        cache: FeatureCache | None = None,
        *,
        downsample: float = 1.0,
        tile_workers: int | None = None,
        show_progress: bool = False,
    ) -> None:
        if downsample <= 0:
            raise ValueError(f"downsample must be > 0, got {downsample}")
        self.image = image
        self.extractor = extractor
        self.cache = cache if cache is not None else FeatureCache()
        self.downsample = float(downsample)
        self.tile_workers = max(1, int(tile_workers)) if tile_workers else 1
        self.show_progress = show_progress
        self.stats = AssemblyStats()

    @property
    def key(self) -> AssemblyKey:
        return AssemblyKey(
            image_id=self.image.identity,
            extractor_id=self.extractor.identity,
            downsample=self.downsample,
        )

    def tile_requests(self, roi: ROI) -> list[TileRequest]:
        tw, th = tile_size_for(
            self.extractor.input_width, self.extractor.input_height, self.downsample
        )
        return compute_tiles(roi, tw, th, self.downsample)

    # --- per tile ------------------------------------------------------------------
    def _tile_rows(self, roi: ROI, shape: RasterShape, request: TileRequest) -> np.ndarray | None:
        """Feature rows of ``request`` that fall inside ``roi``; None if the tile failed."""
        try:
            grid = as_feature_grid(self.extractor.calculate_features(self.image, request))
        except Exception as e:  # noqa: BLE001
            logger.warning("Unable to calculate features for %s - will be skipped: %s", request, e)
            return None

        rows_h, cols_w, n_channels = grid.shape
        if rows_h == 0 or cols_w == 0:
            return grid.reshape(0, n_channels)
        mask = rasterize(roi, request, cols_w, rows_h, shape=shape)
        inside = mask.reshape(-1) != 0
        return grid.reshape(rows_h * cols_w, n_channels)[inside]

    def _iter_tile_rows(
        self, roi: ROI, shape: RasterShape, requests: list[TileRequest], executor
    ) -> Iterable[np.ndarray | None]:
        if executor is None or len(requests) <= 1:
            return (self._tile_rows(roi, shape, r) for r in requests)
        # map() yields in submission order, so rows stay in tile order.
        return executor.map(lambda r: self._tile_rows(roi, shape, r), requests)

    # --- per ROI -------------------------------------------------------------------
    def _compute_roi(self, roi: ROI, shape: RasterShape, executor=None) -> np.ndarray:
        requests = self.tile_requests(roi)
        rows: list[np.ndarray] = []
        n_features = self.extractor.n_features
        for selected in self._iter_tile_rows(roi, shape, requests, executor):
            if selected is None:
                self.stats.tiles_failed += 1
                continue
            self.stats.tiles_computed += 1
            n_features = selected.shape[1]
            if selected.shape[0] > 0:
                rows.append(selected)
        if not rows:
            return np.empty((0, n_features or 0), dtype=np.float32)
        return np.concatenate(rows, axis=0)

    def roi_features(self, roi: ROI, executor=None) -> np.ndarray | None:
        """Masked feature matrix for ``roi`` (cached), or None if its shape is unsupported."""
        matrix = self.cache.get(roi)
        if matrix is not None:
            self.stats.rois_cached += 1
            logger.debug("Using cached features for %s", roi)
            return matrix
        try:
            shape = raster_shape(roi)
        except UnsupportedGeometryError as e:
            logger.warning("%s; will be skipped", e)
            self.stats.rois_skipped += 1
            return None
        matrix = self._compute_roi(roi, shape, executor)
        self.cache.put(roi, matrix)
        self.stats.rois_computed += 1
        return matrix

    # --- whole set -----------------------------------------------------------------
    def assemble(
        self, class_mapping: Mapping[AnnotationClass, Collection[ROI]]
    ) -> TrainingSet | None:
        """Assemble the training set, or None when fewer than two classes have data."""
        self.stats = AssemblyStats()
        classes = [c for c in ordered_classes(class_mapping) if class_mapping[c]]
        if len(classes) <= 1:
            logger.info("Need at least two annotated classes, found %d", len(classes))
            return None

        self.cache.bind(self.key)

        class_labels: dict[int, ClassLabel] = {}
        all_features: list[np.ndarray] = []
        all_targets: list[np.ndarray] = []
        blocks: list[RowBlock] = []
        labels_with_rows: set[int] = set()
        n_rows = 0

        total = sum(len(class_mapping[c]) for c in classes)
        progress = tqdm(total=total, disable=not self.show_progress, desc="Assembling ROIs")
        executor = (
            ThreadPoolExecutor(max_workers=self.tile_workers, thread_name_prefix="roi-tiles")
            if self.tile_workers > 1
            else None
        )
        try:
            for label, path_class in enumerate(classes):
                rois = list(dict.fromkeys(class_mapping[path_class]))
                color = None if path_class.is_background else path_class.color
                class_labels[label] = ClassLabel(
                    label=label, name=path_class.name, color=color, rois=frozenset(rois)
                )
                for roi in rois:
                    matrix = self.roi_features(roi, executor)
                    progress.update(1)
                    if matrix is None:
                        continue
                    if matrix.shape[0] == 0:
                        self.stats.rois_empty += 1
                        continue
                    all_features.append(matrix)
                    all_targets.append(np.full(matrix.shape[0], label, dtype=np.int32))
                    blocks.append(
                        RowBlock(label=label, roi=roi, start=n_rows, stop=n_rows + matrix.shape[0])
                    )
                    n_rows += matrix.shape[0]
                    labels_with_rows.add(label)
        finally:
            if executor is not None:
                executor.shutdown(wait=True)
            progress.close()

        logger.debug("Assembly stats: %s", self.stats)
        if len(labels_with_rows) <= 1:
            logger.info(
                "Need at least two classes with training pixels, found %d", len(labels_with_rows)
            )
            return None

        # concatenate always copies, so cached matrices are never shared with callers
        features = np.concatenate(all_features, axis=0)
        targets = np.concatenate(all_targets, axis=0)
        logger.info(
            "Training data: %d x %d, Target data: %d x 1",
            features.shape[0],
            features.shape[1],
            targets.shape[0],
        )
        return TrainingSet(
            features=features, labels=targets, class_labels=class_labels, blocks=blocks
        )
