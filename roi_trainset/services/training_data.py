from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace

import numpy as np

from roi_trainset.core.config import AssemblyConfig, PreprocessingConfig
from roi_trainset.core.images import ImageSource
from roi_trainset.core.models import AssemblyKey, ClassLabel, TrainingSet
from roi_trainset.models.features import FeatureExtractor
from roi_trainset.services import preprocessing
from roi_trainset.services.annotations import AnnotationEvent
from roi_trainset.services.assembler import AssemblyStats, TrainingSetAssembler
from roi_trainset.services.cache import FeatureCache
from roi_trainset.services.interfaces import AnnotationSource
from roi_trainset.services.preprocessing import FeaturePreprocessor
from roi_trainset.services.tracker import ChangeTracker, take_snapshot

logger = logging.getLogger("roi_trainset.training_data")


@dataclass
class TrainingData:
    """What a classifier trainer receives: raw rows, labels and the fitted transform."""

    training_set: TrainingSet
    preprocessor: FeaturePreprocessor

    @property
    def features(self) -> np.ndarray:
        return self.training_set.features

    @property
    def labels(self) -> np.ndarray:
        return self.training_set.labels

    @property
    def class_labels(self) -> dict[int, ClassLabel]:
        return self.training_set.class_labels

    def normalized_features(self) -> np.ndarray:
        return self.preprocessor.apply(self.training_set.features)


class TrainingDataService:
    """Keeps a pixel-classifier training set in step with an annotation set.

    Annotation changes only flag the data as stale; the next
    ``get_training_data``/``update_training_data`` call reassembles it, reusing
    per-ROI features unless the image, extractor or downsample changed.
    """

    def __init__(
        self,
        image: ImageSource | None,
        annotations: AnnotationSource | None,
        extractor: FeatureExtractor,
        *,
        assembly_cfg: AssemblyConfig | None = None,
        preprocessing_cfg: PreprocessingConfig | None = None,
    ) -> None:
        # private copies: set_downsample and set_preprocessing must not touch the caller's configs
        self.assembly_cfg = replace(assembly_cfg or AssemblyConfig()).validated()
        self.preprocessing_cfg = replace(preprocessing_cfg or PreprocessingConfig()).validated()
        self.extractor = extractor
        self.cache = FeatureCache()
        self.tracker = ChangeTracker()
        self.last_stats: AssemblyStats | None = None

        # reentrant: get_training_data holds it around update_training_data
        self._lock = threading.RLock()
        self._training: TrainingData | None = None
        self.image: ImageSource | None = None
        self.annotations: AnnotationSource | None = None
        self.set_image(image, annotations)

    # --- change notifications ------------------------------------------------------
    def annotations_changed(self, event: AnnotationEvent | None = None) -> None:
        """Listener for annotation changes; safe to call from any thread."""
        if event is not None and event.is_changing:
            return
        self.tracker.mark_stale()

    # --- configuration -------------------------------------------------------------
    @property
    def downsample(self) -> float:
        return self.assembly_cfg.downsample

    @property
    def assembly_key(self) -> AssemblyKey:
        return AssemblyKey(
            image_id=self.image.identity if self.image is not None else None,
            extractor_id=self.extractor.identity,
            downsample=self.downsample,
        )

    def _invalidate(self) -> None:
        self.cache.invalidate_all()
        self._training = None
        self.tracker.reset()

    def set_image(self, image: ImageSource | None, annotations: AnnotationSource | None) -> None:
        with self._lock:
            if self.image is image and self.annotations is annotations:
                return
            if self.annotations is not None:
                self.annotations.remove_listener(self.annotations_changed)
            self.image = image
            self.annotations = annotations
            if self.annotations is not None:
                self.annotations.add_listener(self.annotations_changed)
            self._invalidate()

    def set_feature_extractor(self, extractor: FeatureExtractor) -> None:
        with self._lock:
            if self.extractor is extractor:
                return
            self.extractor = extractor
            self._invalidate()

    def set_downsample(self, downsample: float) -> None:
        downsample = float(downsample)
        if downsample <= 0:
            raise ValueError(f"downsample must be > 0, got {downsample}")
        with self._lock:
            if self.assembly_cfg.downsample == downsample:
                return
            self.assembly_cfg.downsample = downsample
            self._invalidate()

    def set_preprocessing(self, cfg: PreprocessingConfig) -> None:
        """Change the preprocessing options; cached ROI features stay valid."""
        with self._lock:
            self.preprocessing_cfg = replace(cfg).validated()
            self._training = None
            self.tracker.reset()

    # --- assembly ------------------------------------------------------------------
    def _reset_training(self) -> None:
        self._training = None
        self.tracker.record(None)

    def _build_assembler(self) -> TrainingSetAssembler:
        assert self.image is not None
        return TrainingSetAssembler(
            self.image,
            self.extractor,
            self.cache,
            downsample=self.downsample,
            tile_workers=self.assembly_cfg.tile_workers,
            show_progress=self.assembly_cfg.show_progress,
        )

    def update_training_data(self) -> bool:
        """Reassemble if the annotations changed; True when training data is available."""
        with self._lock:
            self.tracker.begin_update()
            try:
                return self._update_locked()
            except BaseException:
                self.tracker.abort_update()
                raise

    def _update_locked(self) -> bool:
        if self.image is None or self.annotations is None:
            self._reset_training()
            return False

        mapping = {c: rois for c, rois in self.annotations.grouped_rois().items() if rois}
        if len(mapping) <= 1:
            logger.info("Training data needs at least two annotated classes")
            self._reset_training()
            return False

        snapshot = take_snapshot(mapping)
        if self._training is not None and self.tracker.matches(snapshot):
            logger.debug("Annotations unchanged since last assembly")
            return True

        assembler = self._build_assembler()
        training_set = assembler.assemble(mapping)
        self.last_stats = assembler.stats
        if training_set is None:
            self._reset_training()
            return False

        self._training = TrainingData(
            training_set=training_set,
            preprocessor=preprocessing.fit(training_set.features, self.preprocessing_cfg),
        )
        self.tracker.record(snapshot)
        return True

    def get_training_data(self) -> TrainingData | None:
        """Current training data, reassembling first when stale.

        Blocks while another thread is assembling, so callers never see the
        result of an update that is still running.
        """
        with self._lock:
            if self.tracker.is_stale:
                self.update_training_data()
            return self._training

    @property
    def class_labels(self) -> dict[int, ClassLabel]:
        training = self._training
        return dict(training.class_labels) if training is not None else {}

    @property
    def preprocessor(self) -> FeaturePreprocessor | None:
        training = self._training
        return training.preprocessor if training is not None else None

    def close(self) -> None:
        with self._lock:
            if self.annotations is not None:
                self.annotations.remove_listener(self.annotations_changed)
            self.annotations = None
            self.image = None
            self._invalidate()
