from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Sequence

import h5py
import numpy as np

from roi_trainset.services.preprocessing import FeaturePreprocessor
from roi_trainset.services.training_data import TrainingData
from roi_trainset.utils.h5 import atomic_h5, set_attrs, write_rows

logger = logging.getLogger("roi_trainset.storage")

FORMAT_VERSION = 1


class TrainingSetWriter:
    """Writes assembled training data (rows, labels, transform) to one HDF5 file.

    Layout: ``features`` (N, C) float32, ``labels`` (N,) int32, ``roi_index`` (N,)
    int32 and ``preprocessor/*`` arrays; class labels and run settings as file attrs.
    """

    def __init__(
        self,
        *,
        chunk_rows: int = 65536,
        feature_names: Sequence[str] | None = None,
        extra_file_attrs: Mapping[str, Any] | None = None,
    ):
        self.chunk_rows = max(1, int(chunk_rows))
        self.feature_names = list(feature_names) if feature_names else None
        self.extra_file_attrs = dict(extra_file_attrs) if extra_file_attrs else {}

    @staticmethod
    def _preprocessor_arrays(pre: FeaturePreprocessor) -> dict[str, np.ndarray]:
        arrays = {
            "mean": pre.mean,
            "scale": pre.scale,
            "pca_mean": pre.pca_mean,
            "components": pre.components,
            "explained_variance": pre.explained_variance,
        }
        return {k: np.asarray(v) for k, v in arrays.items() if v is not None}

    def write(self, output_path: Path, data: TrainingData) -> Path:
        ts = data.training_set
        if self.feature_names is not None and len(self.feature_names) != ts.n_features:
            raise ValueError(
                f"{len(self.feature_names)} feature names for {ts.n_features} feature columns"
            )
        roi_index = np.empty(ts.n_rows, dtype=np.int32)
        for i, block in enumerate(ts.blocks):
            roi_index[block.start : block.stop] = i

        class_labels = {
            str(label): {"name": cl.name, "color": list(cl.color) if cl.color else None}
            for label, cl in ts.class_labels.items()
        }
        file_attrs: dict[str, Any] = {
            "format_version": FORMAT_VERSION,
            "n_rows": ts.n_rows,
            "n_features": ts.n_features,
            "class_labels": class_labels,
            "normalize": data.preprocessor.normalize,
            "missing_value": data.preprocessor.missing_value,
            "pca_whiten": bool(data.preprocessor.pca_whiten),
        }
        if self.feature_names is not None:
            file_attrs["feature_names"] = self.feature_names
        file_attrs.update(self.extra_file_attrs)

        with atomic_h5(output_path) as f:
            write_rows(f, "features", ts.features.astype(np.float32, copy=False), chunk_rows=self.chunk_rows)
            write_rows(f, "labels", ts.labels.astype(np.int32, copy=False), chunk_rows=self.chunk_rows)
            write_rows(f, "roi_index", roi_index, chunk_rows=self.chunk_rows)
            group = f.create_group("preprocessor")
            for name, arr in self._preprocessor_arrays(data.preprocessor).items():
                group.create_dataset(name, data=arr)
            set_attrs(f, file_attrs)
        logger.info("Wrote %d x %d training rows to %s", ts.n_rows, ts.n_features, output_path)
        return Path(output_path)


def read_training_set(path: str | Path) -> dict[str, Any]:
    """Load a file written by ``TrainingSetWriter`` into plain arrays/dicts."""
    with h5py.File(path, "r") as f:
        out: dict[str, Any] = {
            "features": f["features"][()],
            "labels": f["labels"][()],
            "roi_index": f["roi_index"][()],
            "preprocessor": {k: v[()] for k, v in f["preprocessor"].items()}
            if "preprocessor" in f
            else {},
        }
        attrs = dict(f.attrs)
    raw_labels = attrs.get("class_labels", "{}")
    out["class_labels"] = {int(k): v for k, v in json.loads(raw_labels).items()}
    out["feature_names"] = json.loads(attrs["feature_names"]) if "feature_names" in attrs else []
    out["attrs"] = attrs
    return out
