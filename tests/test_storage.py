import json
import os
import tempfile
import unittest
from pathlib import Path

import h5py
import numpy as np

from roi_trainset.core.config import PreprocessingConfig
from roi_trainset.core.models import ROI, AnnotationClass
from roi_trainset.services.annotations import Annotation, AnnotationSet
from roi_trainset.services.storage import TrainingSetWriter, read_training_set
from roi_trainset.services.training_data import TrainingDataService
from roi_trainset.utils.h5 import atomic_h5, set_attrs, write_rows
from tests.fakes import ArraySource, CoordinateExtractor


class TestAtomicH5(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.dir = Path(tmp.name)

    def test_file_appears_on_clean_exit(self):
        path = self.dir / "out.h5"
        with atomic_h5(path) as f:
            write_rows(f, "x", np.arange(10).reshape(5, 2), chunk_rows=4, attrs={"unit": "px"})
            set_attrs(f, {"meta": {"a": 1}, "empty": None})
            self.assertFalse(path.exists())
        with h5py.File(path, "r") as f:
            self.assertEqual(f["x"].shape, (5, 2))
            self.assertEqual(f["x"].chunks, (4, 2))
            self.assertEqual(f["x"].maxshape, (None, 2))
            self.assertEqual(f["x"].attrs["unit"], "px")
            self.assertEqual(json.loads(f.attrs["meta"]), {"a": 1})
            self.assertEqual(f.attrs["empty"], "None")
        self.assertEqual(os.listdir(self.dir), ["out.h5"])

    def test_error_removes_temp_and_keeps_existing(self):
        path = self.dir / "out.h5"
        path.write_bytes(b"previous")
        with self.assertRaises(RuntimeError):
            with atomic_h5(path) as f:
                write_rows(f, "x", np.zeros((2, 2)))
                raise RuntimeError("boom")
        self.assertEqual(os.listdir(self.dir), ["out.h5"])
        self.assertEqual(path.read_bytes(), b"previous")

    def test_empty_rows(self):
        path = self.dir / "out.h5"
        with atomic_h5(path) as f:
            write_rows(f, "x", np.zeros((0, 3), dtype=np.float32))
        with h5py.File(path, "r") as f:
            self.assertEqual(f["x"].shape, (0, 3))


class TestTrainingSetWriter(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.path = Path(tmp.name) / "training.h5"
        annotations = AnnotationSet(
            [
                Annotation(ROI.rectangle(0, 0, 32, 32), AnnotationClass("Tumor", (200, 0, 0))),
                Annotation(ROI.rectangle(64, 0, 16, 32), AnnotationClass("Stroma")),
            ]
        )
        service = TrainingDataService(
            ArraySource(),
            annotations,
            CoordinateExtractor(32),
            preprocessing_cfg=PreprocessingConfig(pca_retained=1.0),
        )
        self.addCleanup(service.close)
        self.data = service.get_training_data()

    def test_write_and_read(self):
        TrainingSetWriter(extra_file_attrs={"extractor": "coords"}).write(self.path, self.data)
        loaded = read_training_set(self.path)

        np.testing.assert_array_equal(loaded["features"], self.data.features)
        np.testing.assert_array_equal(loaded["labels"], self.data.labels)
        self.assertEqual(loaded["labels"].dtype, np.int32)
        self.assertEqual(np.bincount(loaded["roi_index"]).tolist(), [16 * 32, 32 * 32])
        self.assertEqual(loaded["class_labels"][0], {"name": "Stroma", "color": None})
        self.assertEqual(loaded["class_labels"][1], {"name": "Tumor", "color": [200, 0, 0]})
        self.assertEqual(set(loaded["preprocessor"]), {"mean", "scale", "pca_mean", "components", "explained_variance"})
        self.assertEqual(loaded["attrs"]["extractor"], "coords")
        self.assertEqual(int(loaded["attrs"]["n_rows"]), self.data.features.shape[0])

    def test_stored_transform_reproduces_features(self):
        TrainingSetWriter().write(self.path, self.data)
        pre = read_training_set(self.path)["preprocessor"]
        x = (self.data.features - pre["mean"]) / pre["scale"]
        x = (x - pre["pca_mean"]) @ pre["components"].T
        np.testing.assert_allclose(x, self.data.normalized_features(), rtol=1e-4, atol=1e-4)

    def test_feature_names(self):
        TrainingSetWriter(feature_names=["x", "y"]).write(self.path, self.data)
        self.assertEqual(read_training_set(self.path)["feature_names"], ["x", "y"])

        TrainingSetWriter().write(self.path, self.data)
        self.assertEqual(read_training_set(self.path)["feature_names"], [])

    def test_feature_names_must_match_columns(self):
        with self.assertRaises(ValueError):
            TrainingSetWriter(feature_names=["x"]).write(self.path, self.data)
        self.assertFalse(self.path.exists())

    def test_class_labels_attr_is_json(self):
        TrainingSetWriter().write(self.path, self.data)
        with h5py.File(self.path, "r") as f:
            labels = json.loads(f.attrs["class_labels"])
        self.assertEqual(sorted(labels), ["0", "1"])


if __name__ == "__main__":
    unittest.main()
