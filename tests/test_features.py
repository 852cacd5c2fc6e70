import tempfile
import unittest
from pathlib import Path

import numpy as np
from PIL import Image

from roi_trainset.core.exceptions import TileComputeError
from roi_trainset.core.images import PillowImageSource, PyramidLevel, open_image
from roi_trainset.core.models import TileRequest
from roi_trainset.models.features import (
    FilterBankFeatureExtractor,
    as_feature_grid,
    build_default_registry,
)
from tests.fakes import ArraySource, CoordinateExtractor


class TestImageSource(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.path = Path(tmp.name) / "slide.png"
        arr = np.zeros((64, 96, 3), dtype=np.uint8)
        arr[:, 48:] = 200
        Image.fromarray(arr).save(self.path)

    def test_open_image_picks_pillow_backend(self):
        with open_image(self.path) as image:
            self.assertIsInstance(image, PillowImageSource)
            self.assertEqual(image.size, (96, 64))
            self.assertEqual(image.identity, str(self.path))
            self.assertEqual(image.level_for(4.0), 0)

    def test_unknown_extension(self):
        other = self.path.with_suffix(".xyz")
        other.write_bytes(b"")
        with self.assertRaises(ValueError):
            open_image(other)

    def test_read_region_downsampled(self):
        with open_image(self.path) as image:
            arr = image.read_region(TileRequest(x=32, y=0, width=32, height=32, downsample=2.0))
        self.assertEqual(arr.shape, (16, 16, 3))
        self.assertEqual(arr[0, 0, 0], 0)
        self.assertEqual(arr[0, -1, 0], 200)

    def test_read_region_outside_image_is_black(self):
        with open_image(self.path) as image:
            arr = image.read_region(TileRequest(x=80, y=48, width=32, height=32))
        self.assertEqual(arr.shape, (32, 32, 3))
        self.assertEqual(arr[-1, -1].tolist(), [0, 0, 0])
        self.assertEqual(arr[0, 0].tolist(), [200, 200, 200])

    def test_level_selection(self):
        class Pyramid(ArraySource):
            def _open(self):
                return [
                    PyramidLevel(1.0, 256, 256),
                    PyramidLevel(4.0, 64, 64),
                    PyramidLevel(16.0, 16, 16),
                ]

        source = Pyramid()
        self.assertEqual(source.level_for(1.0), 0)
        self.assertEqual(source.level_for(2.0), 0)
        self.assertEqual(source.level_for(3.995), 1)
        self.assertEqual(source.level_for(8.0), 1)
        self.assertEqual(source.level_for(32.0), 2)

    def test_close_and_reopen(self):
        image = open_image(self.path)
        self.assertEqual(image.size, (96, 64))
        image.close()
        arr = image.read_region(TileRequest(x=0, y=0, width=8, height=8))
        self.assertEqual(arr.shape, (8, 8, 3))
        image.close()

    def test_read_failure_wrapped(self):
        class Broken(ArraySource):
            def _read(self, x, y, level, width, height):
                raise RuntimeError("disk gone")

        with self.assertRaises(TileComputeError):
            Broken().read_region(TileRequest(0, 0, 8, 8))


class TestFilterBank(unittest.TestCase):
    def test_grid_shape_and_channels(self):
        extractor = FilterBankFeatureExtractor(sigmas=(1.0, 2.0), input_size=32)
        grid = extractor.calculate_features(ArraySource(), TileRequest(0, 0, 32, 32))
        self.assertEqual(grid.shape, (32, 32, extractor.n_features))
        self.assertEqual(extractor.n_features, 7)
        self.assertEqual(len(extractor.channel_names()), 7)
        self.assertEqual(grid.dtype, np.float32)

    def test_flat_image_has_no_edges(self):
        image = ArraySource(np.full((96, 96, 3), 128, dtype=np.uint8))
        extractor = FilterBankFeatureExtractor(sigmas=(1.0,), input_size=32)
        # context around the tile stays inside the image
        grid = extractor.calculate_features(image, TileRequest(32, 32, 32, 32))
        np.testing.assert_allclose(grid[..., 0], 128 / 255.0, atol=1e-6)
        np.testing.assert_allclose(grid[..., 2], 0.0, atol=1e-5)
        np.testing.assert_allclose(grid[..., 3], 0.0, atol=1e-5)

    def test_edge_has_gradient(self):
        arr = np.zeros((32, 32, 3), dtype=np.uint8)
        arr[:, 16:] = 255
        extractor = FilterBankFeatureExtractor(sigmas=(1.0,), input_size=32)
        grid = extractor.calculate_features(ArraySource(arr), TileRequest(0, 0, 32, 32))
        self.assertGreater(grid[16, 15:17, 2].max(), grid[16, 2, 2] + 0.1)

    def test_tiles_match_whole_image_at_seams(self):
        rng = np.random.default_rng(0)
        arr = rng.integers(0, 256, size=(64, 64, 3), dtype=np.uint8)
        image = ArraySource(arr)
        sigmas = (1.0, 2.0)
        whole = FilterBankFeatureExtractor(sigmas=sigmas, input_size=64).calculate_features(
            image, TileRequest(0, 0, 64, 64)
        )
        tiled = FilterBankFeatureExtractor(sigmas=sigmas, input_size=32)
        left = tiled.calculate_features(image, TileRequest(0, 0, 32, 32))
        right = tiled.calculate_features(image, TileRequest(32, 0, 32, 32))
        np.testing.assert_allclose(left, whole[:32, :32], atol=1e-4)
        np.testing.assert_allclose(right, whole[:32, 32:], atol=1e-4)

    def test_padded_request(self):
        extractor = FilterBankFeatureExtractor(sigmas=(1.0, 2.0), input_size=32)
        self.assertEqual(extractor.padding, 7)
        padded = extractor.padded_request(TileRequest(64, 32, 64, 64, downsample=2.0))
        self.assertEqual((padded.x, padded.y, padded.width, padded.height), (50, 18, 92, 92))
        self.assertEqual(padded.output_size, (46, 46))
        self.assertEqual(padded.downsample, 2.0)

    def test_downsampled_grid_shape(self):
        extractor = FilterBankFeatureExtractor(sigmas=(1.0,), input_size=16)
        grid = extractor.calculate_features(ArraySource(), TileRequest(64, 64, 32, 32, downsample=2.0))
        self.assertEqual(grid.shape, (16, 16, 4))

    def test_default_channel_names(self):
        self.assertEqual(CoordinateExtractor(8).channel_names(), ["feature_0", "feature_1"])
        self.assertEqual(CoordinateExtractor(8).padded_request(TileRequest(0, 0, 8, 8)), TileRequest(0, 0, 8, 8))

    def test_pooling_shrinks_grid(self):
        extractor = FilterBankFeatureExtractor(sigmas=(1.0,), pool=2, input_size=32)
        grid = extractor.calculate_features(ArraySource(), TileRequest(0, 0, 32, 32))
        self.assertEqual(grid.shape, (16, 16, 4))

    def test_registry(self):
        registry = build_default_registry(sigmas=(1.0,), input_size=16)
        self.assertEqual(registry.available(), ["filters", "filters-pooled"])
        pooled = registry.create("FILTERS-POOLED")
        self.assertEqual(pooled.pool, 2)
        self.assertEqual(pooled.input_width, 16)
        with self.assertRaises(KeyError):
            registry.create("nope")
        with self.assertRaises(ValueError):
            registry.register("Filters ", lambda: pooled)
        self.assertIn("Filters", registry)
        self.assertNotIn(3, registry)
        self.assertEqual(list(registry.describe()), ["filters", "filters-pooled"])
        self.assertTrue(all(registry.describe().values()))

    def test_identity_differs_per_instance(self):
        a = FilterBankFeatureExtractor(sigmas=(1.0,))
        b = FilterBankFeatureExtractor(sigmas=(1.0,))
        self.assertNotEqual(a.identity, b.identity)

    def test_as_feature_grid(self):
        self.assertEqual(as_feature_grid(np.zeros((4, 5))).shape, (4, 5, 1))
        with self.assertRaises(ValueError):
            as_feature_grid(np.zeros(4))


if __name__ == "__main__":
    unittest.main()
