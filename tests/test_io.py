"""Tests for image I/O utilities."""

import os
import shutil
import tempfile
import unittest

import numpy as np
from PIL import Image

from MipForge.core import (
    image_size, load_image, load_rgba8, save_image, to_rgba8,
)
from MipForge.core.io import linear_to_srgb, srgb_to_linear


class TestImageIO(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_save_load_rgb(self):
        arr = np.random.rand(64, 48, 3).astype(np.float32)
        path = os.path.join(self.tmpdir, "test_rgb.png")
        save_image(arr, path)
        loaded = load_image(path)
        self.assertEqual(loaded.shape, (64, 48, 3))
        self.assertEqual(loaded.dtype, np.float32)
        self.assertTrue(0 <= loaded.min() and loaded.max() <= 1.0)

    def test_save_load_grayscale(self):
        arr = np.random.rand(32, 32).astype(np.float32)
        path = os.path.join(self.tmpdir, "test_gray.png")
        save_image(arr, path)
        self.assertEqual(load_image(path).shape, (32, 32, 3))

    def test_save_load_rgba(self):
        arr = np.random.randint(0, 256, (32, 32, 4), dtype=np.uint8)
        path = os.path.join(self.tmpdir, "test_rgba.png")
        save_image(arr, path)
        np.testing.assert_array_equal(load_rgba8(path), arr)

    def test_load_16bit_png(self):
        arr = np.full((8, 8), 65535 // 2, dtype=np.uint16)
        path = os.path.join(self.tmpdir, "gray16.png")
        Image.fromarray(arr).save(path)
        loaded = load_image(path)
        self.assertEqual(loaded.shape, (8, 8, 3))
        self.assertAlmostEqual(float(loaded[0, 0, 0]), 0.5, places=3)

    def test_load_float_tiff_is_clipped(self):
        arr = np.array([[0.0, 2.0], [0.25, 0.5]], dtype=np.float32)
        path = os.path.join(self.tmpdir, "float.tif")
        Image.fromarray(arr).save(path)
        loaded = load_image(path)
        self.assertEqual(float(loaded.max()), 1.0)
        self.assertAlmostEqual(float(loaded[1, 0, 0]), 0.25, places=6)

    def test_palette_image_is_expanded(self):
        arr = np.random.randint(0, 255, (16, 16), dtype=np.uint8)
        path = os.path.join(self.tmpdir, "palette.png")
        Image.fromarray(arr).convert("P").save(path)
        self.assertEqual(load_image(path).shape, (16, 16, 4))
        # The handle is closed so the file can be moved.
        os.replace(path, path + ".moved")

    def test_max_pixels(self):
        path = os.path.join(self.tmpdir, "big.png")
        save_image(np.zeros((32, 32, 3), dtype=np.uint8), path)
        with self.assertRaisesRegex(ValueError, "too large"):
            load_image(path, max_pixels=100)
        self.assertEqual(load_image(path, max_pixels=1024).shape, (32, 32, 3))

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_image(os.path.join(self.tmpdir, "missing.png"))

    def test_corrupt_file(self):
        path = os.path.join(self.tmpdir, "corrupt.png")
        with open(path, "wb") as f:
            f.write(b"\x89PNG not really")
        with self.assertRaises(IOError):
            load_image(path)

    def test_image_size_reads_header(self):
        path = os.path.join(self.tmpdir, "size.png")
        save_image(np.zeros((12, 20, 3), dtype=np.uint8), path)
        self.assertEqual(image_size(path), (20, 12))

    def test_jpeg_strips_alpha(self):
        arr = np.random.rand(32, 32, 4).astype(np.float32)
        path = os.path.join(self.tmpdir, "test.jpg")
        save_image(arr, path)
        self.assertEqual(load_image(path).shape[-1], 3)

    def test_save_rejects_empty(self):
        with self.assertRaises(ValueError):
            save_image(np.zeros((0, 4, 3), dtype=np.uint8),
                       os.path.join(self.tmpdir, "empty.png"))

    def test_save_leaves_no_temp_files(self):
        path = os.path.join(self.tmpdir, "nested", "atomic.png")
        save_image(np.zeros((4, 4, 3), dtype=np.uint8), path)
        self.assertEqual(os.listdir(os.path.dirname(path)), ["atomic.png"])

    def test_save_8bit_rounds(self):
        path = os.path.join(self.tmpdir, "round.png")
        save_image(np.full((4, 4, 3), 0.999, dtype=np.float32), path)
        with Image.open(path) as img:
            self.assertEqual(int(np.asarray(img)[0, 0, 0]), 255)


class TestToRgba8(unittest.TestCase):
    def test_gray_is_replicated(self):
        out = to_rgba8(np.full((2, 3), 7, dtype=np.uint8))
        self.assertEqual(out.shape, (2, 3, 4))
        self.assertTrue(np.all(out[:, :, :3] == 7))
        self.assertTrue(np.all(out[:, :, 3] == 255))

    def test_gray_alpha(self):
        arr = np.zeros((2, 2, 2), dtype=np.uint8)
        arr[:, :, 0] = 10
        arr[:, :, 1] = 20
        out = to_rgba8(arr)
        np.testing.assert_array_equal(out[0, 0], [10, 10, 10, 20])

    def test_float_is_rounded(self):
        out = to_rgba8(np.full((1, 1, 3), 0.5, dtype=np.float32))
        self.assertEqual(int(out[0, 0, 0]), 128)

    def test_rejects_bad_shapes(self):
        with self.assertRaises(ValueError):
            to_rgba8(np.zeros((2, 2, 5), dtype=np.uint8))
        with self.assertRaises(ValueError):
            to_rgba8(np.zeros((0, 2, 3), dtype=np.uint8))


class TestColorFunctions(unittest.TestCase):
    def test_srgb_to_linear_known_values(self):
        vals = np.array([0.0, 0.04045, 0.5, 1.0], dtype=np.float32)
        result = srgb_to_linear(vals)
        self.assertAlmostEqual(float(result[0]), 0.0, places=6)
        self.assertAlmostEqual(float(result[1]), 0.04045 / 12.92, places=5)
        self.assertAlmostEqual(float(result[2]), 0.214, places=2)
        self.assertAlmostEqual(float(result[3]), 1.0, places=6)

    def test_linear_to_srgb_known_values(self):
        vals = np.array([0.0, 0.0031308, 0.5, 1.0], dtype=np.float32)
        result = linear_to_srgb(vals)
        self.assertAlmostEqual(float(result[0]), 0.0, places=6)
        self.assertAlmostEqual(float(result[1]), 0.0031308 * 12.92, places=4)
        self.assertAlmostEqual(float(result[2]), 0.735, places=2)
        self.assertAlmostEqual(float(result[3]), 1.0, places=6)

    def test_srgb_linear_roundtrip(self):
        original = np.linspace(0.0, 1.0, 256, dtype=np.float32)
        np.testing.assert_allclose(linear_to_srgb(srgb_to_linear(original)), original,
                                   atol=1e-5)

    def test_nan_is_replaced(self):
        arr = np.array([0.5, float("nan"), 0.8], dtype=np.float32)
        self.assertFalse(np.isnan(srgb_to_linear(arr)).any())
        self.assertFalse(np.isnan(linear_to_srgb(arr)).any())


if __name__ == "__main__":
    unittest.main(verbosity=2)
