"""Tests for mip chain generation."""

import importlib.util
import unittest

import numpy as np
import pytest

from MipForge.config import FilterType, MipGenerationProfile, TextureType
from MipForge.core import MipChain, mip_dimensions
from MipForge.phases.mipmap import MipGenerator, downsample

HAS_CV2 = importlib.util.find_spec("cv2") is not None
_requires_cv2 = unittest.skipUnless(HAS_CV2, "cv2 (opencv) not installed")


def _profile(filter_type, **kwargs):
    return MipGenerationProfile(filter=filter_type, **kwargs)


class TestMipDimensions(unittest.TestCase):
    def test_square_power_of_two(self):
        dims = mip_dimensions(256, 256)
        self.assertEqual(len(dims), 9)
        self.assertEqual(dims[0], (256, 256))
        self.assertEqual(dims[-1], (1, 1))

    def test_non_square_and_odd(self):
        self.assertEqual(mip_dimensions(256, 64)[-3:], [(4, 1), (2, 1), (1, 1)])
        self.assertEqual(mip_dimensions(5, 3), [(5, 3), (2, 1), (1, 1)])

    def test_single_pixel(self):
        self.assertEqual(mip_dimensions(1, 1), [(1, 1)])

    def test_rejects_non_positive(self):
        with self.assertRaises(ValueError):
            mip_dimensions(0, 16)


class TestMipChainContainer(unittest.TestCase):
    def test_levels_are_read_only_copies(self):
        level0 = np.zeros((2, 2, 4), dtype=np.uint8)
        chain = MipChain([level0, np.zeros((1, 1, 4), dtype=np.uint8)])
        level0[0, 0, 0] = 9
        self.assertEqual(chain[0][0, 0, 0], 0)
        with self.assertRaises(ValueError):
            chain[0][0, 0, 0] = 1

    def test_rejects_wrong_level_count(self):
        with self.assertRaises(ValueError):
            MipChain([np.zeros((4, 4, 4), dtype=np.uint8)])

    def test_rejects_wrong_dtype(self):
        with self.assertRaises(ValueError):
            MipChain([np.zeros((1, 1, 4), dtype=np.float32)])


@_requires_cv2
class TestMipGenerator(unittest.TestCase):
    def setUp(self):
        self.gen = MipGenerator()

    def test_chain_shape_and_level_zero_unmodified(self):
        rng = np.random.default_rng(1)
        img = rng.integers(0, 256, size=(64, 128, 4), dtype=np.uint8)
        chain = self.gen.generate(img, _profile(FilterType.KAISER))
        self.assertEqual(len(chain), 8)
        self.assertEqual((chain.width, chain.height), (128, 64))
        self.assertEqual(chain.dimensions, mip_dimensions(128, 64))
        np.testing.assert_array_equal(chain[0], img)

    def test_rgb_and_gray_inputs_get_opaque_alpha(self):
        gray = np.full((8, 8), 90, dtype=np.uint8)
        chain = self.gen.generate(gray, _profile(FilterType.BOX))
        self.assertTrue(np.all(chain[0][:, :, 3] == 255))
        self.assertTrue(np.all(chain[0][:, :, :3] == 90))

    def test_constant_image_stays_constant_for_every_filter(self):
        img = np.full((17, 9, 4), 173, dtype=np.uint8)
        for filter_type in FilterType:
            with self.subTest(filter=filter_type.value):
                chain = self.gen.generate(img, _profile(filter_type))
                for level in chain:
                    self.assertTrue(np.all(level == 173))

    def test_box_filter_averages_2x2_blocks(self):
        img = np.zeros((2, 2, 4), dtype=np.uint8)
        img[:, :, :3] = np.array([[0, 40], [80, 120]], dtype=np.uint8)[:, :, None]
        img[:, :, 3] = 255
        chain = self.gen.generate(img, _profile(FilterType.BOX))
        self.assertEqual(int(chain[1][0, 0, 0]), 60)

    def test_min_and_max_filters(self):
        img = np.full((2, 2, 4), 255, dtype=np.uint8)
        img[0, 0, :3] = 10
        lo = self.gen.generate(img, _profile(FilterType.MIN))
        hi = self.gen.generate(img, _profile(FilterType.MAX))
        self.assertEqual(int(lo[1][0, 0, 0]), 10)
        self.assertEqual(int(hi[1][0, 0, 0]), 255)

    def test_odd_dimensions_use_clamped_footprints(self):
        img = np.zeros((3, 5, 4), dtype=np.uint8)
        img[:, 4, :3] = 255
        chain = self.gen.generate(img, _profile(FilterType.MAX))
        self.assertEqual(chain.dimensions, [(5, 3), (2, 1), (1, 1)])
        self.assertEqual(int(chain[1][0, 1, 0]), 255)
        self.assertEqual(int(chain[2][0, 0, 0]), 255)

    def test_gamma_correct_average_is_brighter(self):
        img = np.zeros((2, 2, 4), dtype=np.uint8)
        img[0, 0, :3] = 255
        img[1, 1, :3] = 255
        img[:, :, 3] = 255
        plain = self.gen.generate(img, _profile(FilterType.BOX))
        srgb = self.gen.generate(img, _profile(FilterType.BOX, gamma_correct=True))
        self.assertIn(int(plain[1][0, 0, 0]), (127, 128))
        self.assertGreater(int(srgb[1][0, 0, 0]), 180)
        # Alpha is never gamma converted.
        self.assertEqual(int(srgb[1][0, 0, 3]), 255)

    def test_normal_maps_are_renormalized(self):
        rng = np.random.default_rng(7)
        v = rng.normal(size=(32, 32, 3))
        v[:, :, 2] = np.abs(v[:, :, 2]) + 0.5
        v /= np.linalg.norm(v, axis=-1, keepdims=True)
        img = np.round((v * 0.5 + 0.5) * 255).astype(np.uint8)
        chain = self.gen.generate(img, MipGenerationProfile.for_type(TextureType.NORMAL))
        for level in list(chain)[1:]:
            decoded = level[:, :, :3].astype(np.float32) / 255.0 * 2.0 - 1.0
            lengths = np.linalg.norm(decoded, axis=-1)
            np.testing.assert_allclose(lengths, 1.0, atol=0.02)

    def test_energy_preserving_roughness_is_rougher_than_linear(self):
        img = np.zeros((2, 2, 4), dtype=np.uint8)
        img[0, :, :3] = 255
        img[:, :, 3] = 255
        linear = self.gen.generate(img, _profile(FilterType.BOX))
        energy = self.gen.generate(img, _profile(FilterType.BOX, energy_preserving=True))
        self.assertGreater(int(energy[1][0, 0, 0]), int(linear[1][0, 0, 0]))

    def test_gloss_energy_preservation_inverts_around_roughness(self):
        img = np.zeros((2, 2, 4), dtype=np.uint8)
        img[0, :, :3] = 255
        img[:, :, 3] = 255
        gloss = self.gen.generate(
            img, _profile(FilterType.BOX, energy_preserving=True, is_gloss=True),
        )
        # Averaging alpha^2 favours the rough (gloss 0) texels.
        self.assertLess(int(gloss[1][0, 0, 0]), 128)

    def test_blur_radius_softens_generated_levels_only(self):
        img = np.zeros((16, 16, 4), dtype=np.uint8)
        img[:, 8:, :3] = 255
        img[:, :, 3] = 255
        sharp = self.gen.generate(img, _profile(FilterType.BOX))
        soft = self.gen.generate(img, _profile(FilterType.BOX, blur_radius=1.0))
        np.testing.assert_array_equal(sharp[0], soft[0])
        self.assertGreater(int(soft[1][0, 3, 0]), int(sharp[1][0, 3, 0]))

    def test_upfront_resize(self):
        img = np.full((64, 64, 3), 50, dtype=np.uint8)
        chain = self.gen.generate(img, _profile(FilterType.KAISER), size=(32, 16))
        self.assertEqual((chain.width, chain.height), (32, 16))
        self.assertEqual(len(chain), 6)
        self.assertTrue(np.all(chain[0][:, :, 0] == 50))

    def test_generate_float_keeps_precision(self):
        img = np.zeros((2, 2, 4), dtype=np.float32)
        img[0, 0, 0] = 1.0
        levels = self.gen.generate_float(img, _profile(FilterType.BOX))
        self.assertAlmostEqual(float(levels[1][0, 0, 0]), 0.25, places=6)

    def test_invalid_dimensions_raise(self):
        with self.assertRaises(ValueError):
            self.gen.generate(np.zeros((0, 4, 4), dtype=np.uint8))
        with self.assertRaises(ValueError):
            self.gen.generate(np.zeros((4, 4, 4), dtype=np.uint8), size=(0, 4))

    def test_constant_chain(self):
        chain = MipGenerator.constant_chain(0.5, 8, 2)
        self.assertEqual(chain.dimensions, [(8, 2), (4, 1), (2, 1), (1, 1)])
        for level in chain:
            self.assertTrue(np.all(level[:, :, :3] == 128))
            self.assertTrue(np.all(level[:, :, 3] == 255))
        with self.assertRaises(ValueError):
            MipGenerator.constant_chain(1.5, 4, 4)


@pytest.mark.parametrize("filter_type", [
    FilterType.BILINEAR, FilterType.BICUBIC, FilterType.MITCHELL,
    FilterType.LANCZOS3, FilterType.KAISER,
])
def test_downsample_preserves_mean_of_smooth_gradient(filter_type):
    ramp = np.linspace(0.2, 0.8, 64, dtype=np.float32)
    arr = np.broadcast_to(ramp[None, :, None], (8, 64, 1)).copy()
    out = downsample(arr, 16, 8, filter_type)
    assert out.shape == (8, 16, 1)
    assert abs(float(out.mean()) - float(arr.mean())) < 0.01
