"""Tests for ORM channel packing."""

import importlib.util
import os
import shutil
import tempfile
import unittest

import numpy as np
from PIL import Image

from MipForge.config import (
    AOProcessingMode, ChannelPackingMode, ChannelPackingSettings, ChannelSourceSettings,
)
from MipForge.core import save_image
from MipForge.phases.packing import ChannelPackingPipeline

from conftest import flat_normal_map, save_constant_png

HAS_DEPS = all(importlib.util.find_spec(m) is not None for m in ("cv2", "scipy"))


@unittest.skipUnless(HAS_DEPS, "cv2/scipy not installed")
class TestChannelPackingPipeline(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.ao_path = os.path.join(self.tmp, "wall_ao.png")
        self.gloss_path = os.path.join(self.tmp, "wall_gloss.png")
        save_constant_png(self.ao_path, 100)
        save_constant_png(self.gloss_path, 200)
        self.pipeline = ChannelPackingPipeline()

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def _settings(self, mode, **slots):
        return ChannelPackingSettings(mode=mode, **slots)

    def test_og_mirrors_ao_into_rgb(self):
        settings = self._settings(
            ChannelPackingMode.OG,
            red=ChannelSourceSettings.ao(self.ao_path),
            alpha=ChannelSourceSettings.gloss(self.gloss_path),
        )
        chain = self.pipeline.pack_channels(settings)
        self.assertEqual((chain.width, chain.height), (16, 16))
        self.assertEqual(len(chain), 5)
        for level in chain:
            self.assertTrue(np.all(level[:, :, :3] == 100))
            self.assertTrue(np.all(level[:, :, 3] == 200))

    def test_ogm_fills_missing_metallic(self):
        settings = self._settings(
            ChannelPackingMode.OGM,
            red=ChannelSourceSettings.ao(self.ao_path),
            green=ChannelSourceSettings.gloss(self.gloss_path),
        )
        chain = self.pipeline.pack_channels(settings)
        level = chain[0]
        self.assertTrue(np.all(level[:, :, 0] == 100))
        self.assertTrue(np.all(level[:, :, 1] == 200))
        self.assertTrue(np.all(level[:, :, 2] == 0))
        self.assertTrue(np.all(level[:, :, 3] == 255))

    def test_ogmh_without_height_is_rejected(self):
        settings = self._settings(
            ChannelPackingMode.OGMH,
            red=ChannelSourceSettings.ao(self.ao_path),
            green=ChannelSourceSettings.gloss(self.gloss_path),
        )
        with self.assertRaisesRegex(ValueError, "Invalid packing settings"):
            self.pipeline.pack_channels(settings)

    def test_og_mirror_slot_must_match_role(self):
        settings = self._settings(
            ChannelPackingMode.OG,
            red=ChannelSourceSettings.ao(self.ao_path),
            green=ChannelSourceSettings.gloss(self.gloss_path),
            alpha=ChannelSourceSettings.gloss(self.gloss_path),
        )
        with self.assertRaisesRegex(ValueError, "mirrors"):
            self.pipeline.pack_channels(settings)

    def test_constant_channels_with_output_size(self):
        settings = self._settings(
            ChannelPackingMode.OGM,
            red=ChannelSourceSettings.ao(default_value=1.0),
            green=ChannelSourceSettings.gloss(default_value=0.5),
        )
        chain = self.pipeline.pack_channels(settings, output_size=(8, 4))
        self.assertEqual(chain.dimensions, [(8, 4), (4, 2), (2, 1), (1, 1)])
        for level in chain:
            np.testing.assert_array_equal(level[0, 0], [255, 128, 0, 255])

    def test_ogm_constants_full_chain(self):
        settings = self._settings(
            ChannelPackingMode.OGM,
            red=ChannelSourceSettings.ao(default_value=0.8),
            green=ChannelSourceSettings.gloss(default_value=0.6),
        )
        chain = self.pipeline.pack_channels(settings, output_size=(512, 512))
        self.assertEqual(len(chain), 10)
        self.assertEqual(chain[-1].shape, (1, 1, 4))
        for level in chain:
            self.assertTrue(np.all(level == np.array([204, 153, 0, 255], dtype=np.uint8)))

    def test_constants_without_size_are_rejected(self):
        settings = self._settings(
            ChannelPackingMode.OGM,
            red=ChannelSourceSettings.ao(default_value=1.0),
            green=ChannelSourceSettings.gloss(default_value=0.5),
        )
        with self.assertRaises(ValueError):
            self.pipeline.pack_channels(settings)

    def test_mixed_sizes_use_first_sourced_channel(self):
        small_gloss = os.path.join(self.tmp, "small_gloss.png")
        save_constant_png(small_gloss, 200, width=8, height=8)
        settings = self._settings(
            ChannelPackingMode.OGM,
            red=ChannelSourceSettings.ao(self.ao_path),
            green=ChannelSourceSettings.gloss(small_gloss),
        )
        chain = self.pipeline.pack_channels(settings)
        self.assertEqual((chain.width, chain.height), (16, 16))
        self.assertEqual(len(chain), 5)
        self.assertTrue(np.all(chain[0][:, :, 1] == 200))
        self.assertTrue(np.all(chain[4][:, :, 1] == 200))

    def test_roughness_source_is_inverted(self):
        rough_path = os.path.join(self.tmp, "wall_roughness.png")
        save_constant_png(rough_path, 55)
        settings = self._settings(
            ChannelPackingMode.OGM,
            red=ChannelSourceSettings.ao(self.ao_path),
            green=ChannelSourceSettings.gloss(rough_path, invert=True),
        )
        chain = self.pipeline.pack_channels(settings)
        self.assertTrue(np.all(chain[0][:, :, 1] == 200))

    def test_metallic_ao_processing_respects_start_level(self):
        metal_path = os.path.join(self.tmp, "wall_metallic.png")
        arr = np.zeros((16, 16, 3), dtype=np.uint8)
        arr[:, 8:] = 255
        save_image(arr, metal_path)
        settings = self._settings(
            ChannelPackingMode.OGM,
            red=ChannelSourceSettings.ao(self.ao_path),
            green=ChannelSourceSettings.gloss(self.gloss_path),
            blue=ChannelSourceSettings.metallic(
                metal_path, ao_mode=AOProcessingMode.BIASED_DARKENING, ao_bias=1.0,
            ),
        )
        chain = self.pipeline.pack_channels(settings)
        np.testing.assert_array_equal(chain[0][:, :, 2], arr[:, :, 0])

    def test_flat_normal_leaves_gloss_unchanged(self):
        save_image(flat_normal_map(16, 16), os.path.join(self.tmp, "wall_normal.png"))
        settings = self._settings(
            ChannelPackingMode.OGM,
            red=ChannelSourceSettings.ao(self.ao_path),
            green=ChannelSourceSettings.gloss(self.gloss_path),
        )
        chain = self.pipeline.pack_channels(settings)
        for level in chain:
            self.assertTrue(np.all(level[:, :, 1] == 200))

    def test_pack_and_save_writes_level_pngs(self):
        settings = self._settings(
            ChannelPackingMode.OG,
            red=ChannelSourceSettings.ao(self.ao_path),
            alpha=ChannelSourceSettings.gloss(self.gloss_path),
        )
        out = os.path.join(self.tmp, "out", "wall_og.png")
        written = self.pipeline.pack_and_save(settings, out)
        self.assertEqual(written, out)
        self.assertTrue(os.path.isfile(out))
        for level_idx in range(1, 5):
            self.assertTrue(os.path.isfile(
                os.path.join(self.tmp, "out", f"wall_og_mip{level_idx}.png")
            ))
        with Image.open(out) as img:
            self.assertEqual(img.mode, "RGBA")
            self.assertEqual(img.size, (16, 16))

    def test_source_only_in_unused_slot_is_rejected(self):
        height_path = os.path.join(self.tmp, "wall_height.png")
        save_constant_png(height_path, 90)
        settings = self._settings(
            ChannelPackingMode.OGM,
            red=ChannelSourceSettings.ao(default_value=0.8),
            green=ChannelSourceSettings.gloss(default_value=0.6),
            alpha=ChannelSourceSettings.height(height_path),
        )
        with self.assertRaisesRegex(ValueError, "needs a source_path"):
            self.pipeline.pack_channels(settings)

    def test_og_mirror_with_other_ao_is_rejected(self):
        settings = self._settings(
            ChannelPackingMode.OG,
            red=ChannelSourceSettings.ao(default_value=0.8),
            green=ChannelSourceSettings.ao(self.ao_path),
            alpha=ChannelSourceSettings.gloss(default_value=0.6),
        )
        with self.assertRaisesRegex(ValueError, "mirrors"):
            self.pipeline.pack_channels(settings)

    def test_og_mirror_with_same_ao_is_accepted(self):
        settings = self._settings(
            ChannelPackingMode.OG,
            red=ChannelSourceSettings.ao(self.ao_path),
            green=ChannelSourceSettings.ao(self.ao_path),
            alpha=ChannelSourceSettings.gloss(self.gloss_path),
        )
        chain = self.pipeline.pack_channels(settings)
        self.assertTrue(np.all(chain[0][:, :, :3] == 100))

    def test_ogmh_packs_height_into_alpha(self):
        height_path = os.path.join(self.tmp, "wall_height.png")
        metal_path = os.path.join(self.tmp, "wall_metallic.png")
        save_constant_png(height_path, 90)
        save_constant_png(metal_path, 30)
        settings = self._settings(
            ChannelPackingMode.OGMH,
            red=ChannelSourceSettings.ao(self.ao_path),
            green=ChannelSourceSettings.gloss(self.gloss_path),
            blue=ChannelSourceSettings.metallic(metal_path),
            alpha=ChannelSourceSettings.height(height_path),
        )
        chain = self.pipeline.pack_channels(settings)
        self.assertEqual(len(chain), 5)
        for level in chain:
            self.assertTrue(np.all(level == np.array([100, 200, 30, 90], dtype=np.uint8)))

    def test_mismatched_channels_use_nearest_gather(self):
        # 5x3 gloss and 32x24 metallic against a 16x16 AO reference.
        ys, xs = np.mgrid[0:3, 0:5]
        gloss = (10 + 15 * (ys * 5 + xs)).astype(np.uint8)
        gloss_path = os.path.join(self.tmp, "odd_gloss.png")
        save_image(np.repeat(gloss[:, :, None], 3, axis=2), gloss_path)
        ys, xs = np.mgrid[0:24, 0:32]
        metal = ((xs * 7 + ys * 3) % 256).astype(np.uint8)
        metal_path = os.path.join(self.tmp, "big_metallic.png")
        save_image(np.repeat(metal[:, :, None], 3, axis=2), metal_path)

        settings = self._settings(
            ChannelPackingMode.OGM,
            red=ChannelSourceSettings.ao(self.ao_path),
            green=ChannelSourceSettings.gloss(gloss_path, apply_toksvig=False),
            blue=ChannelSourceSettings.metallic(metal_path),
        )
        chain = self.pipeline.pack_channels(settings)
        self.assertEqual((chain.width, chain.height), (16, 16))
        self.assertEqual(len(chain), 5)

        target = np.arange(16)
        np.testing.assert_array_equal(
            chain[0][:, :, 1], gloss[(target * 3) // 16][:, (target * 5) // 16],
        )
        np.testing.assert_array_equal(
            chain[0][:, :, 2], metal[(target * 24) // 16][:, (target * 32) // 16],
        )
