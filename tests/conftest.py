"""Shared test fixtures."""

import os
import shutil
import tempfile

import numpy as np
import pytest

from MipForge.config import PipelineConfig
from MipForge.core import save_image


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def default_config():
    return PipelineConfig()


def save_test_png(path, width=64, height=64, channels=3, seed=None):
    """Create a random test PNG image and return the uint8 pixels written."""
    rng = np.random.default_rng(seed)
    arr = rng.integers(0, 256, size=(height, width, channels), dtype=np.uint8)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    save_image(arr, path)
    return arr


def save_constant_png(path, value, width=16, height=16):
    """Write a gray PNG where every RGB byte equals ``value``."""
    arr = np.full((height, width, 3), value, dtype=np.uint8)
    save_image(arr, path)
    return arr


def flat_normal_map(width, height):
    """Encoded +Z normal map (128, 128, 255)."""
    arr = np.empty((height, width, 3), dtype=np.uint8)
    arr[:, :, 0] = 128
    arr[:, :, 1] = 128
    arr[:, :, 2] = 255
    return arr


def bumpy_normal_map(width, height):
    """Checkerboard of strongly tilted normals; averaging shortens them."""
    yy, xx = np.mgrid[0:height, 0:width]
    sign = np.where((xx + yy) % 2 == 0, 1.0, -1.0)
    n = np.stack([0.7 * sign, np.zeros_like(sign), np.full_like(sign, 0.714)], axis=-1)
    n /= np.linalg.norm(n, axis=-1, keepdims=True)
    return np.round((n * 0.5 + 0.5) * 255.0).astype(np.uint8)
