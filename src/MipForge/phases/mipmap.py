"""Generate mip chains with selectable resampling kernels.

Every level is derived from the previous one with a separable kernel that is
evaluated in destination space (stretched by the reduction factor) and
sampled with clamp-to-edge addressing. Levels are carried in float32 between
steps and quantized to RGBA8 only for the returned chain.
"""

import logging
import math
from typing import List, Optional, Tuple

import cv2
import numpy as np
from scipy.ndimage import gaussian_filter

from ..config import FilterType, MipGenerationProfile
from ..core import (
    MipChain, mip_dimensions, srgb_to_linear, linear_to_srgb,
)

logger = logging.getLogger("mipforge.mipmap")

_KAISER_ALPHA = 4.0
_KAISER_WIDTH = 3.0


def _box_kernel(x: np.ndarray) -> np.ndarray:
    ax = np.abs(x)
    return np.where(ax < 0.5, 1.0, np.where(ax == 0.5, 0.5, 0.0))


def _triangle_kernel(x: np.ndarray) -> np.ndarray:
    return np.maximum(0.0, 1.0 - np.abs(x))


def _cubic_kernel(b: float, c: float):
    """Mitchell-Netravali family; (0, 0.5) is Catmull-Rom."""
    def kernel(x: np.ndarray) -> np.ndarray:
        ax = np.abs(x)
        ax2 = ax * ax
        ax3 = ax2 * ax
        near = ((12 - 9 * b - 6 * c) * ax3 + (-18 + 12 * b + 6 * c) * ax2 + (6 - 2 * b)) / 6.0
        far = ((-b - 6 * c) * ax3 + (6 * b + 30 * c) * ax2
               + (-12 * b - 48 * c) * ax + (8 * b + 24 * c)) / 6.0
        return np.where(ax < 1.0, near, np.where(ax < 2.0, far, 0.0))
    return kernel


def _lanczos3_kernel(x: np.ndarray) -> np.ndarray:
    return np.where(np.abs(x) < 3.0, np.sinc(x) * np.sinc(x / 3.0), 0.0)


def _kaiser_kernel(x: np.ndarray) -> np.ndarray:
    t = np.clip(x / _KAISER_WIDTH, -1.0, 1.0)
    window = np.i0(_KAISER_ALPHA * np.sqrt(1.0 - t * t)) / np.i0(_KAISER_ALPHA)
    return np.where(np.abs(x) < _KAISER_WIDTH, np.sinc(x) * window, 0.0)


# filter -> (kernel, support radius in destination pixels)
_KERNELS = {
    FilterType.BOX: (_box_kernel, 0.5),
    FilterType.BILINEAR: (_triangle_kernel, 1.0),
    FilterType.BICUBIC: (_cubic_kernel(0.0, 0.5), 2.0),
    FilterType.MITCHELL: (_cubic_kernel(1.0 / 3.0, 1.0 / 3.0), 2.0),
    FilterType.LANCZOS3: (_lanczos3_kernel, 3.0),
    FilterType.KAISER: (_kaiser_kernel, _KAISER_WIDTH),
}


def _axis_weights(src_len: int, dst_len: int, kernel, support: float
                  ) -> Tuple[np.ndarray, np.ndarray]:
    """Clamped source indices and normalized weights, both (dst_len, taps)."""
    scale = src_len / dst_len
    filter_scale = max(scale, 1.0)
    radius = support * filter_scale
    taps = int(2 * math.ceil(radius) + 2)
    centers = (np.arange(dst_len, dtype=np.float64) + 0.5) * scale
    start = np.floor(centers - radius).astype(np.int64)
    idx = start[:, None] + np.arange(taps, dtype=np.int64)[None, :]
    weights = kernel((idx + 0.5 - centers[:, None]) / filter_scale)
    total = weights.sum(axis=1, keepdims=True)
    weights = weights / np.where(total == 0.0, 1.0, total)
    return np.clip(idx, 0, src_len - 1), weights.astype(np.float32)


def _footprint_indices(src_len: int, dst_len: int) -> np.ndarray:
    """Source indices covered by each destination texel (repeats pad short rows)."""
    scale = src_len / dst_len
    starts = np.floor(np.arange(dst_len) * scale).astype(np.int64)
    ends = np.maximum(np.ceil((np.arange(dst_len) + 1) * scale).astype(np.int64), starts + 1)
    ends = np.minimum(ends, src_len)
    taps = int(math.ceil(scale)) + 1
    idx = starts[:, None] + np.arange(taps, dtype=np.int64)[None, :]
    return np.minimum(idx, (ends - 1)[:, None])


def _weight_shape(axis: int, ndim: int, length: int) -> tuple:
    shape = [1] * ndim
    shape[axis] = length
    return tuple(shape)


def _resample_axis(arr: np.ndarray, dst_len: int, axis: int,
                   filter_type: FilterType) -> np.ndarray:
    src_len = arr.shape[axis]
    if src_len == dst_len:
        return arr

    if filter_type in (FilterType.MIN, FilterType.MAX):
        reduce = np.minimum if filter_type == FilterType.MIN else np.maximum
        idx = _footprint_indices(src_len, dst_len)
        out = np.take(arr, idx[:, 0], axis=axis)
        for t in range(1, idx.shape[1]):
            out = reduce(out, np.take(arr, idx[:, t], axis=axis))
        return out

    kernel, support = _KERNELS[filter_type]
    idx, weights = _axis_weights(src_len, dst_len, kernel, support)
    shape = _weight_shape(axis, arr.ndim, dst_len)
    out = np.zeros(
        arr.shape[:axis] + (dst_len,) + arr.shape[axis + 1:], dtype=np.float32,
    )
    for t in range(idx.shape[1]):
        w = weights[:, t]
        if not w.any():
            continue
        out += np.take(arr, idx[:, t], axis=axis) * w.reshape(shape)
    return out


def downsample(arr: np.ndarray, width: int, height: int,
               filter_type: FilterType = FilterType.KAISER) -> np.ndarray:
    """Resample an (H, W, C) float array to ``width`` x ``height``."""
    out = _resample_axis(arr.astype(np.float32, copy=False), height, 0, filter_type)
    return _resample_axis(out, width, 1, filter_type)


def _as_float_rgba(image: np.ndarray) -> np.ndarray:
    """Expand grayscale/RGB/RGBA (uint8 or float) to float32 RGBA in [0, 1]."""
    arr = np.asarray(image)
    if arr.ndim not in (2, 3) or arr.shape[0] < 1 or arr.shape[1] < 1:
        raise ValueError(f"Source image must be non-empty HxW or HxWxC, got {arr.shape}")
    if arr.dtype == np.uint8:
        arr = arr.astype(np.float32) / 255.0
    else:
        arr = np.clip(arr.astype(np.float32), 0.0, 1.0)
    if arr.ndim == 2:
        arr = arr[:, :, None]
    channels = arr.shape[2]
    if channels == 4:
        return arr
    h, w = arr.shape[:2]
    alpha = np.ones((h, w, 1), dtype=np.float32)
    if channels == 1:
        return np.concatenate([arr, arr, arr, alpha], axis=2)
    if channels == 2:
        return np.concatenate([arr[:, :, :1]] * 3 + [arr[:, :, 1:2]], axis=2)
    if channels == 3:
        return np.concatenate([arr, alpha], axis=2)
    raise ValueError(f"Unsupported channel count {channels}")


def quantize(level: np.ndarray) -> np.ndarray:
    """Float RGBA [0, 1] -> RGBA8 with round-half-to-even."""
    return np.round(np.clip(level, 0.0, 1.0) * 255.0).astype(np.uint8)


def resize_image(arr: np.ndarray, width: int, height: int) -> np.ndarray:
    """Upfront resize of a float image (area when shrinking, cubic otherwise)."""
    if width < 1 or height < 1:
        raise ValueError(f"Target size must be positive, got {width}x{height}")
    h, w = arr.shape[:2]
    if (w, h) == (width, height):
        return arr
    shrinking = width <= w and height <= h
    interp = cv2.INTER_AREA if shrinking else cv2.INTER_CUBIC
    resized = cv2.resize(arr, (width, height), interpolation=interp)
    if resized.ndim == 2:
        resized = resized[:, :, None]
    return np.clip(resized, 0.0, 1.0).astype(np.float32)


def renormalize_decoded(decoded: np.ndarray) -> np.ndarray:
    """Scale decoded XYZ vectors to unit length."""
    length = np.sqrt(np.sum(decoded ** 2, axis=-1, keepdims=True))
    length = np.maximum(length, 1e-8)
    return (decoded / length).astype(np.float32)


class MipGenerator:
    """Build full mip chains according to a MipGenerationProfile."""

    def generate(self, image: np.ndarray,
                 profile: Optional[MipGenerationProfile] = None,
                 size: Optional[Tuple[int, int]] = None) -> MipChain:
        """Return the RGBA8 chain from ``image`` down to 1x1.

        ``size`` is an optional ``(width, height)`` applied to level 0 before
        any filtering.
        """
        levels = self.generate_float(image, profile, size)
        return MipChain([quantize(level) for level in levels])

    def generate_float(self, image: np.ndarray,
                       profile: Optional[MipGenerationProfile] = None,
                       size: Optional[Tuple[int, int]] = None) -> List[np.ndarray]:
        """Like ``generate`` but returns unquantized float32 RGBA levels."""
        profile = profile or MipGenerationProfile()
        base = _as_float_rgba(image)
        if size is not None:
            base = resize_image(base, int(size[0]), int(size[1]))
        h, w = base.shape[:2]
        dims = mip_dimensions(w, h)

        levels = [base]
        work = self._to_working_space(base, profile)
        for lw, lh in dims[1:]:
            work = downsample(work, lw, lh, profile.filter)
            if profile.blur_radius > 0 and min(lw, lh) > 1:
                work = gaussian_filter(
                    work, sigma=(profile.blur_radius, profile.blur_radius, 0),
                    mode="nearest",
                ).astype(np.float32)
            if profile.normalize_normals:
                work[:, :, :3] = renormalize_decoded(np.clip(work[:, :, :3], -1.0, 1.0))
            levels.append(self._from_working_space(work, profile))

        logger.debug(
            "Generated %d mip levels for %dx%d (type=%s, filter=%s)",
            len(levels), w, h, profile.texture_type.value, profile.filter.value,
        )
        return levels

    @staticmethod
    def constant_chain(value: float, width: int, height: int) -> MipChain:
        """Chain where every pixel is ``round(value * 255)`` with opaque alpha."""
        if not (0.0 <= value <= 1.0):
            raise ValueError(f"Fill value must be in [0, 1], got {value}")
        byte = int(round(value * 255.0))
        levels = []
        for lw, lh in mip_dimensions(width, height):
            level = np.full((lh, lw, 4), byte, dtype=np.uint8)
            level[:, :, 3] = 255
            levels.append(level)
        return MipChain(levels)

    @staticmethod
    def _to_working_space(level: np.ndarray, profile: MipGenerationProfile) -> np.ndarray:
        work = level.copy()
        rgb = work[:, :, :3]
        if profile.normalize_normals:
            work[:, :, :3] = rgb * 2.0 - 1.0
        elif profile.gamma_correct:
            work[:, :, :3] = srgb_to_linear(rgb)
        elif profile.energy_preserving:
            rough = 1.0 - rgb if profile.is_gloss else rgb
            # Average GGX alpha^2 (= roughness^4) instead of perceptual roughness.
            work[:, :, :3] = rough ** 4
        return work

    @staticmethod
    def _from_working_space(work: np.ndarray, profile: MipGenerationProfile) -> np.ndarray:
        out = work.copy()
        if profile.normalize_normals:
            out[:, :, :3] = out[:, :, :3] * 0.5 + 0.5
        elif profile.gamma_correct:
            out[:, :, :3] = linear_to_srgb(np.clip(out[:, :, :3], 0.0, 1.0))
        elif profile.energy_preserving:
            rough = np.clip(out[:, :, :3], 0.0, 1.0) ** 0.25
            out[:, :, :3] = 1.0 - rough if profile.is_gloss else rough
        return np.clip(out, 0.0, 1.0).astype(np.float32)
