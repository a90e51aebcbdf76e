"""Toksvig gloss correction driven by normal-map variance.

Averaging unit normals during minification shortens them; the lost length
is read back as normal variance and folded into roughness so that coarse
mips no longer alias under sharp highlights.
"""

import logging
import os
from typing import List, Optional, Tuple

import numpy as np
from scipy.ndimage import gaussian_filter, uniform_filter

from ..config import (
    FilterType, MipGenerationProfile, TextureType, ToksvigCalculationMode,
    ToksvigSettings,
)
from ..core import MipChain, NormalMapMatcher, load_rgba8, to_rgba8
from .mipmap import MipGenerator, renormalize_decoded, resize_image

logger = logging.getLogger("mipforge.toksvig")

_CLASSIC_VARIANCE_BIAS = 4e-5
_MIN_NORMAL_LENGTH = 1e-4
_MIN_ALPHA_SQ = 1e-8
_SMOOTH_SIGMA = 0.5
_SMOOTH_MIN_SIZE = 4

# Plain box average; renormalizing would erase the variance we measure.
_AVERAGE_PROFILE = MipGenerationProfile(
    texture_type=TextureType.NORMAL, filter=FilterType.BOX,
)


def _unit_normals(normal_image: np.ndarray) -> np.ndarray:
    """Decode an RGB(A) normal map to unit XYZ vectors."""
    rgba = to_rgba8(normal_image).astype(np.float32) / 255.0
    return renormalize_decoded(rgba[:, :, :3] * 2.0 - 1.0)


def _average_normal_levels(unit: np.ndarray, generator: MipGenerator) -> List[np.ndarray]:
    h, w = unit.shape[:2]
    encoded = np.empty((h, w, 4), dtype=np.float32)
    encoded[:, :, :3] = unit * 0.5 + 0.5
    encoded[:, :, 3] = 1.0
    levels = generator.generate_float(encoded, _AVERAGE_PROFILE)
    return [level[:, :, :3] * 2.0 - 1.0 for level in levels]


def _vector_length(vectors: np.ndarray) -> np.ndarray:
    return np.sqrt(np.sum(vectors ** 2, axis=-1))


def _classic_variance(avg_normals: np.ndarray) -> np.ndarray:
    mean = uniform_filter(avg_normals, size=(3, 3, 1), mode="nearest")
    r = _vector_length(mean)
    safe_r = np.maximum(r, _MIN_NORMAL_LENGTH)
    variance = np.maximum(0.0, (1.0 - r) / safe_r - _CLASSIC_VARIANCE_BIAS)
    return np.where(r < _MIN_NORMAL_LENGTH, 0.0, variance).astype(np.float32)


def _simplified_variance(avg_normals: np.ndarray, threshold: float) -> np.ndarray:
    unit = renormalize_decoded(avg_normals)
    mean = uniform_filter(unit, size=(2, 2, 1), mode="nearest")
    r = np.maximum(_vector_length(mean), 1e-8)
    variance = np.maximum(0.0, (1.0 - r) / r)
    return np.where(variance < threshold, 0.0, variance).astype(np.float32)


def _classic_roughness(roughness: np.ndarray, variance: np.ndarray,
                       composite_power: float) -> np.ndarray:
    k = composite_power ** 1.5
    a2 = roughness ** 4
    b = 2.0 * k * variance * (a2 - 1.0)
    # b <= 0 here, so the denominator never reaches zero.
    a2_new = np.clip((b - a2) / (b - 1.0), _MIN_ALPHA_SQ, 1.0)
    return a2_new ** 0.25


def _simplified_roughness(roughness: np.ndarray, variance: np.ndarray,
                          composite_power: float) -> np.ndarray:
    return np.sqrt(np.clip(roughness ** 2 + composite_power * variance, 0.0, 1.0))


def _energy_preserve(original: np.ndarray, corrected: np.ndarray) -> np.ndarray:
    """Rescale the Blinn-Phong exponent by the Toksvig normalization factor."""
    a2 = np.maximum(original ** 4, _MIN_ALPHA_SQ)
    a2_new = np.maximum(corrected ** 4, _MIN_ALPHA_SQ)
    s = 2.0 / a2 - 2.0
    s_new = 2.0 / a2_new - 2.0
    s_scaled = s_new * (1.0 + s) / (1.0 + s_new)
    a2_out = np.clip(2.0 / (s_scaled + 2.0), _MIN_ALPHA_SQ, 1.0)
    return a2_out ** 0.25


class ToksvigProcessor:
    """Attenuate gloss per mip level from the matching normal map."""

    def __init__(self, generator: Optional[MipGenerator] = None):
        self.generator = generator or MipGenerator()

    def correct(self, gloss_chain: MipChain, normal_image: Optional[np.ndarray],
                settings: ToksvigSettings, is_gloss: bool = True) -> MipChain:
        """Return the corrected chain (or ``gloss_chain`` itself when skipped)."""
        return self.correct_with_variance(gloss_chain, normal_image, settings, is_gloss)[0]

    def correct_with_variance(
        self, gloss_chain: MipChain, normal_image: Optional[np.ndarray],
        settings: ToksvigSettings, is_gloss: bool = True,
    ) -> Tuple[MipChain, List[Optional[np.ndarray]]]:
        """Like ``correct`` but also returns the per-level variance maps.

        Levels left untouched have ``None`` in the variance list.
        """
        untouched = [None] * len(gloss_chain)
        if not settings.enabled:
            return gloss_chain, untouched
        errors = settings.validate()
        if errors:
            logger.warning("Invalid Toksvig settings, skipping correction: %s",
                           "; ".join(errors))
            return gloss_chain, untouched
        if normal_image is None:
            logger.warning("No normal map available, skipping Toksvig correction")
            return gloss_chain, untouched

        normal_image = np.asarray(normal_image)
        normal_dims = None
        if normal_image.ndim >= 2:
            normal_dims = (normal_image.shape[1], normal_image.shape[0])
        if normal_dims != (gloss_chain.width, gloss_chain.height):
            logger.warning(
                "Normal map size %s does not match gloss size %dx%d, "
                "skipping Toksvig correction",
                normal_dims, gloss_chain.width, gloss_chain.height,
            )
            return gloss_chain, untouched

        avg_levels = _average_normal_levels(_unit_normals(normal_image), self.generator)
        simplified = settings.calculation_mode == ToksvigCalculationMode.SIMPLIFIED

        out_levels = []
        variances: List[Optional[np.ndarray]] = []
        for level_idx, level in enumerate(gloss_chain):
            if level_idx < settings.min_toksvig_mip_level or level_idx >= len(avg_levels):
                out_levels.append(level)
                variances.append(None)
                continue

            avg = avg_levels[level_idx]
            if simplified:
                variance = _simplified_variance(avg, settings.variance_threshold)
            else:
                variance = _classic_variance(avg)
            if settings.smooth_variance and min(variance.shape) >= _SMOOTH_MIN_SIZE:
                variance = gaussian_filter(variance, sigma=_SMOOTH_SIGMA, mode="nearest")

            value = level[:, :, 0].astype(np.float32) / 255.0
            roughness = 1.0 - value if is_gloss else value
            if simplified:
                corrected = _simplified_roughness(roughness, variance, settings.composite_power)
            else:
                corrected = _classic_roughness(roughness, variance, settings.composite_power)
            if settings.energy_preserving and is_gloss:
                corrected = _energy_preserve(roughness, corrected)
            # Zero variance must leave texels bit-exact despite the alpha floor.
            corrected = np.where(variance > 0.0, corrected, roughness)
            result = 1.0 - corrected if is_gloss else corrected

            out = level.copy()
            byte = np.round(np.clip(result, 0.0, 1.0) * 255.0).astype(np.uint8)
            out[:, :, 0] = byte
            out[:, :, 1] = byte
            out[:, :, 2] = byte
            out_levels.append(out)
            variances.append(variance)

        corrected_count = sum(1 for v in variances if v is not None)
        logger.debug("Toksvig (%s) corrected %d of %d levels",
                     settings.calculation_mode.value, corrected_count, len(gloss_chain))
        return MipChain(out_levels), variances


def load_normal_for(gloss_path: str, settings: ToksvigSettings,
                    source_size: Tuple[int, int], target_size: Tuple[int, int],
                    matcher: Optional[NormalMapMatcher] = None,
                    max_pixels: int = 0) -> Tuple[Optional[np.ndarray], Optional[str]]:
    """Load the normal map for ``gloss_path`` as ``(image, path)``.

    An explicit ``settings.normal_map_path`` wins over filename matching.
    A normal map the size of the unresized gloss source follows the gloss
    resize to ``target_size``.
    """
    path = settings.normal_map_path
    if not path:
        path = (matcher or NormalMapMatcher()).find_normal_map(gloss_path)
    if not path or not os.path.isfile(path):
        logger.warning("No normal map found for %s; Toksvig correction skipped", gloss_path)
        return None, None
    normal = load_rgba8(path, max_pixels)
    if (normal.shape[1], normal.shape[0]) == tuple(source_size) and \
            tuple(target_size) != tuple(source_size):
        normal = to_rgba8(resize_image(normal.astype(np.float32) / 255.0, *target_size))
    return normal, path
