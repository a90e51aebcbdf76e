"""Per-level AO / metallic value remapping."""

import logging

import numpy as np

from ..config import AOProcessingMode
from ..core import MipChain

logger = logging.getLogger("mipforge.ao")

# Keeps exact byte values from truncating down after the float round trip.
_TRUNC_EPS = 1e-4


def _to_bytes(values: np.ndarray) -> np.ndarray:
    return np.floor(np.clip(values, 0.0, 1.0) * 255.0 + _TRUNC_EPS).astype(np.uint8)


def _biased_darkening(values: np.ndarray, bias: float) -> np.ndarray:
    mean = float(values.mean())
    lowest = float(values.min())
    target = mean + (lowest - mean) * bias
    pulled = values + (target - values) * (bias * 0.5)
    return np.minimum(values, pulled)


def _percentile_value(red: np.ndarray, percentile: float) -> float:
    hist = np.bincount(red.ravel(), minlength=256)
    cumulative = np.cumsum(hist)
    threshold = int(red.size * percentile / 100.0)
    return int(np.argmax(cumulative >= threshold)) / 255.0


def _percentile_stretch(values: np.ndarray, pivot: float, anchor: float) -> np.ndarray:
    if pivot <= 0.0 or pivot >= 1.0:
        return values
    low = values / pivot * anchor
    high = anchor + (values - pivot) / (1.0 - pivot) * (1.0 - anchor)
    return np.where(values <= pivot, low, high)


class AOProcessor:
    """Remap AO or metallic mips to keep contact shadows at a distance."""

    def process_mipmaps(self, chain: MipChain, mode: AOProcessingMode,
                        bias: float = 0.5, percentile: float = 10.0,
                        start_level: int = 1) -> MipChain:
        """Return a remapped copy of ``chain``; levels below ``start_level`` are kept."""
        if not (0.0 <= bias <= 1.0):
            raise ValueError(f"AO bias must be in [0, 1], got {bias}")
        if not (0.0 <= percentile <= 100.0):
            raise ValueError(f"AO percentile must be in [0, 100], got {percentile}")
        if mode == AOProcessingMode.NONE:
            return chain

        out_levels = []
        for level_idx, level in enumerate(chain):
            if level_idx < start_level:
                out_levels.append(level)
                continue
            red = level[:, :, 0]
            values = red.astype(np.float64) / 255.0
            if mode == AOProcessingMode.BIASED_DARKENING:
                remapped = _biased_darkening(values, bias)
            else:
                pivot = _percentile_value(red, percentile)
                remapped = _percentile_stretch(values, pivot, percentile / 100.0)
            out = level.copy()
            byte = _to_bytes(remapped)
            out[:, :, 0] = byte
            out[:, :, 1] = byte
            out[:, :, 2] = byte
            out_levels.append(out)

        logger.debug("AO %s applied to %d of %d levels", mode.value,
                     max(0, len(chain) - start_level), len(chain))
        return MipChain(out_levels)
