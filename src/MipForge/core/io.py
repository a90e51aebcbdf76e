"""Image I/O utilities -- decode rasters to RGBA8 arrays and write them back."""

import logging
import os
import threading
from pathlib import Path

import numpy as np
from PIL import Image

# Pixel-count validation happens per call in load_image() after reading the
# header, so Pillow's global decompression-bomb guard is not needed.
Image.MAX_IMAGE_PIXELS = None

logger = logging.getLogger("mipforge")


def load_image(path: str, max_pixels: int = 0) -> np.ndarray:
    """Load an image as a float32 array in [0, 1].

    Grayscale sources are expanded to three channels; alpha is kept when
    present. 16-bit integer PNGs are normalized by 65535.
    """
    ext = Path(path).suffix.lower()
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Image not found: {path}")

    try:
        with Image.open(path) as img:
            if max_pixels > 0 and img.width * img.height > max_pixels:
                raise ValueError(
                    f"Image too large: {img.width}x{img.height} = {img.width * img.height:,} "
                    f"pixels (max {max_pixels:,}). Resize input or increase max_image_pixels."
                )

            if img.mode in ("I;16", "I;16B", "I;16L", "I;16N"):
                logger.debug("Loading %s as 16-bit integer mode %s", path, img.mode)
                arr = np.asarray(img, dtype=np.float32) / 65535.0
            elif img.mode == "I":
                arr = np.clip(np.asarray(img, dtype=np.float32) / 65535.0, 0.0, 1.0)
            elif img.mode == "F":
                arr = np.clip(np.asarray(img, dtype=np.float32), 0.0, 1.0)
            elif img.mode in ("P", "LA", "PA"):
                with img.convert("RGBA") as converted:
                    arr = np.asarray(converted, dtype=np.float32) / 255.0
            elif img.mode in ("L", "1", "CMYK", "YCbCr"):
                with img.convert("RGB") as converted:
                    arr = np.asarray(converted, dtype=np.float32) / 255.0
            else:
                arr = np.asarray(img, dtype=np.float32) / 255.0

            if arr.ndim == 2:
                arr = np.stack([arr] * 3, axis=-1)
            logger.debug("Loaded %s (%s, mode %s)", path, arr.shape, img.mode)
            return arr.astype(np.float32, copy=False)
    except ValueError:
        raise
    except Exception as e:
        logger.error("Failed to open image '%s' (ext=%s): %s", path, ext, e)
        raise IOError(
            f"Failed to open image: {path}\n"
            f"  Format: {ext}, Error: {e}"
        ) from e


def to_rgba8(arr: np.ndarray) -> np.ndarray:
    """Convert a grayscale/RGB/RGBA float or uint8 array to (H, W, 4) uint8.

    Mono data is replicated into R, G and B; missing alpha becomes 255.
    """
    arr = np.asarray(arr)
    if arr.ndim not in (2, 3) or arr.shape[0] < 1 or arr.shape[1] < 1:
        raise ValueError(f"Expected a non-empty HxW or HxWxC image, got shape {arr.shape}")
    if arr.dtype != np.uint8:
        arr = np.round(np.clip(arr.astype(np.float32), 0.0, 1.0) * 255.0).astype(np.uint8)
    if arr.ndim == 2:
        arr = arr[:, :, None]

    channels = arr.shape[-1]
    h, w = arr.shape[:2]
    out = np.empty((h, w, 4), dtype=np.uint8)
    if channels == 1:
        out[:, :, :3] = arr
        out[:, :, 3] = 255
    elif channels == 2:
        out[:, :, :3] = arr[:, :, :1]
        out[:, :, 3] = arr[:, :, 1]
    elif channels == 3:
        out[:, :, :3] = arr
        out[:, :, 3] = 255
    elif channels == 4:
        out[:] = arr
    else:
        raise ValueError(f"Unsupported channel count {channels} (shape {arr.shape})")
    return out


def load_rgba8(path: str, max_pixels: int = 0) -> np.ndarray:
    """Load an image from disk as an (H, W, 4) uint8 array."""
    return to_rgba8(load_image(path, max_pixels=max_pixels))


def image_size(path: str) -> tuple:
    """Return ``(width, height)`` from the file header without decoding pixels."""
    with Image.open(path) as img:
        return img.size


def save_image(arr: np.ndarray, path: str, quality: int = 95):
    """Save a uint8 or float32 [0,1] array as an 8-bit image.

    Uses an atomic write (temp file + ``os.replace``) so readers never see a
    truncated file.
    """
    if arr.size == 0 or arr.ndim < 2:
        raise ValueError(
            f"Cannot save empty or degenerate array (shape={arr.shape}) to {path}"
        )
    if arr.dtype != np.uint8:
        arr = np.round(np.clip(arr, 0, 1) * 255).astype(np.uint8)
    if arr.ndim == 3 and arr.shape[-1] == 1:
        arr = arr[:, :, 0]

    ext = Path(path).suffix.lower()
    parent_dir = os.path.dirname(path) or "."
    os.makedirs(parent_dir, exist_ok=True)

    # Keep the original extension so Pillow can infer the format.
    tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}{ext}"
    try:
        with Image.fromarray(np.ascontiguousarray(arr)) as img:
            if ext in (".jpg", ".jpeg"):
                if img.mode == "RGBA":
                    with img.convert("RGB") as converted:
                        converted.save(tmp_path, quality=quality)
                else:
                    img.save(tmp_path, quality=quality)
            else:
                img.save(tmp_path)
        os.replace(tmp_path, path)
        logger.debug("Saved: %s (%s)", path, arr.shape)
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass


def srgb_to_linear(arr: np.ndarray) -> np.ndarray:
    """Convert sRGB [0,1] values to linear RGB."""
    if np.isnan(arr).any():
        logger.warning("NaN detected in srgb_to_linear input; replacing with 0.0")
        arr = np.nan_to_num(arr, nan=0.0)
    arr = np.clip(arr, 0.0, 1.0).astype(np.float32, copy=False)
    return np.where(
        arr <= 0.04045,
        arr / 12.92,
        np.power((arr + 0.055) / 1.055, 2.4),
    ).astype(np.float32, copy=False)


def linear_to_srgb(arr: np.ndarray) -> np.ndarray:
    """Convert linear RGB values to sRGB [0,1]."""
    if np.isnan(arr).any():
        logger.warning("NaN detected in linear_to_srgb input; replacing with 0.0")
        arr = np.nan_to_num(arr, nan=0.0)
    arr = np.clip(arr, 0.0, 1.0).astype(np.float32, copy=False)
    return np.where(
        arr <= 0.0031308,
        arr * 12.92,
        1.055 * np.power(arr, 1.0 / 2.4) - 0.055,
    ).astype(np.float32, copy=False)
