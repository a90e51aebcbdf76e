"""Core utilities -- re-exports all public symbols for convenience."""

from .records import (
    MipChain, mip_dimensions, ConversionResult, BatchProgress, BatchResult,
)
from .io import (
    load_image,
    load_rgba8,
    to_rgba8,
    image_size,
    save_image,
    srgb_to_linear,
    linear_to_srgb,
)
from .scanning import DEFAULT_SUPPORTED_FORMATS, scan_textures
from .paths import get_output_path, mip_level_path
from .logging import setup_logging
from .classify import (
    classify_texture, is_gloss_by_name, texture_type_from_keywords,
    create_name_based_profile_selector, material_stem, NormalMapMatcher,
    ORMDetectionResult, ORMTextureDetector,
)

__all__ = [
    "MipChain", "mip_dimensions", "ConversionResult", "BatchProgress", "BatchResult",
    "load_image", "load_rgba8", "to_rgba8", "image_size", "save_image",
    "srgb_to_linear", "linear_to_srgb",
    "DEFAULT_SUPPORTED_FORMATS", "scan_textures",
    "get_output_path", "mip_level_path",
    "setup_logging",
    "classify_texture", "is_gloss_by_name", "texture_type_from_keywords",
    "create_name_based_profile_selector", "material_stem", "NormalMapMatcher",
    "ORMDetectionResult", "ORMTextureDetector",
]
