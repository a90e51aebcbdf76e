"""Texture classification by filename, normal-map matching and ORM detection."""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..config import (
    TextureType, TEXTURE_PATTERNS, ChannelPackingMode, ChannelPackingSettings,
    ChannelSourceSettings, MipGenerationProfile, MipmapConfig,
)
from .io import image_size
from .scanning import DEFAULT_SUPPORTED_FORMATS

logger = logging.getLogger("mipforge")

ProfileSelector = Callable[[str], MipGenerationProfile]


def classify_texture(filepath: str) -> TextureType:
    """Classify texture type based on filename suffix patterns.

    Uses longest-match suffix strategy to avoid false positives from
    short patterns matching mid-word substrings.
    """
    name = Path(filepath).stem.lower()
    best_type = TextureType.GENERIC
    best_len = 0
    for tex_type, patterns in TEXTURE_PATTERNS.items():
        for pattern in patterns:
            if name.endswith(pattern) and len(pattern) > best_len:
                best_len = len(pattern)
                best_type = tex_type
    return best_type


def is_gloss_by_name(filepath: str) -> bool:
    """Return True when the filename marks gloss/smoothness rather than roughness."""
    name = Path(filepath).stem.lower()
    if "gloss" in name or "smoothness" in name:
        return True
    if "roughness" in name or "_r_" in name or name.endswith("_r"):
        return False
    return "_g_" in name or name.endswith("_g")


_AO_TOKEN = re.compile(r"(^|[_\-. ])ao($|[_\-. ])")

# Ordered keyword rules; the first match wins.
_PROFILE_KEYWORDS = (
    (("albedo", "diffuse", "basecolor"), TextureType.ALBEDO),
    (("normal", "norm"), TextureType.NORMAL),
    (("rough",), TextureType.ROUGHNESS),
    (("metal",), TextureType.METALLIC),
    (("occlusion",), TextureType.AO),
    (("emissive", "emit"), TextureType.EMISSIVE),
    (("gloss",), TextureType.GLOSS),
    (("height", "disp"), TextureType.HEIGHT),
)


def texture_type_from_keywords(filepath: str) -> TextureType:
    """Keyword-based type detection used by the batch profile selector."""
    name = Path(filepath).stem.lower()
    for keywords, tex_type in _PROFILE_KEYWORDS:
        if tex_type == TextureType.AO:
            if _AO_TOKEN.search(name) or any(k in name for k in keywords):
                return tex_type
            continue
        if any(k in name for k in keywords):
            return tex_type
    return TextureType.GENERIC


def create_name_based_profile_selector(mipmap_config: Optional[MipmapConfig] = None
                                       ) -> ProfileSelector:
    """Return ``filename -> MipGenerationProfile`` using filename keywords."""
    def _select(filepath: str) -> MipGenerationProfile:
        tex_type = texture_type_from_keywords(filepath)
        if tex_type == TextureType.GENERIC:
            # Short suffixes (_g, _r, _n, _h) carry no keyword.
            tex_type = classify_texture(filepath)
        if mipmap_config is not None:
            profile = mipmap_config.profile_for(tex_type)
        else:
            profile = MipGenerationProfile.for_type(tex_type)
        if tex_type in (TextureType.GLOSS, TextureType.ROUGHNESS):
            profile.is_gloss = is_gloss_by_name(filepath)
        return profile

    return _select


def _directory_index(directory: str) -> Dict[str, str]:
    """Map lower-cased file names to their on-disk spelling."""
    try:
        return {name.lower(): name for name in os.listdir(directory)}
    except OSError:
        return {}


def _same_size(path_a: str, path_b: str) -> bool:
    try:
        return image_size(path_a) == image_size(path_b)
    except OSError as exc:
        logger.warning("Failed to read dimensions of %s / %s: %s", path_a, path_b, exc)
        return False


def _resolve_candidates(reference_path: str, stems: List[str],
                        validate_dimensions: bool) -> Optional[str]:
    directory = os.path.dirname(reference_path) or "."
    index = _directory_index(directory)
    ref_ext = Path(reference_path).suffix.lower()
    extensions = [ref_ext] + [e for e in DEFAULT_SUPPORTED_FORMATS if e != ref_ext]
    ref_name = os.path.basename(reference_path).lower()

    for stem in dict.fromkeys(stems):
        for ext in extensions:
            actual = index.get((stem + ext).lower())
            if actual is None or actual.lower() == ref_name:
                continue
            candidate = os.path.join(directory, actual)
            if validate_dimensions and not _same_size(reference_path, candidate):
                logger.debug("Candidate %s found but dimensions differ", candidate)
                continue
            return candidate
    return None


class NormalMapMatcher:
    """Locate the normal map that belongs to a gloss/roughness texture."""

    _GLOSS_SUFFIXES = ("_roughness", "_rough", "_glossiness", "_gloss", "_smoothness")

    def candidate_stems(self, gloss_path: str) -> List[str]:
        stem = Path(gloss_path).stem
        lower = stem.lower()
        stems = []
        for suffix in self._GLOSS_SUFFIXES:
            idx = lower.rfind(suffix)
            if idx >= 0:
                stems.append(stem[:idx] + "_normal" + stem[idx + len(suffix):])
                stems.append(stem[:idx] + "_n" + stem[idx + len(suffix):])
                break
        stems.append(stem + "_normal")
        if lower.endswith(("_r", "_g")):
            stems.append(stem[:-2] + "_n")
            stems.append(stem[:-2] + "_normal")
        return stems

    def find_normal_map(self, gloss_path: str,
                        validate_dimensions: bool = True) -> Optional[str]:
        """Return the matching normal map path, or None."""
        found = _resolve_candidates(
            gloss_path, self.candidate_stems(gloss_path), validate_dimensions,
        )
        if found:
            logger.debug("Normal map for %s: %s", gloss_path, found)
        else:
            logger.debug("No normal map found for %s", gloss_path)
        return found


_KNOWN_SUFFIXES = (
    "_albedo", "_diffuse", "_basecolor", "_color", "_normal", "_roughness",
    "_ao", "_gloss", "_metallic", "_height",
)
_AO_SUFFIXES = ("_ao", "_ambientocclusion", "_occlusion")
_GLOSS_SUFFIXES = ("_gloss", "_glossiness", "_smoothness")
_ROUGHNESS_SUFFIXES = ("_roughness", "_rough")
_METALLIC_SUFFIXES = ("_metallic", "_metalness", "_metal")
_HEIGHT_SUFFIXES = ("_height", "_displacement", "_disp")
_MATERIAL_SUFFIXES = tuple(sorted(
    set(_KNOWN_SUFFIXES + _AO_SUFFIXES + _GLOSS_SUFFIXES + _ROUGHNESS_SUFFIXES
        + _METALLIC_SUFFIXES + _HEIGHT_SUFFIXES + ("_diff", "_nrm")),
    key=len, reverse=True,
))


def material_stem(filepath: str) -> str:
    """File stem with its channel suffix removed (``wall_ao.png`` -> ``wall``)."""
    stem = Path(filepath).stem
    lower = stem.lower()
    for suffix in _MATERIAL_SUFFIXES:
        if lower.endswith(suffix) and len(stem) > len(suffix):
            return stem[:-len(suffix)]
    return stem


@dataclass
class ORMDetectionResult:
    """Channel sources found next to a material's base texture."""

    ao_path: Optional[str] = None
    gloss_path: Optional[str] = None
    metallic_path: Optional[str] = None
    height_path: Optional[str] = None
    gloss_from_roughness: bool = False

    @property
    def found_count(self) -> int:
        return sum(
            1 for p in (self.ao_path, self.gloss_path, self.metallic_path, self.height_path)
            if p
        )

    @property
    def recommended_mode(self) -> Optional[ChannelPackingMode]:
        if self.ao_path and self.gloss_path and self.metallic_path and self.height_path:
            return ChannelPackingMode.OGMH
        if self.ao_path and self.gloss_path and self.metallic_path:
            return ChannelPackingMode.OGM
        if self.ao_path and self.gloss_path:
            return ChannelPackingMode.OG
        return None

    def to_packing_settings(self, mode: Optional[ChannelPackingMode] = None
                            ) -> ChannelPackingSettings:
        """Build packing settings for ``mode`` (default: the recommended one)."""
        mode = mode or self.recommended_mode
        if mode is None:
            raise ValueError(
                "Not enough channel textures found for ORM packing "
                "(need at least AO and gloss/roughness)"
            )
        settings = ChannelPackingSettings(mode=mode)
        settings.red = ChannelSourceSettings.ao(self.ao_path)
        gloss = ChannelSourceSettings.gloss(self.gloss_path, invert=self.gloss_from_roughness)
        if mode == ChannelPackingMode.OG:
            settings.alpha = gloss
            return settings
        settings.green = gloss
        if self.metallic_path:
            settings.blue = ChannelSourceSettings.metallic(self.metallic_path)
        if mode == ChannelPackingMode.OGMH and self.height_path:
            settings.alpha = ChannelSourceSettings.height(self.height_path)
        return settings

    def __str__(self) -> str:
        parts = []
        for label, path in (("AO", self.ao_path), ("Gloss", self.gloss_path),
                            ("Metallic", self.metallic_path), ("Height", self.height_path)):
            if path:
                parts.append(f"{label}={os.path.basename(path)}")
        return ", ".join(parts) if parts else "No textures found"


class ORMTextureDetector:
    """Find AO/gloss/metallic/height siblings of a material texture."""

    def _find(self, base_path: str, suffixes, validate_dimensions: bool) -> Optional[str]:
        base = material_stem(base_path)
        return _resolve_candidates(
            base_path, [base + s for s in suffixes], validate_dimensions,
        )

    def detect(self, base_path: str, validate_dimensions: bool = True) -> ORMDetectionResult:
        """Search the directory of ``base_path`` for channel textures."""
        if not base_path or not os.path.isfile(base_path):
            logger.warning("Base path not found: %s", base_path)
            return ORMDetectionResult()

        result = ORMDetectionResult(
            ao_path=self._find(base_path, _AO_SUFFIXES, validate_dimensions),
            gloss_path=self._find(base_path, _GLOSS_SUFFIXES, validate_dimensions),
            metallic_path=self._find(base_path, _METALLIC_SUFFIXES, validate_dimensions),
            height_path=self._find(base_path, _HEIGHT_SUFFIXES, validate_dimensions),
        )
        if result.gloss_path is None:
            rough = self._find(base_path, _ROUGHNESS_SUFFIXES, validate_dimensions)
            if rough:
                result.gloss_path = rough
                result.gloss_from_roughness = True
        # The base texture itself may be one of the channels.
        own_type = classify_texture(base_path)
        if own_type == TextureType.AO and result.ao_path is None:
            result.ao_path = base_path
        elif own_type == TextureType.METALLIC and result.metallic_path is None:
            result.metallic_path = base_path
        elif own_type == TextureType.HEIGHT and result.height_path is None:
            result.height_path = base_path
        elif own_type in (TextureType.GLOSS, TextureType.ROUGHNESS) and (
            result.gloss_path is None or result.gloss_from_roughness
        ):
            if own_type == TextureType.GLOSS or result.gloss_path is None:
                result.gloss_path = base_path
                result.gloss_from_roughness = own_type == TextureType.ROUGHNESS

        logger.info("ORM detection for %s: %s (recommended mode: %s)",
                    base_path, result,
                    result.recommended_mode.name if result.recommended_mode else "none")
        return result
