"""Define typed configuration models for mip generation and channel packing.

Use `PipelineConfig` to load, validate, and persist runtime settings. The
per-request value objects (`MipGenerationProfile`, `ToksvigSettings`,
`ChannelSourceSettings`, `ChannelPackingSettings`) are plain dataclasses that
can be built in code or merged from YAML.
"""

import os
import logging
import typing
import yaml
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum

logger = logging.getLogger("mipforge.config")


class TextureType(Enum):
    """Enumerate texture semantic types that select a mip profile."""

    ALBEDO = "albedo"
    NORMAL = "normal"
    ROUGHNESS = "roughness"
    GLOSS = "gloss"
    AO = "ao"
    METALLIC = "metallic"
    HEIGHT = "height"
    EMISSIVE = "emissive"
    GENERIC = "generic"


class FilterType(Enum):
    """Enumerate resampling kernels used between mip levels."""

    BOX = "box"
    BILINEAR = "bilinear"
    BICUBIC = "bicubic"
    LANCZOS3 = "lanczos3"
    MITCHELL = "mitchell"
    KAISER = "kaiser"
    MIN = "min"
    MAX = "max"


class ChannelType(Enum):
    """Material channel roles that can be packed into an ORM texture."""

    AO = "ao"
    GLOSS = "gloss"
    METALLIC = "metallic"
    HEIGHT = "height"


class AOProcessingMode(Enum):
    """Per-level remapping applied to AO and metallic mip chains."""

    NONE = "none"
    BIASED_DARKENING = "biased_darkening"
    PERCENTILE = "percentile"


class ToksvigCalculationMode(Enum):
    """Variance estimation / attenuation variants for Toksvig correction."""

    CLASSIC = "classic"
    SIMPLIFIED = "simplified"


class ChannelPackingMode(Enum):
    """Supported RGBA channel packing layouts."""

    OG = "og"
    OGM = "ogm"
    OGMH = "ogmh"

    @property
    def description(self) -> str:
        """Human-readable slot layout."""
        return _PACKING_MODE_DESCRIPTIONS[self]


class OutputFormat(Enum):
    """Container written by the encoder adapter."""

    KTX2 = "ktx2"
    BASIS = "basis"
    PNG = "png"


class CompressionFormat(Enum):
    """Basis Universal codec handed to the external encoder."""

    ETC1S = "etc1s"
    UASTC = "uastc"


_PACKING_MODE_DESCRIPTIONS = {
    ChannelPackingMode.OG: "RGB=AO, A=Gloss (two-channel, e.g. non-metallic materials)",
    ChannelPackingMode.OGM: "R=AO, G=Gloss, B=Metallic",
    ChannelPackingMode.OGMH: "R=AO, G=Gloss, B=Metallic, A=Height",
}

# Output slot -> ChannelSourceSettings attribute on ChannelPackingSettings.
SLOT_FIELDS: Dict[str, str] = {"r": "red", "g": "green", "b": "blue", "a": "alpha"}

# Every packing mode must name the role feeding each of the four slots.
# ``None`` marks a slot that is filled with its constant default.
PACKING_LAYOUTS: Dict[ChannelPackingMode, Dict[str, Optional[ChannelType]]] = {
    ChannelPackingMode.OG: {
        "r": ChannelType.AO, "g": ChannelType.AO, "b": ChannelType.AO,
        "a": ChannelType.GLOSS,
    },
    ChannelPackingMode.OGM: {
        "r": ChannelType.AO, "g": ChannelType.GLOSS, "b": ChannelType.METALLIC,
        "a": None,
    },
    ChannelPackingMode.OGMH: {
        "r": ChannelType.AO, "g": ChannelType.GLOSS, "b": ChannelType.METALLIC,
        "a": ChannelType.HEIGHT,
    },
}


def layout_for(mode: ChannelPackingMode) -> Dict[str, Optional[ChannelType]]:
    """Return the complete slot layout for ``mode`` or raise."""
    layout = PACKING_LAYOUTS.get(mode)
    if layout is None or set(layout) != set(SLOT_FIELDS):
        raise ValueError(f"Packing mode {mode!r} does not define all of r/g/b/a")
    return layout


for _mode in ChannelPackingMode:
    layout_for(_mode)


def parse_enum(enum_cls, value):
    """Coerce ``value`` (member, value string, or name) into ``enum_cls``."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        for member in enum_cls:
            if member.value == text or member.name.lower() == text:
                return member
    valid = ", ".join(m.value for m in enum_cls)
    raise ValueError(f"Invalid {enum_cls.__name__} '{value}' (expected one of: {valid})")


# Filename suffixes used for classification (longest match wins).
TEXTURE_PATTERNS: Dict[TextureType, List[str]] = {
    TextureType.ALBEDO:    [
        "_albedo", "_alb", "_diff", "_diffuse", "_color", "_col",
        "_basecolor", "_base", "_bc",
    ],
    TextureType.NORMAL:    ["_norm", "_normal", "_nrm", "_n"],
    TextureType.ROUGHNESS: ["_rough", "_roughness", "_r"],
    TextureType.GLOSS:     ["_gloss", "_glossiness", "_smoothness", "_g"],
    TextureType.AO:        ["_ao", "_ambient", "_occlusion", "_ambientocclusion"],
    TextureType.METALLIC:  ["_metal", "_metalness", "_metallic", "_met"],
    TextureType.HEIGHT:    ["_height", "_h", "_disp", "_displacement", "_bump"],
    TextureType.EMISSIVE:  ["_emissive", "_emit", "_glow"],
}

# Per-type profile defaults; anything not listed uses the dataclass defaults.
_PROFILE_DEFAULTS: Dict[TextureType, dict] = {
    TextureType.ALBEDO: {"filter": FilterType.KAISER, "gamma_correct": True},
    TextureType.NORMAL: {"filter": FilterType.BOX, "normalize_normals": True},
    TextureType.ROUGHNESS: {"filter": FilterType.KAISER, "energy_preserving": True},
    TextureType.GLOSS: {
        "filter": FilterType.KAISER, "energy_preserving": True, "is_gloss": True,
    },
    TextureType.AO: {"filter": FilterType.KAISER},
    TextureType.METALLIC: {"filter": FilterType.BOX},
    TextureType.HEIGHT: {"filter": FilterType.KAISER},
    TextureType.EMISSIVE: {"filter": FilterType.KAISER, "gamma_correct": True},
    TextureType.GENERIC: {"filter": FilterType.KAISER},
}

CHANNEL_TEXTURE_TYPES: Dict[ChannelType, TextureType] = {
    ChannelType.AO: TextureType.AO,
    ChannelType.GLOSS: TextureType.GLOSS,
    ChannelType.METALLIC: TextureType.METALLIC,
    ChannelType.HEIGHT: TextureType.HEIGHT,
}


@dataclass
class MipGenerationProfile:
    """Filter and pre/post adjustments used to build one mip chain."""

    texture_type: TextureType = TextureType.GENERIC
    filter: FilterType = FilterType.KAISER
    gamma_correct: bool = False
    normalize_normals: bool = False
    blur_radius: float = 0.0
    energy_preserving: bool = False
    is_gloss: bool = False

    @classmethod
    def for_type(cls, texture_type) -> "MipGenerationProfile":
        """Return the default profile for a texture semantic type."""
        texture_type = parse_enum(TextureType, texture_type)
        return cls(texture_type=texture_type, **_PROFILE_DEFAULTS.get(texture_type, {}))

    def validate(self, prefix: str = "profile") -> List[str]:
        errors = []
        if self.blur_radius < 0:
            errors.append(f"{prefix}.blur_radius must be >= 0")
        if self.normalize_normals and self.gamma_correct:
            errors.append(
                f"{prefix}: normalize_normals and gamma_correct are mutually exclusive"
            )
        return errors


@dataclass
class ToksvigSettings:
    """Settings for normal-variance gloss correction."""

    enabled: bool = False
    calculation_mode: ToksvigCalculationMode = ToksvigCalculationMode.CLASSIC
    composite_power: float = 1.0
    min_toksvig_mip_level: int = 0
    energy_preserving: bool = False
    smooth_variance: bool = True
    variance_threshold: float = 0.002
    normal_map_path: Optional[str] = None

    def validate(self, prefix: str = "toksvig") -> List[str]:
        errors = []
        if not (0.5 <= self.composite_power <= 8.0):
            errors.append(f"{prefix}.composite_power must be in [0.5, 8.0]")
        if self.min_toksvig_mip_level < 0:
            errors.append(f"{prefix}.min_toksvig_mip_level must be >= 0")
        if not (0.0 <= self.variance_threshold <= 1.0):
            errors.append(f"{prefix}.variance_threshold must be in [0, 1]")
        return errors

    def is_valid(self) -> bool:
        return not self.validate()


@dataclass
class ChannelSourceSettings:
    """Source and processing options for one packed channel.

    A ``source_path`` takes precedence over ``default_value``; when neither
    is set the packing settings' ``default_fills`` entry for the channel
    role is used.
    """

    channel_type: ChannelType = ChannelType.AO
    source_path: Optional[str] = None
    default_value: Optional[float] = None
    profile: Optional[MipGenerationProfile] = None
    invert: bool = False
    ao_mode: AOProcessingMode = AOProcessingMode.NONE
    ao_bias: float = 0.5
    ao_percentile: float = 10.0
    ao_start_level: int = 1
    apply_toksvig: bool = False
    toksvig: ToksvigSettings = field(default_factory=ToksvigSettings)

    @classmethod
    def ao(cls, source_path: Optional[str] = None, **kwargs) -> "ChannelSourceSettings":
        """AO channel with biased darkening enabled."""
        options = {"ao_mode": AOProcessingMode.BIASED_DARKENING, "ao_bias": 0.5}
        options.update(kwargs)
        return cls(ChannelType.AO, source_path=source_path, **options)

    @classmethod
    def gloss(cls, source_path: Optional[str] = None, **kwargs) -> "ChannelSourceSettings":
        """Gloss channel with Toksvig correction requested."""
        options = {"apply_toksvig": True, "toksvig": ToksvigSettings(enabled=True)}
        options.update(kwargs)
        return cls(ChannelType.GLOSS, source_path=source_path, **options)

    @classmethod
    def metallic(cls, source_path: Optional[str] = None, **kwargs) -> "ChannelSourceSettings":
        return cls(ChannelType.METALLIC, source_path=source_path, **kwargs)

    @classmethod
    def height(cls, source_path: Optional[str] = None, **kwargs) -> "ChannelSourceSettings":
        return cls(ChannelType.HEIGHT, source_path=source_path, **kwargs)

    @property
    def has_source(self) -> bool:
        return bool(self.source_path)

    def resolved_profile(self) -> MipGenerationProfile:
        """Explicit profile, or the default for this channel role."""
        if self.profile is not None:
            return self.profile
        return MipGenerationProfile.for_type(CHANNEL_TEXTURE_TYPES[self.channel_type])

    def validate(self, prefix: str = "channel") -> List[str]:
        errors = []
        if self.default_value is not None and not (0.0 <= self.default_value <= 1.0):
            errors.append(f"{prefix}.default_value must be in [0, 1]")
        if not (0.0 <= self.ao_bias <= 1.0):
            errors.append(f"{prefix}.ao_bias must be in [0, 1]")
        if not (0.0 <= self.ao_percentile <= 100.0):
            errors.append(f"{prefix}.ao_percentile must be in [0, 100]")
        if self.ao_start_level < 0:
            errors.append(f"{prefix}.ao_start_level must be >= 0")
        if self.apply_toksvig:
            if self.channel_type != ChannelType.GLOSS:
                errors.append(
                    f"{prefix}: Toksvig correction can only be applied to the gloss "
                    f"channel, not {self.channel_type.value}"
                )
            errors.extend(self.toksvig.validate(f"{prefix}.toksvig"))
        if self.ao_mode != AOProcessingMode.NONE and self.channel_type not in (
            ChannelType.AO, ChannelType.METALLIC,
        ):
            errors.append(
                f"{prefix}: AO processing only applies to ao/metallic channels, "
                f"not {self.channel_type.value}"
            )
        if self.profile is not None:
            errors.extend(self.profile.validate(f"{prefix}.profile"))
        return errors


@dataclass
class ChannelPackingSettings:
    """Packing mode plus per-slot channel assignments."""

    mode: ChannelPackingMode = ChannelPackingMode.OGM
    red: Optional[ChannelSourceSettings] = None
    green: Optional[ChannelSourceSettings] = None
    blue: Optional[ChannelSourceSettings] = None
    alpha: Optional[ChannelSourceSettings] = None
    default_fills: Dict[str, float] = field(default_factory=lambda: {"metallic": 0.0})

    def slot(self, slot: str) -> Optional[ChannelSourceSettings]:
        return getattr(self, SLOT_FIELDS[slot])

    def has_assignments(self) -> bool:
        return any(self.slot(s) is not None for s in SLOT_FIELDS)

    def default_fill(self, channel_type: ChannelType) -> Optional[float]:
        return self.default_fills.get(channel_type.value)

    def validate(self) -> List[str]:
        """Return a list of problems; empty when the settings can be packed."""
        errors = []
        mode = self.mode
        layout = layout_for(mode)

        for key, value in self.default_fills.items():
            try:
                parse_enum(ChannelType, key)
            except ValueError:
                errors.append(f"default_fills: unknown channel '{key}'")
                continue
            if not isinstance(value, (int, float)) or not (0.0 <= value <= 1.0):
                errors.append(f"default_fills.{key} must be in [0, 1]")

        primary = {}
        for slot, role in layout.items():
            name = SLOT_FIELDS[slot]
            assigned = self.slot(slot)
            if role is None:
                if assigned is not None:
                    logger.warning(
                        "%s slot is unused in %s mode; assignment ignored.",
                        name, mode.name,
                    )
                continue
            if role in primary:
                # Mirror slot (OG green/blue): either empty or the same channel.
                if assigned is None:
                    continue
                first_name, first = primary[role]
                if assigned.channel_type != role:
                    errors.append(
                        f"{mode.name} mode mirrors {role.value} into the {name} slot, "
                        f"got {assigned.channel_type.value}"
                    )
                elif first is None or (
                    (assigned.source_path, assigned.default_value)
                    != (first.source_path, first.default_value)
                ):
                    errors.append(
                        f"{mode.name} mode mirrors the {first_name} {role.value} channel "
                        f"into the {name} slot; the {name} assignment differs from it"
                    )
                continue
            primary[role] = (name, assigned)

            if assigned is None:
                if self.default_fill(role) is None:
                    errors.append(
                        f"{mode.name} mode requires a {role.value} channel in the "
                        f"{name} slot (no assignment and no default fill value)"
                    )
                continue
            if assigned.channel_type != role:
                errors.append(
                    f"{mode.name} mode requires {role.value} in the {name} slot, "
                    f"got {assigned.channel_type.value}"
                )
            if (
                not assigned.has_source
                and assigned.default_value is None
                and self.default_fill(role) is None
            ):
                errors.append(
                    f"{name} channel has neither source_path nor default_value"
                )
            errors.extend(assigned.validate(name))
        return errors

    def is_valid(self) -> bool:
        return not self.validate()


@dataclass
class MipmapConfig:
    """Batch-wide adjustments to the per-type default profiles."""

    filter_overrides: Dict[str, str] = field(default_factory=dict)
    blur_radius: float = 0.0
    energy_preserving_roughness: bool = True

    def profile_for(self, texture_type) -> MipGenerationProfile:
        profile = MipGenerationProfile.for_type(texture_type)
        override = self.filter_overrides.get(profile.texture_type.value)
        if override:
            profile.filter = parse_enum(FilterType, override)
        profile.blur_radius = self.blur_radius
        if profile.texture_type in (TextureType.ROUGHNESS, TextureType.GLOSS):
            profile.energy_preserving = self.energy_preserving_roughness
        return profile


@dataclass
class CompressionSettings:
    """Options forwarded to the external encoder."""

    output_format: OutputFormat = OutputFormat.KTX2
    compression_format: CompressionFormat = CompressionFormat.ETC1S
    quality_level: int = 128
    compression_level: int = 1
    uastc_quality: int = 2
    use_uastc_rdo: bool = True
    uastc_rdo_quality: float = 1.0
    zstd_level: int = 0
    tool_path: str = ""
    tool_timeout_seconds: int = 120

    @property
    def extension(self) -> str:
        return "." + self.output_format.value


@dataclass
class BatchSettings:
    """Settings for directory-wide conversion."""

    max_parallelism: int = 4
    supported_formats: List[str] = field(default_factory=lambda: [
        ".png", ".jpg", ".jpeg", ".tga", ".bmp",
    ])
    output_width: int = 0
    output_height: int = 0
    apply_toksvig: bool = False
    # Pack each material's AO/gloss/metallic/height set into one ORM texture
    # (using the ``packing`` mode and default fills) instead of converting
    # every file on its own.
    pack_orm: bool = False
    # Also write every level as PNG into a ``mipmaps`` folder next to the output.
    save_separate_mipmaps: bool = False

    @property
    def output_size(self) -> Optional[tuple]:
        if self.output_width > 0 and self.output_height > 0:
            return (self.output_width, self.output_height)
        return None


_SUPPORTED_CONFIG_VERSION = 1


@dataclass
class PipelineConfig:
    """Master configuration."""

    config_version: int = 1
    input_dir: str = "./textures"
    output_dir: str = "./textures_out"
    log_level: str = "INFO"
    max_image_pixels: int = 67108864  # 8192x8192

    mipmap: MipmapConfig = field(default_factory=MipmapConfig)
    toksvig: ToksvigSettings = field(default_factory=lambda: ToksvigSettings(enabled=True))
    packing: ChannelPackingSettings = field(default_factory=ChannelPackingSettings)
    compression: CompressionSettings = field(default_factory=CompressionSettings)
    batch: BatchSettings = field(default_factory=BatchSettings)

    @classmethod
    def from_yaml(cls, path: str) -> "PipelineConfig":
        """Load configuration from YAML or return defaults."""
        if not os.path.exists(path):
            logger.info("Config file '%s' not found. Using defaults.", path)
            config = cls()
            config.validate()
            return config
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(
                f"Failed to parse YAML config '{path}': {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ValueError(
                f"Config file '{path}' must contain a YAML mapping, "
                f"got {type(data).__name__}"
            )
        yaml_version = data.get("config_version", 1)
        if isinstance(yaml_version, int) and yaml_version > _SUPPORTED_CONFIG_VERSION:
            logger.warning(
                "Config file '%s' has config_version=%d, but this build only "
                "supports up to version %d. Some settings may be ignored.",
                path, yaml_version, _SUPPORTED_CONFIG_VERSION,
            )
        config = cls()
        try:
            _merge_dict_to_dataclass(config, data)
            config.validate()
        except ValueError as exc:
            raise ValueError(f"{path}: {exc}") from exc
        return config

    def to_yaml(self, path: str):
        """Write configuration to a YAML file."""
        import dataclasses
        import threading as _th
        data = _to_plain(dataclasses.asdict(self))
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        ext = os.path.splitext(path)[1]
        tmp_path = f"{path}.tmp.{os.getpid()}.{_th.get_ident()}{ext}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass

    def validate(self):
        """Validate configuration values. Raises ValueError on invalid config."""
        errors = []

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level.upper() not in valid_log_levels:
            errors.append(
                f"log_level must be one of {sorted(valid_log_levels)}, "
                f"got '{self.log_level}'"
            )
        if self.max_image_pixels < 0:
            errors.append("max_image_pixels must be >= 0 (0 = unlimited)")

        batch = self.batch
        if batch.max_parallelism < 1:
            errors.append("batch.max_parallelism must be >= 1")
        if batch.max_parallelism > 128:
            errors.append("batch.max_parallelism must be <= 128")
        if not batch.supported_formats:
            errors.append(
                "batch.supported_formats must not be empty; no files would be processed"
            )
        for ext in batch.supported_formats:
            if not isinstance(ext, str) or not ext.startswith("."):
                errors.append(f"batch.supported_formats entry must start with '.', got {ext!r}")
        if batch.output_width < 0 or batch.output_height < 0:
            errors.append("batch.output_width/output_height must be >= 0")
        if (batch.output_width > 0) != (batch.output_height > 0):
            errors.append("batch.output_width and output_height must be set together")

        if self.mipmap.blur_radius < 0:
            errors.append("mipmap.blur_radius must be >= 0")
        for tex_type, filter_name in self.mipmap.filter_overrides.items():
            try:
                parse_enum(TextureType, tex_type)
            except ValueError:
                errors.append(f"mipmap.filter_overrides: unknown texture type '{tex_type}'")
            try:
                parse_enum(FilterType, filter_name)
            except ValueError:
                errors.append(
                    f"mipmap.filter_overrides.{tex_type}: unknown filter '{filter_name}'"
                )

        errors.extend(self.toksvig.validate("toksvig"))

        comp = self.compression
        if not (1 <= comp.quality_level <= 255):
            errors.append("compression.quality_level must be in [1, 255]")
        if not (0 <= comp.compression_level <= 5):
            errors.append("compression.compression_level must be in [0, 5]")
        if not (0 <= comp.uastc_quality <= 4):
            errors.append("compression.uastc_quality must be in [0, 4]")
        if comp.uastc_rdo_quality <= 0:
            errors.append("compression.uastc_rdo_quality must be > 0")
        if not (0 <= comp.zstd_level <= 22):
            errors.append("compression.zstd_level must be in [0, 22] (0 = off)")
        if comp.tool_timeout_seconds < 1:
            errors.append("compression.tool_timeout_seconds must be >= 1")
        if comp.output_format == OutputFormat.BASIS and comp.zstd_level > 0:
            logger.warning(
                "compression.zstd_level is ignored for .basis output "
                "(supercompression is KTX2-only)."
            )

        if self.packing.has_assignments():
            errors.extend(f"packing: {e}" for e in self.packing.validate())

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {e}" for e in errors)
            )


def _to_plain(value):
    """Convert enums nested in ``dataclasses.asdict`` output to YAML scalars."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {
            (k.value if isinstance(k, Enum) else k): _to_plain(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    return value


def _optional_dataclass_type(hint):
    """Return X for ``Optional[X]`` hints where X is a dataclass."""
    import dataclasses
    for arg in typing.get_args(hint):
        if dataclasses.is_dataclass(arg):
            return arg
    return None


def _merge_dict_to_dataclass(obj, data: dict, _path: str = ""):
    import dataclasses
    hints = typing.get_type_hints(type(obj))
    for key, value in data.items():
        full_key = f"{_path}{key}"
        if not hasattr(obj, key):
            logger.warning(f"Unknown config key ignored: '{full_key}'")
            continue
        field_val = getattr(obj, key)
        if dataclasses.is_dataclass(field_val) and isinstance(value, dict):
            _merge_dict_to_dataclass(field_val, value, f"{full_key}.")
            continue
        if field_val is None and isinstance(value, dict):
            target_cls = _optional_dataclass_type(hints.get(key))
            if target_cls is not None:
                instance = target_cls()
                _merge_dict_to_dataclass(instance, value, f"{full_key}.")
                setattr(obj, key, instance)
                continue
        if isinstance(field_val, Enum):
            try:
                setattr(obj, key, parse_enum(type(field_val), value))
            except ValueError as exc:
                raise ValueError(f"Config key '{full_key}': {exc}") from exc
            continue
        # Reject None for fields with non-None defaults
        if value is None and field_val is not None:
            logger.warning(
                f"Config key '{full_key}' is null but field default is "
                f"{type(field_val).__name__}. Using default value."
            )
            continue
        expected_type = type(field_val)
        # Check type compatibility (allow int->float and float->int promotion)
        if (field_val is not None
                and not isinstance(value, expected_type)
                and not (expected_type is float
                         and isinstance(value, int))
                and not (expected_type is int
                         and isinstance(value, float)
                         and value == int(value))):
            logger.warning(
                f"Config type mismatch for '{full_key}': "
                f"expected {expected_type.__name__}, "
                f"got {type(value).__name__} ({value!r}). "
                f"Using default value."
            )
            continue
        # Promote exact-integer floats to int (e.g. YAML 4.0 -> 4)
        if (expected_type is int and isinstance(value, float)
                and value == int(value)):
            value = int(value)
        # Merge dicts instead of replacing (preserves defaults)
        if isinstance(field_val, dict) and isinstance(value, dict):
            field_val.update(value)
        else:
            setattr(obj, key, value)
