"""Interleave per-channel mip chains into one RGBA ORM chain."""

import logging
from dataclasses import replace
from typing import Dict, Optional, Tuple

import numpy as np

from ..config import (
    AOProcessingMode, ChannelPackingSettings, ChannelSourceSettings, ChannelType,
    layout_for,
)
from ..core import MipChain, NormalMapMatcher, load_rgba8, mip_dimensions
from .ao import AOProcessor
from .mipmap import MipGenerator
from .toksvig import ToksvigProcessor, load_normal_for

logger = logging.getLogger("mipforge.packing")

_SLOT_INDEX = {"r": 0, "g": 1, "b": 2, "a": 3}


def _sample_indices(target_len: int, source_len: int) -> np.ndarray:
    idx = (np.arange(target_len, dtype=np.int64) * source_len) // target_len
    return np.clip(idx, 0, source_len - 1)


class ChannelPackingPipeline:
    """Build channel chains and pack them according to a packing mode."""

    def __init__(self, generator: Optional[MipGenerator] = None,
                 toksvig: Optional[ToksvigProcessor] = None,
                 ao: Optional[AOProcessor] = None,
                 normal_matcher: Optional[NormalMapMatcher] = None,
                 max_image_pixels: int = 0):
        self.generator = generator or MipGenerator()
        self.toksvig = toksvig or ToksvigProcessor(self.generator)
        self.ao = ao or AOProcessor()
        self.normal_matcher = normal_matcher or NormalMapMatcher()
        self.max_image_pixels = max_image_pixels

    def pack_channels(self, settings: ChannelPackingSettings,
                      output_size: Optional[Tuple[int, int]] = None) -> MipChain:
        """Return the packed RGBA8 chain for ``settings``.

        Raises ValueError for invalid settings before any image is decoded.
        """
        self._validate(settings, output_size)
        layout = layout_for(settings.mode)
        channels = self._resolve_channels(settings)

        chains: Dict[ChannelType, MipChain] = {}
        try:
            reference_size = output_size
            for role, channel in channels.items():
                if channel.has_source:
                    chains[role] = self._build_sourced(channel, output_size)
                    if reference_size is None:
                        reference_size = (chains[role].width, chains[role].height)
            for role, channel in channels.items():
                if role not in chains:
                    chains[role] = self.generator.constant_chain(
                        channel.default_value, reference_size[0], reference_size[1],
                    )
            packed = self._interleave(layout, chains, reference_size)
        finally:
            chains.clear()

        logger.info("Packed %s chain %dx%d with %d levels",
                    settings.mode.name, packed.width, packed.height, len(packed))
        return packed

    def pack_and_save(self, settings: ChannelPackingSettings, output_path: str,
                      output_size: Optional[Tuple[int, int]] = None,
                      encoder=None) -> str:
        """Pack and hand the chain to ``encoder`` (PNG levels by default)."""
        from .encode import PngMipEncoder

        chain = self.pack_channels(settings, output_size)
        encoder = encoder or PngMipEncoder()
        return encoder.encode(chain, output_path, srgb=False)

    @staticmethod
    def _validate(settings: ChannelPackingSettings,
                  output_size: Optional[Tuple[int, int]]):
        errors = settings.validate()
        if output_size is not None:
            if len(output_size) != 2 or min(output_size) < 1:
                errors.append(f"output_size must be a positive (width, height), got {output_size}")
        elif not errors and not any(
            channel.has_source
            for channel in ChannelPackingPipeline._resolve_channels(settings).values()
        ):
            errors.append(
                f"at least one channel read by {settings.mode.name} mode needs a "
                f"source_path when no output size is given"
            )
        if errors:
            raise ValueError("Invalid packing settings: " + "; ".join(errors))

    @staticmethod
    def _resolve_channels(settings: ChannelPackingSettings
                          ) -> Dict[ChannelType, ChannelSourceSettings]:
        """One settings object per active role, in slot order."""
        channels: Dict[ChannelType, ChannelSourceSettings] = {}
        for slot, role in layout_for(settings.mode).items():
            if role is None or role in channels:
                continue
            assigned = settings.slot(slot)
            fill = settings.default_fill(role)
            if assigned is None:
                assigned = ChannelSourceSettings(role, default_value=fill)
            elif not assigned.has_source and assigned.default_value is None:
                assigned = replace(assigned, default_value=fill)
            channels[role] = assigned
        return channels

    def _build_sourced(self, channel: ChannelSourceSettings,
                       output_size: Optional[Tuple[int, int]]) -> MipChain:
        image = load_rgba8(channel.source_path, self.max_image_pixels)
        if channel.invert:
            image[:, :, :3] = 255 - image[:, :, :3]
        source_size = (image.shape[1], image.shape[0])

        chain = self.generator.generate(image, channel.resolved_profile(), output_size)
        del image

        if channel.channel_type == ChannelType.GLOSS and channel.apply_toksvig:
            normal, _ = load_normal_for(
                channel.source_path, channel.toksvig, source_size,
                (chain.width, chain.height), self.normal_matcher, self.max_image_pixels,
            )
            chain = self.toksvig.correct(chain, normal, channel.toksvig, is_gloss=True)
        elif (channel.channel_type in (ChannelType.AO, ChannelType.METALLIC)
              and channel.ao_mode != AOProcessingMode.NONE):
            chain = self.ao.process_mipmaps(
                chain, channel.ao_mode, bias=channel.ao_bias,
                percentile=channel.ao_percentile, start_level=channel.ao_start_level,
            )
        logger.debug("Built %s chain from %s: %r",
                     channel.channel_type.value, channel.source_path, chain)
        return chain

    @staticmethod
    def _interleave(layout, chains: Dict[ChannelType, MipChain],
                    size: Tuple[int, int]) -> MipChain:
        width, height = size
        levels = []
        for level_idx in range(len(mip_dimensions(width, height))):
            w = max(1, width >> level_idx)
            h = max(1, height >> level_idx)
            out = np.zeros((h, w, 4), dtype=np.uint8)
            out[:, :, 3] = 255
            for slot, role in layout.items():
                if role is None:
                    continue
                chain = chains[role]
                src = chain[min(level_idx, len(chain) - 1)]
                ys = _sample_indices(h, src.shape[0])
                xs = _sample_indices(w, src.shape[1])
                out[:, :, _SLOT_INDEX[slot]] = src[ys[:, None], xs[None, :], 0]
            levels.append(out)
        return MipChain(levels)
