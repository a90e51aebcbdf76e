"""Single-texture conversion and the bounded-concurrency batch driver.

`TextureConversionPipeline` turns one image into an encoded mip chain;
`BatchProcessor` runs it (or ORM packing per material) over a directory
tree with at most ``max_parallelism`` conversions in flight.
"""

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_COMPLETED
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Tuple

from tqdm import tqdm

from .config import (
    ChannelType, MipGenerationProfile, PipelineConfig, TextureType, ToksvigSettings,
)
from .core import (
    BatchProgress, BatchResult, ConversionResult, NormalMapMatcher,
    ORMTextureDetector, classify_texture, create_name_based_profile_selector,
    get_output_path, load_rgba8, material_stem, save_image,
    scan_textures,
)
from .phases.encode import TextureEncoder, create_encoder
from .phases.mipmap import MipGenerator
from .phases.packing import ChannelPackingPipeline
from .phases.toksvig import ToksvigProcessor, load_normal_for

logger = logging.getLogger("mipforge.batch")

CANCELLED_MESSAGE = "Cancelled before processing"

ProfileSelector = Callable[[str], MipGenerationProfile]
ProgressCallback = Callable[[BatchProgress], None]
Converter = Callable[[str, str, MipGenerationProfile], ConversionResult]


class BatchCancelledError(RuntimeError):
    """Raised by front ends when a batch run was interrupted."""


_ORM_CHANNEL_TYPES = (
    TextureType.AO, TextureType.GLOSS, TextureType.ROUGHNESS,
    TextureType.METALLIC, TextureType.HEIGHT,
)


def _save_levels(levels, directory: str, stem: str):
    """Write ``<stem>_mip<L>.png`` for every level; ``None`` levels are skipped."""
    for level_idx, level in enumerate(levels):
        if level is not None:
            save_image(level, os.path.join(directory, f"{stem}_mip{level_idx}.png"))


def plan_orm_materials(files: List[str]) -> List[Tuple[str, str]]:
    """Group channel textures into materials for ORM packing.

    Returns ``(base_rel_path, output_rel_path)`` per material that has at
    least one AO/gloss/roughness/metallic/height texture. The albedo is the
    preferred detection base; the output is named ``<material>_orm``.
    """
    groups: Dict[Tuple[str, str], List[str]] = {}
    for rel_path in files:
        parent = os.path.dirname(rel_path)
        groups.setdefault((parent, material_stem(rel_path).lower()), []).append(rel_path)

    planned = []
    for (parent, _), members in groups.items():
        types = {rel: classify_texture(rel) for rel in members}
        channels = [rel for rel in members if types[rel] in _ORM_CHANNEL_TYPES]
        if not channels:
            continue
        albedo = [rel for rel in members if types[rel] == TextureType.ALBEDO]
        base = (albedo or channels)[0]
        name = material_stem(base) + "_orm" + os.path.splitext(base)[1]
        planned.append((base, os.path.join(parent, name)))
    return planned


class TextureConversionPipeline:
    """Load -> mips -> optional Toksvig -> encode, for one texture."""

    def __init__(self, encoder: Optional[TextureEncoder] = None,
                 generator: Optional[MipGenerator] = None,
                 toksvig: Optional[ToksvigProcessor] = None,
                 normal_matcher: Optional[NormalMapMatcher] = None,
                 max_image_pixels: int = 0):
        self.encoder = encoder or create_encoder()
        self.generator = generator or MipGenerator()
        self.toksvig = toksvig or ToksvigProcessor(self.generator)
        self.normal_matcher = normal_matcher or NormalMapMatcher()
        self.max_image_pixels = max_image_pixels

    def convert_texture(self, input_path: str, output_path: str,
                        profile: Optional[MipGenerationProfile] = None,
                        toksvig: Optional[ToksvigSettings] = None,
                        output_size: Optional[Tuple[int, int]] = None,
                        mipmap_dir: Optional[str] = None) -> ConversionResult:
        """Convert ``input_path`` and write it to ``output_path``.

        With ``mipmap_dir`` every level is also written there as
        ``<stem>_mip<L>.png``; when Toksvig changed the chain the uncorrected
        levels (``<stem>_gloss_mip<L>.png``) and the variance maps
        (``<stem>_variance_mip<L>.png``) go alongside.

        Load and encoder errors propagate to the caller.
        """
        start = time.monotonic()
        profile = profile or MipGenerationProfile()
        image = load_rgba8(input_path, self.max_image_pixels)
        source_size = (image.shape[1], image.shape[0])
        chain = self.generator.generate(image, profile, output_size)
        del image

        toksvig_applied = False
        normal_used = None
        uncorrected = None
        variances = []
        if (toksvig is not None and toksvig.enabled
                and profile.texture_type in (TextureType.GLOSS, TextureType.ROUGHNESS)):
            normal, normal_used = load_normal_for(
                input_path, toksvig, source_size, (chain.width, chain.height),
                self.normal_matcher, self.max_image_pixels,
            )
            corrected, variances = self.toksvig.correct_with_variance(
                chain, normal, toksvig, is_gloss=profile.is_gloss,
            )
            toksvig_applied = corrected is not chain
            if toksvig_applied:
                uncorrected = chain
            else:
                normal_used = None
            chain = corrected

        stem = os.path.splitext(os.path.basename(output_path))[0]
        if mipmap_dir:
            _save_levels(chain, mipmap_dir, stem)
            if uncorrected is not None:
                _save_levels(uncorrected, mipmap_dir, stem + "_gloss")
                _save_levels(variances, mipmap_dir, stem + "_variance")
            logger.debug("Separate mipmaps for %s written to %s", input_path, mipmap_dir)

        written = self.encoder.encode(chain, output_path, srgb=profile.gamma_correct)
        duration = time.monotonic() - start
        logger.debug("Converted %s -> %s in %.2fs", input_path, written, duration)
        return ConversionResult(
            input_path=input_path,
            success=True,
            output_path=written,
            mip_levels=len(chain),
            duration=duration,
            toksvig_applied=toksvig_applied,
            normal_map_used=normal_used,
            mipmaps_dir=mipmap_dir or None,
        )


class BatchProcessor:
    """Convert every supported texture under a directory tree."""

    def __init__(self, config: Optional[PipelineConfig] = None,
                 max_parallelism: Optional[int] = None,
                 encoder: Optional[TextureEncoder] = None,
                 converter: Optional[Converter] = None,
                 cancel_event: Optional[threading.Event] = None,
                 show_progress: bool = True):
        self.config = config or PipelineConfig()
        workers = max_parallelism if max_parallelism is not None \
            else self.config.batch.max_parallelism
        if workers < 1:
            raise ValueError(f"max_parallelism must be >= 1, got {workers}")
        self.max_parallelism = int(workers)
        self.encoder = encoder or create_encoder(self.config.compression)
        self._converter = converter
        self._cancel_event = cancel_event or threading.Event()
        self.show_progress = show_progress
        self._lock = threading.Lock()

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    def request_cancel(self):
        """Stop scheduling new files; in-flight conversions finish."""
        self._cancel_event.set()

    def _default_converter(self) -> Converter:
        pipeline = TextureConversionPipeline(
            encoder=self.encoder, max_image_pixels=self.config.max_image_pixels,
        )
        toksvig = self.config.toksvig if self.config.batch.apply_toksvig else None
        output_size = self.config.batch.output_size
        save_mipmaps = self.config.batch.save_separate_mipmaps

        def _convert(input_path: str, output_path: str,
                     profile: MipGenerationProfile) -> ConversionResult:
            mipmap_dir = None
            if save_mipmaps:
                mipmap_dir = os.path.join(os.path.dirname(output_path), "mipmaps")
            return pipeline.convert_texture(
                input_path, output_path, profile, toksvig=toksvig,
                output_size=output_size, mipmap_dir=mipmap_dir,
            )

        return _convert

    def _packing_converter(self) -> Converter:
        pipeline = ChannelPackingPipeline(max_image_pixels=self.config.max_image_pixels)
        detector = ORMTextureDetector()
        packing = self.config.packing
        batch = self.config.batch

        def _pack(base_path: str, output_path: str,
                  profile: MipGenerationProfile) -> ConversionResult:
            start = time.monotonic()
            detection = detector.detect(base_path)
            settings = detection.to_packing_settings(packing.mode)
            settings.default_fills = dict(packing.default_fills)
            for slot in ("r", "g", "b", "a"):
                channel = settings.slot(slot)
                if channel is not None and channel.channel_type == ChannelType.GLOSS:
                    channel.apply_toksvig = batch.apply_toksvig
                    channel.toksvig = replace(self.config.toksvig)

            chain = pipeline.pack_channels(settings, batch.output_size)
            mipmap_dir = None
            if batch.save_separate_mipmaps:
                mipmap_dir = os.path.join(os.path.dirname(output_path), "mipmaps")
                stem = os.path.splitext(os.path.basename(output_path))[0]
                _save_levels(chain, mipmap_dir, stem)
            written = self.encoder.encode(chain, output_path, srgb=False)
            return ConversionResult(
                input_path=base_path,
                success=True,
                output_path=written,
                mip_levels=len(chain),
                duration=time.monotonic() - start,
                mipmaps_dir=mipmap_dir,
            )

        return _pack

    def _plan(self, files: List[str]) -> List[Tuple[str, str]]:
        """``(input_rel_path, output_rel_path)`` pairs for this run."""
        if self.config.batch.pack_orm:
            return plan_orm_materials(files)
        return [(rel_path, rel_path) for rel_path in files]

    def _convert_one(self, converter: Converter, input_path: str, output_path: str,
                     profile_selector: ProfileSelector) -> ConversionResult:
        start = time.monotonic()
        try:
            profile = profile_selector(input_path)
            result = converter(input_path, output_path, profile)
        except Exception as exc:
            logger.error("Failed to convert %s: %s", input_path, exc, exc_info=True)
            return ConversionResult(
                input_path=input_path, success=False, error=str(exc) or type(exc).__name__,
                duration=time.monotonic() - start,
            )
        if not result.success:
            logger.warning("Conversion failed for %s: %s", input_path, result.error)
        return result

    @staticmethod
    def _report_progress(callback: Optional[ProgressCallback], progress: BatchProgress):
        logger.debug("[progress] %d/%d %s", progress.current_file,
                     progress.total_files, progress.current_file_name)
        if callback is None:
            return
        try:
            callback(progress)
        except Exception:
            logger.debug("Progress callback failed.", exc_info=True)

    def process_directory(self, input_dir: str, output_dir: str,
                          profile_selector: Optional[ProfileSelector] = None,
                          progress_callback: Optional[ProgressCallback] = None
                          ) -> BatchResult:
        """Convert all supported files under ``input_dir`` into ``output_dir``.

        With ``batch.pack_orm`` each material's channel set is packed into
        one ORM texture instead. Per-file failures are recorded in the result
        and never abort the remaining files.
        """
        batch = BatchResult(start_time=time.time())
        files = self._plan(scan_textures(input_dir, self.config.batch.supported_formats))
        if not files:
            logger.warning("No supported textures found in %s", input_dir)
            batch.results = ()
            batch.end_time = time.time()
            return batch

        selector = profile_selector or create_name_based_profile_selector(self.config.mipmap)
        if self._converter is not None:
            converter = self._converter
        elif self.config.batch.pack_orm:
            converter = self._packing_converter()
        else:
            converter = self._default_converter()
        total = len(files)
        batch.total_files = total
        by_index: Dict[int, ConversionResult] = {}
        counts = {"done": 0, "ok": 0, "failed": 0}

        def _record(index: int, result: ConversionResult, pbar) -> BatchProgress:
            with self._lock:
                by_index[index] = result
                counts["done"] += 1
                counts["ok" if result.success else "failed"] += 1
                progress = BatchProgress(
                    current_file=counts["done"],
                    total_files=total,
                    current_file_name=os.path.basename(result.input_path),
                    success_count=counts["ok"],
                    failure_count=counts["failed"],
                )
            pbar.update(1)
            pbar.set_postfix(ok=progress.success_count, failed=progress.failure_count)
            return progress

        logger.info("Converting %d file(s) from %s with %d worker(s)",
                    total, input_dir, self.max_parallelism)
        next_index = 0
        with ThreadPoolExecutor(max_workers=self.max_parallelism) as executor, \
                tqdm(total=total, desc="Converting", disable=not self.show_progress) as pbar:
            pending = {}
            while True:
                # Refill the window; nothing is queued beyond max_parallelism.
                while (len(pending) < self.max_parallelism and next_index < total
                       and not self._cancel_event.is_set()):
                    rel_path, out_rel_path = files[next_index]
                    input_path = os.path.join(input_dir, rel_path)
                    output_path = get_output_path(
                        out_rel_path, output_dir, ext=self.encoder.extension,
                    )
                    future = executor.submit(
                        self._convert_one, converter, input_path, output_path, selector,
                    )
                    pending[future] = next_index
                    next_index += 1
                if not pending:
                    break
                done, _ = wait(pending, timeout=0.2, return_when=FIRST_COMPLETED)
                for future in done:
                    index = pending.pop(future)
                    progress = _record(index, future.result(), pbar)
                    self._report_progress(progress_callback, progress)

            if next_index < total:
                batch.cancelled = True
                logger.warning("Batch cancelled; %d file(s) not started", total - next_index)
                for index in range(next_index, total):
                    input_path = os.path.join(input_dir, files[index][0])
                    progress = _record(
                        index,
                        ConversionResult(input_path=input_path, success=False,
                                         error=CANCELLED_MESSAGE),
                        pbar,
                    )
                    self._report_progress(progress_callback, progress)

        batch.results = tuple(by_index[i] for i in range(total))
        batch.end_time = time.time()
        logger.info(
            "Batch finished: %d succeeded, %d failed of %d in %.1fs%s",
            batch.success_count, batch.failure_count, total, batch.duration,
            " (cancelled)" if batch.cancelled else "",
        )
        return batch

    def failed_inputs(self, result: BatchResult) -> List[str]:
        """Input paths that failed for reasons other than cancellation."""
        return [r.input_path for r in result.failures() if r.error != CANCELLED_MESSAGE]
