"""Command-line interface for MipForge."""

import argparse
import logging
import os
import re
import signal
import sys

from .config import (
    ChannelPackingMode, ChannelPackingSettings, ChannelSourceSettings,
    OutputFormat, PipelineConfig, parse_enum,
)
from .core import ORMTextureDetector, setup_logging

logger = logging.getLogger("mipforge")

_SIZE_RE = re.compile(r"^\s*(\d+)\s*[xX]\s*(\d+)\s*$")


def _parse_size(value: str) -> tuple:
    match = _SIZE_RE.match(value or "")
    if not match:
        raise argparse.ArgumentTypeError(f"size must look like 1024x1024, got '{value}'")
    width, height = int(match.group(1)), int(match.group(2))
    if width < 1 or height < 1:
        raise argparse.ArgumentTypeError(f"size must be positive, got '{value}'")
    return width, height


def _unit_float(value: str) -> float:
    number = float(value)
    if not (0.0 <= number <= 1.0):
        raise argparse.ArgumentTypeError(f"value must be in [0, 1], got {value}")
    return number


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", "-c", help="Path to config YAML")
    common.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])

    parser = argparse.ArgumentParser(
        prog="mipforge",
        description="PBR channel mip generation, Toksvig correction and ORM packing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mipforge batch -i ./textures -o ./out --format ktx2 --toksvig
  mipforge batch -i ./textures -o ./out --pack --mode OGM
  mipforge pack --ao wall_ao.png --gloss wall_gloss.png --mode OG -o wall_og.png
  mipforge pack --auto wall_albedo.png -o wall_orm.ktx2
  mipforge generate-config config.yaml
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    batch = sub.add_parser("batch", parents=[common], help="Convert a directory tree")
    batch.add_argument("--input", "-i", help="Input textures directory")
    batch.add_argument("--output", "-o", help="Output directory")
    batch.add_argument("--workers", type=int, help="Max conversions in flight")
    batch.add_argument("--format", choices=[f.value for f in OutputFormat])
    batch.add_argument("--toksvig", action="store_true",
                       help="Apply Toksvig correction to gloss/roughness textures")
    batch.add_argument("--size", type=_parse_size, help="Resize level 0 to WxH")
    batch.add_argument("--pack", action="store_true",
                       help="Pack each material's AO/gloss/metallic/height into one ORM texture")
    batch.add_argument("--mode", choices=[m.name for m in ChannelPackingMode],
                       help="Packing mode for --pack")
    batch.add_argument("--save-mipmaps", action="store_true",
                       help="Also write every level as PNG into a mipmaps folder")

    pack = sub.add_parser("pack", parents=[common], help="Pack channels into one chain")
    pack.add_argument("--ao", help="Ambient occlusion source")
    pack.add_argument("--gloss", help="Gloss source")
    pack.add_argument("--roughness", help="Roughness source (inverted into gloss)")
    pack.add_argument("--metallic", help="Metallic source")
    pack.add_argument("--height", help="Height source")
    pack.add_argument("--ao-value", type=_unit_float)
    pack.add_argument("--gloss-value", type=_unit_float)
    pack.add_argument("--metallic-value", type=_unit_float)
    pack.add_argument("--height-value", type=_unit_float)
    pack.add_argument("--mode", choices=[m.name for m in ChannelPackingMode])
    pack.add_argument("--auto", metavar="BASE",
                      help="Detect channel textures next to BASE")
    pack.add_argument("--size", type=_parse_size)
    pack.add_argument("--format", choices=[f.value for f in OutputFormat])
    pack.add_argument("--no-toksvig", action="store_true")
    pack.add_argument("--output", "-o", required=True, help="Output file")

    gen = sub.add_parser("generate-config", help="Write a default config YAML")
    gen.add_argument("path", nargs="?", default="config.yaml")
    return parser


def _load_config(args) -> PipelineConfig:
    if not args.config:
        return PipelineConfig()
    if not os.path.exists(args.config):
        logger.error("Config file not found: %s", args.config)
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)
    try:
        return PipelineConfig.from_yaml(args.config)
    except ValueError as e:
        logger.error("Invalid config file '%s': %s", args.config, e)
        print(f"Error: Invalid config: {e}")
        sys.exit(1)


def _run_batch(args, config: PipelineConfig) -> int:
    from .pipeline import BatchCancelledError, BatchProcessor

    if args.input:
        config.input_dir = args.input
    if args.output:
        config.output_dir = args.output
    if args.workers is not None:
        config.batch.max_parallelism = args.workers
    if args.format:
        config.compression.output_format = parse_enum(OutputFormat, args.format)
    if args.toksvig:
        config.batch.apply_toksvig = True
        config.toksvig.enabled = True
    if args.size:
        config.batch.output_width, config.batch.output_height = args.size
    if args.pack:
        config.batch.pack_orm = True
    if args.mode:
        config.packing.mode = parse_enum(ChannelPackingMode, args.mode)
    if args.save_mipmaps:
        config.batch.save_separate_mipmaps = True

    if not config.input_dir or not os.path.isdir(config.input_dir):
        logger.error("Input directory invalid or not found: %s", config.input_dir)
        print(f"Error: Input directory not found: {config.input_dir}")
        return 1

    os.makedirs(config.output_dir, exist_ok=True)
    setup_logging(config.log_level, os.path.join(config.output_dir, "mipforge.log"))
    try:
        config.validate()
    except ValueError as e:
        logger.error(str(e))
        return 1

    processor = BatchProcessor(config)

    def _cancel_handler(signum, frame):
        logger.warning("Received signal %d; finishing in-flight files...", signum)
        processor.request_cancel()

    previous = {}
    for sig_name in ("SIGINT", "SIGTERM"):
        sig = getattr(signal, sig_name, None)
        if sig is not None:
            previous[sig] = signal.signal(sig, _cancel_handler)
    try:
        result = processor.process_directory(config.input_dir, config.output_dir)
        if result.cancelled:
            raise BatchCancelledError(
                f"Cancelled after {result.success_count} of {result.total_files} file(s)"
            )
    except BatchCancelledError as exc:
        logger.warning("Batch interrupted: %s", exc)
        return 130
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    print(f"Converted {result.success_count}/{result.total_files} file(s) "
          f"in {result.duration:.1f}s")
    for failure in result.failures():
        print(f"  FAILED {failure.input_path}: {failure.error}")
    return 1 if result.failure_count else 0


def _packing_settings_from_args(args, config: PipelineConfig) -> ChannelPackingSettings:
    if args.auto:
        detection = ORMTextureDetector().detect(args.auto)
        mode = parse_enum(ChannelPackingMode, args.mode) if args.mode else None
        return detection.to_packing_settings(mode)

    if not any((args.ao, args.gloss, args.roughness, args.metallic, args.height)) \
            and config.packing.has_assignments():
        return config.packing

    mode = parse_enum(ChannelPackingMode, args.mode) if args.mode else config.packing.mode
    settings = ChannelPackingSettings(
        mode=mode, default_fills=dict(config.packing.default_fills),
    )
    ao = ChannelSourceSettings.ao(args.ao, default_value=args.ao_value)
    gloss_path = args.gloss or args.roughness
    gloss = ChannelSourceSettings.gloss(
        gloss_path, default_value=args.gloss_value,
        invert=bool(args.roughness and not args.gloss),
    )
    settings.red = ao
    if mode == ChannelPackingMode.OG:
        settings.alpha = gloss
        return settings
    settings.green = gloss
    if args.metallic or args.metallic_value is not None:
        settings.blue = ChannelSourceSettings.metallic(
            args.metallic, default_value=args.metallic_value,
        )
    if mode == ChannelPackingMode.OGMH:
        settings.alpha = ChannelSourceSettings.height(
            args.height, default_value=args.height_value,
        )
    return settings


def _run_pack(args, config: PipelineConfig) -> int:
    from .phases.encode import EncoderError, create_encoder
    from .phases.packing import ChannelPackingPipeline

    setup_logging(config.log_level)
    if args.format:
        config.compression.output_format = parse_enum(OutputFormat, args.format)
    try:
        settings = _packing_settings_from_args(args, config)
    except ValueError as e:
        logger.error(str(e))
        print(f"Error: {e}")
        return 1
    if args.no_toksvig:
        for slot in ("r", "g", "b", "a"):
            channel = settings.slot(slot)
            if channel is not None:
                channel.apply_toksvig = False

    pipeline = ChannelPackingPipeline(max_image_pixels=config.max_image_pixels)
    try:
        written = pipeline.pack_and_save(
            settings, args.output, output_size=args.size,
            encoder=create_encoder(config.compression),
        )
    except (ValueError, OSError, EncoderError) as e:
        logger.error("Packing failed: %s", e)
        print(f"Error: {e}")
        return 1
    print(f"Packed {settings.mode.name} texture: {written}")
    return 0


def main(argv=None):
    """Parse CLI arguments, dispatch the subcommand and exit with its status."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "generate-config":
        dest = args.path
        if os.path.isdir(dest):
            dest = os.path.join(dest, "config.yaml")
        PipelineConfig().to_yaml(dest)
        print(f"Generated default {dest}")
        sys.exit(0)

    # Surface from_yaml() warnings before full logging is configured.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
    config = _load_config(args)
    if args.log_level:
        config.log_level = args.log_level

    if args.command == "batch":
        sys.exit(_run_batch(args, config))
    sys.exit(_run_pack(args, config))


if __name__ == "__main__":
    main()
