"""
Command line front end for auto_quality.

Probes the input file, builds the encode configuration from the given
encoder parameters and filters, runs the quality search and prints the
result (optionally as JSON) together with the updated encoder parameters.
"""

import argparse
import json
import shlex
import sys
from dataclasses import replace
from pathlib import Path

from ..config import AutoQualitySettings, QUALITY_PRESETS, ToolPaths, get_config
from .auto_quality import AutoQuality
from .modules.analysis.content_target import ContentProfile
from .modules.analysis.media_utils import probe_video_asset
from .modules.optimization.result_selector import ReasonCode
from .modules.processing.encoder_config import EncodeConfiguration
from .modules.system.system_utils import format_size
from ..utils.logging import get_logger, set_debug_mode, set_log_level, set_quiet_mode

logger = get_logger("main")

# Reason codes that count as a successful run for the exit status
_OK_REASONS = (ReasonCode.APPLIED, ReasonCode.ALREADY_OPTIMAL, ReasonCode.INSUFFICIENT_REDUCTION)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Auto Quality - find the most compact quality setting that meets a VMAF/SSIM target")

    parser.add_argument("input", help="Input video file")

    # Search
    parser.add_argument("--target-vmaf", type=float, help="Target VMAF (0 = content-aware auto target)")
    parser.add_argument("--min-crf", type=int, help="Best-quality end of the search range")
    parser.add_argument("--max-crf", type=int, help="Smallest-file end of the search range")
    parser.add_argument("--quality-preset", choices=sorted(QUALITY_PRESETS),
                        help="Named target/range preset (overrides target and range)")
    parser.add_argument("--samples", type=int, dest="sample_count", help="Number of samples")
    parser.add_argument("--sample-duration", type=float, help="Sample length in seconds")
    parser.add_argument("--iterations", type=int, dest="max_iterations", help="Maximum search iterations")
    parser.add_argument("--no-prefer-smaller", action="store_true",
                        help="Stop at the first value that meets the target")
    parser.add_argument("--aggregation", choices=["min", "max", "mean"], dest="score_aggregation",
                        help="How per-sample scores combine (default: min)")
    parser.add_argument("--preset", help="Encoder preset written with the chosen value")
    parser.add_argument("--min-size-reduction", type=float,
                        help="Required estimated size reduction in percent")
    parser.add_argument("--max-size-mb", type=float, help="Estimated output size ceiling in MiB")
    parser.add_argument("--vmaf-fps", type=float, help="Frames per second scored by libvmaf")
    parser.add_argument("--concurrency", type=int, help="Simultaneous ffmpeg tasks")

    # Encode configuration
    parser.add_argument("--encoder", default="", help="Target encoder (e.g. libx265, hevc_qsv)")
    parser.add_argument("--encoder-params", default="",
                        help="Encoder parameters as one shell-quoted string")
    parser.add_argument("--filter", action="append", default=[], dest="filters",
                        help="Video filter chain entry (repeatable)")
    parser.add_argument("--crop", help="Crop filter applied before other filters")
    parser.add_argument("--force-encode", action="store_true",
                        help="Search even when the source already looks optimal")

    # Content metadata
    parser.add_argument("--year", type=int, help="Release year")
    parser.add_argument("--genres", help="Comma or pipe separated genres")

    # Tools
    parser.add_argument("--ffmpeg", help="ffmpeg used for sample encodes")
    parser.add_argument("--ffmpeg-vmaf", help="ffmpeg build with libvmaf used for scoring")
    parser.add_argument("--ffprobe", help="ffprobe binary")
    parser.add_argument("--temp-dir", help="Scratch directory (default: a fresh temporary directory)")

    # Output
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")
    parser.add_argument("--quiet", action="store_true", help="Only print warnings, errors and results")
    return parser


def settings_from_args(args: argparse.Namespace, config: dict) -> AutoQualitySettings:
    """Configuration file/environment values overridden by explicit CLI flags."""
    settings = AutoQualitySettings.from_config(config)
    overrides = {}
    for name in ("target_vmaf", "min_crf", "max_crf", "sample_count", "sample_duration",
                 "max_iterations", "score_aggregation", "preset", "min_size_reduction",
                 "max_size_mb", "vmaf_fps", "concurrency", "temp_dir"):
        value = getattr(args, name, None)
        if value is not None:
            overrides[name] = value
    if args.no_prefer_smaller:
        overrides["prefer_smaller"] = False
    settings = replace(settings, **overrides)
    if args.quality_preset:
        settings = settings.with_quality_preset(args.quality_preset)
    return settings.validate()


def main(argv=None) -> int:
    """Main entry point for the auto quality command."""
    parser = build_parser()
    args = parser.parse_args(argv)
    config = get_config()

    if args.debug or config.get('debug'):
        set_debug_mode(True)
        set_log_level("DEBUG")
    if args.quiet or args.json:
        set_quiet_mode(True)

    try:
        settings = settings_from_args(args, config)
    except ValueError as e:
        parser.error(str(e))

    tools = ToolPaths.from_config({
        'ffmpeg': args.ffmpeg or config.get('ffmpeg'),
        'ffprobe': args.ffprobe or config.get('ffprobe'),
        'ffmpeg_vmaf': args.ffmpeg_vmaf or config.get('ffmpeg_vmaf'),
    })
    for tool in tools.missing():
        logger.warn(f"{tool} not found on PATH")

    input_path = Path(args.input).resolve()
    if not input_path.exists():
        logger.error(f"Input file does not exist: {input_path}")
        return 1

    asset = probe_video_asset(input_path, tools.ffprobe)
    if asset is None:
        logger.error(f"Could not read video information from {input_path}")
        return 1
    logger.info(f"Source: {asset.width}x{asset.height}, {asset.fps:.3f}fps, "
                f"{round((asset.bitrate or 0) / 1000)}kbps, codec={asset.codec}, HDR={asset.hdr}, "
                f"{asset.bit_depth}bit, duration={round(asset.duration or 0)}s, "
                f"size={format_size(asset.size_bytes)}")

    encode_config = EncodeConfiguration.from_tokens(
        shlex.split(args.encoder_params), target_encoder=args.encoder,
        filter_segments=args.filters, crop=args.crop, force_encode=args.force_encode)
    profile = ContentProfile.from_values(args.year, args.genres)

    result = AutoQuality(settings, tools).run(asset, encode_config, profile)

    if args.json:
        summary = result.to_dict()
        summary["encoder_params"] = encode_config.to_tokens()
        print(json.dumps(summary, indent=2))
    else:
        logger.result(f"{result.reason.value}: {result.value}")
        if result.applied:
            logger.result("Encoder parameters: " + " ".join(shlex.quote(t) for t in encode_config.to_tokens()))

    return 0 if result.reason in _OK_REASONS else 1


if __name__ == "__main__":
    sys.exit(main())
