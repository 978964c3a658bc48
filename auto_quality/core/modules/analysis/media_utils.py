"""
Media utilities for auto_quality.

This module provides media-specific utilities including:
- The read-only VideoAsset descriptor
- FFprobe based asset probing (duration, dimensions, codec, bitrate)
- Bit depth, HDR and Dolby Vision detection
"""

import json
import math
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..system.system_utils import file_size, run_command
from ....utils.logging import get_logger

logger = get_logger("media_utils")

HDR_TRANSFERS = ("smpte2084", "arib-std-b67")
# Share of the container bitrate assumed per audio stream that declares none
AUDIO_BITRATE_SHARE = 0.05


@dataclass(frozen=True)
class VideoAsset:
    """Source video as seen by the quality search. Never mutated."""
    path: Path
    duration: Optional[float]
    width: int = 0
    height: int = 0
    codec: str = ""
    bitrate: Optional[int] = None
    bit_depth: int = 8
    fps: float = 24.0
    hdr: bool = False
    dolby_vision: bool = False
    size_bytes: int = 0

    @property
    def is_10bit(self) -> bool:
        return self.bit_depth >= 10


def _to_float(value: Any) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def _to_int(value: Any) -> Optional[int]:
    result = _to_float(value)
    return int(result) if result is not None else None


def parse_frame_rate(rate: Optional[str]) -> Optional[float]:
    """Parse ffprobe rational frame rates ("24000/1001")."""
    if not rate:
        return None
    if "/" in rate:
        num, _, den = rate.partition("/")
        n, d = _to_float(num), _to_float(den)
        if n is None or not d:
            return None
        return n / d if n > 0 else None
    value = _to_float(rate)
    return value if value and value > 0 else None


def detect_bit_depth(stream: Dict[str, Any]) -> int:
    raw = _to_int(stream.get("bits_per_raw_sample"))
    if raw and raw >= 10:
        return raw
    pix_fmt = str(stream.get("pix_fmt") or "").lower()
    if "p010" in pix_fmt or "10le" in pix_fmt or "10be" in pix_fmt:
        return 10
    if "12le" in pix_fmt or "12be" in pix_fmt:
        return 12
    return 8


def detect_dolby_vision(stream: Dict[str, Any]) -> bool:
    for side_data in stream.get("side_data_list") or []:
        if "dovi" in str(side_data.get("side_data_type", "")).lower():
            return True
    tag = str(stream.get("codec_tag_string") or "").lower()
    return tag in ("dvh1", "dvhe", "dav1")


def estimate_video_bitrate(stream: Dict[str, Any], container: Dict[str, Any],
                           audio_streams: List[Dict[str, Any]]) -> Optional[int]:
    """
    Video stream bitrate, falling back to the container bitrate minus audio.

    Audio streams that declare no bitrate are assumed to take a fixed share
    of the container bitrate each.
    """
    stream_rate = _to_int(stream.get("bit_rate"))
    if stream_rate and stream_rate > 0:
        return stream_rate

    total = _to_int(container.get("bit_rate"))
    if not total or total <= 0:
        return None

    audio = 0
    for a in audio_streams:
        rate = _to_int(a.get("bit_rate"))
        audio += rate if rate and rate > 0 else int(total * AUDIO_BITRATE_SHARE)
    remaining = total - audio
    return remaining if remaining > 0 else None


def video_asset_from_probe(path: Union[str, Path], probe: Dict[str, Any]) -> Optional[VideoAsset]:
    """Build a VideoAsset from parsed ``ffprobe -show_format -show_streams`` JSON."""
    streams = probe.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"
                  and not (s.get("disposition") or {}).get("attached_pic")), None)
    if video is None:
        logger.error(f"No video stream found in {path}")
        return None

    container = probe.get("format") or {}
    audio_streams = [s for s in streams if s.get("codec_type") == "audio"]

    duration = _to_float(container.get("duration"))
    if duration is None:
        duration = _to_float(video.get("duration"))

    fps = parse_frame_rate(video.get("avg_frame_rate")) or parse_frame_rate(video.get("r_frame_rate"))
    size = _to_int(container.get("size")) or file_size(path)

    return VideoAsset(
        path=Path(path),
        duration=duration,
        width=_to_int(video.get("width")) or 0,
        height=_to_int(video.get("height")) or 0,
        codec=str(video.get("codec_name") or "").lower(),
        bitrate=estimate_video_bitrate(video, container, audio_streams),
        bit_depth=detect_bit_depth(video),
        fps=fps or 24.0,
        hdr=str(video.get("color_transfer") or "").lower() in HDR_TRANSFERS,
        dolby_vision=detect_dolby_vision(video),
        size_bytes=size,
    )


def probe_video_asset(path: Union[str, Path], ffprobe: str = "ffprobe",
                      timeout: int = 60) -> Optional[VideoAsset]:
    """Probe a media file with ffprobe and describe its primary video stream."""
    cmd = [ffprobe, "-v", "error", "-print_format", "json",
           "-show_format", "-show_streams", str(path)]
    try:
        result = run_command(cmd, timeout=timeout)
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.error(f"ffprobe failed for {path}: {e}")
        return None

    if result.returncode != 0:
        logger.error(f"ffprobe exited with {result.returncode} for {path}: {result.stderr.strip()}")
        return None

    try:
        probe = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as e:
        logger.error(f"Could not parse ffprobe output for {path}: {e}")
        return None

    return video_asset_from_probe(path, probe)
