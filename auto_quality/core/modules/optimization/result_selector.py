"""
Final selection and write-back of the quality parameter.

Decides between applying the searched value, reporting the source as already
optimal (stream copy) or rejecting the result because the size reduction is
too small, and writes the quality and preset arguments into the encode
configuration.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .quality_search import CandidateResult, SearchOutcome, SearchResult
from ..analysis.capability_prober import EncoderCapabilities
from ..analysis.media_utils import VideoAsset
from ..processing.encoder_config import PRESET_FLAG, QUALITY_FLAGS, EncodeConfiguration
from ..system.system_utils import format_size
from ....utils.logging import get_logger

logger = get_logger("result_selector")

UNCHANGED = "unchanged"
COPY = "copy"

# (minimum pixel count, maximum acceptable bitrate in bits/s)
_BITRATE_CEILINGS = (
    (3840 * 2160, 25_000_000),
    (1920 * 1080, 12_000_000),
    (1280 * 720, 6_000_000),
)
_SD_BITRATE_CEILING = 3_000_000


class ReasonCode(str, Enum):
    APPLIED = "applied"
    ALREADY_OPTIMAL = "already_optimal"
    INSUFFICIENT_REDUCTION = "insufficient_reduction"
    QUALITY_SEARCH_FAILED = "quality_search_failed"
    REFERENCE_ENCODE_FAILED = "reference_encode_failed"
    SHORT_VIDEO = "short_video"
    UNKNOWN_DURATION = "unknown_duration"


@dataclass
class Selection:
    reason: ReasonCode
    value: Union[int, str]
    candidate: Optional[CandidateResult] = None
    size_reduction: Optional[float] = None

    @property
    def applied(self) -> bool:
        return self.reason == ReasonCode.APPLIED


def max_acceptable_bitrate(width: int, height: int) -> int:
    pixels = width * height
    for min_pixels, ceiling in _BITRATE_CEILINGS:
        if pixels >= min_pixels:
            return ceiling
    return _SD_BITRATE_CEILING


def is_already_optimal(asset: VideoAsset, capabilities: EncoderCapabilities,
                       force_encode: bool = False) -> bool:
    """Source already uses the target codec family at a sensible bitrate for its resolution."""
    if force_encode:
        return False
    source = asset.codec.lower().replace("h.264", "h264")
    if not source or not (source == capabilities.codec_base or capabilities.codec_base in source):
        return False
    bitrate = asset.bitrate or 0
    return bitrate <= max_acceptable_bitrate(asset.width or 1920, asset.height or 1080)


def size_reduction(estimated_size: Optional[int], current_size: int) -> Optional[float]:
    """Percentage by which ``estimated_size`` is smaller than ``current_size``."""
    if estimated_size is None or current_size <= 0:
        return None
    return (current_size - estimated_size) / current_size * 100.0


def apply_quality(config: EncodeConfiguration, capabilities: EncoderCapabilities,
                  value: int, preset: Optional[str] = None):
    """
    Write ``value`` (and the preset) into the encoder parameters.

    Every existing quality argument of any encoder family and any preset is
    removed first so repeated runs never leave duplicates.
    """
    config.remove(*QUALITY_FLAGS, capabilities.quality_arg, PRESET_FLAG)
    config.append(capabilities.quality_arg, value)
    preset_args = capabilities.preset_args(preset)
    if preset_args:
        config.append(preset_args[0], preset_args[1])
    logger.info(f"Applied settings: {capabilities.quality_arg} {value}, "
                f"preset {preset_args[1] if preset_args else 'default'}")


class ResultSelector:
    """Turns a search result into a Selection and applies it when it is worth it."""

    def __init__(self, min_size_reduction: float = 0.0, preset: Optional[str] = None):
        self.min_size_reduction = min_size_reduction
        self.preset = preset

    def select(self, result: SearchResult, asset: VideoAsset) -> Selection:
        candidate = result.selected
        if result.outcome == SearchOutcome.FAILED or candidate is None:
            return Selection(ReasonCode.QUALITY_SEARCH_FAILED, UNCHANGED)

        reduction = size_reduction(candidate.estimated_size, asset.size_bytes)
        if self.min_size_reduction and self.min_size_reduction > 0:
            if reduction is None or reduction < self.min_size_reduction:
                shown = "unknown" if reduction is None else f"{reduction:.1f}%"
                logger.warn(f"Estimated size reduction {shown} is below the required "
                            f"{self.min_size_reduction:g}%; leaving settings unchanged")
                return Selection(ReasonCode.INSUFFICIENT_REDUCTION, UNCHANGED, candidate, reduction)

        return Selection(ReasonCode.APPLIED, candidate.value, candidate, reduction)

    def apply(self, selection: Selection, config: EncodeConfiguration,
              capabilities: EncoderCapabilities):
        if not selection.applied:
            return
        apply_quality(config, capabilities, int(selection.value), self.preset)
        candidate = selection.candidate
        if candidate is not None and candidate.estimated_size:
            logger.result(f"Estimated output size {format_size(candidate.estimated_size)}"
                          + (f" ({selection.size_reduction:.1f}% smaller)"
                             if selection.size_reduction is not None else ""))
