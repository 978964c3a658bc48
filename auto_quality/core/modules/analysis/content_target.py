"""
Content-aware quality target calculation.

The baseline VMAF target depends on era and genre: older films and
animation tolerate more compression, documentaries keep the most detail.
HDR/Dolby Vision and 4K sources get a small bump. When the metric is SSIM
the VMAF target is mapped linearly onto the SSIM scale. A darkness boost
from the luminance probe can be applied once afterwards.
"""

import re
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence, Tuple, Union

from .media_utils import VideoAsset
from ..processing.quality_metric import MetricKind
from ....utils.logging import get_logger

logger = get_logger("content_target")

DEFAULT_YEAR = 2015
BASELINE_CEILING = 97
BOOSTED_VMAF_CEILING = 99
SSIM_FLOOR = 0.95
SSIM_CEILING = 0.999
SSIM_BOOST_PER_LEVEL = 0.005
UHD_WIDTH = 3800

# (upper luminance bound, boost levels), first match wins
DARKNESS_LEVELS = ((40.0, 3), (60.0, 2), (80.0, 1))


@dataclass(frozen=True)
class ContentProfile:
    """Catalog metadata supplied by the host (release year, genres)."""
    year: Optional[int] = None
    genres: Tuple[str, ...] = ()

    @classmethod
    def from_values(cls, year: Optional[Union[int, str]] = None,
                    genres: Union[str, Sequence[str], None] = None) -> 'ContentProfile':
        if isinstance(genres, str):
            genre_list = [g.strip() for g in re.split(r"[,|]", genres)]
        else:
            genre_list = [str(g).strip() for g in (genres or [])]
        try:
            parsed_year = int(year) if year not in (None, "") else None
        except (TypeError, ValueError):
            parsed_year = None
        return cls(year=parsed_year, genres=tuple(g for g in genre_list if g))

    @property
    def is_animation(self) -> bool:
        return any(k in g.lower() for g in self.genres for k in ("animation", "anime", "cartoon"))

    @property
    def is_documentary(self) -> bool:
        return any("documentary" in g.lower() for g in self.genres)


@dataclass(frozen=True)
class TargetAdjustment:
    name: str
    delta: float


@dataclass(frozen=True)
class QualityTarget:
    """
    Effective quality target for one search.

    ``value`` is on the active metric's scale; ``vmaf_equivalent`` keeps the
    VMAF-scale number for reporting. Immutable: the darkness boost returns a
    new instance and may only be applied once.
    """
    metric: MetricKind
    value: float
    vmaf_equivalent: float
    adjustments: Tuple[TargetAdjustment, ...] = field(default_factory=tuple)

    @property
    def darkness_boosted(self) -> bool:
        return any(a.name == "darkness" for a in self.adjustments)

    def is_met(self, score: Optional[float]) -> bool:
        return score is not None and score >= self.value

    def display(self) -> str:
        return f"{self.value:.3f}" if self.metric == MetricKind.SSIM else f"{self.value:g}"

    def with_darkness_boost(self, levels: int) -> 'QualityTarget':
        if self.darkness_boosted:
            raise ValueError("darkness boost already applied")
        if levels <= 0:
            return self

        if self.metric == MetricKind.VMAF:
            value = min(self.value + levels, BOOSTED_VMAF_CEILING)
            vmaf = min(self.vmaf_equivalent + levels, BOOSTED_VMAF_CEILING)
        else:
            value = min(self.value + levels * SSIM_BOOST_PER_LEVEL, SSIM_CEILING)
            vmaf = self.vmaf_equivalent
        adjustment = TargetAdjustment("darkness", round(value - self.value, 6))
        return replace(self, value=value, vmaf_equivalent=vmaf,
                       adjustments=self.adjustments + (adjustment,))


def baseline_vmaf_target(profile: ContentProfile) -> int:
    """VMAF target from era and genre alone."""
    year = profile.year or DEFAULT_YEAR
    if profile.is_animation:
        if year <= 1995:
            return 93
        if year <= 2010:
            return 94
        return 95
    if profile.is_documentary:
        return 96
    if year <= 1990:
        return 93
    if year <= 2005:
        return 94
    if year <= 2015:
        return 95
    return 96


def vmaf_to_ssim(vmaf: float) -> float:
    """Linear VMAF 90-100 -> SSIM 0.96-1.0 mapping, clamped to the usable range."""
    return max(SSIM_FLOOR, min(SSIM_CEILING, 0.96 + (vmaf - 90) * 0.004))


def darkness_boost_levels(luminance: Optional[float]) -> int:
    """Boost for an average luma (0-255 scale); 0 when unknown or bright enough."""
    if luminance is None or luminance < 0:
        return 0
    for bound, levels in DARKNESS_LEVELS:
        if luminance < bound:
            return levels
    return 0


def build_quality_target(metric: MetricKind, asset: VideoAsset,
                         profile: Optional[ContentProfile] = None,
                         fixed_vmaf: float = 0) -> QualityTarget:
    """
    Compute the starting target.

    ``fixed_vmaf`` > 0 bypasses the content-aware calculation.
    """
    profile = profile or ContentProfile()
    adjustments = []

    if fixed_vmaf and fixed_vmaf > 0:
        vmaf = float(fixed_vmaf)
        adjustments.append(TargetAdjustment("fixed", vmaf))
    else:
        base = baseline_vmaf_target(profile)
        vmaf = float(base)
        adjustments.append(TargetAdjustment("content-baseline", vmaf))

        if asset.hdr or asset.dolby_vision:
            bumped = min(vmaf + 1, BASELINE_CEILING)
            adjustments.append(TargetAdjustment("dynamic-range", bumped - vmaf))
            vmaf = bumped
        if asset.width >= UHD_WIDTH:
            bumped = min(vmaf + 1, BASELINE_CEILING)
            adjustments.append(TargetAdjustment("resolution", bumped - vmaf))
            vmaf = bumped

        logger.target(f"Auto VMAF target: {vmaf:g} (year={profile.year or DEFAULT_YEAR}, "
                      f"animation={profile.is_animation}, HDR={asset.hdr or asset.dolby_vision}, "
                      f"metadata={'yes' if profile.year else 'default'})")

    if metric == MetricKind.SSIM:
        value = vmaf_to_ssim(vmaf)
        logger.target(f"Target: VMAF {vmaf:g} -> SSIM {value:.3f}")
    else:
        value = vmaf

    return QualityTarget(metric=metric, value=value, vmaf_equivalent=vmaf,
                         adjustments=tuple(adjustments))
