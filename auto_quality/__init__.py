"""
auto-quality - perceptual-quality targeted encoder parameter search.

Finds the largest CRF (or hardware quality value) whose sample encodes still
meet a VMAF or SSIM target, then writes it into the encode configuration.
"""

__version__ = "1.0.0"

from .config import AutoQualitySettings, ToolPaths
from .core.auto_quality import AutoQuality, AutoQualityResult
from .core.modules.analysis.content_target import ContentProfile
from .core.modules.analysis.media_utils import VideoAsset, probe_video_asset
from .core.modules.optimization.result_selector import ReasonCode
from .core.modules.processing.encoder_config import EncodeConfiguration, EncoderParameter

__all__ = [
    "AutoQuality",
    "AutoQualityResult",
    "AutoQualitySettings",
    "ContentProfile",
    "EncodeConfiguration",
    "EncoderParameter",
    "ReasonCode",
    "ToolPaths",
    "VideoAsset",
    "probe_video_asset",
]
