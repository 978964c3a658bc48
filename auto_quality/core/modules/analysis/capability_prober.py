"""
Encoder and metric capability detection.

Works out, from the host encode configuration, which encoder the final pass
will use, which quality argument that encoder family understands, the valid
range of that argument and the target bit depth. Also checks whether the
metric ffmpeg build has libvmaf, degrading to SSIM when it does not.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from ..processing.encoder_config import EncodeConfiguration
from ..processing.quality_metric import MetricKind
from ..system.system_utils import ProcessRunner
from ....utils.logging import get_logger

logger = get_logger("capability_prober")

VMAF_CHECK_TIMEOUT = 30
REFERENCE_MARGIN = 8
DEFAULT_ENCODER = "libx265"

# Checked in order; first signature hit wins
_ENCODER_SIGNATURES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("hevc_qsv", "h265_qsv"), "hevc_qsv"),
    (("hevc_nvenc",), "hevc_nvenc"),
    (("hevc_vaapi",), "hevc_vaapi"),
    (("hevc_amf",), "hevc_amf"),
    (("libx265",), "libx265"),
    (("h264_qsv",), "h264_qsv"),
    (("h264_nvenc",), "h264_nvenc"),
    (("h264_vaapi",), "h264_vaapi"),
    (("libx264",), "libx264"),
    (("av1_qsv",), "av1_qsv"),
    (("av1_nvenc",), "av1_nvenc"),
    (("libsvtav1",), "libsvtav1"),
)

_TEN_BIT_MARKERS = ("p010", "main10", "10bit", "10-bit", "yuv420p10")

_SVTAV1_PRESETS = {
    "placebo": "1", "veryslow": "2", "slower": "3", "slow": "4", "medium": "6",
    "fast": "8", "faster": "10", "veryfast": "11", "superfast": "12", "ultrafast": "12",
}
_NVENC_PRESETS = {
    "placebo": "p7", "veryslow": "p7", "slower": "p6", "slow": "p5", "medium": "p4",
    "fast": "p3", "faster": "p2", "veryfast": "p1", "superfast": "p1", "ultrafast": "p1",
}
_QSV_PRESETS = {"placebo": "veryslow", "superfast": "veryfast", "ultrafast": "veryfast"}


class EncoderFamily(str, Enum):
    CPU = "cpu"
    QSV = "qsv"
    NVENC = "nvenc"
    VAAPI = "vaapi"
    AMF = "amf"


@dataclass(frozen=True)
class EncoderCapabilities:
    """What the search needs to know about the target encoder."""
    encoder: str
    family: EncoderFamily
    codec_base: str
    quality_arg: str
    bit_depth: int
    quality_min: int
    quality_max: int

    @property
    def hardware(self) -> bool:
        return self.family != EncoderFamily.CPU

    @property
    def needs_system_frames(self) -> bool:
        """Encoder consumes system-memory frames (QSV filter output must be downloaded)."""
        return self.family != EncoderFamily.QSV

    def clamp(self, value: int) -> int:
        return max(self.quality_min, min(self.quality_max, int(value)))

    def reference_quality(self, best_value: int, margin: int = REFERENCE_MARGIN) -> int:
        """Quality value for reference encodes: ``margin`` steps better than the best end."""
        return self.clamp(int(best_value) - margin)

    def preset_args(self, preset: Optional[str]) -> List[str]:
        """``-preset`` tokens in the form this encoder accepts ([] when it takes none)."""
        if not preset or self.family in (EncoderFamily.VAAPI, EncoderFamily.AMF):
            return []
        name = str(preset).strip().lower()
        if self.encoder == "libsvtav1":
            value = _SVTAV1_PRESETS.get(name, name)
        elif self.family == EncoderFamily.NVENC:
            value = _NVENC_PRESETS.get(name, name)
        elif self.family == EncoderFamily.QSV:
            value = _QSV_PRESETS.get(name, name)
        else:
            value = name
        return ["-preset", value]


def detect_target_encoder(config: EncodeConfiguration, source_codec: str = "") -> str:
    """Encoder named in the configuration, else one matching the codec, else libx265."""
    signature = config.signature()
    for needles, encoder in _ENCODER_SIGNATURES:
        if any(n in signature for n in needles):
            return encoder

    codec = f"{config.target_encoder} {source_codec}".lower()
    if "hevc" in codec or "h265" in codec or "x265" in codec:
        return "libx265"
    if "h264" in codec or "x264" in codec or "avc" in codec:
        return "libx264"
    if "av1" in codec:
        return "libsvtav1"
    return DEFAULT_ENCODER


def quality_argument(encoder: str) -> str:
    if "_vaapi" in encoder:
        return "-qp"
    if "_nvenc" in encoder:
        return "-cq"
    if "_qsv" in encoder:
        return "-global_quality:v"
    if "_amf" in encoder:
        return "-qp_i"
    return "-crf"


def encoder_family(encoder: str) -> EncoderFamily:
    for family in (EncoderFamily.QSV, EncoderFamily.NVENC, EncoderFamily.VAAPI, EncoderFamily.AMF):
        if f"_{family.value}" in encoder:
            return family
    return EncoderFamily.CPU


def codec_base(encoder: str) -> str:
    """Codec family of an encoder name: libx265 -> hevc, h264_qsv -> h264."""
    base = encoder.lower()
    for token in ("_qsv", "_nvenc", "_vaapi", "_amf", "lib"):
        base = base.replace(token, "")
    return base.replace("x264", "h264").replace("x265", "hevc").replace("svtav1", "av1")


def quality_range(encoder: str) -> Tuple[int, int]:
    family = encoder_family(encoder)
    if family in (EncoderFamily.QSV, EncoderFamily.NVENC):
        return 1, 51
    if encoder == "libsvtav1":
        return 0, 63
    return 0, 51


def detect_target_bit_depth(config: EncodeConfiguration) -> int:
    signature = config.signature()
    return 10 if any(marker in signature for marker in _TEN_BIT_MARKERS) else 8


def probe_encoder(config: EncodeConfiguration, source_codec: str = "") -> EncoderCapabilities:
    encoder = detect_target_encoder(config, source_codec)
    low, high = quality_range(encoder)
    caps = EncoderCapabilities(
        encoder=encoder,
        family=encoder_family(encoder),
        codec_base=codec_base(encoder),
        quality_arg=quality_argument(encoder),
        bit_depth=detect_target_bit_depth(config),
        quality_min=low,
        quality_max=high,
    )
    logger.info(f"Target encoder: {caps.encoder} ({caps.family.value}), "
                f"quality argument: {caps.quality_arg}, bit depth: {caps.bit_depth}")
    return caps


def check_vmaf_support(runner: ProcessRunner, ffmpeg: str,
                       timeout: float = VMAF_CHECK_TIMEOUT) -> bool:
    """True when ``ffmpeg`` reports a libvmaf filter."""
    result = runner.run(ffmpeg, ["-hide_banner", "-loglevel", "error", "-h", "filter=libvmaf"], timeout)
    available = result.ok and "libvmaf" in (result.output or "").lower()
    if not available:
        logger.debug(f"libvmaf not available (exit={result.exit_code}, "
                     f"timed_out={result.timed_out}, output={len(result.output or '')} chars)")
    return available


def select_metric(runner: ProcessRunner, ffmpeg: str) -> MetricKind:
    if check_vmaf_support(runner, ffmpeg):
        logger.info("Quality metric: VMAF (libvmaf available)")
        return MetricKind.VMAF
    logger.warn("Quality metric: SSIM (libvmaf not available, using fallback)")
    return MetricKind.SSIM
