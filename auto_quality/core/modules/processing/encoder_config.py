"""
Encode configuration model and sample encode command construction.

The host hands over its encoder parameters as a flat ffmpeg token list. They
are parsed into an ordered list of typed EncoderParameter entries so quality
and preset arguments can be matched, replaced and removed without touching
unrelated entries. The module also owns the filter-chain handling used when
encoding samples: upstream filter discovery, QSV upload/download insertion
and the software-only fallback chain.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

# Every quality-control flag any supported encoder family uses
QUALITY_FLAGS: Tuple[str, ...] = ("-crf", "-cq", "-qp", "-qp_i", "-global_quality")
PRESET_FLAG = "-preset"

# Options that are always dropped, with their value, from sample encodes
_VALUE_FLAGS_STRIPPED = ("-vf", "-filter_complex", "-pix_fmt", "-loglevel", "-ss", "-t",
                         "-i", "-map", "-map_chapters")
# Prefix matches ("-crf:v", "-filter:v:0", "-c:v:0" ...)
_PREFIX_FLAGS_STRIPPED = ("-crf", "-cq", "-qp", "-global_quality", "-filter:v", "-c:v", "-pix_fmt")
_SWITCHES_STRIPPED = ("-an", "-sn", "-dn", "-y", "-hide_banner", "-nostats")

_NUMBER_RE = re.compile(r"^-\d+(\.\d+)?$")
_INDEX_RE = re.compile(r"\{index\}", re.IGNORECASE)


def is_flag(token: str) -> bool:
    """True for option tokens ("-crf", "-c:v"), false for values including negative numbers."""
    return len(token) > 1 and token.startswith("-") and not _NUMBER_RE.match(token)


@dataclass
class EncoderParameter:
    """One encoder option and its optional value (``flag`` holds bare tokens too)."""
    flag: str
    value: Optional[str] = None

    def matches(self, name: str) -> bool:
        """Exact flag match, including stream-specifier forms (``-crf:v``, ``-crf:v:0``)."""
        return self.flag == name or self.flag.startswith(name + ":")

    def tokens(self) -> List[str]:
        return [self.flag] if self.value is None else [self.flag, self.value]


@dataclass
class EncodeConfiguration:
    """
    Host encode configuration for the video stream.

    Attributes:
        target_encoder: Encoder identifier chosen upstream (may be empty).
        parameters: Ordered encoder parameters.
        filter_segments: Filter chain entries already decided for the stream.
        crop: Crop filter supplied separately by the host, if any.
        force_encode: Disables the already-optimal shortcut.
    """
    target_encoder: str = ""
    parameters: List[EncoderParameter] = field(default_factory=list)
    filter_segments: List[str] = field(default_factory=list)
    crop: Optional[str] = None
    force_encode: bool = False

    @classmethod
    def from_tokens(cls, tokens: Sequence[str], target_encoder: str = "",
                    filter_segments: Optional[Sequence[str]] = None, crop: Optional[str] = None,
                    force_encode: bool = False) -> 'EncodeConfiguration':
        parameters: List[EncoderParameter] = []
        items = [str(t) for t in tokens if t is not None and str(t) != ""]
        i = 0
        while i < len(items):
            token = items[i]
            if is_flag(token) and i + 1 < len(items) and not is_flag(items[i + 1]):
                parameters.append(EncoderParameter(token, items[i + 1]))
                i += 2
            else:
                parameters.append(EncoderParameter(token))
                i += 1
        return cls(target_encoder=target_encoder, parameters=parameters,
                   filter_segments=list(filter_segments or []), crop=crop,
                   force_encode=force_encode)

    def to_tokens(self) -> List[str]:
        tokens: List[str] = []
        for param in self.parameters:
            tokens.extend(param.tokens())
        return tokens

    def find(self, name: str) -> List[EncoderParameter]:
        return [p for p in self.parameters if p.matches(name)]

    def get(self, name: str) -> Optional[str]:
        found = self.find(name)
        return found[0].value if found else None

    def remove(self, *names: str) -> int:
        """Remove every parameter matching any of ``names``; returns the count removed."""
        before = len(self.parameters)
        self.parameters = [p for p in self.parameters if not any(p.matches(n) for n in names)]
        return before - len(self.parameters)

    def append(self, flag: str, value: Optional[Union[str, int, float]] = None):
        self.parameters.append(EncoderParameter(flag, None if value is None else str(value)))

    def signature(self) -> str:
        """Lower-cased view of the encoder plus all parameters, for capability detection."""
        return " ".join([self.target_encoder] + self.to_tokens()).lower()


# ---------------------------------------------------------------------------
# Filter chains
# ---------------------------------------------------------------------------

def split_filter_chain(chain: str) -> List[str]:
    """Split a filter chain on commas, honouring backslash escapes."""
    parts: List[str] = []
    current = ""
    escaped = False
    for ch in str(chain or ""):
        if escaped:
            current += ch
            escaped = False
        elif ch == "\\":
            current += ch
            escaped = True
        elif ch == ",":
            if current.strip():
                parts.append(current.strip())
            current = ""
        else:
            current += ch
    if current.strip():
        parts.append(current.strip())
    return parts


def is_hwupload_segment(segment: str) -> bool:
    return re.match(r"^hwupload(=|$)", segment.strip(), re.IGNORECASE) is not None


def is_hwdownload_segment(segment: str) -> bool:
    return re.match(r"^hwdownload(=|$)", segment.strip(), re.IGNORECASE) is not None


def is_qsv_filter_segment(segment: str) -> bool:
    s = segment.strip().lower()
    if not s:
        return False
    if s.startswith(("vpp_qsv", "scale_qsv", "deinterlace_qsv", "tonemap_qsv")):
        return True
    return re.match(r"^[a-z0-9_]+_qsv(=|$)", s) is not None


def needs_hardware_filters(segments: Sequence[str]) -> bool:
    """True when the chain can only run with a QSV device attached."""
    return any(is_qsv_filter_segment(s) or is_hwupload_segment(s) or is_hwdownload_segment(s)
               for s in segments)


def strip_hardware_filters(segments: Sequence[str]) -> List[str]:
    """Software-only variant of a chain: QSV stages and hw transfers removed."""
    return [s for s in segments
            if not (is_qsv_filter_segment(s) or is_hwupload_segment(s) or is_hwdownload_segment(s))]


def upstream_filters(config: EncodeConfiguration) -> List[str]:
    """
    Filter segments the final encode will apply to the video stream.

    Combines the configuration's filter entries with any ``-vf`` or
    ``-filter:v`` values in the encoder parameters, de-duplicated in order.
    A separately supplied crop goes first unless the chain already crops.
    """
    entries: List[str] = [s.strip() for s in config.filter_segments if s and s.strip()]
    for param in config.parameters:
        if param.value and (param.flag == "-vf" or param.flag.startswith("-filter:v")):
            entries.append(param.value.strip())

    seen = set()
    unique = []
    for entry in entries:
        if entry and entry not in seen:
            seen.add(entry)
            unique.append(entry)

    segments: List[str] = []
    for entry in unique:
        segments.extend(split_filter_chain(entry))

    if config.crop and not any(s.startswith("crop=") for s in segments):
        segments.insert(0, config.crop)
    return segments


def build_sampling_filter_graph(segments: Sequence[str], use_10bit: bool,
                                software_frames: bool) -> str:
    """
    Filter graph for a sample encode.

    Software chains are returned joined as-is. Chains with QSV stages get a
    ``format`` + ``hwupload`` in front of the first QSV stage (unless an upload
    already precedes it) and, when the encoder needs system-memory frames,
    ``hwdownload`` plus pixel format conversion after the last QSV stage.
    """
    segs = [s for s in segments if s]
    if not segs:
        return ""
    if not needs_hardware_filters(segs):
        return ",".join(segs)

    hw_format = "p010le" if use_10bit else "nv12"
    first_qsv = next((i for i, s in enumerate(segs) if is_qsv_filter_segment(s)), 0)
    if not any(is_hwupload_segment(s) for s in segs[:first_qsv]):
        segs[first_qsv:first_qsv] = [f"format={hw_format}", "hwupload=extra_hw_frames=64"]

    if software_frames:
        last_qsv = next((i for i in range(len(segs) - 1, -1, -1) if is_qsv_filter_segment(segs[i])),
                        len(segs) - 1)
        if not any(is_hwdownload_segment(s) for s in segs[last_qsv + 1:]):
            pix_fmt = "yuv420p10le" if use_10bit else "yuv420p"
            segs[last_qsv + 1:last_qsv + 1] = ["hwdownload", f"format={hw_format}", f"format={pix_fmt}"]

    return ",".join(segs)


# ---------------------------------------------------------------------------
# Sample encode command
# ---------------------------------------------------------------------------

def sample_pixel_format(encoder: str, use_10bit: bool) -> str:
    if "_qsv" in encoder.lower():
        return "p010le" if use_10bit else "nv12"
    return "yuv420p10le" if use_10bit else "yuv420p"


def build_base_encode_tokens(config: EncodeConfiguration, encoder: str, use_10bit: bool,
                             preset_args: Sequence[str] = ()) -> List[str]:
    """
    Host encoder parameters reduced to what a sample encode should inherit.

    Filters, pixel format, input/seek/map options, any quality argument,
    stream toggles and the encoder itself are removed; the encoder, the sample
    pixel format and the preset arguments are appended.
    """
    encoder_token = encoder.strip().lower()
    kept: List[str] = []
    for param in config.parameters:
        flag = _INDEX_RE.sub("0", param.flag)
        if encoder_token and flag.strip().lower() == encoder_token:
            continue
        if flag in _VALUE_FLAGS_STRIPPED or flag.startswith(_PREFIX_FLAGS_STRIPPED):
            continue
        if flag in _SWITCHES_STRIPPED or param.matches(PRESET_FLAG):
            continue
        kept.append(flag)
        if param.value is not None:
            kept.append(_INDEX_RE.sub("0", param.value))

    kept.extend(["-c:v", encoder, "-pix_fmt", sample_pixel_format(encoder, use_10bit)])
    kept.extend(preset_args)
    return kept


def build_sample_encode_args(input_file: Union[str, Path], output_file: Union[str, Path],
                             duration: float, base_tokens: Sequence[str], quality_arg: str,
                             quality_value: int, filter_graph: str = "",
                             seek: Optional[float] = None, hw_device: bool = False) -> List[str]:
    """Full ffmpeg argument list for one reference or candidate sample encode."""
    args = ["-hide_banner", "-loglevel", "error", "-y"]
    if hw_device:
        args += ["-init_hw_device", "qsv=qsv", "-filter_hw_device", "qsv"]
    if seek is not None and seek > 0:
        args += ["-ss", _fmt_seconds(seek)]
    args += ["-i", str(input_file), "-t", _fmt_seconds(duration), "-map", "0:v:0"]
    if filter_graph:
        args += ["-vf", filter_graph]
    args += list(base_tokens)
    args += [quality_arg, str(quality_value), "-an", "-sn", str(output_file)]
    return args


def _fmt_seconds(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:.3f}"
