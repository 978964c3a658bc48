"""
Quality metric pass: filter graph construction and score parsing for VMAF
(libvmaf) and the SSIM fallback.
"""

import math
import re
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

METRIC_TIMEOUT = 300

_VMAF_SCORE_RE = re.compile(r"VMAF score[^0-9]*([0-9]+(?:\.[0-9]+)?)", re.IGNORECASE)
_VMAF_JSON_RE = re.compile(r'"vmaf"[^0-9]*([0-9]+(?:\.[0-9]+)?)', re.IGNORECASE)
_SSIM_ALL_RE = re.compile(r"All:[^0-9]*([0-9]+(?:\.[0-9]+)?)")


class MetricKind(str, Enum):
    """Quality metric in use. VMAF is preferred, SSIM is the fallback."""
    VMAF = "vmaf"
    SSIM = "ssim"

    @property
    def label(self) -> str:
        return self.value.upper()


def subsample_interval(source_fps: Optional[float], vmaf_fps: Optional[float]) -> Optional[int]:
    """libvmaf n_subsample giving roughly ``vmaf_fps`` scored frames per second."""
    if not source_fps or not vmaf_fps or source_fps <= 0 or vmaf_fps <= 0:
        return None
    return max(1, int(math.floor(source_fps / vmaf_fps + 0.5)))


def build_metric_filter(kind: MetricKind, n_subsample: Optional[int] = None) -> str:
    """Filter complex comparing input 0 (distorted) against input 1 (reference)."""
    if kind == MetricKind.VMAF:
        opts = ["n_threads=4"]
        if n_subsample and n_subsample > 1:
            opts.append(f"n_subsample={n_subsample}")
        opts += ["shortest=1", "eof_action=endall"]
        metric = "libvmaf=" + ":".join(opts)
    else:
        metric = "ssim"

    return ("[0:v]setpts=PTS-STARTPTS,scale=flags=bicubic[distorted];"
            "[1:v]setpts=PTS-STARTPTS,scale=flags=bicubic[reference];"
            f"[distorted][reference]{metric}")


def build_metric_args(encoded: Union[str, Path], reference: Union[str, Path], kind: MetricKind,
                      n_subsample: Optional[int] = None) -> List[str]:
    return [
        "-hide_banner", "-loglevel", "info", "-y",
        "-i", str(encoded),     # distorted first
        "-i", str(reference),   # reference second
        "-filter_complex", build_metric_filter(kind, n_subsample),
        "-f", "null", "-",
    ]


def parse_score(kind: MetricKind, output: str) -> Optional[float]:
    """Extract the metric score from ffmpeg output, None when absent."""
    if not output:
        return None
    if kind == MetricKind.VMAF:
        match = _VMAF_SCORE_RE.search(output) or _VMAF_JSON_RE.search(output)
    else:
        match = _SSIM_ALL_RE.search(output)
    if not match:
        return None
    try:
        score = float(match.group(1))
    except ValueError:
        return None
    return score if math.isfinite(score) else None
