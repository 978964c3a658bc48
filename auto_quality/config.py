"""Configuration management for auto-quality."""

import os
import shutil
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

AGGREGATIONS = ("min", "max", "mean")

# Named presets: (target VMAF, min quality value, max quality value)
QUALITY_PRESETS = {
    "quality": (97.0, 16, 24),
    "balanced": (95.0, 18, 26),
    "compression": (93.0, 20, 30),
}


def load_env_file(env_path: Optional[Path] = None) -> Dict[str, str]:
    """Load environment variables from .env file."""
    if env_path is None:
        # Look for .env in current directory, then in package directory
        candidates = [
            Path.cwd() / ".env",
            Path(__file__).parent.parent / ".env",
        ]

        for candidate in candidates:
            if candidate.exists():
                env_path = candidate
                break

    env_vars = {}

    if env_path and env_path.exists():
        with open(env_path, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    env_vars[key.strip().lower()] = value.strip().strip('"').strip("'")

    return env_vars


def _lookup(env_vars: Dict[str, str], key: str, default: Optional[str] = None) -> Optional[str]:
    """.env value first, then the upper-cased environment variable."""
    value = env_vars.get(key)
    if value is None or value == "":
        value = os.getenv(key.upper())
    return default if value is None or value == "" else value


def _as_bool(value: Optional[str]) -> bool:
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def _as_optional_float(value: Optional[str]) -> Optional[float]:
    return float(value) if value not in (None, "") else None


def get_config(env_path: Optional[Path] = None) -> Dict[str, Any]:
    """Get configuration from .env file and environment variables."""
    env_vars = load_env_file(env_path)

    concurrency = _lookup(env_vars, 'concurrency')
    config = {
        'target_vmaf': float(_lookup(env_vars, 'target_vmaf', '0')),
        'min_crf': int(_lookup(env_vars, 'min_crf', '18')),
        'max_crf': int(_lookup(env_vars, 'max_crf', '28')),
        'sample_duration': float(_lookup(env_vars, 'sample_duration', '8')),
        'sample_count': int(_lookup(env_vars, 'sample_count', '3')),
        'max_iterations': int(_lookup(env_vars, 'max_iterations', '6')),
        'prefer_smaller': _as_bool(_lookup(env_vars, 'prefer_smaller', 'true')),
        'preset': _lookup(env_vars, 'preset', 'veryslow'),
        'quality_preset': _lookup(env_vars, 'quality_preset'),
        'min_size_reduction': float(_lookup(env_vars, 'min_size_reduction', '0')),
        'max_size_mb': _as_optional_float(_lookup(env_vars, 'max_size_mb')),
        'score_aggregation': _lookup(env_vars, 'score_aggregation', 'min').lower(),
        'concurrency': int(concurrency) if concurrency else None,
        'vmaf_fps': _as_optional_float(_lookup(env_vars, 'vmaf_fps')),
        'ffmpeg': _lookup(env_vars, 'ffmpeg', 'ffmpeg'),
        'ffmpeg_vmaf': _lookup(env_vars, 'ffmpeg_vmaf'),
        'ffprobe': _lookup(env_vars, 'ffprobe', 'ffprobe'),
        'temp_dir': _lookup(env_vars, 'temp_dir'),
        'debug': _as_bool(_lookup(env_vars, 'debug', 'false')),
    }

    return config


@dataclass(frozen=True)
class ToolPaths:
    """
    External tool locations.

    Sample, reference and candidate encodes always use ``ffmpeg`` so the
    hardware filters and encoders of the main build are available; the metric
    pass uses ``ffmpeg_vmaf`` when a dedicated libvmaf build is configured.
    """
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    ffmpeg_vmaf: Optional[str] = None

    @property
    def metric(self) -> str:
        return self.ffmpeg_vmaf or self.ffmpeg

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ToolPaths':
        return cls(ffmpeg=config.get('ffmpeg') or "ffmpeg",
                   ffprobe=config.get('ffprobe') or "ffprobe",
                   ffmpeg_vmaf=config.get('ffmpeg_vmaf') or None)

    def missing(self) -> list:
        """Tools that cannot be found on PATH (absolute paths are checked directly)."""
        return [tool for tool in {self.ffmpeg, self.ffprobe, self.metric}
                if shutil.which(tool) is None]


@dataclass(frozen=True)
class AutoQualitySettings:
    """Search settings. ``target_vmaf`` 0 selects the content-aware target."""
    target_vmaf: float = 0.0
    min_crf: int = 18
    max_crf: int = 28
    sample_duration: float = 8.0
    sample_count: int = 3
    max_iterations: int = 6
    prefer_smaller: bool = True
    preset: Optional[str] = "veryslow"
    min_size_reduction: float = 0.0
    max_size_mb: Optional[float] = None
    score_aggregation: str = "min"
    concurrency: Optional[int] = None
    vmaf_fps: Optional[float] = None
    temp_dir: Optional[str] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'AutoQualitySettings':
        names = {f.name for f in fields(cls)}
        settings = cls(**{k: v for k, v in config.items() if k in names and v is not None})
        preset = config.get('quality_preset')
        return settings.with_quality_preset(preset) if preset else settings

    def with_quality_preset(self, name: str) -> 'AutoQualitySettings':
        """Apply a named preset (quality, balanced, compression)."""
        try:
            target, low, high = QUALITY_PRESETS[name.lower()]
        except KeyError:
            raise ValueError(f"Unknown quality preset '{name}' "
                             f"(expected one of {', '.join(QUALITY_PRESETS)})") from None
        return replace(self, target_vmaf=target, min_crf=low, max_crf=high)

    @property
    def max_size_bytes(self) -> Optional[int]:
        return int(self.max_size_mb * 1024 * 1024) if self.max_size_mb else None

    def validate(self) -> 'AutoQualitySettings':
        if self.min_crf > self.max_crf:
            raise ValueError(f"min_crf ({self.min_crf}) must not exceed max_crf ({self.max_crf})")
        if self.min_crf < 0:
            raise ValueError("min_crf must not be negative")
        if self.sample_count < 1 or self.max_iterations < 1:
            raise ValueError("sample_count and max_iterations must be at least 1")
        if self.sample_duration <= 0:
            raise ValueError("sample_duration must be positive")
        if self.target_vmaf < 0 or self.target_vmaf > 100:
            raise ValueError("target_vmaf must be between 0 (auto) and 100")
        if self.min_size_reduction < 0 or self.min_size_reduction >= 100:
            raise ValueError("min_size_reduction must be a percentage in [0, 100)")
        if self.score_aggregation not in AGGREGATIONS:
            raise ValueError(f"score_aggregation must be one of {', '.join(AGGREGATIONS)}")
        if self.concurrency is not None and self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        return self
