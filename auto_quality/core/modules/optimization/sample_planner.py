"""
Sample planning, extraction and luminance probing.

Sample positions are spread over the middle of the asset, skipping the first
and last 10% (at least 30 s each) where intros and credits live. Each
position is stream-copied into a short video-only clip; when that fails the
sample seeks into the source instead. A short signalstats pass over up to
three positions estimates average luma for the darkness boost.
"""

import contextlib
import hashlib
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..analysis.media_utils import VideoAsset
from ..processing.batch_executor import BatchExecutor, BatchTask
from ..system.system_utils import cleanup_files, file_size, register_temp_file, temporary_file
from ....utils.logging import get_logger

logger = get_logger("sample_planner")

EXTRACT_TIMEOUT = 120
LUMINANCE_TIMEOUT = 60
LUMINANCE_MAX_PROBES = 3
LUMINANCE_WINDOW = 2
EDGE_MIN_SECONDS = 30.0
EDGE_FRACTION = 0.1

_YAVG_RE = re.compile(r"YAVG[=:](\d+\.?\d*)", re.IGNORECASE)


@dataclass(frozen=True)
class SampleDescriptor:
    """
    One sample window of the asset.

    When ``extracted`` the clip at ``input_path`` starts at the sample
    position; otherwise ``input_path`` is the source and ``seek`` is the
    offset to seek to.
    """
    key: str
    position: float
    duration: float
    input_path: Path
    seek: float = 0.0
    extracted: bool = False


def plan_sample_positions(duration: float, count: int, sample_duration: float) -> List[float]:
    """Evenly spaced sample start positions, or a single midpoint when the asset is too short."""
    edge = max(EDGE_MIN_SECONDS, duration * EDGE_FRACTION)
    usable = duration - 2 * edge - sample_duration

    if usable <= 0 or count <= 1:
        return [max(10.0, (duration - sample_duration) / 2)]

    spacing = usable / (count - 1)
    return [edge + spacing * i for i in range(count)]


def sample_key(asset_path: Path, position: float) -> str:
    """Stable key for an asset/position pair, also used as the clip file stem."""
    digest = hashlib.sha1(str(asset_path).encode("utf-8")).hexdigest()[:8]
    return f"sample_{digest}_{max(0, int(math.floor(position))):06d}"


def distinct_positions(asset_path: Path, positions: Sequence[float]) -> List[float]:
    """Positions with one entry per sample key; the first position of a key wins."""
    seen = set()
    distinct = []
    for pos in positions:
        key = sample_key(asset_path, pos)
        if key not in seen:
            seen.add(key)
            distinct.append(pos)
    return distinct


def escape_filter_path(path: Path) -> str:
    """Path usable as a filter option value (``:`` is the option separator)."""
    return str(path).replace("\\", "/").replace(":", "\\:")


def parse_luma_values(text: str) -> List[float]:
    values = []
    for match in _YAVG_RE.finditer(text or ""):
        try:
            value = float(match.group(1))
        except ValueError:
            continue
        if 0 <= value <= 255:
            values.append(value)
    return values


class SamplePlanner:
    """Plans sample windows and prepares the clips every search iteration reuses."""

    def __init__(self, executor: BatchExecutor, ffmpeg: str, temp_dir: Path,
                 sample_duration: float = 8, sample_count: int = 3):
        self.executor = executor
        self.ffmpeg = ffmpeg
        self.temp_dir = Path(temp_dir)
        self.sample_duration = sample_duration
        self.sample_count = sample_count

    def plan(self, asset: VideoAsset) -> List[float]:
        positions = distinct_positions(
            asset.path, plan_sample_positions(asset.duration or 0, self.sample_count, self.sample_duration))
        logger.sample(f"Sample positions: {', '.join(f'{round(p)}s' for p in positions)}")
        return positions

    def clip_path(self, key: str) -> Path:
        return self.temp_dir / f"{key}.mkv"

    def _extract_args(self, asset: VideoAsset, second: int, output: Path) -> List[str]:
        return [
            "-hide_banner", "-loglevel", "error", "-y",
            "-ss", str(second),
            "-i", str(asset.path),
            "-t", str(self.sample_duration),
            "-map", "0:v:0", "-an", "-sn",
            "-c:v", "copy",
            "-map_chapters", "-1",
            str(output),
        ]

    def extract(self, asset: VideoAsset, positions: Sequence[float]) -> List[SampleDescriptor]:
        """
        Extract a clip per position, reusing clips that already exist.

        Positions whose extraction fails (or produces an empty file) fall
        back to seeking into the source.
        """
        pending: Dict[str, Path] = {}
        tasks = []
        for pos in positions:
            key = sample_key(asset.path, pos)
            path = self.clip_path(key)
            if file_size(path) > 0:
                register_temp_file(path)
                logger.debug(f"Reusing extracted sample {path.name}")
                continue
            if key in pending:
                continue
            pending[key] = register_temp_file(path)
            second = max(0, int(math.floor(pos)))
            tasks.append(BatchTask(key, self.ffmpeg, self._extract_args(asset, second, path), EXTRACT_TIMEOUT))

        results = self.executor.run(tasks)

        samples = []
        for pos in distinct_positions(asset.path, positions):
            key = sample_key(asset.path, pos)
            path = self.clip_path(key)
            second = float(max(0, int(math.floor(pos))))
            result = results.get(key)
            if (result is None or result.ok) and file_size(path) > 0:
                samples.append(SampleDescriptor(key, pos, self.sample_duration, path, 0.0, True))
                continue

            if result is not None:
                logger.debug(f"Sample extraction failed at {second:.0f}s: {result.output.strip()[-200:]}")
            cleanup_files([path])
            samples.append(SampleDescriptor(key, pos, self.sample_duration, Path(asset.path), second, False))

        extracted = sum(1 for s in samples if s.extracted)
        if extracted:
            logger.sample(f"Extracted {extracted}/{len(samples)} sample files for quality testing")
        else:
            logger.warn("Could not extract sample files; falling back to direct seeking into the source for tests")
        return samples

    def probe_luminance(self, asset: VideoAsset, positions: Sequence[float]) -> Optional[float]:
        """Average luma (0-255) over up to three positions, None when nothing could be read."""
        sample_averages = []
        with contextlib.ExitStack() as stack:
            tasks = []
            metadata_files: Dict[str, Path] = {}
            for i, pos in enumerate(list(positions)[:LUMINANCE_MAX_PROBES]):
                task_id = f"luma_{i}"
                metadata_file = stack.enter_context(temporary_file(
                    suffix=".txt", prefix="auto_quality_signalstats_", directory=self.temp_dir))
                metadata_files[task_id] = metadata_file
                args = [
                    "-hide_banner", "-loglevel", "error",
                    "-ss", str(int(math.floor(pos))),
                    "-i", str(asset.path),
                    "-t", str(LUMINANCE_WINDOW),
                    "-vf", "signalstats,metadata=print:file=" + escape_filter_path(metadata_file),
                    "-f", "null", "-",
                ]
                tasks.append(BatchTask(task_id, self.ffmpeg, args, LUMINANCE_TIMEOUT))

            results = self.executor.run(tasks)
            for task in tasks:
                text = results[task.task_id].output
                try:
                    text += "\n" + metadata_files[task.task_id].read_text(encoding="utf-8", errors="replace")
                except OSError:
                    pass  # empty or unreadable when ffmpeg failed early
                values = parse_luma_values(text)
                if values:
                    avg = sum(values) / len(values)
                    sample_averages.append(avg)
                    logger.debug(f"Luminance {task.task_id}: avg Y = {avg:.1f}")

        if not sample_averages:
            return None
        return sum(sample_averages) / len(sample_averages)

    def cleanup(self, samples: Sequence[SampleDescriptor]):
        cleanup_files(s.input_path for s in samples if s.extracted)
