"""
Reference sample generation.

Every sample gets one high-quality reference encode made with the same filter
chain and the same encoder as the candidates, so a candidate's score reflects
only the quality setting. Hardware (QSV) filter chains that fail are retried
once with the hardware stages stripped; the stage that worked is recorded on
the reference and reused for every candidate encode of that sample.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .sample_planner import SampleDescriptor
from ..analysis.capability_prober import EncoderCapabilities
from ..processing.batch_executor import BatchExecutor, BatchTask
from ..processing.encoder_config import (
    build_sample_encode_args, build_sampling_filter_graph, needs_hardware_filters,
    strip_hardware_filters,
)
from ..system.system_utils import (
    ProcessResult, ReferenceEncodeError, cleanup_files, file_size, register_temp_file,
)
from ....utils.logging import get_logger

logger = get_logger("reference_generator")

REFERENCE_TIMEOUT = 600


class FilterMode(str, Enum):
    NONE = "none"
    UPSTREAM = "upstream"
    SOFTWARE_FALLBACK = "software-fallback"


@dataclass(frozen=True)
class FilterStage:
    mode: FilterMode
    segments: Tuple[str, ...] = ()

    @property
    def hardware(self) -> bool:
        return needs_hardware_filters(self.segments)


@dataclass(frozen=True)
class FilterStrategy:
    """Filter chains to try in order: the upstream chain, then its software-only variant."""
    primary: FilterStage
    fallback: Optional[FilterStage] = None

    @classmethod
    def for_chain(cls, segments: Sequence[str]) -> 'FilterStrategy':
        segs = tuple(s for s in segments if s)
        primary = FilterStage(FilterMode.UPSTREAM if segs else FilterMode.NONE, segs)
        fallback = None
        if primary.hardware:
            software = tuple(strip_hardware_filters(segs))
            if software != segs:
                fallback = FilterStage(FilterMode.SOFTWARE_FALLBACK, software)
        return cls(primary, fallback)

    def stages(self) -> List[FilterStage]:
        return [self.primary] + ([self.fallback] if self.fallback else [])


@dataclass(frozen=True)
class ReferenceSample:
    key: str
    path: Path
    sample: SampleDescriptor
    stage: FilterStage

    @property
    def filter_mode(self) -> FilterMode:
        return self.stage.mode


class SampleEncoder:
    """Builds ffmpeg arguments for reference and candidate encodes of one sample."""

    def __init__(self, capabilities: EncoderCapabilities, base_tokens: Sequence[str], use_10bit: bool):
        self.capabilities = capabilities
        self.base_tokens = list(base_tokens)
        self.use_10bit = use_10bit

    def args(self, sample: SampleDescriptor, stage: FilterStage, value: int, output: Path) -> List[str]:
        graph = build_sampling_filter_graph(stage.segments, self.use_10bit,
                                            self.capabilities.needs_system_frames)
        return build_sample_encode_args(
            sample.input_path, output, sample.duration, self.base_tokens,
            self.capabilities.quality_arg, value, graph,
            seek=None if sample.extracted else sample.seek,
            hw_device=stage.hardware,
        )


def encode_succeeded(result: Optional[ProcessResult], output: Path) -> bool:
    return result is not None and result.ok and file_size(output) > 0


class ReferenceGenerator:
    """Encodes one reference per sample, trying each filter stage in turn."""

    def __init__(self, executor: BatchExecutor, ffmpeg: str, temp_dir: Path,
                 encoder: SampleEncoder, strategy: FilterStrategy):
        self.executor = executor
        self.ffmpeg = ffmpeg
        self.temp_dir = Path(temp_dir)
        self.encoder = encoder
        self.strategy = strategy

    def reference_path(self, sample: SampleDescriptor) -> Path:
        return self.temp_dir / f"{sample.key}_reference.mkv"

    def _encode_stage(self, samples: Sequence[SampleDescriptor], stage: FilterStage,
                      quality: int) -> Dict[str, ProcessResult]:
        tasks = []
        for sample in samples:
            output = register_temp_file(self.reference_path(sample))
            tasks.append(BatchTask(sample.key, self.ffmpeg,
                                   self.encoder.args(sample, stage, quality, output), REFERENCE_TIMEOUT))
        return self.executor.run(tasks)

    def generate(self, samples: Sequence[SampleDescriptor], quality: int) -> List[ReferenceSample]:
        """
        Encode references for ``samples`` at ``quality``.

        Raises:
            ReferenceEncodeError: no sample could be encoded with any stage.
        """
        logger.reference(f"Pre-encoding {len(samples)} reference samples at quality {quality} "
                         f"({self.encoder.capabilities.encoder})...")

        done: Dict[str, ReferenceSample] = {}
        remaining = list(samples)
        for stage in self.strategy.stages():
            if not remaining:
                break
            if stage.mode == FilterMode.SOFTWARE_FALLBACK:
                logger.warn(f"{len(remaining)} reference sample(s) failed with QSV filters; "
                            f"retrying with software-only filters")

            results = self._encode_stage(remaining, stage, quality)
            still_failing = []
            for sample in remaining:
                path = self.reference_path(sample)
                if encode_succeeded(results.get(sample.key), path):
                    done[sample.key] = ReferenceSample(sample.key, path, sample, stage)
                    logger.debug(f"Reference {sample.key} encoded ({stage.mode.value})")
                else:
                    still_failing.append(sample)
            remaining = still_failing

        for sample in remaining:
            logger.warn(f"Failed to encode reference sample ({sample.key})")
        cleanup_files(self.reference_path(s) for s in remaining)

        references = [done[s.key] for s in samples if s.key in done]
        if not references:
            raise ReferenceEncodeError("Failed to encode any reference samples")

        logger.reference(f"Successfully pre-encoded {len(references)}/{len(samples)} reference samples")
        return references

    @staticmethod
    def cleanup(references: Sequence[ReferenceSample]):
        cleanup_files(r.path for r in references)
