"""
Auto quality orchestration.

Wires the components together for one asset:
- validate the asset and probe encoder/metric capabilities
- compute the content-aware target (skip entirely when already optimal)
- plan and extract samples, probe luminance for the darkness boost
- encode references, run the binary search, select and apply the result

Every abort leaves the encode configuration untouched and removes every
scratch file created for the run.
"""

import math
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..config import AutoQualitySettings, ToolPaths
from .modules.analysis.capability_prober import EncoderCapabilities, probe_encoder, select_metric
from .modules.analysis.content_target import (
    ContentProfile, QualityTarget, build_quality_target, darkness_boost_levels,
)
from .modules.analysis.media_utils import VideoAsset
from .modules.optimization.quality_search import CandidateResult, QualitySearch, SearchOutcome
from .modules.optimization.reference_generator import (
    FilterMode, FilterStrategy, ReferenceGenerator, ReferenceSample, SampleEncoder,
)
from .modules.optimization.result_selector import (
    COPY, UNCHANGED, ReasonCode, ResultSelector, is_already_optimal,
)
from .modules.optimization.sample_planner import SampleDescriptor, SamplePlanner
from .modules.processing.batch_executor import BatchExecutor
from .modules.processing.encoder_config import (
    EncodeConfiguration, build_base_encode_tokens, upstream_filters,
)
from .modules.processing.quality_metric import MetricKind, subsample_interval
from .modules.system.system_utils import (
    InputValidationError, ProcessRunner, QualitySearchError, ReferenceEncodeError,
    default_concurrency,
)
from ..utils.logging import format_duration, get_logger

logger = get_logger("auto_quality")

MIN_DURATION = 30.0


@dataclass
class AutoQualityResult:
    """Outcome of one run, including the full trace of tested candidates."""
    reason: ReasonCode
    value: Union[int, str] = UNCHANGED
    metric: Optional[MetricKind] = None
    score: Optional[float] = None
    target: Optional[float] = None
    target_vmaf: Optional[float] = None
    encoder: Optional[str] = None
    quality_arg: Optional[str] = None
    reference_quality: Optional[int] = None
    average_luminance: Optional[float] = None
    luminance_boost: int = 0
    iterations: int = 0
    outcome: Optional[SearchOutcome] = None
    filter_mode: Optional[str] = None
    estimated_size: Optional[int] = None
    size_reduction: Optional[float] = None
    trace: List[CandidateResult] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.reason == ReasonCode.APPLIED

    @property
    def best_effort(self) -> bool:
        return self.applied and self.outcome == SearchOutcome.EXHAUSTED

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serialisable summary for the host pipeline."""
        return {
            "crf": self.value,
            "reason": self.reason.value,
            "metric": self.metric.label if self.metric else None,
            "score": self.score,
            "target": self.target,
            "target_vmaf": self.target_vmaf,
            "encoder": self.encoder,
            "quality_arg": self.quality_arg,
            "reference_quality": self.reference_quality,
            "avg_luminance": self.average_luminance,
            "luminance_boost": self.luminance_boost,
            "iterations": self.iterations,
            "outcome": self.outcome.value if self.outcome else None,
            "filter_mode": self.filter_mode,
            "estimated_size": self.estimated_size,
            "size_reduction": self.size_reduction,
            "results": [c.to_dict() for c in self.trace],
        }


def validate_asset(asset: VideoAsset):
    """Raise InputValidationError when the asset cannot be sampled reliably."""
    duration = asset.duration
    if duration is None or (isinstance(duration, float) and math.isnan(duration)) or duration <= 0:
        raise InputValidationError(ReasonCode.UNKNOWN_DURATION.value, "Could not determine video duration")
    if duration < MIN_DURATION:
        raise InputValidationError(ReasonCode.SHORT_VIDEO.value,
                                   f"Video too short for reliable sampling ({duration:.1f}s)")


class AutoQuality:
    """
    Finds the largest quality parameter value that still meets the quality target.

    The process runner and batch executor are injected so hosts (and tests)
    can supply their own process facility.
    """

    def __init__(self, settings: Optional[AutoQualitySettings] = None,
                 tools: Optional[ToolPaths] = None, runner: Optional[ProcessRunner] = None,
                 executor: Optional[BatchExecutor] = None):
        self.settings = (settings or AutoQualitySettings()).validate()
        self.tools = tools or ToolPaths()
        self.runner = runner or ProcessRunner()
        self.executor = executor or BatchExecutor(self.runner,
                                                  self.settings.concurrency or default_concurrency())

    def run(self, asset: VideoAsset, config: EncodeConfiguration,
            profile: Optional[ContentProfile] = None) -> AutoQualityResult:
        settings = self.settings

        try:
            validate_asset(asset)
        except InputValidationError as e:
            logger.warn(f"{e}. Leaving quality settings unchanged.")
            return AutoQualityResult(reason=ReasonCode(e.reason))

        caps = probe_encoder(config, asset.codec)
        metric = select_metric(self.runner, self.tools.metric)
        target = build_quality_target(metric, asset, profile, settings.target_vmaf)

        result = AutoQualityResult(reason=ReasonCode.APPLIED, metric=metric, target=target.value,
                                   target_vmaf=target.vmaf_equivalent, encoder=caps.encoder,
                                   quality_arg=caps.quality_arg)

        if is_already_optimal(asset, caps, config.force_encode):
            logger.info(f"Video already in {asset.codec} at acceptable bitrate. Skipping encode.")
            result.reason = ReasonCode.ALREADY_OPTIMAL
            result.value = COPY
            return result

        owns_temp = settings.temp_dir is None
        temp_dir = Path(tempfile.mkdtemp(prefix="auto_quality_")) if owns_temp else Path(settings.temp_dir)
        temp_dir.mkdir(parents=True, exist_ok=True)

        planner = SamplePlanner(self.executor, self.tools.ffmpeg, temp_dir,
                                settings.sample_duration, settings.sample_count)
        samples: List[SampleDescriptor] = []
        started = time.time()
        try:
            positions = planner.plan(asset)
            samples = planner.extract(asset, positions)

            target = self._apply_darkness_boost(planner, asset, positions, target, result)
            self._search(asset, config, caps, target, samples, temp_dir, result)
        except ReferenceEncodeError as e:
            logger.error(f"{e}. Cannot proceed with quality search.")
            self._mark_failed(result, ReasonCode.REFERENCE_ENCODE_FAILED)
        except QualitySearchError as e:
            logger.error(f"{e}. Leaving quality settings unchanged.")
            self._mark_failed(result, ReasonCode.QUALITY_SEARCH_FAILED)
        finally:
            planner.cleanup(samples)
            if owns_temp:
                shutil.rmtree(temp_dir, ignore_errors=True)
            logger.info(f"Quality search finished in {format_duration(time.time() - started)}")

        return result

    @staticmethod
    def _mark_failed(result: AutoQualityResult, reason: ReasonCode):
        result.reason = reason
        result.value = UNCHANGED

    def _apply_darkness_boost(self, planner: SamplePlanner, asset: VideoAsset, positions: List[float],
                              target: QualityTarget, result: AutoQualityResult) -> QualityTarget:
        luminance = planner.probe_luminance(asset, positions)
        levels = darkness_boost_levels(luminance)
        if luminance is None:
            logger.warn("Dark scene detection: could not analyze luminance, skipping adjustment")
        elif levels:
            target = target.with_darkness_boost(levels)
            logger.target(f"Dark scene detection: avg luma {luminance:.1f}, boosting by {levels}. "
                          f"Adjusted target: {target.metric.label} {target.display()}")
        else:
            logger.target(f"Dark scene detection: avg luma {luminance:.1f}, no adjustment")

        result.average_luminance = luminance
        result.luminance_boost = levels
        result.target = target.value
        result.target_vmaf = target.vmaf_equivalent
        return target

    def _search(self, asset: VideoAsset, config: EncodeConfiguration, caps: EncoderCapabilities,
                target: QualityTarget, samples: List[SampleDescriptor], temp_dir: Path,
                result: AutoQualityResult):
        settings = self.settings
        low, high = caps.clamp(settings.min_crf), caps.clamp(settings.max_crf)

        segments = upstream_filters(config)
        if segments:
            logger.info(f"Using upstream video filters for sampling: {','.join(segments)}")
        else:
            logger.warn("No upstream filters detected - reference and test encodes will use raw source")

        use_10bit = asset.is_10bit or caps.bit_depth >= 10
        base_tokens = build_base_encode_tokens(config, caps.encoder, use_10bit,
                                               caps.preset_args(settings.preset))
        encoder = SampleEncoder(caps, base_tokens, use_10bit)

        result.reference_quality = caps.reference_quality(low)
        generator = ReferenceGenerator(self.executor, self.tools.ffmpeg, temp_dir, encoder,
                                       FilterStrategy.for_chain(segments))
        references: List[ReferenceSample] = []
        try:
            references = generator.generate(samples, result.reference_quality)
            modes = [r.filter_mode for r in references]
            result.filter_mode = (FilterMode.SOFTWARE_FALLBACK if FilterMode.SOFTWARE_FALLBACK in modes
                                  else modes[0]).value

            n_subsample = subsample_interval(asset.fps, settings.vmaf_fps) if target.metric == MetricKind.VMAF else None
            search = QualitySearch(
                self.executor, encoder, references, target, asset,
                self.tools.ffmpeg, self.tools.metric, temp_dir,
                low, high, settings.max_iterations, settings.prefer_smaller,
                settings.score_aggregation, settings.max_size_bytes, n_subsample,
            )
            search_result = search.run()
        finally:
            generator.cleanup(references)

        state = search_result.state
        result.iterations = state.iterations
        result.outcome = search_result.outcome
        result.trace = list(state.candidates)
        search.print_results_table(state, search_result.selected)

        if search_result.outcome == SearchOutcome.FAILED:
            raise QualitySearchError(f"{target.metric.label} search failed completely")

        selector = ResultSelector(settings.min_size_reduction, settings.preset)
        selection = selector.select(search_result, asset)
        candidate = selection.candidate
        result.reason = selection.reason
        result.value = selection.value
        result.score = candidate.score if candidate else None
        result.estimated_size = candidate.estimated_size if candidate else None
        result.size_reduction = selection.size_reduction

        selector.apply(selection, config, caps)
        if selection.applied:
            logger.result(f"Auto quality complete: {caps.quality_arg} {selection.value} "
                          f"({target.metric.label} {search.format_score(result.score)}, "
                          f"target was {target.display()})")
