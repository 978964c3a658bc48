"""
Quality-targeted binary search over the encoder's quality parameter.

Lower parameter values mean higher quality and bigger files. Each iteration
tests the midpoint of the open interval: the candidate is encoded on every
sample, scored against that sample's reference and the per-sample scores are
aggregated (worst sample by default). A qualifying candidate moves the search
toward smaller files when ``prefer_smaller`` is set and stops it otherwise; a
miss moves it toward higher quality. The iteration cap bounds the run.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .reference_generator import ReferenceSample, SampleEncoder, encode_succeeded
from ..analysis.content_target import QualityTarget
from ..analysis.media_utils import VideoAsset
from ..processing.batch_executor import BatchExecutor, BatchTask
from ..processing.quality_metric import METRIC_TIMEOUT, MetricKind, build_metric_args, parse_score
from ..system.system_utils import cleanup_files, file_size, format_size, register_temp_file
from ....utils.logging import create_progress_bar, get_logger, print_separator

logger = get_logger("quality_search")

ENCODE_TIMEOUT = 600
AGGREGATIONS = ("min", "max", "mean")


class SearchOutcome(str, Enum):
    SEARCHING = "searching"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass
class CandidateResult:
    """Measurement of one tested parameter value (``score`` is None when it could not be measured)."""
    value: int
    score: Optional[float] = None
    sample_scores: Dict[str, float] = field(default_factory=dict)
    min_score: Optional[float] = None
    max_score: Optional[float] = None
    mean_score: Optional[float] = None
    estimated_bitrate: Optional[float] = None
    estimated_size: Optional[int] = None
    meets_target: bool = False
    oversize: bool = False

    @property
    def measured(self) -> bool:
        return self.score is not None

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "score": self.score,
            "min": self.min_score,
            "max": self.max_score,
            "mean": self.mean_score,
            "estimated_bitrate": self.estimated_bitrate,
            "estimated_size": self.estimated_size,
            "meets_target": self.meets_target,
            "oversize": self.oversize,
        }


@dataclass
class SearchState:
    """Search interval, iteration count and every candidate tested so far."""
    low: int
    high: int
    iterations: int = 0
    candidates: List[CandidateResult] = field(default_factory=list)
    outcome: SearchOutcome = SearchOutcome.SEARCHING
    best: Optional[CandidateResult] = None

    @property
    def open(self) -> bool:
        return self.low <= self.high

    def lookup(self, value: int) -> Optional[CandidateResult]:
        return next((c for c in self.candidates if c.value == value), None)

    def raise_low(self, value: int):
        self.low = max(self.low, value + 1)

    def lower_high(self, value: int):
        self.high = min(self.high, value - 1)

    def best_effort(self) -> Optional[CandidateResult]:
        """Highest-scoring measured candidate; the earliest wins ties."""
        best = None
        for candidate in self.candidates:
            if candidate.measured and (best is None or candidate.score > best.score):
                best = candidate
        return best


@dataclass
class SearchResult:
    outcome: SearchOutcome
    selected: Optional[CandidateResult]
    state: SearchState

    @property
    def best_effort(self) -> bool:
        return self.outcome == SearchOutcome.EXHAUSTED and self.selected is not None


def midpoint(low: int, high: int) -> int:
    """Midpoint of an integer interval, halves rounded up."""
    return (low + high + 1) // 2


def aggregate_scores(scores: Sequence[float], mode: str = "min") -> float:
    if not scores:
        raise ValueError("no scores to aggregate")
    if mode == "min":
        return min(scores)
    if mode == "max":
        return max(scores)
    if mode == "mean":
        return sum(scores) / len(scores)
    raise ValueError(f"unknown score aggregation: {mode}")


class QualitySearch:
    """Binary search driver. One candidate at a time; each candidate's samples run as a batch."""

    def __init__(self, executor: BatchExecutor, encoder: SampleEncoder,
                 references: Sequence[ReferenceSample], target: QualityTarget, asset: VideoAsset,
                 ffmpeg: str, ffmpeg_metric: str, temp_dir: Path,
                 min_value: int, max_value: int, max_iterations: int = 6,
                 prefer_smaller: bool = True, aggregation: str = "min",
                 max_size_bytes: Optional[int] = None, n_subsample: Optional[int] = None):
        if min_value > max_value:
            raise ValueError(f"min value {min_value} is greater than max value {max_value}")
        if aggregation not in AGGREGATIONS:
            raise ValueError(f"unknown score aggregation: {aggregation}")
        self.executor = executor
        self.encoder = encoder
        self.references = list(references)
        self.target = target
        self.asset = asset
        self.ffmpeg = ffmpeg
        self.ffmpeg_metric = ffmpeg_metric
        self.temp_dir = Path(temp_dir)
        self.min_value = min_value
        self.max_value = max_value
        self.max_iterations = max_iterations
        self.prefer_smaller = prefer_smaller
        self.aggregation = aggregation
        self.max_size_bytes = max_size_bytes
        self.n_subsample = n_subsample

    # -- measurement ---------------------------------------------------------

    def candidate_path(self, reference: ReferenceSample, value: int) -> Path:
        return self.temp_dir / f"{reference.key}_q{value}.mkv"

    def measure(self, value: int) -> CandidateResult:
        """Encode ``value`` on every sample and score it against the references."""
        outputs = {r.key: register_temp_file(self.candidate_path(r, value)) for r in self.references}
        try:
            encode_tasks = [
                BatchTask(r.key, self.ffmpeg,
                          self.encoder.args(r.sample, r.stage, value, outputs[r.key]), ENCODE_TIMEOUT)
                for r in self.references
            ]
            encode_results = self.executor.run(encode_tasks)

            encoded = []
            for r in self.references:
                if encode_succeeded(encode_results.get(r.key), outputs[r.key]):
                    encoded.append(r)
                else:
                    logger.warn(f"Encode failed for {r.key} at {value}")

            metric_tasks = [
                BatchTask(r.key, self.ffmpeg_metric,
                          build_metric_args(outputs[r.key], r.path, self.target.metric, self.n_subsample),
                          METRIC_TIMEOUT)
                for r in encoded
            ]
            metric_results = self.executor.run(metric_tasks)

            scores: Dict[str, float] = {}
            for r in encoded:
                result = metric_results.get(r.key)
                score = parse_score(self.target.metric, result.output) if result is not None and result.ok else None
                if score is None:
                    logger.warn(f"{self.target.metric.label} measurement failed for {r.key} at {value}")
                    continue
                scores[r.key] = score

            candidate = CandidateResult(value=value, sample_scores=scores)
            if not scores:
                return candidate

            values = list(scores.values())
            candidate.score = aggregate_scores(values, self.aggregation)
            candidate.min_score = min(values)
            candidate.max_score = max(values)
            candidate.mean_score = sum(values) / len(values)

            encoded_bytes = sum(file_size(outputs[key]) for key in scores)
            seconds = sum(r.sample.duration for r in encoded if r.key in scores)
            if seconds > 0 and encoded_bytes > 0:
                candidate.estimated_bitrate = encoded_bytes * 8 / seconds
                if self.asset.duration:
                    candidate.estimated_size = int(candidate.estimated_bitrate / 8 * self.asset.duration)
            return candidate
        finally:
            cleanup_files(outputs.values())

    # -- search loop ---------------------------------------------------------

    def _advance(self, state: SearchState, candidate: CandidateResult) -> bool:
        """Narrow the interval from ``candidate``; True when the search should stop."""
        if not candidate.measured:
            state.lower_high(candidate.value)
            return False
        if candidate.oversize:
            state.raise_low(candidate.value)
            return False
        if candidate.meets_target:
            state.best = candidate
            if not self.prefer_smaller:
                return True
            state.raise_low(candidate.value)
            return False
        state.lower_high(candidate.value)
        return False

    def _classify(self, candidate: CandidateResult):
        if not candidate.measured:
            return
        if (self.max_size_bytes and candidate.estimated_size is not None
                and candidate.estimated_size > self.max_size_bytes):
            candidate.oversize = True
            return
        candidate.meets_target = self.target.is_met(candidate.score)

    def run(self) -> SearchResult:
        state = SearchState(low=self.min_value, high=self.max_value)
        label = self.target.metric.label
        logger.search(f"Starting {label}-based search: {self.min_value}-{self.max_value}, "
                      f"target {label} {self.target.display()}")

        with create_progress_bar(total=self.max_iterations, desc="Quality search", unit="iter",
                                 leave=False) as pbar:
            while state.open and state.iterations < self.max_iterations:
                state.iterations += 1
                value = midpoint(state.low, state.high)

                cached = state.lookup(value)
                if cached is not None:
                    logger.debug(f"Reusing measurement for {value}")
                    stop = self._advance(state, cached)
                    pbar.update(1)
                    if stop:
                        break
                    continue

                pbar.set_description(f"Quality search - testing {value}")
                logger.search(f"[{state.iterations}/{self.max_iterations}] Testing {value}...")

                candidate = self.measure(value)
                self._classify(candidate)
                state.candidates.append(candidate)
                self._log_candidate(candidate)

                stop = self._advance(state, candidate)
                pbar.update(1)
                if stop:
                    break

        if state.best is not None:
            state.outcome = SearchOutcome.CONVERGED
            return SearchResult(state.outcome, state.best, state)

        fallback = state.best_effort()
        if fallback is not None:
            state.outcome = SearchOutcome.EXHAUSTED
            logger.warn(f"No value met target {label} {self.target.display()}. "
                        f"Using best found: {fallback.value} ({label} {self.format_score(fallback.score)})")
            return SearchResult(state.outcome, fallback, state)

        state.outcome = SearchOutcome.FAILED
        logger.error(f"{label} search failed completely")
        return SearchResult(state.outcome, None, state)

    # -- reporting -----------------------------------------------------------

    def format_score(self, score: Optional[float]) -> str:
        if score is None:
            return "n/a"
        return f"{score:.4f}" if self.target.metric == MetricKind.SSIM else f"{score:.2f}"

    def _log_candidate(self, candidate: CandidateResult):
        label = self.target.metric.label
        if not candidate.measured:
            logger.warn(f"{label} measurement failed for {candidate.value}, treating as below target")
            return
        size = f", est. {format_size(candidate.estimated_size)}" if candidate.estimated_size else ""
        note = " (over size limit)" if candidate.oversize else ""
        logger.metric(label, f"{candidate.value}: {self.format_score(candidate.score)} "
                             f"(min {self.format_score(candidate.min_score)}, max {self.format_score(candidate.max_score)}){size}{note}")

    def print_results_table(self, state: SearchState, selected: Optional[CandidateResult]):
        label = self.target.metric.label
        logger.result(f"{self.encoder.capabilities.quality_arg.lstrip('-')} | {label:<8} | Result")
        print_separator(40)
        for candidate in sorted(state.candidates, key=lambda c: c.value):
            if not candidate.measured:
                status = "Error"
            elif candidate.oversize:
                status = "Too big"
            else:
                status = "Pass" if candidate.meets_target else "Fail"
            mark = " (Selected)" if selected is not None and candidate.value == selected.value else ""
            logger.result(f"{candidate.value:>3} | {self.format_score(candidate.score):<8} | {status}{mark}")
        print_separator(40)
