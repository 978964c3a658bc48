"""
Regression tests for the quality search loop.

The measurement step is replaced by a score function so the interval
arithmetic, iteration cap, oversize handling and best-effort fallback can be
checked over many ranges without any encoding.
"""

import itertools
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from auto_quality.core.modules.analysis.content_target import QualityTarget
from auto_quality.core.modules.analysis.media_utils import VideoAsset
from auto_quality.core.modules.optimization.quality_search import (
    CandidateResult, QualitySearch, SearchOutcome, SearchState, aggregate_scores, midpoint,
)
from auto_quality.core.modules.processing.quality_metric import MetricKind


class SearchTestCase(unittest.TestCase):

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())
        self.asset = VideoAsset(path=self.test_dir / "film.mkv", duration=1000.0, size_bytes=10 ** 9)

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def make_search(self, low, high, target=95.0, **kwargs):
        encoder = Mock()
        encoder.capabilities.quality_arg = "-crf"
        return QualitySearch(Mock(), encoder, [], QualityTarget(MetricKind.VMAF, target, target),
                             self.asset, "ffmpeg", "ffmpeg", self.test_dir, low, high, **kwargs)

    def run_with(self, search, score_fn, estimated_size=None):
        measured = []

        def measure(value):
            measured.append(value)
            score = score_fn(value)
            return CandidateResult(value, score=score, estimated_size=estimated_size,
                                   min_score=score, max_score=score, mean_score=score)

        with patch.object(QualitySearch, "measure", side_effect=measure):
            result = search.run()
        return result, measured


class TestSearchOrder(SearchTestCase):

    def test_prefer_smaller_walks_up(self):
        result, measured = self.run_with(self.make_search(18, 28), lambda v: 96.0)

        self.assertEqual(measured, [23, 26, 28])
        self.assertEqual(result.outcome, SearchOutcome.CONVERGED)
        self.assertEqual(result.selected.value, 28)
        self.assertEqual(result.state.iterations, 3)

    def test_first_qualifying_stops_without_prefer_smaller(self):
        result, measured = self.run_with(self.make_search(18, 28, prefer_smaller=False), lambda v: 96.0)

        self.assertEqual(measured, [23])
        self.assertEqual(result.selected.value, 23)
        self.assertEqual(result.outcome, SearchOutcome.CONVERGED)

    def test_threshold_found(self):
        result, measured = self.run_with(self.make_search(0, 20, max_iterations=10), lambda v: 100.0 - v)

        self.assertEqual(measured, [10, 5, 8, 7, 6])
        self.assertEqual(result.selected.value, 5)

    def test_midpoint_rounds_half_up(self):
        self.assertEqual(midpoint(18, 28), 23)
        self.assertEqual(midpoint(24, 28), 26)
        self.assertEqual(midpoint(27, 28), 28)
        self.assertEqual(midpoint(5, 5), 5)


class TestSearchBounds(SearchTestCase):

    def test_cap_and_no_repeats_over_many_ranges(self):
        for low, high, cap, threshold in itertools.product((0, 10, 18), (18, 28, 51), (1, 3, 6, 12),
                                                           (0, 15, 22, 60)):
            if low > high:
                continue
            search = self.make_search(low, high, max_iterations=cap)
            result, measured = self.run_with(search, lambda v, t=threshold: 96.0 if v <= t else 90.0)

            with self.subTest(low=low, high=high, cap=cap, threshold=threshold):
                self.assertLessEqual(len(measured), cap)
                self.assertLessEqual(result.state.iterations, cap)
                self.assertEqual(len(measured), len(set(measured)))
                self.assertTrue(all(low <= v <= high for v in measured))
                if result.outcome == SearchOutcome.CONVERGED:
                    self.assertTrue(result.selected.meets_target)

    def test_iteration_cap(self):
        result, measured = self.run_with(self.make_search(0, 51, max_iterations=2), lambda v: 96.0)
        self.assertEqual(len(measured), 2)

    def test_invalid_range(self):
        with self.assertRaises(ValueError):
            self.make_search(30, 20)

    def test_unknown_aggregation(self):
        with self.assertRaises(ValueError):
            self.make_search(18, 28, aggregation="median")


class TestSearchFallbacks(SearchTestCase):

    def test_best_effort_is_first_maximum(self):
        scores = {23: 90.0, 20: 94.0, 19: 94.0, 18: 93.5}
        result, measured = self.run_with(self.make_search(18, 28, target=99.0), scores.get)

        self.assertEqual(measured, [23, 20, 19, 18])
        self.assertEqual(result.outcome, SearchOutcome.EXHAUSTED)
        self.assertTrue(result.best_effort)
        self.assertEqual(result.selected.value, 20)

    def test_oversize_never_converges(self):
        search = self.make_search(18, 28, max_size_bytes=10 ** 9)
        result, measured = self.run_with(search, lambda v: 99.0, estimated_size=10 ** 12)

        self.assertEqual(measured, [23, 26, 28])
        self.assertNotEqual(result.outcome, SearchOutcome.CONVERGED)
        self.assertTrue(all(c.oversize and not c.meets_target for c in result.state.candidates))

    def test_size_under_limit_qualifies(self):
        search = self.make_search(18, 28, max_size_bytes=10 ** 9)
        result, _ = self.run_with(search, lambda v: 99.0, estimated_size=10 ** 6)
        self.assertEqual(result.outcome, SearchOutcome.CONVERGED)

    def test_all_measurements_fail(self):
        result, measured = self.run_with(self.make_search(18, 28), lambda v: None)

        self.assertEqual(measured, [23, 20, 19, 18])
        self.assertEqual(result.outcome, SearchOutcome.FAILED)
        self.assertIsNone(result.selected)

    def test_failed_measurement_moves_toward_quality(self):
        scores = {23: None, 20: 96.0, 22: 96.0, 21: 96.0}
        result, measured = self.run_with(self.make_search(18, 28), scores.get)

        self.assertEqual(measured, [23, 20, 22])
        self.assertEqual(result.selected.value, 22)


class TestSearchState(unittest.TestCase):

    def test_lookup_and_bounds(self):
        state = SearchState(low=18, high=28, candidates=[CandidateResult(23, score=95.0)])
        self.assertEqual(state.lookup(23).score, 95.0)
        self.assertIsNone(state.lookup(24))

        state.raise_low(23)
        state.lower_high(27)
        self.assertEqual((state.low, state.high), (24, 26))
        state.raise_low(10)
        self.assertEqual(state.low, 24)

    def test_best_effort_ignores_unmeasured(self):
        state = SearchState(low=0, high=0, candidates=[CandidateResult(20), CandidateResult(21, score=80.0)])
        self.assertEqual(state.best_effort().value, 21)
        self.assertIsNone(SearchState(low=0, high=0).best_effort())

    def test_aggregation(self):
        self.assertEqual(aggregate_scores([94.0, 96.0, 95.0], "min"), 94.0)
        self.assertEqual(aggregate_scores([94.0, 96.0, 95.0], "max"), 96.0)
        self.assertAlmostEqual(aggregate_scores([94.0, 96.0, 95.0], "mean"), 95.0)
        with self.assertRaises(ValueError):
            aggregate_scores([])


if __name__ == '__main__':
    unittest.main()
