"""
Unit tests for sample planning, extraction and luminance probing.
"""

import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from auto_quality.core.modules.analysis.media_utils import VideoAsset
from auto_quality.core.modules.optimization.sample_planner import (
    SamplePlanner, distinct_positions, escape_filter_path, parse_luma_values, plan_sample_positions, sample_key,
)
from auto_quality.core.modules.processing.batch_executor import BatchExecutor
from tests.utils.scripted_runner import ScriptedRunner


class TestPlanning(unittest.TestCase):

    def test_positions_skip_edges(self):
        self.assertEqual(plan_sample_positions(600, 3, 8), [60.0, 296.0, 532.0])

    def test_long_asset_uses_ten_percent_edges(self):
        positions = plan_sample_positions(7200, 4, 8)
        self.assertEqual(positions[0], 720.0)
        self.assertAlmostEqual(positions[-1], 7200 - 720 - 8)

    def test_short_asset_single_midpoint(self):
        self.assertEqual(plan_sample_positions(40, 3, 8), [16.0])

    def test_single_sample(self):
        self.assertEqual(plan_sample_positions(600, 1, 8), [296.0])

    def test_sample_key_stable(self):
        key = sample_key(Path("/media/a.mkv"), 296.7)
        self.assertTrue(key.startswith("sample_"))
        self.assertTrue(key.endswith("_000296"))
        self.assertEqual(key, sample_key(Path("/media/a.mkv"), 296.2))
        self.assertNotEqual(key, sample_key(Path("/media/b.mkv"), 296.7))

    def test_positions_within_one_second_share_a_key(self):
        positions = plan_sample_positions(68.5, 3, 8)
        self.assertEqual(positions, [30.0, 30.25, 30.5])
        self.assertEqual(distinct_positions(Path("/media/a.mkv"), positions), [30.0])
        self.assertEqual(distinct_positions(Path("/media/a.mkv"), [60.4, 296.0, 60.9]), [60.4, 296.0])

    def test_escape_filter_path(self):
        self.assertEqual(escape_filter_path("C:\\tmp\\stats.txt"), "C\\:/tmp/stats.txt")

    def test_parse_luma_values(self):
        text = "frame:0\nlavfi.signalstats.YAVG=16.5\nlavfi.signalstats.YAVG=300\nYAVG:42"
        self.assertEqual(parse_luma_values(text), [16.5, 42.0])
        self.assertEqual(parse_luma_values(""), [])


class TestSamplePlanner(unittest.TestCase):

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())
        self.asset = VideoAsset(path=self.test_dir / "film.mkv", duration=600.0)

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def _planner(self, runner):
        return SamplePlanner(BatchExecutor(runner, 2), "ffmpeg", self.test_dir, 8, 3)

    def test_extract_creates_clips(self):
        runner = ScriptedRunner()
        planner = self._planner(runner)
        positions = planner.plan(self.asset)
        samples = planner.extract(self.asset, positions)

        self.assertEqual(len(samples), 3)
        self.assertTrue(all(s.extracted for s in samples))
        self.assertTrue(all(s.input_path.exists() for s in samples))
        self.assertEqual(len(runner.calls_of("extract")), 3)

    def test_plan_keeps_one_position_per_key(self):
        asset = VideoAsset(path=self.test_dir / "short.mkv", duration=68.5)
        self.assertEqual(self._planner(ScriptedRunner()).plan(asset), [30.0])

    def test_extract_returns_one_sample_per_key(self):
        runner = ScriptedRunner()
        samples = self._planner(runner).extract(self.asset, [60.2, 60.7, 296.0])

        self.assertEqual([s.position for s in samples], [60.2, 296.0])
        self.assertEqual(len({s.key for s in samples}), 2)
        self.assertEqual(len(runner.calls_of("extract")), 2)

    def test_extract_is_idempotent(self):
        runner = ScriptedRunner()
        planner = self._planner(runner)
        positions = planner.plan(self.asset)
        first = planner.extract(self.asset, positions)
        second = planner.extract(self.asset, positions)

        self.assertEqual(len(runner.calls_of("extract")), 3)
        self.assertEqual([s.input_path for s in first], [s.input_path for s in second])

    def test_extract_failure_falls_back_to_seeking(self):
        planner = self._planner(ScriptedRunner(extract_ok=False))
        samples = planner.extract(self.asset, [60.4, 296.0])

        self.assertFalse(any(s.extracted for s in samples))
        self.assertEqual(samples[0].input_path, self.asset.path)
        self.assertEqual(samples[0].seek, 60.0)
        self.assertEqual(list(self.test_dir.glob("sample_*")), [])

    def test_cleanup_removes_clips(self):
        planner = self._planner(ScriptedRunner())
        samples = planner.extract(self.asset, planner.plan(self.asset))
        planner.cleanup(samples)
        self.assertFalse(any(s.input_path.exists() for s in samples))

    def test_luminance_average(self):
        runner = ScriptedRunner(luma=50.0)
        planner = self._planner(runner)
        luminance = planner.probe_luminance(self.asset, [60, 120, 180, 240, 300])

        self.assertAlmostEqual(luminance, 50.0)
        self.assertEqual(len(runner.calls_of("luma")), 3)
        self.assertEqual(list(self.test_dir.glob("auto_quality_signalstats_*")), [])

    def test_luminance_metadata_removed_when_batch_raises(self):
        planner = self._planner(ScriptedRunner())
        with patch.object(planner.executor, "run", side_effect=RuntimeError("boom")):
            with self.assertRaises(RuntimeError):
                planner.probe_luminance(self.asset, [60, 120])
        self.assertEqual(list(self.test_dir.glob("auto_quality_signalstats_*")), [])

    def test_luminance_unavailable(self):
        planner = self._planner(ScriptedRunner(luma=None))
        self.assertIsNone(planner.probe_luminance(self.asset, [60, 120]))


if __name__ == '__main__':
    unittest.main()
