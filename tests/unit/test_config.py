"""
Unit tests for configuration loading and search settings.
"""

import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from auto_quality.config import AutoQualitySettings, ToolPaths, get_config, load_env_file


class TestEnvConfig(unittest.TestCase):

    def setUp(self):
        self.test_dir = Path(tempfile.mkdtemp())
        self.env_file = self.test_dir / ".env"

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_load_env_file(self):
        self.env_file.write_text('TARGET_VMAF="94"\n# comment\nmin_crf=20\n\nbroken line\n')
        self.assertEqual(load_env_file(self.env_file), {"target_vmaf": "94", "min_crf": "20"})

    def test_missing_env_file(self):
        self.assertEqual(load_env_file(self.test_dir / "missing.env"), {})

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        config = get_config(self.test_dir / "missing.env")

        self.assertEqual(config["target_vmaf"], 0.0)
        self.assertEqual(config["min_crf"], 18)
        self.assertEqual(config["max_crf"], 28)
        self.assertTrue(config["prefer_smaller"])
        self.assertEqual(config["preset"], "veryslow")
        self.assertEqual(config["score_aggregation"], "min")
        self.assertIsNone(config["max_size_mb"])
        self.assertIsNone(config["concurrency"])
        self.assertEqual(config["ffmpeg"], "ffmpeg")
        self.assertIsNone(config["ffmpeg_vmaf"])

    @patch.dict(os.environ, {"MIN_CRF": "25", "MAX_CRF": "30", "PREFER_SMALLER": "false"}, clear=True)
    def test_env_file_wins_over_environment(self):
        self.env_file.write_text("min_crf=20\nconcurrency=3\n")
        config = get_config(self.env_file)

        self.assertEqual(config["min_crf"], 20)
        self.assertEqual(config["max_crf"], 30)
        self.assertFalse(config["prefer_smaller"])
        self.assertEqual(config["concurrency"], 3)


class TestAutoQualitySettings(unittest.TestCase):

    def test_from_config_ignores_unknown_keys(self):
        settings = AutoQualitySettings.from_config({"min_crf": 20, "ffmpeg": "ffmpeg", "temp_dir": None})
        self.assertEqual(settings.min_crf, 20)
        self.assertIsNone(settings.temp_dir)

    def test_quality_preset_from_config(self):
        settings = AutoQualitySettings.from_config({"quality_preset": "balanced"})
        self.assertEqual((settings.target_vmaf, settings.min_crf, settings.max_crf), (95.0, 18, 26))

    def test_unknown_quality_preset(self):
        with self.assertRaises(ValueError):
            AutoQualitySettings().with_quality_preset("bogus")

    def test_validate(self):
        with self.assertRaises(ValueError):
            AutoQualitySettings(min_crf=30, max_crf=20).validate()
        with self.assertRaises(ValueError):
            AutoQualitySettings(score_aggregation="median").validate()
        with self.assertRaises(ValueError):
            AutoQualitySettings(min_size_reduction=100).validate()
        self.assertIsInstance(AutoQualitySettings().validate(), AutoQualitySettings)

    def test_max_size_bytes(self):
        self.assertEqual(AutoQualitySettings(max_size_mb=1.5).max_size_bytes, 1572864)
        self.assertIsNone(AutoQualitySettings().max_size_bytes)


class TestToolPaths(unittest.TestCase):

    def test_metric_binary(self):
        self.assertEqual(ToolPaths().metric, "ffmpeg")
        self.assertEqual(ToolPaths(ffmpeg_vmaf="/opt/ffmpeg-vmaf").metric, "/opt/ffmpeg-vmaf")

    def test_from_config(self):
        tools = ToolPaths.from_config({"ffmpeg": "/usr/bin/ffmpeg", "ffmpeg_vmaf": ""})
        self.assertEqual(tools.ffmpeg, "/usr/bin/ffmpeg")
        self.assertEqual(tools.ffprobe, "ffprobe")
        self.assertIsNone(tools.ffmpeg_vmaf)

    @patch("auto_quality.config.shutil.which", side_effect=lambda tool: None if "vmaf" in tool else tool)
    def test_missing_tools(self, mock_which):
        self.assertEqual(ToolPaths(ffmpeg_vmaf="ffmpeg-vmaf").missing(), ["ffmpeg-vmaf"])


if __name__ == '__main__':
    unittest.main()
