"""
Unit tests for the encode configuration model and sample command construction.
"""

import unittest

from auto_quality.core.modules.processing.encoder_config import (
    EncodeConfiguration, build_base_encode_tokens, build_sample_encode_args,
    build_sampling_filter_graph, is_flag, needs_hardware_filters, split_filter_chain,
    strip_hardware_filters, upstream_filters,
)


class TestEncodeConfiguration(unittest.TestCase):

    def test_parses_flag_value_pairs(self):
        tokens = ["-c:v", "libx265", "-crf", "22", "-preset", "slow", "-x265-params", "aq-mode=3"]
        config = EncodeConfiguration.from_tokens(tokens)

        self.assertEqual(len(config.parameters), 4)
        self.assertEqual(config.get("-crf"), "22")
        self.assertEqual(config.to_tokens(), tokens)

    def test_negative_numbers_are_values(self):
        self.assertFalse(is_flag("-1"))
        self.assertTrue(is_flag("-map_chapters"))
        config = EncodeConfiguration.from_tokens(["-map_chapters", "-1"])
        self.assertEqual(config.get("-map_chapters"), "-1")

    def test_switches_have_no_value(self):
        config = EncodeConfiguration.from_tokens(["-an", "-crf", "20"])
        self.assertIsNone(config.parameters[0].value)
        self.assertEqual(config.get("-crf"), "20")

    def test_stream_specifier_forms_match(self):
        config = EncodeConfiguration.from_tokens(["-crf:v", "20", "-crfx", "1"])
        self.assertEqual(len(config.find("-crf")), 1)

    def test_remove_and_append(self):
        config = EncodeConfiguration.from_tokens(["-crf", "22", "-crf:v", "21", "-g", "48"])
        self.assertEqual(config.remove("-crf"), 2)
        config.append("-crf", 26)
        self.assertEqual(config.to_tokens(), ["-g", "48", "-crf", "26"])

    def test_signature_includes_encoder(self):
        config = EncodeConfiguration.from_tokens(["-c:v", "HEVC_QSV"], target_encoder="QSV")
        self.assertIn("hevc_qsv", config.signature())
        self.assertTrue(config.signature().startswith("qsv"))


class TestFilterChains(unittest.TestCase):

    def test_split_honours_escapes(self):
        self.assertEqual(split_filter_chain("scale=1920:-2,crop=1920:800:0:140"),
                         ["scale=1920:-2", "crop=1920:800:0:140"])
        self.assertEqual(split_filter_chain("drawtext=text=a\\,b,scale=1280:-2"),
                         ["drawtext=text=a\\,b", "scale=1280:-2"])

    def test_upstream_filters_deduplicates(self):
        config = EncodeConfiguration.from_tokens(["-vf", "hqdn3d"], filter_segments=["hqdn3d"])
        self.assertEqual(upstream_filters(config), ["hqdn3d"])

    def test_upstream_filters_reads_filter_v(self):
        config = EncodeConfiguration.from_tokens(["-filter:v:0", "scale=1280:-2,hqdn3d"])
        self.assertEqual(upstream_filters(config), ["scale=1280:-2", "hqdn3d"])

    def test_crop_goes_first(self):
        config = EncodeConfiguration.from_tokens([], filter_segments=["hqdn3d"],
                                                 crop="crop=1920:800:0:140")
        self.assertEqual(upstream_filters(config), ["crop=1920:800:0:140", "hqdn3d"])

    def test_crop_skipped_when_chain_already_crops(self):
        config = EncodeConfiguration.from_tokens([], filter_segments=["crop=1920:816:0:132"],
                                                 crop="crop=1920:800:0:140")
        self.assertEqual(upstream_filters(config), ["crop=1920:816:0:132"])

    def test_hardware_detection(self):
        self.assertTrue(needs_hardware_filters(["vpp_qsv=w=1920:h=1080"]))
        self.assertTrue(needs_hardware_filters(["hwupload"]))
        self.assertFalse(needs_hardware_filters(["scale=1280:-2", "hqdn3d"]))

    def test_strip_hardware_filters(self):
        self.assertEqual(strip_hardware_filters(["hwupload", "vpp_qsv=w=1920", "hwdownload", "hqdn3d"]),
                         ["hqdn3d"])

    def test_software_graph_unchanged(self):
        self.assertEqual(build_sampling_filter_graph(["scale=1280:-2", "hqdn3d"], False, True),
                         "scale=1280:-2,hqdn3d")
        self.assertEqual(build_sampling_filter_graph([], False, True), "")

    def test_qsv_graph_for_system_memory_encoder(self):
        graph = build_sampling_filter_graph(["vpp_qsv=w=1920:h=1080"], False, True)
        self.assertEqual(graph, "format=nv12,hwupload=extra_hw_frames=64,vpp_qsv=w=1920:h=1080,"
                                "hwdownload,format=nv12,format=yuv420p")

    def test_qsv_graph_for_qsv_encoder(self):
        graph = build_sampling_filter_graph(["vpp_qsv=w=1920:h=1080"], True, False)
        self.assertEqual(graph, "format=p010le,hwupload=extra_hw_frames=64,vpp_qsv=w=1920:h=1080")

    def test_existing_upload_not_duplicated(self):
        graph = build_sampling_filter_graph(["hwupload", "vpp_qsv=w=1920"], False, False)
        self.assertEqual(graph, "hwupload,vpp_qsv=w=1920")


class TestSampleEncodeArgs(unittest.TestCase):

    def test_base_tokens_strip_host_specific_options(self):
        config = EncodeConfiguration.from_tokens([
            "-c:v", "libx265", "-crf", "22", "-preset", "slow", "-x265-params", "aq-mode=3",
            "-vf", "scale=1280:-2", "-pix_fmt", "yuv420p10le", "-an",
        ])
        tokens = build_base_encode_tokens(config, "libx265", True, ["-preset", "veryslow"])
        self.assertEqual(tokens, ["-x265-params", "aq-mode=3", "-c:v", "libx265",
                                  "-pix_fmt", "yuv420p10le", "-preset", "veryslow"])

    def test_stream_specific_preset_dropped(self):
        config = EncodeConfiguration.from_tokens(["-c:v", "libx265", "-preset:v", "slow", "-preset:v:0", "fast"])
        tokens = build_base_encode_tokens(config, "libx265", False, ["-preset", "veryslow"])
        self.assertEqual(tokens, ["-c:v", "libx265", "-pix_fmt", "yuv420p", "-preset", "veryslow"])

    def test_index_placeholder_replaced(self):
        config = EncodeConfiguration.from_tokens(["-metadata:s:v:{index}", "title=main"])
        tokens = build_base_encode_tokens(config, "libx264", False)
        self.assertEqual(tokens[:2], ["-metadata:s:v:0", "title=main"])
        self.assertEqual(tokens[-2:], ["-pix_fmt", "yuv420p"])

    def test_qsv_pixel_format(self):
        tokens = build_base_encode_tokens(EncodeConfiguration(), "hevc_qsv", True)
        self.assertEqual(tokens, ["-c:v", "hevc_qsv", "-pix_fmt", "p010le"])

    def test_extracted_sample_args(self):
        args = build_sample_encode_args("in.mkv", "out.mkv", 8.0, ["-c:v", "libx265"], "-crf", 23)
        self.assertEqual(args, ["-hide_banner", "-loglevel", "error", "-y",
                                "-i", "in.mkv", "-t", "8", "-map", "0:v:0",
                                "-c:v", "libx265", "-crf", "23", "-an", "-sn", "out.mkv"])

    def test_seek_and_filters(self):
        args = build_sample_encode_args("in.mkv", "out.mkv", 8.0, [], "-crf", 23,
                                        filter_graph="hqdn3d", seek=12.5)
        self.assertLess(args.index("-ss"), args.index("-i"))
        self.assertEqual(args[args.index("-ss") + 1], "12.500")
        self.assertEqual(args[args.index("-vf") + 1], "hqdn3d")

    def test_hardware_device_init(self):
        args = build_sample_encode_args("in.mkv", "out.mkv", 8, [], "-global_quality:v", 24, hw_device=True)
        self.assertIn("-init_hw_device", args)
        self.assertNotIn("-ss", args)


if __name__ == '__main__':
    unittest.main()
