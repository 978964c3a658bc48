"""
Test package for auto_quality.

Subprocess work is faked with tests.utils.scripted_runner; no test needs ffmpeg.
"""
