"""ffmpeg task execution, encode configuration and quality metric helpers."""
