"""
System utilities for auto_quality.

This module provides system-level utilities including:
- External process execution with captured output and timeouts
- Temporary file tracking and cleanup
- Processing unit detection for default concurrency
- Error types shared by the search pipeline
"""

import atexit
import os
import shlex
import subprocess
import tempfile
import time
import contextlib
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set, Union

import psutil

from ....utils.logging import get_logger

logger = get_logger("system_utils")

PathLike = Union[str, os.PathLike]


class AutoQualityError(Exception):
    """Base error for the auto quality pipeline."""


class InputValidationError(AutoQualityError):
    """Asset cannot be sampled reliably; carries the reason code."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


class ReferenceEncodeError(AutoQualityError):
    """No reference sample could be encoded."""


class QualitySearchError(AutoQualityError):
    """No candidate was ever measured successfully."""


@dataclass
class ProcessResult:
    """Uniform result of one external process invocation."""
    exit_code: int
    output: str
    duration: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class ProcessRunner:
    """
    Runs external tools synchronously.

    Combined stdout/stderr is redirected into an anonymous scratch file and
    read back once the child has exited, so a chatty child can never block on
    a full pipe. On timeout the child is killed and the result is marked
    ``timed_out``. Failures to launch are reported as a result with exit code
    -1 rather than raised.
    """

    # Hosts whose process facility cannot be driven from several threads
    # set this to False; the batch executor then runs tasks one by one.
    supports_parallel = True

    def run(self, command: PathLike, args: Sequence[str], timeout: Optional[float] = None) -> ProcessResult:
        cmd = [str(command)] + [str(a) for a in args]
        logger.cmd(" ".join(shlex.quote(c) for c in cmd))
        start = time.monotonic()

        with tempfile.TemporaryFile(mode="w+b") as sink:
            try:
                proc = subprocess.Popen(cmd, stdout=sink, stderr=subprocess.STDOUT,
                                        stdin=subprocess.DEVNULL)
            except OSError as e:
                return ProcessResult(-1, f"failed to start {command}: {e}", time.monotonic() - start)

            timed_out = False
            try:
                exit_code = proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
                timed_out = True
                exit_code = -1
                logger.warn(f"Command timed out after {timeout}s: {' '.join(cmd[:3])}...")

            sink.seek(0)
            output = sink.read().decode("utf-8", errors="replace")

        return ProcessResult(exit_code, output, time.monotonic() - start, timed_out)


def run_command(cmd: List[str], timeout: int = 30, capture_output: bool = True,
                text: bool = True, check: bool = False) -> subprocess.CompletedProcess:
    """
    Standardized subprocess command runner for short probes (ffprobe).

    Args:
        cmd: Command as list of strings
        timeout: Timeout in seconds (default: 30)
        capture_output: Whether to capture stdout/stderr (default: True)
        text: Whether to use text mode (default: True)
        check: Whether to raise exception on non-zero exit (default: False)

    Returns:
        CompletedProcess object
    """
    logger.cmd(" ".join(shlex.quote(c) for c in cmd))
    try:
        return subprocess.run(
            cmd,
            capture_output=capture_output,
            text=text,
            timeout=timeout,
            check=check
        )
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {' '.join(cmd[:3])}...")
        raise


# Every scratch file created by the pipeline is registered here so that an
# interrupted run still removes it at interpreter exit.
TEMP_FILES: Set[str] = set()


def file_exists(path: PathLike) -> bool:
    """Existence check that treats filesystem errors as 'missing'."""
    try:
        return Path(path).exists()
    except OSError:
        return False


def file_size(path: PathLike) -> int:
    """Size in bytes, 0 when the file is missing or unreadable."""
    try:
        return Path(path).stat().st_size
    except OSError:
        return 0


def register_temp_file(path: PathLike) -> Path:
    TEMP_FILES.add(str(path))
    return Path(path)


def cleanup_files(paths: Iterable[PathLike]) -> int:
    """Delete the given scratch files, returning how many were removed."""
    removed = 0
    for p in paths:
        path_str = str(p)
        try:
            if file_exists(path_str):
                os.remove(path_str)
                removed += 1
                logger.cleanup(f"removed {path_str}")
        except OSError as e:
            logger.warn(f"Could not remove temp file {path_str}: {e}")
        finally:
            TEMP_FILES.discard(path_str)
    return removed


def _cleanup():
    """Cleanup temporary files on exit"""
    cleanup_files(list(TEMP_FILES))


atexit.register(_cleanup)


@contextlib.contextmanager
def temporary_file(suffix: str = ".tmp", prefix: str = "auto_quality_",
                   directory: Optional[PathLike] = None):
    """
    Context manager for temporary files with automatic cleanup.

    Yields:
        Path: Path to the temporary file
    """
    fd, temp_path = tempfile.mkstemp(suffix=suffix, prefix=prefix,
                                     dir=str(directory) if directory else None)
    os.close(fd)
    temp_file = register_temp_file(temp_path)
    try:
        yield temp_file
    finally:
        cleanup_files([temp_file])


def default_concurrency() -> int:
    """Default number of simultaneous ffmpeg tasks (half the physical cores, at least 1)."""
    cores = psutil.cpu_count(logical=False) or psutil.cpu_count() or 1
    return max(1, cores // 2)


def format_size(bytes_size: int) -> str:
    """Convert bytes to human readable format ("500 B", "1.50 KB", "2.00 GB")."""
    negative = bytes_size < 0
    size = float(abs(bytes_size))
    units = ['B', 'KB', 'MB', 'GB', 'TB', 'PB']
    unit_index = 0
    while unit_index < len(units) - 1 and size >= 1024.0:
        size /= 1024.0
        unit_index += 1
    unit = units[unit_index]
    if unit == 'B':
        formatted = f"{int(size)} {unit}"
    else:
        formatted = f"{size:.2f} {unit}"
    return f"-{formatted}" if negative else formatted
