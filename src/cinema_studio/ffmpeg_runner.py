"""FFmpeg runner with process isolation and timeout enforcement.

Runs the bundled ffmpeg binary (imageio-ffmpeg) for the two post-processing
steps the studio needs: grabbing the last frame of a clip and concatenating
clips with stream copy. No re-encoding happens here.

Key Features:
- Process isolation with subprocess.Popen
- Global timeout with process tree cleanup (psutil)
- Error classification for retry decisions
"""

import os
import subprocess
import tempfile
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

import imageio_ffmpeg
import psutil


class FfmpegErrorType(Enum):
    """FFmpeg error classification for retry logic."""
    PERMANENT = "permanent"     # File not found, invalid data, codec mismatch
    TRANSIENT = "transient"     # I/O stall, resource temporarily unavailable
    TIMEOUT = "timeout"         # Global timeout hit, process tree killed


@dataclass
class FfmpegResult:
    """Result of FFmpeg execution."""
    success: bool
    returncode: int
    stdout: str
    stderr: str
    duration_s: float
    error_type: Optional[FfmpegErrorType] = None


class FfmpegRunner:
    """FFmpeg orchestration with timeout and zombie prevention.

    Example:
        >>> runner = FfmpegRunner(global_timeout_s=600)
        >>> result = runner.concat_videos(["segment_01.mp4", "segment_02.mp4"], "final_movie.mp4")
        >>> if not result.success:
        ...     print(f"Error: {result.error_type}: {result.stderr[-500:]}")
    """

    def __init__(
        self,
        global_timeout_s: int = 600,
        kill_grace_period_s: int = 5,
        ffmpeg_loglevel: str = "error",
        temp_dir: Optional[str] = None,
    ):
        """Initialize FFmpeg runner.

        Args:
            global_timeout_s: Maximum duration for any FFmpeg operation
            kill_grace_period_s: Grace period between terminate and kill
            ffmpeg_loglevel: FFmpeg log level (error, warning, info)
            temp_dir: Directory for concat list files (None = system temp)
        """
        self.global_timeout_s = global_timeout_s
        self.kill_grace_period_s = kill_grace_period_s
        self.ffmpeg_loglevel = ffmpeg_loglevel
        self.temp_dir = temp_dir

        self._process: Optional[subprocess.Popen] = None

    def extract_last_frame(self, video_path: str, output_path: str) -> FfmpegResult:
        """Grab a frame 0.1s before the end of a clip as a JPEG.

        Args:
            video_path: Input clip
            output_path: Image file to write

        Returns:
            FfmpegResult with success status
        """
        cmd = [
            self._get_ffmpeg_exe(),
            "-y",
            "-sseof", "-0.1",  # Seek relative to end of input
            "-i", video_path,
            "-vframes", "1",
            "-q:v", "2",
            "-loglevel", self.ffmpeg_loglevel,
            output_path,
        ]
        return self._run_ffmpeg(cmd)

    def concat_videos(self, input_files: List[str], output_path: str) -> FfmpegResult:
        """Concatenate clips using the concat demuxer (stream copy).

        Args:
            input_files: Clips to concatenate, in playback order
            output_path: Output file path

        Returns:
            FfmpegResult with success status

        Raises:
            ValueError: If input_files is empty
        """
        if not input_files:
            raise ValueError("No input files provided for concatenation")

        list_path = self._get_temp_dir() / f"concat_list_{os.getpid()}_{time.time_ns()}.txt"

        try:
            with open(list_path, "w", encoding="utf-8") as f:
                for path in input_files:
                    abs_path = Path(path).resolve()
                    # Escape single quotes for the concat demuxer
                    escaped = str(abs_path).replace("'", "'\\''")
                    f.write(f"file '{escaped}'\n")

            cmd = [
                self._get_ffmpeg_exe(),
                "-y",
                "-f", "concat",
                "-safe", "0",
                "-i", str(list_path),
                "-c", "copy",
                "-loglevel", self.ffmpeg_loglevel,
                output_path,
            ]
            return self._run_ffmpeg(cmd)

        finally:
            list_path.unlink(missing_ok=True)

    def _run_ffmpeg(self, cmd: List[str]) -> FfmpegResult:
        """Execute FFmpeg with timeout enforcement.

        Args:
            cmd: FFmpeg command as list

        Returns:
            FfmpegResult with execution details
        """
        start_time = time.time()

        try:
            self._process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
            )

            timed_out = False
            try:
                stdout, stderr = self._process.communicate(timeout=self.global_timeout_s)
                returncode = self._process.returncode
            except subprocess.TimeoutExpired:
                timed_out = True
                stdout, stderr = self._kill_process_tree()
                returncode = -1

            error_type = None
            if timed_out:
                error_type = FfmpegErrorType.TIMEOUT
            elif returncode != 0:
                error_type = self._classify_error(stderr or "")

            return FfmpegResult(
                success=(returncode == 0),
                returncode=returncode,
                stdout=stdout or "",
                stderr=stderr or "",
                duration_s=time.time() - start_time,
                error_type=error_type,
            )

        except BaseException:
            # Interrupted or failed to start: never leave ffmpeg behind
            self._kill_process_tree()
            raise

        finally:
            self._process = None

    def _kill_process_tree(self) -> Tuple[str, str]:
        """Terminate FFmpeg and its children, then collect remaining output.

        Kill sequence:
        1. terminate() every process in the tree
        2. Wait grace period
        3. kill() survivors

        Returns:
            Tuple of (stdout, stderr)
        """
        if not self._process:
            return "", ""

        try:
            parent = psutil.Process(self._process.pid)
            procs = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            procs = []

        for proc in procs:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

        _, alive = psutil.wait_procs(procs, timeout=self.kill_grace_period_s)
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass

        try:
            stdout, stderr = self._process.communicate(timeout=self.kill_grace_period_s)
        except (subprocess.TimeoutExpired, ValueError, OSError):
            stdout, stderr = "", ""
        return stdout or "", stderr or ""

    def _classify_error(self, stderr: str) -> FfmpegErrorType:
        """Classify FFmpeg error for retry logic.

        Args:
            stderr: FFmpeg stderr output

        Returns:
            FfmpegErrorType for retry decision
        """
        stderr_lower = stderr.lower()

        permanent_patterns = [
            "no such file or directory",
            "invalid data found",
            "invalid argument",
            "permission denied",
            "moov atom not found",
            "could not find codec parameters",
        ]
        for pattern in permanent_patterns:
            if pattern in stderr_lower:
                return FfmpegErrorType.PERMANENT

        # Everything else (I/O errors, resource pressure) may succeed on retry
        return FfmpegErrorType.TRANSIENT

    def _get_temp_dir(self) -> Path:
        if self.temp_dir:
            temp_dir = Path(self.temp_dir)
        else:
            temp_dir = Path(tempfile.gettempdir())
        temp_dir.mkdir(parents=True, exist_ok=True)
        return temp_dir

    @staticmethod
    def _get_ffmpeg_exe() -> str:
        """Get FFmpeg executable path."""
        return imageio_ffmpeg.get_ffmpeg_exe()
