"""Post-processing of generated clips: continuity frames and final assembly."""

import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .ffmpeg_runner import FfmpegRunner


class MediaError(Exception):
    """An ffmpeg post-processing step failed."""


def _runner(runner: Optional[FfmpegRunner]) -> FfmpegRunner:
    return runner or FfmpegRunner()


def extract_last_frame(
    video_path: Union[str, Path], runner: Optional[FfmpegRunner] = None
) -> Path:
    """Extract the very last frame of a clip for continuity.

    The frame is written next to the clip as ``<stem>_last.jpg``.

    Raises:
        MediaError: If ffmpeg fails
    """
    video_path = Path(video_path)
    output_path = video_path.with_name(f"{video_path.stem}_last.jpg")

    result = _runner(runner).extract_last_frame(str(video_path), str(output_path))
    if not result.success:
        raise MediaError(f"ffmpeg error ({result.error_type}): {result.stderr.strip()[-500:]}")
    return output_path


def stitch_videos(
    video_files: Sequence[Union[str, Path]],
    output_file: Union[str, Path],
    runner: Optional[FfmpegRunner] = None,
) -> Path:
    """Concatenate clips into one movie, in the given order.

    Raises:
        MediaError: If there is nothing to stitch or ffmpeg fails
    """
    if not video_files:
        raise MediaError("no videos to stitch")

    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    inputs: List[str] = [str(p) for p in video_files]
    result = _runner(runner).concat_videos(inputs, str(output_file))
    if not result.success:
        raise MediaError(f"stitch error ({result.error_type}): {result.stderr.strip()[-500:]}")
    return output_file


def check_ffmpeg() -> bool:
    """Verify the bundled ffmpeg runs."""
    try:
        exe = FfmpegRunner._get_ffmpeg_exe()
        subprocess.run(
            [exe, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
        return True
    except (RuntimeError, FileNotFoundError, subprocess.CalledProcessError, OSError):
        return False
