"""Batch pipeline: script in, clips (and optionally a stitched movie) out.

This module wires configuration, script loading, the generation backend and
the batch orchestrator together for the CLI.

Usage:
    # Generate every segment of a script in parallel
    pipeline.run_batch({"script": "scripts/scripts.json", "workers": 4})

    # Continuity mode: each segment starts from the previous clip's last frame
    pipeline.run_batch({"script": "scripts/scripts.json", "chain": True})

    # Assemble whatever is already in the output directory
    pipeline.stitch_output_dir("output")
"""

import json
import re
import string
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from . import config as config_lib
from .ffmpeg_runner import FfmpegRunner
from .jobs import (
    ArtifactWriter,
    BatchOrchestrator,
    BatchResult,
    ConcurrencyLimiter,
    FailureReason,
    GcloudFetcher,
    GenerationBackend,
    JobOutcome,
    OutcomeStatus,
    SegmentSpec,
)
from .media import MediaError, extract_last_frame, stitch_videos
from .models import StudioConfig
from .progress import print_event, print_summary
from .providers import get_backend
from .script import build_segments, load_script

DEFAULT_SCRIPT_PATH = "scripts/scripts.json"
BATCH_META_FILENAME = "batch_meta.json"
DEFAULT_FILENAME_TEMPLATE = "segment_{index:02d}.mp4"


def output_path_for(conf: StudioConfig) -> Callable[[int], Path]:
    """Map segment index to its clip path under the configured output dir."""
    output_dir = Path(conf.batch.output_dir)
    template = conf.batch.filename_template

    def _path(index: int) -> Path:
        return output_dir / template.format(index=index)

    return _path


def make_runner(conf: StudioConfig) -> FfmpegRunner:
    return FfmpegRunner(
        global_timeout_s=conf.media.ffmpeg_timeout_s,
        kill_grace_period_s=conf.media.kill_grace_period_s,
    )


def build_orchestrator(
    conf: StudioConfig,
    backend: Optional[GenerationBackend] = None,
    cancel_event: Optional[threading.Event] = None,
    show_progress: bool = True,
) -> BatchOrchestrator:
    """Create an orchestrator from resolved config.

    Raises:
        ValueError: If the configured backend cannot be loaded
    """
    return BatchOrchestrator(
        backend or get_backend(conf.batch.backend),
        writer=ArtifactWriter(GcloudFetcher(timeout_s=conf.media.ffmpeg_timeout_s)),
        limiter=ConcurrencyLimiter(conf.batch.max_concurrent),
        policy=conf.generation,
        cancel_event=cancel_event,
        on_event=print_event,
        show_progress=show_progress,
    )


def run_chained(
    segments: Sequence[SegmentSpec],
    orchestrator: BatchOrchestrator,
    output_path: Callable[[int], Union[str, Path]],
    runner: Optional[FfmpegRunner] = None,
) -> BatchResult:
    """Generate segments one after another for visual continuity.

    Each segment after the first is submitted with the previous clip's last
    frame as its start frame. The chain stops at the first segment that does
    not end up on disk; every later segment is reported as FAILED(upstream)
    or CANCELLED if the batch was cancelled.

    Args:
        segments: Ordered segments
        orchestrator: Orchestrator used for each single-segment run
        output_path: Maps a segment index to its clip path
        runner: ffmpeg runner for frame extraction

    Returns:
        BatchResult with one outcome per segment, in input order
    """
    start_time = time.time()
    outcomes: List[JobOutcome] = []
    start_frame: Optional[Path] = None
    broken_at: Optional[int] = None

    for position, segment in enumerate(segments):
        if orchestrator.cancel_event.is_set():
            outcomes.append(
                JobOutcome(
                    segment_index=segment.index,
                    status=OutcomeStatus.CANCELLED,
                    reason="cancelled before start",
                )
            )
            continue

        if broken_at is not None:
            outcomes.append(
                JobOutcome(
                    segment_index=segment.index,
                    status=OutcomeStatus.FAILED,
                    reason=f"previous segment {broken_at} did not complete",
                    failure=FailureReason.UPSTREAM,
                )
            )
            continue

        if start_frame is not None:
            segment = segment.model_copy(update={"start_frame": str(start_frame)})

        outcome = orchestrator.run([segment], output_path).outcomes[0]
        outcomes.append(outcome)

        if outcome.status not in (OutcomeStatus.SUCCEEDED, OutcomeStatus.SKIPPED):
            if outcome.status == OutcomeStatus.FAILED:
                broken_at = segment.index
            continue

        start_frame = None
        if position < len(segments) - 1:
            try:
                start_frame = extract_last_frame(outcome.path, runner=runner)
                print(f"[{segment.job_id}] 🖼️ Continuity frame: {start_frame}")
            except MediaError as e:
                # Next segment still runs, just without a start frame
                print(f"[{segment.job_id}] ⚠️ Could not extract last frame: {e}")

    return BatchResult.from_outcomes(outcomes, duration_s=time.time() - start_time)


def write_batch_meta(
    output_dir: Path,
    script_path: str,
    conf: StudioConfig,
    result: BatchResult,
    cli_args: Dict[str, Any],
) -> Path:
    """Save a JSON record of the run next to the clips."""
    batch_meta = {
        "script": script_path,
        "timestamp": datetime.now().isoformat(),
        "config": conf.model_dump(),
        "counts": result.counts(),
        "cancelled": result.cancelled,
        "duration_s": result.duration_s,
        "outcomes": [outcome.model_dump(mode="json") for outcome in result.outcomes],
        "cli_args": {k: v for k, v in cli_args.items() if k != "func"},
    }

    meta_path = output_dir / BATCH_META_FILENAME
    with open(meta_path, "w") as f:
        json.dump(batch_meta, f, indent=2, default=str)
    return meta_path


def filename_pattern(template: str) -> "re.Pattern[str]":
    """Regex matching names produced by ``template``, capturing the index.

    Raises:
        ValueError: If the template has no ``{index}`` field or other fields
    """
    parts = []
    has_index = False
    for literal, field, _spec, _conversion in string.Formatter().parse(template):
        parts.append(re.escape(literal))
        if field is None:
            continue
        if field != "index":
            raise ValueError(f"unsupported field '{field}' in filename template {template!r}")
        has_index = True
        parts.append(r"(?P<index>\d+)")
    if not has_index:
        raise ValueError(f"filename template {template!r} has no {{index}} field")
    return re.compile("".join(parts))


def find_clips(
    output_dir: Union[str, Path], filename_template: str = DEFAULT_FILENAME_TEMPLATE
) -> List[Path]:
    """Clips in ``output_dir`` named by ``filename_template``, in segment index order."""
    pattern = filename_pattern(filename_template)
    indexed = []
    for path in Path(output_dir).iterdir():
        match = pattern.fullmatch(path.name)
        if match and path.is_file():
            indexed.append((int(match.group("index")), path))
    return [path for _, path in sorted(indexed)]


def stitch_output_dir(
    output_dir: Union[str, Path],
    output_file: Optional[Union[str, Path]] = None,
    filename_template: str = DEFAULT_FILENAME_TEMPLATE,
    runner: Optional[FfmpegRunner] = None,
) -> Path:
    """Stitch every clip in a directory, in segment index order.

    Raises:
        MediaError: If no clips match or ffmpeg fails
    """
    output_dir = Path(output_dir)
    clips = find_clips(output_dir, filename_template) if output_dir.is_dir() else []
    if not clips:
        raise MediaError(f"no clips matching {filename_template} in {output_dir}")

    output_file = Path(output_file) if output_file else output_dir / "final_movie.mp4"
    print(f"Stitching {len(clips)} clips into {output_file}...")
    return stitch_videos(clips, output_file, runner=runner)


def run_batch(
    cli_args: Dict[str, Any],
    cancel_event: Optional[threading.Event] = None,
    backend: Optional[GenerationBackend] = None,
) -> BatchResult:
    """Main entry point for the CLI 'run' command.

    1. Resolves config (default < local/--config < CLI)
    2. Loads and resolves the script
    3. Generates every missing segment (parallel, or chained for continuity)
    4. Prints a summary and saves batch_meta.json
    5. Optionally stitches the clips into the final movie

    Args:
        cli_args: CLI arguments dictionary
        cancel_event: Set to stop the whole batch (SIGINT handler)
        backend: Backend instance overriding the configured one

    Returns:
        BatchResult for the run

    Raises:
        ScriptError: If the script is missing or invalid
        ValueError: If the configured backend cannot be loaded
    """
    # 1. Config
    conf = config_lib.resolve_config(cli_args, cli_args.get("config"))

    # 2. Script
    script_path = cli_args.get("script") or DEFAULT_SCRIPT_PATH
    segments = build_segments(load_script(script_path))

    # 3. Output setup
    output_dir = Path(conf.batch.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    chained = bool(cli_args.get("chain", False))

    print("--- 🎬 Starting Batch Generation ---")
    print(f"Script:               {script_path}")
    print(f"Segments:             {len(segments)}")
    print(f"Output directory:     {output_dir}")
    print(f"Backend:              {backend.name if backend else conf.batch.backend}")
    print(f"Mode:                 {'chained' if chained else 'parallel'}")
    if not chained:
        print(f"Max concurrent:       {conf.batch.max_concurrent}")

    # 4. Generate
    orchestrator = build_orchestrator(
        conf,
        backend=backend,
        cancel_event=cancel_event,
        show_progress=not cli_args.get("no_progress", False),
    )
    output_path = output_path_for(conf)
    runner = make_runner(conf)

    if chained:
        result = run_chained(segments, orchestrator, output_path, runner=runner)
    else:
        result = orchestrator.run(segments, output_path)

    print_summary(result)
    if result.cancelled:
        print("CANCELLED")

    meta_path = write_batch_meta(output_dir, script_path, conf, result, cli_args)
    print(f"Batch metadata saved to {meta_path}")

    # 5. Stitch
    if cli_args.get("stitch", False):
        if result.ok:
            final_path = output_dir / conf.media.final_movie
            print(f"\nStitching {len(result.artifact_paths())} clips into {final_path}...")
            try:
                stitch_videos(result.artifact_paths(), final_path, runner=runner)
                print(f"✅ Final movie: {final_path}")
            except MediaError as e:
                print(f"❌ Stitch failed: {e}")
        else:
            missing = len(result.outcomes) - len(result.artifact_paths())
            print(f"\nSkipping stitch: {missing} segment(s) missing.")

    return result
