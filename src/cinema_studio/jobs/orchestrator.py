"""Batch orchestrator: fan segments out to job drivers behind a limiter.

This module provides resumable batch generation with:
- Skip-if-exists resumability (a finished clip is never regenerated)
- One thread per pending segment, admission-gated by a ConcurrencyLimiter
- Per-job failure isolation (one failed segment never stops the others)
- Outcomes reassembled in segment order regardless of completion order
- Progress tracking with tqdm
"""

import threading
import time
import traceback
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from tqdm import tqdm

from .backends import GenerationBackend
from .backoff import RetryPolicy
from .driver import EventCallback, JobDriver, emit_event
from .errors import ArtifactWriteError
from .limiter import ConcurrencyLimiter
from .models import (
    BatchResult,
    EventKind,
    FailureReason,
    JobOutcome,
    OutcomeStatus,
    ProgressEvent,
    SegmentSpec,
)
from .writer import ArtifactWriter, remove_stale_temp_files

OutputPathFn = Callable[[int], Union[str, Path]]


class BatchOrchestrator:
    """Runs a batch of segments to one outcome each.

    Example:
        >>> orchestrator = BatchOrchestrator(
        ...     backend,
        ...     limiter=ConcurrencyLimiter(4),
        ...     policy=RetryPolicy(max_attempts=3),
        ... )
        >>> result = orchestrator.run(segments, lambda i: out_dir / f"segment_{i:02d}.mp4")
        >>> print(result.counts())
    """

    def __init__(
        self,
        backend: GenerationBackend,
        writer: Optional[ArtifactWriter] = None,
        limiter: Optional[ConcurrencyLimiter] = None,
        policy: Optional[RetryPolicy] = None,
        cancel_event: Optional[threading.Event] = None,
        on_event: Optional[EventCallback] = None,
        show_progress: bool = False,
    ):
        """Initialize orchestrator.

        Args:
            backend: Remote generation service
            writer: Artifact writer (default: ArtifactWriter with gcloud fetcher)
            limiter: Shared admission gate (default: 4 slots)
            policy: Retry policy handed to every job driver
            cancel_event: Global cancellation signal for the whole batch
            on_event: Callback receiving ProgressEvents from every job
            show_progress: Show a tqdm progress bar over completed jobs
        """
        self.backend = backend
        self.writer = writer or ArtifactWriter()
        self.limiter = limiter or ConcurrencyLimiter(4)
        self.policy = policy or RetryPolicy()
        self.cancel_event = cancel_event or threading.Event()
        self.on_event = on_event
        self.show_progress = show_progress

    def cancel(self) -> None:
        """Ask every in-flight job to stop at its next suspension point."""
        self.cancel_event.set()

    def run(self, segments: Sequence[SegmentSpec], output_path: OutputPathFn) -> BatchResult:
        """Generate every missing segment and wait for all of them.

        Args:
            segments: Ordered segments; indices must be unique
            output_path: Maps a segment index to its clip path

        Returns:
            BatchResult with exactly one outcome per segment, in input order

        Raises:
            ValueError: If two segments share an index
        """
        seen = set()
        for segment in segments:
            if segment.index in seen:
                raise ValueError(f"duplicate segment index: {segment.index}")
            seen.add(segment.index)

        start_time = time.time()
        outcomes: List[Optional[JobOutcome]] = [None] * len(segments)
        pending: Dict[int, Path] = {}

        # 1. Resumability: anything already on disk is done
        for position, segment in enumerate(segments):
            destination = Path(output_path(segment.index))
            # Leftovers from a crashed run, never a finished clip
            remove_stale_temp_files(destination)
            if destination.exists():
                outcomes[position] = JobOutcome(
                    segment_index=segment.index,
                    status=OutcomeStatus.SKIPPED,
                    path=str(destination),
                )
                emit_event(
                    self.on_event,
                    ProgressEvent(
                        kind=EventKind.SKIPPED,
                        segment_index=segment.index,
                        message=f"already exists: {destination}",
                    ),
                )
            else:
                pending[position] = destination

        # 2. Launch every remaining segment; the limiter decides who runs
        if pending:
            driver = JobDriver(
                self.backend,
                policy=self.policy,
                cancel_event=self.cancel_event,
                on_event=self.on_event,
            )
            with ThreadPoolExecutor(
                max_workers=len(pending), thread_name_prefix="segment"
            ) as executor:
                futures = {
                    executor.submit(
                        self._run_segment, driver, segments[position], destination
                    ): position
                    for position, destination in pending.items()
                }

                for future in tqdm(
                    as_completed(futures),
                    total=len(futures),
                    desc="Generating segments",
                    unit="clip",
                    disable=not self.show_progress,
                ):
                    position = futures[future]
                    try:
                        outcomes[position] = future.result()
                    except Exception as e:
                        # Keep one broken job from losing its outcome
                        print(f"Job failed: {e}\n{traceback.format_exc()}")
                        outcomes[position] = JobOutcome(
                            segment_index=segments[position].index,
                            status=OutcomeStatus.FAILED,
                            reason=f"{type(e).__name__}: {e}",
                            failure=FailureReason.INTERNAL,
                        )

        return BatchResult.from_outcomes(outcomes, duration_s=time.time() - start_time)

    def _run_segment(
        self, driver: JobDriver, segment: SegmentSpec, destination: Path
    ) -> JobOutcome:
        """Worker function: limiter slot → job driver → artifact writer."""
        slot = self.limiter.acquire(self.cancel_event)
        if slot is None:
            return JobOutcome(
                segment_index=segment.index,
                status=OutcomeStatus.CANCELLED,
                reason="cancelled before start",
            )

        with slot:
            result = driver.run(segment)

            if result.status != OutcomeStatus.SUCCEEDED:
                return JobOutcome(
                    segment_index=segment.index,
                    status=result.status,
                    reason=result.reason,
                    failure=result.failure,
                    attempts=result.attempts,
                )

            # Saved before the outcome counts as succeeded
            try:
                path = self.writer.write(result.artifact, destination)
            except ArtifactWriteError as e:
                emit_event(
                    self.on_event,
                    ProgressEvent(
                        kind=EventKind.FAILED,
                        segment_index=segment.index,
                        attempt=result.attempts,
                        message=f"save error: {e}",
                    ),
                )
                return JobOutcome(
                    segment_index=segment.index,
                    status=OutcomeStatus.FAILED,
                    reason=f"write error: {e}",
                    failure=FailureReason.WRITE,
                    attempts=result.attempts,
                )

            emit_event(
                self.on_event,
                ProgressEvent(
                    kind=EventKind.SAVED,
                    segment_index=segment.index,
                    attempt=result.attempts,
                    message=str(path),
                ),
            )
            return JobOutcome(
                segment_index=segment.index,
                status=OutcomeStatus.SUCCEEDED,
                path=str(path),
                attempts=result.attempts,
            )
