"""Job driver: one segment through submit → poll → retry to a terminal result.

State machine per job::

    SUBMITTING ─ok─> POLLING ─done, success──────> SUCCEEDED
        │                    ├─done, transient err─> BACKOFF ─> SUBMITTING
        │                    └─done, hard err──────> FAILED
        └─submit error─> BACKOFF ─> SUBMITTING

Every wait (poll tick, backoff) is a wait on the shared cancellation event,
so a cancelled batch stops within one tick instead of finishing its sleeps.
"""

import threading
import time
from typing import Callable, Optional, Tuple

from .backends import GenerationBackend
from .backoff import RetryPolicy, backoff_delay
from .errors import PollError, SubmitError
from .models import (
    EventKind,
    FailureKind,
    FailureReason,
    GenerationResult,
    OperationHandle,
    OutcomeStatus,
    ProgressEvent,
    SegmentSpec,
)

EventCallback = Callable[[ProgressEvent], None]

_CANCELLED = "cancelled"
_DEADLINE = "deadline"

# Transport-level failures a backend may let through unwrapped
_SUBMIT_ERRORS = (SubmitError, ConnectionError, TimeoutError)
_POLL_ERRORS = (PollError, ConnectionError, TimeoutError)


def emit_event(callback: Optional[EventCallback], event: ProgressEvent) -> None:
    """Deliver a progress event without letting a broken callback kill the job."""
    if callback is None:
        return
    try:
        callback(event)
    except Exception as e:
        print(f"Progress callback error: {e}")


class JobDriver:
    """Drives one segment to exactly one GenerationResult.

    A driver holds no per-job state between ``run`` calls; the attempt counter
    and the operation handle live on the stack of ``run``. One driver can be
    shared by every thread of a batch.

    Example:
        >>> driver = JobDriver(backend, RetryPolicy(max_attempts=3))
        >>> result = driver.run(segment)
        >>> if result.status == OutcomeStatus.SUCCEEDED:
        ...     writer.write(result.artifact, path)
    """

    def __init__(
        self,
        backend: GenerationBackend,
        policy: Optional[RetryPolicy] = None,
        cancel_event: Optional[threading.Event] = None,
        on_event: Optional[EventCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.policy = policy or RetryPolicy()
        self.cancel_event = cancel_event or threading.Event()
        self.on_event = on_event
        self._clock = clock

    def run(self, segment: SegmentSpec) -> GenerationResult:
        """Generate one segment, retrying transient failures.

        Args:
            segment: Segment to generate

        Returns:
            GenerationResult with status SUCCEEDED (artifact set), FAILED
            (reason and failure set) or CANCELLED
        """
        policy = self.policy
        deadline = None
        if policy.job_timeout_s is not None:
            deadline = self._clock() + policy.job_timeout_s

        last_error = "no attempt made"

        for attempt in range(1, policy.max_attempts + 1):
            if self.cancel_event.is_set():
                return self._stopped(segment, attempt - 1, _CANCELLED)

            # 1. Submit
            try:
                handle = self.backend.submit(segment)
            except _SUBMIT_ERRORS as e:
                last_error = f"submit failed: {e}"
                self._emit(EventKind.SUBMIT_ERROR, segment, attempt, message=last_error)
                stop = self._backoff(segment, attempt, FailureKind.SUBMIT, deadline)
                if stop:
                    return self._stopped(segment, attempt, stop)
                continue

            self._emit(EventKind.SUBMITTED, segment, attempt, remote_id=handle.remote_id)

            # 2. Poll until the operation reports done
            handle, stop = self._poll_until_done(segment, handle, attempt, deadline)
            if stop:
                return self._stopped(segment, attempt, stop)

            # 3. Classify the terminal state
            if handle.error is None:
                if handle.artifact is None:
                    return self._failed(
                        segment,
                        attempt,
                        FailureReason.NO_ARTIFACT,
                        "operation finished without a video in its response",
                    )
                self._emit(EventKind.SUCCEEDED, segment, attempt, remote_id=handle.remote_id)
                return GenerationResult(
                    segment_index=segment.index,
                    status=OutcomeStatus.SUCCEEDED,
                    artifact=handle.artifact,
                    attempts=attempt,
                )

            if handle.error.kind != FailureKind.TRANSIENT:
                # Safety filter, invalid request, ...: retrying cannot help
                return self._failed(
                    segment, attempt, FailureReason.HARD, f"generation error: {handle.error}"
                )

            last_error = f"transient error: {handle.error}"
            stop = self._backoff(segment, attempt, FailureKind.TRANSIENT, deadline, last_error)
            if stop:
                return self._stopped(segment, attempt, stop)

        return self._failed(
            segment,
            policy.max_attempts,
            FailureReason.MAX_ATTEMPTS,
            f"max attempts exceeded ({policy.max_attempts}): {last_error}",
        )

    def _poll_until_done(
        self,
        segment: SegmentSpec,
        handle: OperationHandle,
        attempt: int,
        deadline: Optional[float],
    ) -> Tuple[OperationHandle, Optional[str]]:
        while True:
            stop = self._pause(self.policy.poll_interval_s, deadline)
            if stop:
                return handle, stop
            try:
                handle = self.backend.poll(handle)
            except _POLL_ERRORS as e:
                # Network blip: the job is still alive, try again next tick
                self._emit(
                    EventKind.POLL_ERROR,
                    segment,
                    attempt,
                    remote_id=handle.remote_id,
                    message=f"poll check failed: {e}",
                )
                continue
            if handle.done:
                return handle, None

    def _backoff(
        self,
        segment: SegmentSpec,
        attempt: int,
        kind: FailureKind,
        deadline: Optional[float],
        message: str = "",
    ) -> Optional[str]:
        """Wait before the next attempt. No wait after the last attempt."""
        if attempt >= self.policy.max_attempts:
            return None
        delay = backoff_delay(attempt, kind, self.policy)
        self._emit(
            EventKind.RETRY,
            segment,
            attempt,
            delay_s=delay,
            message=message or f"retrying after {kind.value} failure",
            extra={"kind": kind.value, "next_attempt": attempt + 1},
        )
        return self._pause(delay, deadline)

    def _pause(self, seconds: float, deadline: Optional[float]) -> Optional[str]:
        """Park this thread until the timer, the deadline or cancellation fires."""
        if deadline is not None:
            remaining = deadline - self._clock()
            if remaining <= 0:
                return _DEADLINE
            seconds = min(seconds, remaining)
        if self.cancel_event.wait(seconds):
            return _CANCELLED
        if deadline is not None and self._clock() >= deadline:
            return _DEADLINE
        return None

    def _stopped(self, segment: SegmentSpec, attempts: int, stop: str) -> GenerationResult:
        if stop == _DEADLINE:
            return self._failed(
                segment,
                attempts,
                FailureReason.DEADLINE,
                f"job deadline of {self.policy.job_timeout_s}s exceeded",
            )
        self._emit(EventKind.CANCELLED, segment, attempts, message="cancelled")
        return GenerationResult(
            segment_index=segment.index,
            status=OutcomeStatus.CANCELLED,
            reason="cancelled",
            attempts=attempts,
        )

    def _failed(
        self, segment: SegmentSpec, attempts: int, failure: FailureReason, reason: str
    ) -> GenerationResult:
        self._emit(EventKind.FAILED, segment, attempts, message=reason)
        return GenerationResult(
            segment_index=segment.index,
            status=OutcomeStatus.FAILED,
            reason=reason,
            failure=failure,
            attempts=attempts,
        )

    def _emit(self, kind: EventKind, segment: SegmentSpec, attempt: int, **fields) -> None:
        emit_event(
            self.on_event,
            ProgressEvent(kind=kind, segment_index=segment.index, attempt=attempt, **fields),
        )
