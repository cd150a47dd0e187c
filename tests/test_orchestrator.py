"""Integration tests for the batch orchestrator.

Tests cover:
- One ordered outcome per segment
- Skip-if-exists resumability
- Bounded concurrency
- Failure isolation between segments
- Cancellation
"""

import threading
import time
from unittest.mock import MagicMock

import pytest

from cinema_studio.jobs import (
    ArtifactWriteError,
    ArtifactWriter,
    BatchOrchestrator,
    ConcurrencyLimiter,
    EventKind,
    FailureReason,
    OutcomeStatus,
    RetryPolicy,
)

from conftest import ScriptedBackend


@pytest.fixture
def output_path(tmp_path):
    return lambda index: tmp_path / f"segment_{index:02d}.mp4"


def _orchestrator(backend, policy, capacity=4, **kwargs):
    return BatchOrchestrator(
        backend,
        limiter=ConcurrencyLimiter(capacity, check_interval_s=0.01),
        policy=policy,
        **kwargs,
    )


class TestBatchOrchestrator:
    def test_all_segments_succeed_in_order(self, make_segment, fast_policy, output_path):
        """Outcomes come back in segment order even if jobs finish out of order."""
        # Segment 1 needs a retry, so it finishes last
        backend = ScriptedBackend({1: ["transient"]})
        segments = [make_segment(i) for i in (1, 2, 3)]

        result = _orchestrator(backend, fast_policy).run(segments, output_path)

        assert [o.segment_index for o in result.outcomes] == [1, 2, 3]
        assert all(o.status == OutcomeStatus.SUCCEEDED for o in result.outcomes)
        assert output_path(1).read_bytes() == b"clip 1"
        assert output_path(3).read_bytes() == b"clip 3"
        assert result.ok

    def test_skip_existing(self, make_segment, fast_policy, output_path):
        """Segments already on disk are never submitted."""
        output_path(2).write_bytes(b"old clip")
        backend = ScriptedBackend()
        events = []

        result = _orchestrator(backend, fast_policy, on_event=events.append).run(
            [make_segment(i) for i in (1, 2, 3)], output_path
        )

        assert sorted(backend.submits) == [1, 3]
        assert result.outcomes[1].status == OutcomeStatus.SKIPPED
        assert result.outcomes[1].path == str(output_path(2))
        assert output_path(2).read_bytes() == b"old clip"
        assert any(e.kind == EventKind.SKIPPED and e.segment_index == 2 for e in events)

    def test_second_run_makes_no_calls(self, make_segment, fast_policy, output_path):
        segments = [make_segment(i) for i in (1, 2)]
        first = _orchestrator(ScriptedBackend(), fast_policy).run(segments, output_path)

        backend = ScriptedBackend()
        result = _orchestrator(backend, fast_policy).run(segments, output_path)

        assert backend.submits == []
        assert backend.polls == []
        assert all(o.status == OutcomeStatus.SKIPPED for o in result.outcomes)
        assert result.artifact_paths() == first.artifact_paths()

    def test_concurrency_bounded(self, make_segment, fast_policy, output_path):
        """Never more than max_concurrent operations in flight."""
        backend = ScriptedBackend(polls_to_complete=3, poll_delay_s=0.01)
        orchestrator = _orchestrator(backend, fast_policy, capacity=2)

        result = orchestrator.run([make_segment(i) for i in range(1, 9)], output_path)

        assert result.counts()["succeeded"] == 8
        assert backend.peak_in_flight <= 2
        assert orchestrator.limiter.peak <= 2

    def test_failure_isolated(self, make_segment, fast_policy, output_path):
        """One hard failure does not affect the other segments."""
        backend = ScriptedBackend({2: ["hard"]})

        result = _orchestrator(backend, fast_policy).run(
            [make_segment(i) for i in (1, 2, 3)], output_path
        )

        statuses = [o.status for o in result.outcomes]
        assert statuses == [OutcomeStatus.SUCCEEDED, OutcomeStatus.FAILED, OutcomeStatus.SUCCEEDED]
        assert result.outcomes[1].failure == FailureReason.HARD
        assert not output_path(2).exists()
        assert not result.ok

    def test_write_failure(self, make_segment, fast_policy, output_path):
        writer = MagicMock(spec=ArtifactWriter)
        writer.write.side_effect = ArtifactWriteError("disk full")

        result = _orchestrator(ScriptedBackend(), fast_policy, writer=writer).run(
            [make_segment(1)], output_path
        )

        outcome = result.outcomes[0]
        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.failure == FailureReason.WRITE
        assert "disk full" in outcome.reason

    def test_unexpected_exception_becomes_internal_failure(
        self, make_segment, fast_policy, output_path
    ):
        backend = ScriptedBackend()
        backend.submit = MagicMock(side_effect=KeyError("boom"))

        result = _orchestrator(backend, fast_policy).run([make_segment(1)], output_path)

        assert result.outcomes[0].status == OutcomeStatus.FAILED
        assert result.outcomes[0].failure == FailureReason.INTERNAL

    def test_duplicate_indices_rejected(self, make_segment, fast_policy, output_path):
        with pytest.raises(ValueError):
            _orchestrator(ScriptedBackend(), fast_policy).run(
                [make_segment(1), make_segment(1)], output_path
            )

    def test_cancel_mid_run(self, make_segment, output_path):
        """After cancel, no new submits happen and waiting jobs end CANCELLED."""
        policy = RetryPolicy(max_attempts=3, poll_interval_s=0.05, transient_base_delay_s=60)
        backend = ScriptedBackend(polls_to_complete=1000)
        cancel = threading.Event()
        orchestrator = _orchestrator(backend, policy, capacity=1, cancel_event=cancel)

        timer = threading.Timer(0.2, orchestrator.cancel)
        timer.start()
        try:
            result = orchestrator.run([make_segment(i) for i in (1, 2, 3)], output_path)
        finally:
            timer.cancel()

        assert result.cancelled
        assert len(backend.submits) == 1
        assert all(o.status == OutcomeStatus.CANCELLED for o in result.outcomes)
        assert not any(output_path(i).exists() for i in (1, 2, 3))

    def test_cancel_stops_in_flight_jobs_within_one_poll_tick(self, make_segment, output_path):
        """Jobs parked in a poll wait end as soon as cancel fires, not a tick later."""
        policy = RetryPolicy(max_attempts=3, poll_interval_s=0.5, transient_base_delay_s=60)
        backend = ScriptedBackend(polls_to_complete=1000)
        orchestrator = _orchestrator(backend, policy, capacity=2)
        cancelled_at = {}

        def cancel():
            cancelled_at["t"] = time.monotonic()
            orchestrator.cancel()

        timer = threading.Timer(0.3, cancel)
        timer.start()
        try:
            result = orchestrator.run([make_segment(i) for i in range(1, 6)], output_path)
        finally:
            timer.cancel()
        returned_at = time.monotonic()

        assert returned_at - cancelled_at["t"] < policy.poll_interval_s + 0.25
        assert len(backend.submits) == 2
        assert all(o.status == OutcomeStatus.CANCELLED for o in result.outcomes)

    def test_cancel_interrupts_backoff_wait(self, make_segment, output_path):
        policy = RetryPolicy(max_attempts=3, poll_interval_s=0.01, transient_base_delay_s=60)
        backend = ScriptedBackend({1: ["transient"]})
        orchestrator = _orchestrator(backend, policy)
        cancelled_at = {}

        def cancel():
            cancelled_at["t"] = time.monotonic()
            orchestrator.cancel()

        timer = threading.Timer(0.2, cancel)
        timer.start()
        try:
            result = orchestrator.run([make_segment(1)], output_path)
        finally:
            timer.cancel()

        assert time.monotonic() - cancelled_at["t"] < 0.5
        assert backend.submits == [1]
        assert result.outcomes[0].status == OutcomeStatus.CANCELLED

    def test_late_cancel_does_not_mark_finished_batch_cancelled(
        self, make_segment, fast_policy, output_path
    ):
        """A cancel signal that arrives after every job finished changes nothing."""
        cancel = threading.Event()

        def on_event(event):
            if event.kind == EventKind.SAVED:
                cancel.set()

        result = _orchestrator(
            ScriptedBackend(), fast_policy, cancel_event=cancel, on_event=on_event
        ).run([make_segment(1)], output_path)

        assert cancel.is_set()
        assert result.outcomes[0].status == OutcomeStatus.SUCCEEDED
        assert not result.cancelled
        assert result.ok

    def test_stale_temp_files_swept_before_run(self, make_segment, fast_policy, output_path):
        """Half-written clips from a crashed run are removed, finished clips kept."""
        stale = output_path(1).with_name(".segment_01.mp4.deadbeef.part")
        stale.write_bytes(b"partial")
        old_stale = output_path(2).with_name(".segment_02.mp4.cafebabe.part")
        old_stale.write_bytes(b"partial")
        output_path(2).write_bytes(b"old clip")

        result = _orchestrator(ScriptedBackend(), fast_policy).run(
            [make_segment(1), make_segment(2)], output_path
        )

        assert result.ok
        assert not stale.exists()
        assert output_path(1).read_bytes() == b"clip 1"
        assert not old_stale.exists()
        assert output_path(2).read_bytes() == b"old clip"
