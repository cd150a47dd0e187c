import threading
import time
from typing import Dict, List, Optional

import pytest

from cinema_studio.jobs import (
    ArtifactLocator,
    ErrorDetail,
    FailureKind,
    GenerationBackend,
    OperationHandle,
    ParameterSet,
    PollError,
    RetryPolicy,
    SegmentSpec,
    SubmitError,
)


class ScriptedBackend(GenerationBackend):
    """In-memory backend whose operations follow a per-segment script.

    ``outcomes`` maps a segment index to the list of terminal results its
    successive submits produce: "ok", "transient", "hard", "empty",
    "submit_error" or "poll_error" (one failing poll, then ok). Once a
    segment's list is exhausted, further submits succeed.
    """

    name = "scripted"

    def __init__(
        self,
        outcomes: Optional[Dict[int, List[str]]] = None,
        polls_to_complete: int = 1,
        poll_delay_s: float = 0.0,
    ):
        self.outcomes = {k: list(v) for k, v in (outcomes or {}).items()}
        self.polls_to_complete = polls_to_complete
        self.poll_delay_s = poll_delay_s
        self.submits: List[int] = []
        self.submitted: List[SegmentSpec] = []
        self.polls: List[str] = []
        self._ops: Dict[str, dict] = {}
        self._lock = threading.Lock()
        self._in_flight = 0
        self.peak_in_flight = 0
        self._counter = 0

    def submit(self, segment: SegmentSpec) -> OperationHandle:
        with self._lock:
            self.submits.append(segment.index)
            self.submitted.append(segment)
            plan = self.outcomes.get(segment.index, [])
            result = plan.pop(0) if plan else "ok"
            if result == "submit_error":
                raise SubmitError("connection reset")
            self._counter += 1
            remote_id = f"operations/op-{self._counter}"
            self._ops[remote_id] = {"segment": segment, "result": result, "polls": 0}
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
        return OperationHandle(remote_id=remote_id)

    def poll(self, handle: OperationHandle) -> OperationHandle:
        if self.poll_delay_s:
            time.sleep(self.poll_delay_s)
        with self._lock:
            self.polls.append(handle.remote_id)
            op = self._ops[handle.remote_id]
            op["polls"] += 1
            if op["result"] == "poll_error":
                op["result"] = "ok"
                raise PollError("socket timeout")
            if op["polls"] < self.polls_to_complete:
                return handle
            self._in_flight -= 1
            result = op["result"]
            segment = op["segment"]

        if result == "transient":
            error = ErrorDetail(
                kind=FailureKind.TRANSIENT, code=8, message="Resource exhausted"
            )
            return OperationHandle(remote_id=handle.remote_id, done=True, error=error)
        if result == "hard":
            error = ErrorDetail(
                kind=FailureKind.HARD, code=3, message="Blocked by safety filter"
            )
            return OperationHandle(remote_id=handle.remote_id, done=True, error=error)
        if result == "empty":
            return OperationHandle(remote_id=handle.remote_id, done=True)
        return OperationHandle(
            remote_id=handle.remote_id,
            done=True,
            artifact=ArtifactLocator(data=f"clip {segment.index}".encode()),
        )


@pytest.fixture
def params():
    return ParameterSet(
        model="veo-2.0-generate-001",
        aspect_ratio="16:9",
        resolution="720p",
        person_generation="allow_adult",
        fps=24,
    )


@pytest.fixture
def make_segment(params):
    def _make(index: int, prompt: str = "A lighthouse at dawn") -> SegmentSpec:
        return SegmentSpec(index=index, prompt=prompt, duration=8, parameters=params)

    return _make


@pytest.fixture
def fast_policy():
    """Retry policy with millisecond timings."""
    return RetryPolicy(
        max_attempts=3,
        poll_interval_s=0.01,
        transient_base_delay_s=0.02,
        submit_retry_delay_s=0.01,
    )
