"""Dry-run generation backend (offline).

Simulates a long-running operation service: every submit starts an operation
that reports done after a fixed number of polls, carrying a small inline
placeholder payload instead of a real video.
"""

import hashlib
import json
import threading
import uuid
from typing import Dict

from ..jobs.backends import GenerationBackend
from ..jobs.errors import PollError, classify_remote_error
from ..jobs.models import ArtifactLocator, OperationHandle, SegmentSpec


class DryRunBackend(GenerationBackend):
    name = "dryrun"

    def __init__(self, polls_to_complete: int = 1, transient_failures: int = 0):
        """Initialize simulator.

        Args:
            polls_to_complete: Polls before an operation reports done
            transient_failures: How many operations per segment finish with
                                a RESOURCE_EXHAUSTED error before one succeeds
        """
        self.polls_to_complete = max(1, polls_to_complete)
        self.transient_failures = max(0, transient_failures)
        self._lock = threading.Lock()
        self._operations: Dict[str, dict] = {}
        self._submits_per_segment: Dict[int, int] = {}

    def submit(self, segment: SegmentSpec) -> OperationHandle:
        with self._lock:
            count = self._submits_per_segment.get(segment.index, 0) + 1
            self._submits_per_segment[segment.index] = count
            remote_id = f"operations/dryrun-{uuid.uuid4().hex[:12]}"
            self._operations[remote_id] = {
                "segment": segment,
                "polls": 0,
                "fail": count <= self.transient_failures,
            }
        return OperationHandle(remote_id=remote_id)

    def poll(self, handle: OperationHandle) -> OperationHandle:
        with self._lock:
            op = self._operations.get(handle.remote_id)
            if op is None:
                raise PollError(f"unknown operation {handle.remote_id}")
            op["polls"] += 1
            if op["polls"] < self.polls_to_complete:
                return OperationHandle(remote_id=handle.remote_id)
            del self._operations[handle.remote_id]

        if op["fail"]:
            error = classify_remote_error(
                {"code": 8, "message": "Resource exhausted (dry run). Please try again later."}
            )
            return OperationHandle(remote_id=handle.remote_id, done=True, error=error)

        return OperationHandle(
            remote_id=handle.remote_id,
            done=True,
            artifact=ArtifactLocator(data=_placeholder_clip(op["segment"])),
        )


def _placeholder_clip(segment: SegmentSpec) -> bytes:
    payload = {
        "dryrun": True,
        "index": segment.index,
        "prompt": segment.prompt,
        "duration": segment.duration,
        "parameters": segment.parameters.model_dump(),
        "start_frame": segment.start_frame,
    }
    body = json.dumps(payload, sort_keys=True).encode("utf-8")
    digest = hashlib.sha256(body).hexdigest()[:16]
    return b"DRYRUN " + digest.encode("ascii") + b"\n" + body
