"""Pydantic models for generation job data structures.

This module defines the type-safe models shared by the limiter, the job
driver and the batch orchestrator. Everything that crosses a thread boundary
is frozen: handles are replaced on every poll, outcomes are produced once.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class FailureKind(str, Enum):
    """Classification of a failure reported by the remote operation.

    transient → resubmit after backoff (overload, quota, "try again")
    hard      → terminal, never retried (safety rejection, bad request)
    submit    → the submit call itself failed (fixed delay before resubmit)
    """

    TRANSIENT = "transient"
    HARD = "hard"
    SUBMIT = "submit"


class OutcomeStatus(str, Enum):
    """Terminal states of one segment in a batch."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Artifact already on disk
    CANCELLED = "cancelled"


class FailureReason(str, Enum):
    """Why a FAILED outcome failed.

    Generation failures (the clip was never made) are kept apart from
    write failures (the clip was made but not saved).
    """

    HARD = "hard"
    MAX_ATTEMPTS = "max_attempts"
    NO_ARTIFACT = "no_artifact"
    DEADLINE = "deadline"
    WRITE = "write"
    INTERNAL = "internal"
    UPSTREAM = "upstream"  # Continuity chain broken by an earlier segment


class ParameterSet(BaseModel):
    """Fully resolved generation parameters for one segment."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(..., min_length=1, description="Remote model identifier")
    aspect_ratio: str = Field(..., min_length=1, description="e.g. 16:9")
    resolution: str = Field(..., min_length=1, description="e.g. 720p, 1080p")
    person_generation: str = Field(..., min_length=1, description="Person generation policy")
    generate_audio: bool = Field(default=False, description="Ask the model for an audio track")
    negative_prompt: str = Field(default="", description="Things the model should avoid")
    fps: int = Field(..., gt=0, description="Frames per second")

    @field_validator("model", "aspect_ratio", "resolution", "person_generation")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class SegmentSpec(BaseModel):
    """One prompt-driven unit of generation work.

    ``index`` is 1-based and determines both the output filename and the
    job id used in progress lines.
    """

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=1, description="Stable 1-based segment index")
    prompt: str = Field(..., min_length=1, description="Text prompt")
    duration: int = Field(..., gt=0, description="Clip duration in seconds")
    parameters: ParameterSet
    start_frame: Optional[str] = Field(
        default=None, description="Optional first-frame image (continuity chaining)"
    )

    @property
    def job_id(self) -> str:
        return f"Seg-{self.index:02d}"


class ErrorDetail(BaseModel):
    """Remote failure, already classified at the transport boundary."""

    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    code: Optional[int] = None
    message: str = ""

    def __str__(self) -> str:
        if self.code is not None:
            return f"[{self.code}] {self.message}"
        return self.message


class ArtifactLocator(BaseModel):
    """Where a finished clip lives: inline bytes or a remote storage URI."""

    model_config = ConfigDict(frozen=True)

    data: Optional[bytes] = Field(default=None, repr=False)
    uri: Optional[str] = None
    mime_type: str = "video/mp4"

    @model_validator(mode="after")
    def exactly_one_source(self) -> "ArtifactLocator":
        has_data = bool(self.data)
        has_uri = bool(self.uri)
        if has_data == has_uri:
            raise ValueError("ArtifactLocator needs exactly one of data or uri")
        return self

    @property
    def is_inline(self) -> bool:
        return bool(self.data)


class OperationHandle(BaseModel):
    """Snapshot of a remote long-running operation.

    Created by submit and replaced (never merged) by every poll.
    """

    model_config = ConfigDict(frozen=True)

    remote_id: str = Field(..., min_length=1, description="Opaque operation name")
    done: bool = False
    error: Optional[ErrorDetail] = None
    artifact: Optional[ArtifactLocator] = None


class GenerationResult(BaseModel):
    """What a job driver hands back to the orchestrator."""

    model_config = ConfigDict(frozen=True)

    segment_index: int
    status: OutcomeStatus
    artifact: Optional[ArtifactLocator] = None
    reason: Optional[str] = None
    failure: Optional[FailureReason] = None
    attempts: int = Field(default=0, ge=0)


class JobOutcome(BaseModel):
    """Terminal record for one segment of a batch."""

    model_config = ConfigDict(frozen=True)

    segment_index: int
    status: OutcomeStatus
    path: Optional[str] = Field(default=None, description="Artifact path (succeeded/skipped)")
    reason: Optional[str] = Field(default=None, description="Failure or cancellation detail")
    failure: Optional[FailureReason] = None
    attempts: int = Field(default=0, ge=0, description="Submit attempts made")


class BatchResult(BaseModel):
    """Ordered outcomes of one batch run."""

    outcomes: List[JobOutcome] = Field(default_factory=list)
    cancelled: bool = False
    duration_s: float = Field(default=0.0, ge=0.0)

    @classmethod
    def from_outcomes(cls, outcomes: List[JobOutcome], duration_s: float) -> "BatchResult":
        """Build a result; the run counts as cancelled only if a segment was cut short."""
        return cls(
            outcomes=outcomes,
            cancelled=any(o.status == OutcomeStatus.CANCELLED for o in outcomes),
            duration_s=duration_s,
        )

    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in OutcomeStatus}
        for outcome in self.outcomes:
            counts[outcome.status.value] += 1
        counts["total"] = len(self.outcomes)
        return counts

    def artifact_paths(self) -> List[str]:
        """Paths of all clips on disk, in segment order."""
        return [
            o.path
            for o in self.outcomes
            if o.path and o.status in (OutcomeStatus.SUCCEEDED, OutcomeStatus.SKIPPED)
        ]

    @property
    def ok(self) -> bool:
        return not self.cancelled and all(
            o.status in (OutcomeStatus.SUCCEEDED, OutcomeStatus.SKIPPED) for o in self.outcomes
        )


class EventKind(str, Enum):
    SUBMITTED = "submitted"
    SUBMIT_ERROR = "submit_error"
    POLL_ERROR = "poll_error"
    RETRY = "retry"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SAVED = "saved"
    SKIPPED = "skipped"


class ProgressEvent(BaseModel):
    """Structured progress notification emitted by drivers and the orchestrator."""

    kind: EventKind
    segment_index: int
    attempt: int = 0
    remote_id: Optional[str] = None
    delay_s: Optional[float] = None
    message: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)
    extra: Dict[str, Any] = Field(default_factory=dict)

    @property
    def job_id(self) -> str:
        return f"Seg-{self.segment_index:02d}"
