"""Bounded-concurrency orchestration of long-running generation jobs."""

from .backends import GenerationBackend, RemoteFetcher
from .backoff import RetryPolicy, backoff_delay
from .driver import JobDriver
from .errors import (
    ArtifactWriteError,
    FetchError,
    GenerationError,
    PollError,
    SubmitError,
    classify_remote_error,
)
from .limiter import ConcurrencyLimiter, Slot
from .models import (
    ArtifactLocator,
    BatchResult,
    ErrorDetail,
    EventKind,
    FailureKind,
    FailureReason,
    GenerationResult,
    JobOutcome,
    OperationHandle,
    OutcomeStatus,
    ParameterSet,
    ProgressEvent,
    SegmentSpec,
)
from .orchestrator import BatchOrchestrator
from .writer import ArtifactWriter, GcloudFetcher, remove_stale_temp_files

__all__ = [
    "GenerationBackend",
    "RemoteFetcher",
    "RetryPolicy",
    "backoff_delay",
    "JobDriver",
    "ArtifactWriteError",
    "FetchError",
    "GenerationError",
    "PollError",
    "SubmitError",
    "classify_remote_error",
    "ConcurrencyLimiter",
    "Slot",
    "ArtifactLocator",
    "BatchResult",
    "ErrorDetail",
    "EventKind",
    "FailureKind",
    "FailureReason",
    "GenerationResult",
    "JobOutcome",
    "OperationHandle",
    "OutcomeStatus",
    "ParameterSet",
    "ProgressEvent",
    "SegmentSpec",
    "BatchOrchestrator",
    "ArtifactWriter",
    "GcloudFetcher",
    "remove_stale_temp_files",
]
