"""Backoff policy: (attempt, failure kind) -> seconds to wait."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from .models import FailureKind


class RetryPolicy(BaseModel):
    """Retry and polling knobs for one job driver."""

    max_attempts: int = Field(default=3, ge=1, description="Outer submit attempts per segment")
    poll_interval_s: float = Field(default=10.0, gt=0.0, description="Seconds between polls")
    transient_base_delay_s: float = Field(
        default=15.0, gt=0.0, description="Base delay after a transient remote failure"
    )
    backoff: Literal["linear", "exponential"] = Field(
        default="linear", description="Growth of the transient delay across attempts"
    )
    submit_retry_delay_s: float = Field(
        default=10.0, ge=0.0, description="Fixed delay after a failed submit call"
    )
    job_timeout_s: Optional[float] = Field(
        default=None, gt=0.0, description="Wall-clock budget per segment (None = unbounded)"
    )


def backoff_delay(attempt: int, kind: FailureKind, policy: RetryPolicy) -> float:
    """Return how long to wait before the next submit.

    Transient failures wait ``attempt * base`` (linear) or
    ``base * 2 ** (attempt - 1)`` (exponential); both grow strictly with the
    attempt number. A failed submit call waits a fixed delay.

    Raises:
        ValueError: For hard failures, which are never retried
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    if kind == FailureKind.SUBMIT:
        return policy.submit_retry_delay_s

    if kind == FailureKind.TRANSIENT:
        base = policy.transient_base_delay_s
        if policy.backoff == "exponential":
            return base * (2 ** (attempt - 1))
        return base * attempt

    raise ValueError(f"no backoff for {kind.value} failures")
