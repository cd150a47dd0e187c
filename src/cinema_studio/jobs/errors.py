"""Exception types and remote failure classification.

Backends convert whatever their transport raises into these exceptions, and
convert the error payload of a finished operation into an ``ErrorDetail``
with ``classify_remote_error`` before the job driver ever sees it.
"""

from typing import Any, Mapping, Optional

from .models import ErrorDetail, FailureKind


class GenerationError(Exception):
    """Base class for errors raised by a generation backend."""


class SubmitError(GenerationError):
    """The submit call failed (network, quota, rejected request)."""


class PollError(GenerationError):
    """A single poll call failed. The job itself may still be running."""


class FetchError(Exception):
    """Copying a remote artifact to local disk failed."""


class ArtifactWriteError(Exception):
    """An artifact could not be persisted to its destination."""


# gRPC status codes that mean "the service is busy, ask again later"
TRANSIENT_CODES = frozenset({8, 14})  # RESOURCE_EXHAUSTED, UNAVAILABLE

TRANSIENT_PATTERNS = (
    "high load",
    "quota",
    "try again",
    "overloaded",
    "resource exhausted",
    "resource_exhausted",
    "rate limit",
    "temporarily unavailable",
)


def _coerce_code(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def classify_remote_error(raw: Any) -> ErrorDetail:
    """Classify a provider error payload as transient or hard.

    Accepts the loosely-typed shapes providers hand back for a failed
    long-running operation: a mapping with ``code`` / ``message`` keys, an
    object with those attributes, or a bare string.

    Rules:
        1. Numeric code in TRANSIENT_CODES → transient
        2. Message containing one of TRANSIENT_PATTERNS → transient
        3. Anything else (safety filter, invalid argument, ...) → hard

    Args:
        raw: Error payload from the provider

    Returns:
        ErrorDetail carrying the kind, the numeric code if any, and the message
    """
    if isinstance(raw, ErrorDetail):
        return raw

    if isinstance(raw, Mapping):
        code = _coerce_code(raw.get("code"))
        message = raw.get("message")
    elif isinstance(raw, str):
        code = None
        message = raw
    else:
        code = _coerce_code(getattr(raw, "code", None))
        message = getattr(raw, "message", None)

    message = str(message) if message is not None else str(raw)

    if code in TRANSIENT_CODES:
        return ErrorDetail(kind=FailureKind.TRANSIENT, code=code, message=message)

    lowered = message.lower()
    for pattern in TRANSIENT_PATTERNS:
        if pattern in lowered:
            return ErrorDetail(kind=FailureKind.TRANSIENT, code=code, message=message)

    return ErrorDetail(kind=FailureKind.HARD, code=code, message=message)
