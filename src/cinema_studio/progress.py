"""Human-readable rendering of job progress events and batch summaries."""

from typing import Optional

from tqdm import tqdm

from .jobs.models import BatchResult, EventKind, OutcomeStatus, ProgressEvent

_ICONS = {
    EventKind.SUBMITTED: "🚀",
    EventKind.SUBMIT_ERROR: "⚠️",
    EventKind.POLL_ERROR: "⚠️",
    EventKind.RETRY: "🔄",
    EventKind.SUCCEEDED: "🎉",
    EventKind.FAILED: "❌",
    EventKind.CANCELLED: "⏹️",
    EventKind.SAVED: "💾",
    EventKind.SKIPPED: "⏭️",
}


def format_event(event: ProgressEvent) -> str:
    icon = _ICONS.get(event.kind, "•")
    kind = event.kind

    if kind == EventKind.SUBMITTED:
        text = f"Started: {event.remote_id} (attempt {event.attempt})"
    elif kind == EventKind.RETRY:
        text = (
            f"Retry {event.extra.get('next_attempt', event.attempt + 1)} "
            f"in {event.delay_s or 0:.0f}s: {event.message}"
        )
    elif kind == EventKind.SUCCEEDED:
        text = "Complete!"
    elif kind == EventKind.SAVED:
        text = f"Saved to disk: {event.message}"
    else:
        text = event.message or kind.value

    return f"[{event.job_id}] {icon} {text}"


def print_event(event: ProgressEvent) -> None:
    """Progress callback for the CLI. Plays well with an active tqdm bar."""
    tqdm.write(format_event(event))


def print_summary(result: BatchResult, title: Optional[str] = None) -> None:
    counts = result.counts()

    print("\n" + "=" * 60)
    print(title or ("BATCH CANCELLED" if result.cancelled else "BATCH SUMMARY"))
    print("=" * 60)
    for outcome in result.outcomes:
        label = f"Seg-{outcome.segment_index:02d}"
        if outcome.status in (OutcomeStatus.SUCCEEDED, OutcomeStatus.SKIPPED):
            print(f"{label}  {outcome.status.value:<10} {outcome.path}")
        elif outcome.status == OutcomeStatus.FAILED:
            failure = outcome.failure.value if outcome.failure else "unknown"
            print(f"{label}  {'failed':<10} [{failure}] {outcome.reason}")
        else:
            print(f"{label}  {outcome.status.value:<10} {outcome.reason or ''}")
    print("-" * 60)
    print(f"Succeeded:            {counts['succeeded']}")
    print(f"Skipped (existing):   {counts['skipped']}")
    print(f"Failed:               {counts['failed']}")
    print(f"Cancelled:            {counts['cancelled']}")
    print(f"Total duration:       {result.duration_s:.2f}s")
    print("=" * 60)
