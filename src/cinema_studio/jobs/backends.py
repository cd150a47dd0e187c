"""Abstract interfaces for generation backends and remote artifact fetchers.

The job driver only talks to these interfaces. Concrete transports (an SDK
client, a REST client, the built-in dry-run simulator) live elsewhere and are
responsible for turning their own failures into ``SubmitError`` /
``PollError`` / ``FetchError`` and for classifying remote error payloads with
``classify_remote_error``.
"""

from abc import ABC, abstractmethod
from pathlib import Path

from .models import OperationHandle, SegmentSpec


class GenerationBackend(ABC):
    """Remote long-running generation service.

    Implementations must provide:
    - A submit call that starts one operation per invocation
    - A side-effect-free poll call that can be repeated indefinitely
    """

    name: str = "backend"

    @abstractmethod
    def submit(self, segment: SegmentSpec) -> OperationHandle:
        """Start a generation job for one segment.

        Args:
            segment: Prompt, duration and resolved parameters

        Returns:
            OperationHandle with the remote operation id (usually not done)

        Raises:
            SubmitError: If the job could not be started

        Implementation notes:
        - Must not retry internally; the job driver owns the retry loop
        """
        pass

    @abstractmethod
    def poll(self, handle: OperationHandle) -> OperationHandle:
        """Fetch a fresh snapshot of an operation.

        Args:
            handle: Handle returned by submit or a previous poll

        Returns:
            A new OperationHandle; ``error`` must already be classified

        Raises:
            PollError: If the status could not be fetched this time

        Implementation notes:
        - Must not mutate remote state
        - A PollError says nothing about the job itself
        """
        pass


class RemoteFetcher(ABC):
    """Copies a remote storage object to a local file."""

    @abstractmethod
    def fetch(self, uri: str, destination: Path) -> None:
        """Download ``uri`` to ``destination``.

        Raises:
            FetchError: If the copy failed
        """
        pass
