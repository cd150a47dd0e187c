"""Atomic persistence of generated clips.

A destination path either holds a complete clip or does not exist: data is
written to a hidden temporary sibling first and moved into place with
``os.replace``. The orchestrator's skip-if-exists check therefore never
mistakes a half-written file from a crashed run for a finished segment.
"""

import glob
import os
import shutil
import subprocess
import uuid
from pathlib import Path
from typing import Optional, Union

from .backends import RemoteFetcher
from .errors import ArtifactWriteError, FetchError
from .models import ArtifactLocator


def temp_path_for(destination: Path) -> Path:
    """Hidden sibling used while ``destination`` is being written."""
    return destination.with_name(f".{destination.name}.{uuid.uuid4().hex[:8]}.part")


def remove_stale_temp_files(destination: Path) -> int:
    """Delete temp siblings of ``destination`` left behind by a crashed run.

    Must only be called while no write to ``destination`` is in flight.

    Returns:
        Number of files removed
    """
    destination = Path(destination)
    if not destination.parent.is_dir():
        return 0
    removed = 0
    for stale in destination.parent.glob(f".{glob.escape(destination.name)}.*.part"):
        try:
            stale.unlink()
            removed += 1
        except FileNotFoundError:
            continue
    return removed


class GcloudFetcher(RemoteFetcher):
    """Copies ``gs://`` objects with the gcloud CLI.

    Uses whatever credentials ``gcloud auth`` already holds, so no storage
    SDK or key handling is needed here.
    """

    def __init__(self, gcloud_exe: str = "gcloud", timeout_s: int = 600):
        self.gcloud_exe = gcloud_exe
        self.timeout_s = timeout_s

    def fetch(self, uri: str, destination: Path) -> None:
        cmd = [self.gcloud_exe, "storage", "cp", uri, str(destination)]
        try:
            subprocess.run(
                cmd,
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout_s,
            )
        except FileNotFoundError as e:
            raise FetchError(f"{self.gcloud_exe} not found in PATH") from e
        except subprocess.TimeoutExpired as e:
            raise FetchError(f"gcloud cp timed out after {self.timeout_s}s: {uri}") from e
        except subprocess.CalledProcessError as e:
            output = (e.stderr or e.stdout or "").strip()
            raise FetchError(f"gcloud cp failed: {output[:500]}") from e

    @staticmethod
    def available(gcloud_exe: str = "gcloud") -> bool:
        return shutil.which(gcloud_exe) is not None


class ArtifactWriter:
    """Writes an ArtifactLocator to a local path, atomically."""

    def __init__(self, fetcher: Optional[RemoteFetcher] = None):
        self.fetcher = fetcher or GcloudFetcher()

    def write(self, locator: ArtifactLocator, destination: Union[str, Path]) -> Path:
        """Persist a clip.

        Args:
            locator: Inline bytes or remote URI of the clip
            destination: Final path of the clip

        Returns:
            The destination path

        Raises:
            ArtifactWriteError: If the clip could not be written or fetched.
                                No file is left at ``destination`` in that case.
        """
        destination = Path(destination)
        tmp_path = temp_path_for(destination)

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)

            if locator.is_inline:
                with open(tmp_path, "wb") as f:
                    f.write(locator.data)
                    f.flush()
                    os.fsync(f.fileno())
            else:
                self.fetcher.fetch(locator.uri, tmp_path)
                if not tmp_path.exists() or tmp_path.stat().st_size == 0:
                    raise FetchError(f"fetch of {locator.uri} produced no data")

            os.replace(tmp_path, destination)

        except (OSError, FetchError) as e:
            tmp_path.unlink(missing_ok=True)
            raise ArtifactWriteError(f"could not save {destination}: {e}") from e

        return destination
