"""
Metadata sidecar of a cache entry.

Every cache entry carries a ``.repo_metadata.json`` file next to its ``.git``
directory recording where the clone came from and when it was last updated and
accessed:

    {
      "url": "https://github.com/acme/widgets",
      "branch": "main",
      "last_updated": "2026-10-19T08:00:00Z",
      "last_accessed": "2026-10-19T09:30:00Z",
      "commit_hash": "3f2a...",
      "clone_method": "https"
    }

Writes go to a temporary file in the same directory which is then renamed over
the sidecar, so readers never observe a partially written file.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Literal, Optional, Union

from pydantic import BaseModel, ValidationError, field_validator

from repocache.exceptions import InvalidUrlError, MetadataError

from .commands import GitClient
from .paths import detect_clone_method, normalize_url
from .process import GitCommandError

logger = logging.getLogger(__name__)

METADATA_FILE_NAME = ".repo_metadata.json"
UNKNOWN_COMMIT = "unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RepositoryMetadata(BaseModel):
    """Provenance and timestamps of one cache entry."""

    url: str
    branch: str
    last_updated: datetime
    last_accessed: datetime
    commit_hash: str
    clone_method: Literal["https", "ssh"]

    @field_validator("last_updated", "last_accessed")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def is_stale(self, threshold_hours: float, now: Optional[datetime] = None) -> bool:
        """True once ``threshold_hours`` have passed since the last update."""
        now = now or utcnow()
        return now - self.last_updated >= timedelta(hours=threshold_hours)


def metadata_path(local_path: Union[str, Path]) -> Path:
    return Path(local_path) / METADATA_FILE_NAME


def read_metadata(local_path: Union[str, Path]) -> RepositoryMetadata:
    """
    Read the sidecar of a cache entry.

    Raises:
        MetadataError: If the file is missing, is not JSON or does not match the schema
    """
    path = metadata_path(local_path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return RepositoryMetadata.model_validate(data)
    except (OSError, ValueError, ValidationError) as e:
        raise MetadataError(
            f"Failed to read repository metadata: {e}",
            {"local_path": str(local_path)},
        ) from e


def write_metadata(local_path: Union[str, Path], metadata: RepositoryMetadata) -> None:
    """
    Atomically replace the sidecar of a cache entry.

    Raises:
        MetadataError: If the file cannot be written
    """
    path = metadata_path(local_path)
    content = json.dumps(metadata.model_dump(mode="json"), indent=2)
    tmp_name = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            dir=path.parent,
            prefix=f"{METADATA_FILE_NAME}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        ) as tmp:
            tmp_name = tmp.name
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
        raise MetadataError(
            f"Failed to save repository metadata: {e}",
            {"local_path": str(local_path)},
        ) from e


def touch_access_time(
    local_path: Union[str, Path], now: Optional[datetime] = None
) -> Optional[RepositoryMetadata]:
    """
    Record an access to a cache entry.

    ``last_accessed`` never moves backwards, even if the clock does. Failures
    are logged and reported as None.
    """
    now = now or utcnow()
    try:
        metadata = read_metadata(local_path)
        metadata.last_accessed = max(metadata.last_accessed, now)
        write_metadata(local_path, metadata)
        return metadata
    except MetadataError as e:
        logger.warning(f"Failed to update access time for {local_path}: {e}")
        return None


def repair_metadata(
    local_path: Union[str, Path],
    original_url: str,
    expected_branch: str,
    git: GitClient,
) -> RepositoryMetadata:
    """
    Rebuild a missing or corrupt sidecar from the state of the clone.

    Each field degrades to a fallback when git cannot tell: the expected branch,
    ``"unknown"`` as commit hash, the requested URL. The result is written back
    when possible; this function never raises.
    """
    try:
        branch = git.current_branch(local_path) or expected_branch
    except GitCommandError as e:
        logger.warning(
            f"Failed to get current branch of {local_path}, "
            f"using expected branch {expected_branch}: {e}"
        )
        branch = expected_branch

    try:
        commit_hash = git.latest_commit(local_path)
    except GitCommandError as e:
        logger.warning(f"Failed to get commit hash of {local_path}: {e}")
        commit_hash = UNKNOWN_COMMIT

    url = original_url
    try:
        remote = git.remote_url(local_path)
        if remote:
            url = normalize_url(remote)
    except (GitCommandError, InvalidUrlError) as e:
        logger.warning(
            f"Failed to get remote URL of {local_path}, using {original_url}: {e}"
        )

    now = utcnow()
    metadata = RepositoryMetadata(
        url=url,
        branch=branch,
        last_updated=now,
        last_accessed=now,
        commit_hash=commit_hash,
        clone_method=detect_clone_method(url),
    )

    try:
        write_metadata(local_path, metadata)
    except MetadataError as e:
        logger.warning(f"Continuing with in-memory metadata for {local_path}: {e}")
        return metadata

    logger.info(
        f"Repaired metadata for repository: {local_path} "
        f"(url: {url}, branch: {branch}, commit: {commit_hash})"
    )
    return metadata
