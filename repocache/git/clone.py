"""
Clone and update cache entries.

Cloning a new entry walks the branch fallback chain until one clone succeeds:

    requested branch
      -> default branch advertised by the remote (ls-remote --symref HEAD)
      -> first existing conventional branch (main, master, develop, dev)
      -> clone without --branch, keeping whatever git checked out

When the branch obtained differs from the requested one, the entry is created
at the path of the branch actually cloned, so one (owner, repo, branch) triple
never maps to two directories.

Every mutation of an entry happens under that entry's lock. The existence
check is repeated after the lock is acquired, so concurrent requests for the
same missing entry clone it only once.
"""

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from repocache.exceptions import (
    CloneFailedError,
    LockFailedError,
    MetadataError,
    NotFoundError,
    StorageError,
    UpdateFailedError,
)
from repocache.models import RepositoryInfo, UpdateResult

from .commands import GitClient
from .lock import LockManager
from .metadata import (
    METADATA_FILE_NAME,
    UNKNOWN_COMMIT,
    RepositoryMetadata,
    read_metadata,
    repair_metadata,
    touch_access_time,
    utcnow,
    write_metadata,
)
from .paths import detect_clone_method, is_cache_entry, resolve_path
from .process import GitCommandError

logger = logging.getLogger(__name__)

COMMON_BRANCHES = ("main", "master", "develop", "dev")
DETACHED_HEAD_BRANCH = "master"
ACCESS_LOCK_TIMEOUT = 1.0


def _remove_tree(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path, ignore_errors=True)


class CloneEngine:
    """Performs the git operations that create and refresh cache entries."""

    def __init__(
        self,
        storage_root: Path,
        git: GitClient,
        locks: LockManager,
        clone_depth: int = 1,
        update_threshold_hours: float = 24,
    ):
        self.storage_root = Path(storage_root)
        self.git = git
        self.locks = locks
        self.clone_depth = clone_depth
        self.update_threshold_hours = update_threshold_hours

    def load_entry(self, local_path: Path, url: str, branch: str) -> RepositoryMetadata:
        """Read the sidecar of an existing entry, repairing it if needed."""
        try:
            return read_metadata(local_path)
        except MetadataError as e:
            logger.warning(
                f"Repository exists but metadata is unusable: {local_path} ({e}). "
                "Attempting to repair..."
            )
            return repair_metadata(local_path, url, branch, self.git)

    def record_access(self, local_path: Path) -> Optional[RepositoryMetadata]:
        """
        Touch the access time of an entry under its lock.

        A busy entry is not waited on for long: the touch is skipped and None
        returned, as for any other failure to record the access.
        """
        try:
            with self.locks.lock(local_path.name, timeout=ACCESS_LOCK_TIMEOUT):
                return touch_access_time(local_path)
        except LockFailedError as e:
            logger.info(f"Entry busy, access time of {local_path} not recorded: {e}")
            return None

    # Branch fallback chain

    def detect_default_branch(self, url: str) -> Optional[str]:
        """Default branch of the remote, else the first conventional branch found."""
        try:
            branch = self.git.remote_default_branch(url)
            if branch:
                logger.info(f"Detected default branch: {branch} for {url}")
                return branch
        except GitCommandError as e:
            logger.debug(f"Default branch detection failed for {url}: {e}")

        logger.warning(
            f"Could not detect default branch for {url}, trying common names"
        )
        for candidate in COMMON_BRANCHES:
            try:
                if self.git.remote_branch_exists(url, candidate):
                    logger.info(f"Found existing branch: {candidate} for {url}")
                    return candidate
            except GitCommandError as e:
                logger.debug(f"Probing branch {candidate} of {url} failed: {e}")
        return None

    def _finish_clone(
        self, local_path: Path, url: str, branch: str
    ) -> RepositoryMetadata:
        try:
            commit_hash = self.git.latest_commit(local_path)
        except GitCommandError as e:
            logger.warning(f"Failed to read commit hash of {local_path}: {e}")
            commit_hash = UNKNOWN_COMMIT

        now = utcnow()
        metadata = RepositoryMetadata(
            url=url,
            branch=branch,
            last_updated=now,
            last_accessed=now,
            commit_hash=commit_hash,
            clone_method=detect_clone_method(url),
        )
        write_metadata(local_path, metadata)
        return metadata

    def _clone_other_branch(
        self, url: str, branch: str, depth: int
    ) -> RepositoryInfo:
        local_path = resolve_path(self.storage_root, url, branch)
        logger.info(f"Using branch: {branch}, path: {local_path}")
        with self.locks.lock(local_path.name):
            if is_cache_entry(local_path):
                logger.info(f"Branch {branch} is already cached at {local_path}")
                metadata = self.load_entry(local_path, url, branch)
                return RepositoryInfo(url, metadata.branch, local_path, True, metadata)
            _remove_tree(local_path)
            try:
                self.git.clone(url, local_path, depth, branch)
                metadata = self._finish_clone(local_path, url, branch)
            except (GitCommandError, MetadataError):
                _remove_tree(local_path)
                raise
        return RepositoryInfo(url, branch, local_path, True, metadata)

    def clone(
        self,
        url: str,
        branch: str,
        depth: Optional[int] = None,
        force: bool = False,
    ) -> RepositoryInfo:
        """
        Clone ``url`` into the cache, following the branch fallback chain.

        Args:
            url: Canonical repository URL
            branch: Requested branch
            depth: Clone depth, defaults to the configured depth
            force: Remove and re-clone an existing entry

        Returns:
            RepositoryInfo of the entry actually created (its branch may differ
            from the requested one)

        Raises:
            LockFailedError: If the entry lock cannot be acquired
            CloneFailedError: If every step of the fallback chain failed
            StorageError: If an existing entry cannot be removed for a re-clone
        """
        depth = depth or self.clone_depth
        local_path = resolve_path(self.storage_root, url, branch)

        with self.locks.lock(local_path.name):
            if is_cache_entry(local_path):
                if not force:
                    logger.info(f"Repository already exists: {local_path}")
                    metadata = self.load_entry(local_path, url, branch)
                    return RepositoryInfo(
                        url, metadata.branch, local_path, True, metadata
                    )
                logger.info(f"Removing {local_path} for a fresh clone")
                try:
                    shutil.rmtree(local_path)
                except OSError as e:
                    raise StorageError(
                        f"Failed to remove repository for re-clone: {e}",
                        {"local_path": str(local_path)},
                    ) from e
            else:
                # Leftover of an interrupted clone
                _remove_tree(local_path)

            logger.info(f"Cloning repository {url} to {local_path}")
            try:
                self.git.clone(url, local_path, depth, branch)
                metadata = self._finish_clone(local_path, url, branch)
                logger.info(f"Successfully cloned repository: {url} (branch: {branch})")
                return RepositoryInfo(url, branch, local_path, True, metadata)
            except (GitCommandError, MetadataError) as e:
                _remove_tree(local_path)
                first_error = e
                logger.warning(
                    f"Branch {branch} could not be cloned ({e}), "
                    "trying to detect default branch"
                )

            fallback = self.detect_default_branch(url)
            if fallback is None:
                logger.warning(
                    "Failed to detect default branch, "
                    "trying clone without branch specification"
                )
                return self._clone_unqualified(url, local_path, depth)

        if fallback == branch:
            raise CloneFailedError(
                f"Failed to clone repository: {first_error}",
                {"url": url, "branch": branch},
            ) from first_error

        try:
            return self._clone_other_branch(url, fallback, depth)
        except (GitCommandError, MetadataError) as e:
            logger.error(f"Failed to clone repository {url}: {e}")
            raise CloneFailedError(
                f"Failed to clone repository: {e}", {"url": url, "branch": fallback}
            ) from e

    def _clone_unqualified(
        self, url: str, local_path: Path, depth: int
    ) -> RepositoryInfo:
        # Called with the lock of local_path held
        try:
            self.git.clone(url, local_path, depth)
            actual = self.git.current_branch(local_path) or DETACHED_HEAD_BRANCH
            metadata = self._finish_clone(local_path, url, actual)
        except (GitCommandError, MetadataError) as e:
            _remove_tree(local_path)
            logger.error(f"Failed to clone repository {url}: {e}")
            raise CloneFailedError(
                f"Failed to clone repository: {e}", {"url": url}
            ) from e
        logger.info(f"Successfully cloned repository: {url} (branch: {actual})")
        return RepositoryInfo(url, actual, local_path, True, metadata)

    def update(
        self,
        local_path: Union[str, Path],
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> UpdateResult:
        """
        Fetch and pull an existing entry once it is older than the update threshold.

        Args:
            local_path: Path of the cache entry
            force: Update even if the entry is still fresh

        Raises:
            NotFoundError: If the entry does not exist
            LockFailedError: If the entry lock cannot be acquired
            UpdateFailedError: If any step of the update failed
        """
        local_path = Path(local_path)
        if not is_cache_entry(local_path):
            raise NotFoundError(local_path)

        with self.locks.lock(local_path.name):
            try:
                metadata = read_metadata(local_path)
            except MetadataError as e:
                raise UpdateFailedError(
                    f"Failed to update repository: {e}", {"local_path": str(local_path)}
                ) from e

            previous_hash = metadata.commit_hash
            now = now or utcnow()
            if not force and not metadata.is_stale(self.update_threshold_hours, now):
                logger.debug(
                    f"Repository {local_path} updated recently, skipping update"
                )
                return UpdateResult(False, previous_hash, previous_hash, 0)

            logger.info(f"Updating repository: {local_path}")
            try:
                self.git.clean(local_path, keep=[METADATA_FILE_NAME])
                self.git.fetch(local_path)
                self.git.pull(local_path, "origin", metadata.branch)
                current_hash = self.git.latest_commit(local_path)
                changes = self.git.changed_files(
                    local_path, previous_hash, current_hash
                )

                metadata.last_updated = now
                metadata.last_accessed = max(metadata.last_accessed, now)
                metadata.commit_hash = current_hash
                write_metadata(local_path, metadata)
            except (GitCommandError, MetadataError) as e:
                logger.error(f"Failed to update repository {local_path}: {e}")
                raise UpdateFailedError(
                    f"Failed to update repository: {e}", {"local_path": str(local_path)}
                ) from e

        updated = current_hash != previous_hash
        logger.info(
            f"Repository update completed: {local_path}, "
            f"updated: {updated}, changes: {changes}"
        )
        return UpdateResult(updated, previous_hash, current_hash, changes)
