"""
Repository cache manager.

Entry point used by the request-handling layer: resolves a repository request to
a ready local clone, refreshing or repairing the cache entry on the way, and
exposes statistics and cleanup over the whole cache.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from repocache.config import RepositoryConfig
from repocache.exceptions import (
    MetadataError,
    StorageError,
    UpdateFailedError,
    LockFailedError,
)
from repocache.git.clone import CloneEngine
from repocache.git.commands import GitClient
from repocache.git.eviction import evict
from repocache.git.lock import LockManager
from repocache.git.metadata import read_metadata
from repocache.git.paths import (
    is_cache_entry,
    lock_dir_for,
    normalize_url,
    resolve_path,
)
from repocache.git.stats import aggregate_stats, entry_stats
from repocache.models import (
    EvictionReport,
    RepositoryInfo,
    RepositoryStats,
    SingleRepositoryStats,
    UpdateResult,
)

logger = logging.getLogger(__name__)


class RepositoryManager:
    """
    Cache of shallow git clones keyed by (URL, branch).

    Usage:
        manager = RepositoryManager(config.repository)
        info = manager.ensure_repository("https://github.com/acme/widgets", "main")
        answer = executor.ask(info.local_path, question)
    """

    def __init__(
        self,
        config: RepositoryConfig,
        git: Optional[GitClient] = None,
        locks: Optional[LockManager] = None,
    ):
        self.config = config
        self.storage_root = config.storage_root
        try:
            self.storage_root.mkdir(parents=True, exist_ok=True)
            self.locks = locks or LockManager(
                lock_dir_for(self.storage_root), config.lock_settings
            )
        except OSError as e:
            raise StorageError(
                f"Failed to create storage directories: {e}",
                {"storage_root": str(self.storage_root)},
            ) from e

        self.git = git or GitClient(
            timeout=config.git_timeout_seconds,
            max_concurrent_operations=config.max_concurrent_operations,
        )
        self.engine = CloneEngine(
            self.storage_root,
            self.git,
            self.locks,
            clone_depth=config.clone_depth,
            update_threshold_hours=config.update_threshold_hours,
        )

    def get_repository_info(
        self, url: str, branch: Optional[str] = None
    ) -> RepositoryInfo:
        """
        Resolve where a repository lives in the cache, without touching it.

        Raises:
            InvalidUrlError: If the URL is malformed
        """
        normalized_url = normalize_url(url)
        resolved_branch = branch or self.config.default_branch
        local_path = resolve_path(self.storage_root, normalized_url, resolved_branch)
        exists = is_cache_entry(local_path)

        metadata = None
        if exists:
            try:
                metadata = read_metadata(local_path)
            except MetadataError as e:
                logger.warning(f"Failed to read metadata for {local_path}: {e}")

        return RepositoryInfo(
            normalized_url, resolved_branch, local_path, exists, metadata
        )

    def clone_repository(
        self,
        url: str,
        branch: Optional[str] = None,
        depth: Optional[int] = None,
        force: bool = False,
    ) -> RepositoryInfo:
        """
        Clone a repository into the cache.

        With ``force`` an existing entry is removed and cloned again.

        Raises:
            InvalidUrlError, LockFailedError, CloneFailedError
        """
        info = self.get_repository_info(url, branch)
        if info.exists and not force:
            logger.info(f"Repository already exists: {info.local_path}")
            return info
        return self.engine.clone(info.url, info.branch, depth=depth, force=force)

    def update_repository(
        self, local_path: Union[str, Path], force: bool = False
    ) -> UpdateResult:
        """
        Fetch and pull a cache entry if it is stale (or ``force`` is set).

        Raises:
            NotFoundError, LockFailedError, UpdateFailedError
        """
        return self.engine.update(local_path, force=force)

    def ensure_repository(
        self, url: str, branch: Optional[str] = None
    ) -> RepositoryInfo:
        """
        Make sure a usable clone of ``url`` at ``branch`` exists and return it.

        A missing entry is cloned. An existing entry gets its metadata repaired
        if needed, its access time recorded and, once stale, an update. A failed
        update is logged and the cached clone is returned as is.

        Raises:
            InvalidUrlError: If the URL is malformed
            LockFailedError: If the entry is locked for too long
            CloneFailedError: If the repository could not be cloned
        """
        info = self.get_repository_info(url, branch)

        if not info.exists:
            return self.engine.clone(info.url, info.branch)

        if info.metadata is None:
            logger.warning(
                f"Repository exists but metadata is missing: {info.local_path}. "
                "Attempting to repair..."
            )
            info.metadata = self.engine.load_entry(
                info.local_path, info.url, info.branch
            )

        touched = self.engine.record_access(info.local_path)
        if touched is not None:
            info.metadata = touched

        if info.metadata.is_stale(self.config.update_threshold_hours):
            try:
                self.engine.update(info.local_path)
            except (UpdateFailedError, LockFailedError) as e:
                logger.warning(
                    f"Failed to update repository, using cached version: {e}"
                )
            else:
                return self.get_repository_info(url, branch)

        return info

    def get_single_repository_stats(
        self, local_path: Union[str, Path]
    ) -> SingleRepositoryStats:
        """Raises NotFoundError or StorageError."""
        return entry_stats(local_path)

    def get_repository_stats(self) -> RepositoryStats:
        """Raises StorageError if the storage root cannot be listed."""
        return aggregate_stats(self.storage_root)

    def cleanup_repositories(
        self, retention_days: float, max_storage_bytes: Optional[int] = None
    ) -> EvictionReport:
        """Raises StorageError if the storage root cannot be listed."""
        return evict(
            self.storage_root,
            retention_days,
            max_storage_bytes=max_storage_bytes,
            locks=self.locks,
        )
