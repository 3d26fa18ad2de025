"""
Git-backed cache entries for repocache.

Layout:
    <storage_root>/<owner>_<repo>_<branch>_<hash8>/  shallow clone and sidecar
    <storage_root>/../repository_locks/<entry>.lock   per-entry lock files
"""

from .clone import CloneEngine
from .commands import GitClient
from .eviction import evict
from .lock import EntryLock, LockManager
from .metadata import (
    RepositoryMetadata,
    read_metadata,
    repair_metadata,
    touch_access_time,
    write_metadata,
)
from .paths import normalize_url, parse_owner_repo, resolve_path
from .process import GitCommandError, GitTimeoutError, run_git
from .stats import aggregate_stats, entry_stats

__all__ = [
    "CloneEngine",
    "GitClient",
    "evict",
    "EntryLock",
    "LockManager",
    "RepositoryMetadata",
    "read_metadata",
    "repair_metadata",
    "touch_access_time",
    "write_metadata",
    "normalize_url",
    "parse_owner_repo",
    "resolve_path",
    "GitCommandError",
    "GitTimeoutError",
    "run_git",
    "aggregate_stats",
    "entry_stats",
]
