"""Disk usage and file statistics of cache entries."""

import logging
import os
import stat
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Union

from repocache.exceptions import MetadataError, NotFoundError, StorageError
from repocache.models import RepositoryStats, SingleRepositoryStats

from .metadata import read_metadata
from .paths import is_cache_entry

logger = logging.getLogger(__name__)

# fmt: off
CODE_EXTENSIONS = frozenset(
    [
        ".js", ".ts", ".tsx", ".jsx", ".py", ".java", ".cpp", ".c", ".h", ".hpp",
        ".cs", ".php", ".rb", ".go", ".rs", ".swift", ".kt", ".scala", ".clj",
        ".hs", ".elm", ".dart", ".vue", ".svelte", ".md", ".json", ".yaml", ".yml",
        ".xml", ".html", ".css", ".scss", ".sass", ".less", ".sql", ".sh", ".bash",
        ".zsh", ".fish", ".ps1", ".bat", ".cmd", ".r", ".m", ".mm", ".pl", ".pm",
    ]
)
# fmt: on

BYTES_PER_MB = 1024 * 1024


def _to_mb(size: int) -> float:
    return round(size / BYTES_PER_MB, 2)


def _log_walk_error(error: OSError) -> None:
    logger.warning(f"Failed to calculate directory size for {error.filename}: {error}")


def directory_size(path: Union[str, Path]) -> int:
    """Total size in bytes of every file below ``path``, git metadata included."""
    total = 0
    for root, _dirs, files in os.walk(path, onerror=_log_walk_error):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


def iter_entries(storage_root: Union[str, Path]) -> Iterator[Path]:
    """
    Directories directly below the storage root.

    Raises:
        StorageError: If the storage root cannot be listed
    """
    storage_root = Path(storage_root)
    if not storage_root.exists():
        return iter(())
    try:
        children = sorted(p for p in storage_root.iterdir() if p.is_dir())
    except OSError as e:
        raise StorageError(
            f"Failed to list repositories in {storage_root}: {e}",
            {"storage_root": str(storage_root)},
        ) from e
    return iter(children)


def entry_stats(local_path: Union[str, Path]) -> SingleRepositoryStats:
    """
    File count, size and code file count of one cache entry.

    Hidden directories (``.git`` among them) are skipped. Files count as code
    when their extension is in CODE_EXTENSIONS.

    Raises:
        NotFoundError: If local_path is not a cache entry
        StorageError: If the tree cannot be walked
    """
    local_path = Path(local_path)
    if not is_cache_entry(local_path):
        raise NotFoundError(local_path)

    file_count = 0
    code_file_count = 0
    total_size = 0
    largest_size = 0

    def _raise(error: OSError):
        raise error

    try:
        for root, dirs, files in os.walk(local_path, onerror=_raise):
            dirs[:] = [d for d in dirs if not d.startswith(".")]
            for name in files:
                full_path = os.path.join(root, name)
                st = os.lstat(full_path)
                # Symlinks may point outside the entry
                if not stat.S_ISREG(st.st_mode):
                    continue
                size = st.st_size
                file_count += 1
                total_size += size
                largest_size = max(largest_size, size)
                if os.path.splitext(name)[1].lower() in CODE_EXTENSIONS:
                    code_file_count += 1
    except OSError as e:
        logger.error(f"Failed to get repository stats for {local_path}: {e}")
        raise StorageError(
            "Failed to get repository statistics", {"local_path": str(local_path)}
        ) from e

    return SingleRepositoryStats(
        file_count=file_count,
        total_size_mb=_to_mb(total_size),
        code_file_count=code_file_count,
        largest_file_size_mb=_to_mb(largest_size),
    )


def aggregate_stats(storage_root: Union[str, Path]) -> RepositoryStats:
    """
    Entry count, disk usage and access time range over the whole cache.

    Entries with unreadable metadata still count towards disk usage but not
    towards the access time range.
    """
    entries = list(iter_entries(storage_root))
    disk_usage = 0
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None

    for entry in entries:
        disk_usage += directory_size(entry)
        try:
            accessed = read_metadata(entry).last_accessed
        except MetadataError as e:
            logger.warning(f"Failed to get stats for {entry}: {e}")
            continue
        if oldest is None or accessed < oldest:
            oldest = accessed
        if newest is None or accessed > newest:
            newest = accessed

    return RepositoryStats(
        total_repositories=len(entries),
        disk_usage=disk_usage,
        oldest_access=oldest,
        newest_access=newest,
    )
