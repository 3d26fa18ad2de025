"""
Eviction of cache entries by retention age and total storage size.

One pass:
    1. read every entry's metadata and size; unreadable metadata counts as
       infinitely old
    2. sort oldest access first
    3. delete every entry not accessed within the retention period
    4. while a storage cap is given and exceeded, keep deleting the oldest
       remaining entries

Each deletion holds the entry's lock, so an entry is never removed while it is
being cloned or updated. Entries whose lock is busy are skipped until the next
pass.
"""

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Union

from repocache.exceptions import LockFailedError, MetadataError
from repocache.models import EvictionReport

from .lock import LockManager
from .metadata import read_metadata, utcnow
from .stats import directory_size, iter_entries

logger = logging.getLogger(__name__)

NEVER_ACCESSED = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class _Candidate:
    path: Path
    last_accessed: datetime
    size: int
    expired: bool


def _collect(storage_root: Path, cutoff: datetime) -> List[_Candidate]:
    candidates = []
    for entry in iter_entries(storage_root):
        size = directory_size(entry)
        try:
            last_accessed = read_metadata(entry).last_accessed
        except MetadataError as e:
            logger.warning(
                f"Failed to get metadata for {entry}, marking for deletion: {e}"
            )
            last_accessed = NEVER_ACCESSED
        candidates.append(
            _Candidate(entry, last_accessed, size, expired=last_accessed < cutoff)
        )
    candidates.sort(key=lambda c: c.last_accessed)
    return candidates


def _delete(candidate: _Candidate, locks: Optional[LockManager]) -> None:
    if locks is None:
        shutil.rmtree(candidate.path)
        return
    # Busy entries are in use, do not wait for them
    with locks.lock(candidate.path.name, timeout=0, retries=0):
        shutil.rmtree(candidate.path)


def evict(
    storage_root: Union[str, Path],
    retention_days: float,
    max_storage_bytes: Optional[int] = None,
    locks: Optional[LockManager] = None,
    now: Optional[datetime] = None,
) -> EvictionReport:
    """
    Delete expired entries, then the oldest ones until the storage cap is met.

    Args:
        storage_root: Directory holding the cache entries
        retention_days: Entries not accessed for this many days are deleted
        max_storage_bytes: Optional cap on the total size of the cache
        locks: Lock manager guarding the entries; without it deletions are unguarded
        now: Reference time, defaults to the current time

    Returns:
        EvictionReport listing deleted, skipped and failed entries

    Raises:
        StorageError: If the storage root cannot be listed
    """
    storage_root = Path(storage_root)
    now = now or utcnow()
    cutoff = now - timedelta(days=retention_days)
    logger.info(f"Starting repository cleanup, retention: {retention_days} days")

    candidates = _collect(storage_root, cutoff)
    total = sum(c.size for c in candidates)
    report = EvictionReport()

    for candidate in candidates:
        over_cap = max_storage_bytes is not None and total > max_storage_bytes
        if not candidate.expired and not over_cap:
            # Candidates are sorted oldest first: nothing further is expired
            break

        try:
            _delete(candidate, locks)
        except LockFailedError:
            logger.info(f"Repository in use, skipping deletion: {candidate.path}")
            report.skipped.append(candidate.path)
            continue
        except OSError as e:
            logger.error(f"Failed to delete repository {candidate.path}: {e}")
            report.failed.append(candidate.path)
            continue

        total -= candidate.size
        report.freed_bytes += candidate.size
        report.deleted.append(candidate.path)
        logger.info(f"Deleted repository: {candidate.path}")

    report.remaining_bytes = total
    logger.info(
        f"Repository cleanup completed: {len(report.deleted)} repositories deleted"
    )
    return report
