"""
Per-entry file locks for concurrency control across threads and processes.

Each cache entry has its own lock file, ``<lock_dir>/<entry_dir_name>.lock``.
Ownership is an exclusive ``fcntl.flock`` on that file; the holder also writes
its pid and the acquisition time into it. A lock held for longer than the stale
threshold is considered abandoned: the next acquirer unlinks the file and locks
a fresh one. Reclaims and unlinks of a lock path are serialized by a flock on a
sibling ``.reclaim`` file, and the reclaimer re-reads the timestamp of the file
it is about to remove. After locking, the acquirer checks that the file it holds
is still the one at the lock path, so two processes can never both own an entry.
"""

import fcntl
import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from repocache.config import LockSettings
from repocache.exceptions import LockFailedError

logger = logging.getLogger(__name__)

RECLAIM_SUFFIX = ".reclaim"


class EntryLock:
    """
    Exclusive ownership of one cache entry. Release is idempotent.

    While held, the acquisition timestamp in the lock file is refreshed every
    ``refresh_interval`` seconds so that long clones are not mistaken for
    abandoned locks.
    """

    def __init__(self, path: Path, handle, refresh_interval: Optional[float] = None):
        self.path = path
        self._handle = handle
        self._guard = threading.Lock()
        self._stopped = threading.Event()
        self.acquired_at = time.time()
        self._heartbeat: Optional[threading.Thread] = None
        if refresh_interval:
            self._heartbeat = threading.Thread(
                target=self._refresh,
                args=(refresh_interval,),
                name=f"lock-heartbeat-{path.stem}",
                daemon=True,
            )
            self._heartbeat.start()

    @property
    def held(self) -> bool:
        return self._handle is not None

    def _refresh(self, interval: float) -> None:
        while not self._stopped.wait(interval):
            with self._guard:
                if self._handle is None:
                    return
                try:
                    _write_owner(self._handle)
                except OSError as e:
                    logger.warning(f"Could not refresh lock {self.path.name}: {e}")

    def release(self) -> None:
        self._stopped.set()
        with self._guard:
            if self._handle is None:
                return
            handle, self._handle = self._handle, None
            try:
                # Only remove the file if it is still ours (it may have been
                # reclaimed as stale and replaced by another holder)
                with _reclaim_guard(self.path):
                    if _same_file(handle, self.path):
                        self.path.unlink()
            except FileNotFoundError:
                pass
            finally:
                try:
                    fcntl.flock(handle, fcntl.LOCK_UN)
                except OSError:
                    pass
                handle.close()
        held_for = time.time() - self.acquired_at
        logger.debug(f"Released lock {self.path.name} after {held_for:.2f}s")

    def __enter__(self) -> "EntryLock":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.release()


def _write_owner(handle) -> None:
    handle.seek(0)
    handle.truncate()
    handle.write(json.dumps({"pid": os.getpid(), "acquired_at": time.time()}))
    handle.flush()


def _same_file(handle, path: Path) -> bool:
    try:
        on_disk = os.stat(path)
    except FileNotFoundError:
        return False
    held = os.fstat(handle.fileno())
    return (held.st_dev, held.st_ino) == (on_disk.st_dev, on_disk.st_ino)


def _parse_timestamp(content: str) -> Optional[float]:
    try:
        return float(json.loads(content)["acquired_at"])
    except (ValueError, KeyError, TypeError):
        return None


def _read_lock_timestamp(path: Path) -> Optional[float]:
    try:
        return _parse_timestamp(path.read_text())
    except OSError:
        return None


def _read_handle_timestamp(handle) -> Optional[float]:
    try:
        handle.seek(0)
        return _parse_timestamp(handle.read())
    except OSError:
        return None


@contextmanager
def _reclaim_guard(path: Path) -> Iterator[None]:
    """
    Serialize stale reclaims and owner unlinks of one lock path.

    The guard file itself is never removed.
    """
    guard_path = path.with_name(path.name + RECLAIM_SUFFIX)
    with open(guard_path, "a") as guard:
        fcntl.flock(guard, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(guard, fcntl.LOCK_UN)


class LockManager:
    """
    Hands out EntryLock objects for cache entries.

    Usage:
        locks = LockManager(lock_dir, settings)
        with locks.lock("acme_widgets_main_1a2b3c4d"):
            ...
    """

    def __init__(self, lock_dir: Path, settings: Optional[LockSettings] = None):
        self.lock_dir = Path(lock_dir)
        self.settings = settings or LockSettings()
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    def lock_path(self, entry_id: str) -> Path:
        return self.lock_dir / f"{entry_id}.lock"

    def _try_lock(self, path: Path):
        """One non-blocking attempt. Returns the open handle or None."""
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        handle = open(path, "a+")
        try:
            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except (BlockingIOError, PermissionError):
            handle.close()
            return None
        except OSError:
            handle.close()
            raise

        if not _same_file(handle, path):
            # The file was reclaimed between open() and flock()
            fcntl.flock(handle, fcntl.LOCK_UN)
            handle.close()
            return None

        _write_owner(handle)
        return handle

    def _reclaim_if_stale(self, path: Path, stale_after: float) -> bool:
        # Cheap check first; confirmed below under the guard
        acquired_at = _read_lock_timestamp(path)
        if acquired_at is None or time.time() - acquired_at < stale_after:
            return False

        with _reclaim_guard(path):
            try:
                handle = open(path, "r")
            except FileNotFoundError:
                # Already reclaimed or released, try again
                return True
            with handle:
                # Another waiter may have replaced the file since the first read
                acquired_at = _read_handle_timestamp(handle)
                if acquired_at is None or not _same_file(handle, path):
                    return False
                age = time.time() - acquired_at
                if age < stale_after:
                    return False
                logger.warning(
                    f"Lock {path.name} held for {age:.1f}s "
                    f"(stale after {stale_after:.1f}s), reclaiming"
                )
                path.unlink()
        return True

    def acquire(
        self,
        entry_id: str,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        retry_interval: Optional[float] = None,
        stale_after: Optional[float] = None,
    ) -> EntryLock:
        """
        Acquire the lock of a cache entry.

        Args:
            entry_id: Directory name of the cache entry
            timeout: Maximum total wait in seconds
            retries: Number of retries after the first attempt, None for no limit
            retry_interval: Seconds between attempts
            stale_after: Age in seconds after which a held lock is reclaimed

        Returns:
            The held EntryLock

        Raises:
            LockFailedError: If the lock could not be acquired in time
        """
        settings = self.settings
        if timeout is None:
            timeout = settings.timeout_ms / 1000
        if retries is None:
            retries = settings.retries
        if retry_interval is None:
            retry_interval = settings.retry_interval_ms / 1000
        if stale_after is None:
            stale_after = settings.stale_timeout_ms / 1000

        path = self.lock_path(entry_id)
        start_time = time.monotonic()
        attempt = 0

        while True:
            try:
                handle = self._try_lock(path)
            except OSError as e:
                raise LockFailedError(path, str(e))
            if handle is not None:
                logger.debug(f"Acquired lock {path.name} after {attempt} retries")
                return EntryLock(path, handle, refresh_interval=stale_after / 2)

            if self._reclaim_if_stale(path, stale_after):
                # Reclaiming does not count as a retry
                continue

            elapsed = time.monotonic() - start_time
            out_of_retries = retries is not None and attempt >= retries
            if out_of_retries or elapsed + retry_interval > timeout:
                raise LockFailedError(
                    path, f"Timeout after {elapsed:.2f} seconds ({attempt} retries)"
                )
            attempt += 1
            time.sleep(retry_interval)

    @contextmanager
    def lock(self, entry_id: str, **kwargs) -> Iterator[EntryLock]:
        """Context manager releasing the lock on every exit path."""
        entry_lock = self.acquire(entry_id, **kwargs)
        try:
            yield entry_lock
        finally:
            entry_lock.release()
