"""
Periodic cleanup of the repository cache.

A daemon thread runs one eviction pass every ``interval_hours``. A pass can also
be triggered by hand. Only one pass runs at a time, within this process
(non-blocking thread lock) and across processes sharing the same storage root
(file lock with zero timeout).
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Optional

from filelock import FileLock, Timeout

from repocache.config import CleanupConfig
from repocache.exceptions import AlreadyRunningError, RepositoryError
from repocache.git.metadata import utcnow
from repocache.git.paths import lock_dir_for
from repocache.manager import RepositoryManager
from repocache.models import EvictionReport, SchedulerStatus

logger = logging.getLogger(__name__)

CLEANUP_LOCK_NAME = "cleanup.lock"
STOP_JOIN_TIMEOUT = 5.0


class CleanupScheduler:
    """Runs cache eviction in the background and on demand."""

    def __init__(self, manager: RepositoryManager, config: CleanupConfig):
        self.manager = manager
        self.config = config
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._pass_lock = threading.Lock()
        self._file_lock = FileLock(
            str(lock_dir_for(manager.storage_root) / CLEANUP_LOCK_NAME), timeout=0
        )
        self._next_run: Optional[datetime] = None

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.config.interval_hours)

    def is_scheduled(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def is_running(self) -> bool:
        return self._pass_lock.locked()

    def start(self) -> None:
        """
        Start the background thread.

        Idempotent: Safe to call multiple times
        """
        if not self.config.enabled:
            logger.info("Repository cleanup is disabled")
            return
        if self.is_scheduled():
            logger.debug("Cleanup scheduler already running")
            return

        if self.config.cleanup_on_startup:
            self._run_scheduled()

        self._stop_event.clear()
        self._next_run = utcnow() + self.interval
        self._thread = threading.Thread(
            target=self._scheduler_loop, name="repocache-cleanup", daemon=True
        )
        self._thread.start()
        logger.info(
            f"Cleanup scheduler started, interval: {self.config.interval_hours} hours"
        )

    def stop(self) -> None:
        """
        Stop the background thread and wait for it to exit.

        Idempotent: Safe to call multiple times, or without start()
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=STOP_JOIN_TIMEOUT)
            self._thread = None
            logger.info("Cleanup scheduler stopped")
        self._next_run = None

    def _scheduler_loop(self) -> None:
        logger.debug("Cleanup scheduler loop started")
        while not self._stop_event.wait(self.interval.total_seconds()):
            self._run_scheduled()
            self._next_run = utcnow() + self.interval
        logger.debug("Cleanup scheduler loop exited")

    def _run_scheduled(self) -> None:
        try:
            self._run_pass()
        except AlreadyRunningError:
            logger.info("Cleanup already in progress, skipping scheduled run")
        except RepositoryError as e:
            logger.error(f"Scheduled cleanup failed: {e}")
        except Exception:
            # Keep the loop alive whatever the pass raised
            logger.exception("Scheduled cleanup failed unexpectedly")

    def _run_pass(self) -> EvictionReport:
        if not self._pass_lock.acquire(blocking=False):
            raise AlreadyRunningError()
        try:
            try:
                self._file_lock.acquire()
            except Timeout:
                raise AlreadyRunningError(
                    "Cleanup is already running in another process"
                )
            try:
                report = self.manager.cleanup_repositories(
                    self.config.retention_days,
                    max_storage_bytes=self.config.max_storage_bytes,
                )
            finally:
                self._file_lock.release()
        finally:
            self._pass_lock.release()

        logger.info(
            f"Cleanup finished: {len(report.deleted)} deleted, "
            f"{len(report.skipped)} skipped, {len(report.failed)} failed"
        )
        return report

    def trigger_manually(self) -> EvictionReport:
        """
        Run one cleanup pass now, in the calling thread.

        Raises:
            AlreadyRunningError: If a pass is already in progress
            StorageError: If the storage root cannot be listed
        """
        logger.info("Manual cleanup triggered")
        return self._run_pass()

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            enabled=self.config.enabled,
            scheduled=self.is_scheduled(),
            running=self.is_running(),
            next_run=self._next_run if self.is_scheduled() else None,
        )
