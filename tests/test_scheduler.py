import threading
import time
from datetime import timedelta

import pytest

from repocache.config import CleanupConfig
from repocache.exceptions import AlreadyRunningError, StorageError
from repocache.git.metadata import utcnow
from repocache.manager import RepositoryManager
from repocache.scheduler import CleanupScheduler

from tests.helpers import FakeGitClient, make_entry


@pytest.fixture
def manager(repository_config):
    return RepositoryManager(repository_config, git=FakeGitClient())


class SlowManager:
    """Wraps a manager so that a cleanup pass blocks until released."""

    def __init__(self, manager):
        self._manager = manager
        self.storage_root = manager.storage_root
        self.started = threading.Event()
        self.release = threading.Event()
        self.passes = 0

    def cleanup_repositories(self, retention_days, max_storage_bytes=None):
        self.passes += 1
        self.started.set()
        self.release.wait(5)
        return self._manager.cleanup_repositories(retention_days, max_storage_bytes)


@pytest.mark.short
def test_manual_trigger(manager, storage_root):
    old = make_entry(storage_root, "old", utcnow() - timedelta(days=30))
    scheduler = CleanupScheduler(manager, CleanupConfig(retention_days=7))

    report = scheduler.trigger_manually()

    assert report.deleted == [old]
    assert not scheduler.status().running


@pytest.mark.short
def test_manual_trigger_is_single_flight(manager):
    slow = SlowManager(manager)
    scheduler = CleanupScheduler(slow, CleanupConfig())
    errors = []

    first = threading.Thread(target=scheduler.trigger_manually)
    first.start()
    assert slow.started.wait(5)
    try:
        assert scheduler.status().running
        with pytest.raises(AlreadyRunningError) as exc_info:
            scheduler.trigger_manually()
        errors.append(exc_info.value)
    finally:
        slow.release.set()
        first.join()

    assert slow.passes == 1
    assert errors[0].code == "CLEANUP_RUNNING"
    # Free again once the first pass is over
    scheduler.trigger_manually()
    assert slow.passes == 2


@pytest.mark.short
def test_single_flight_across_scheduler_instances(manager):
    slow = SlowManager(manager)
    first = CleanupScheduler(slow, CleanupConfig())
    second = CleanupScheduler(manager, CleanupConfig())

    thread = threading.Thread(target=first.trigger_manually)
    thread.start()
    assert slow.started.wait(5)
    try:
        # Same storage root, separate process-level guard: the file lock decides
        with pytest.raises(AlreadyRunningError):
            second.trigger_manually()
    finally:
        slow.release.set()
        thread.join()


@pytest.mark.short
def test_manual_failure_propagates(manager, monkeypatch):
    def broken(*args, **kwargs):
        raise StorageError("Failed to list repositories")

    monkeypatch.setattr(manager, "cleanup_repositories", broken)
    scheduler = CleanupScheduler(manager, CleanupConfig())

    with pytest.raises(StorageError):
        scheduler.trigger_manually()
    assert not scheduler.is_running()


@pytest.mark.short
def test_scheduled_failure_is_logged(manager, monkeypatch, capture_logs):
    def broken(*args, **kwargs):
        raise StorageError("Failed to list repositories")

    monkeypatch.setattr(manager, "cleanup_repositories", broken)
    scheduler = CleanupScheduler(manager, CleanupConfig(cleanup_on_startup=True))

    scheduler.start()
    scheduler.stop()

    assert "Scheduled cleanup failed" in capture_logs.getvalue()


@pytest.mark.short
def test_disabled(manager):
    scheduler = CleanupScheduler(manager, CleanupConfig(enabled=False))
    scheduler.start()

    status = scheduler.status()
    assert not status.enabled
    assert not status.scheduled
    assert status.next_run is None
    scheduler.stop()


@pytest.mark.short
def test_start_and_stop(manager):
    scheduler = CleanupScheduler(manager, CleanupConfig(interval_hours=1))
    scheduler.start()
    scheduler.start()
    try:
        status = scheduler.status()
        assert status.scheduled
        assert not status.running
        assert status.next_run > utcnow() + timedelta(minutes=59)
    finally:
        scheduler.stop()

    assert not scheduler.status().scheduled
    scheduler.stop()


@pytest.mark.short
def test_loop_runs_passes(manager, storage_root):
    old = make_entry(storage_root, "old", utcnow() - timedelta(days=30))
    scheduler = CleanupScheduler(manager, CleanupConfig(interval_hours=0.0001))

    scheduler.start()
    try:
        deadline = time.monotonic() + 5
        while old.exists() and time.monotonic() < deadline:
            time.sleep(0.05)
    finally:
        scheduler.stop()

    assert not old.exists()


@pytest.mark.short
def test_scheduler_survives_unexpected_error(manager, monkeypatch, capture_logs):
    calls = []

    def broken(*args, **kwargs):
        calls.append(1)
        raise RuntimeError("unexpected")

    monkeypatch.setattr(manager, "cleanup_repositories", broken)
    scheduler = CleanupScheduler(manager, CleanupConfig(interval_hours=0.0001))

    scheduler.start()
    try:
        deadline = time.monotonic() + 5
        while len(calls) < 2 and time.monotonic() < deadline:
            time.sleep(0.05)
        assert len(calls) >= 2
        assert scheduler.status().scheduled
    finally:
        scheduler.stop()

    assert "Scheduled cleanup failed unexpectedly" in capture_logs.getvalue()
    assert not scheduler.is_running()


@pytest.mark.short
def test_manual_trigger_propagates_unexpected_error(manager, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(manager, "cleanup_repositories", broken)
    scheduler = CleanupScheduler(manager, CleanupConfig())

    with pytest.raises(RuntimeError):
        scheduler.trigger_manually()
