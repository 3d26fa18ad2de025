import io
import logging
from pathlib import Path

import pytest

from repocache.config import CacheConfig, LockSettings, RepositoryConfig
from repocache.git.lock import LockManager
from repocache.git.paths import lock_dir_for

from tests.helpers import FakeGitClient


@pytest.fixture
def capture_logs():
    """Fixture to capture log output during tests."""
    log_stream = io.StringIO()
    handler = logging.StreamHandler(log_stream)
    logger = logging.getLogger("repocache")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)

    yield log_stream  # Yield the stream to the test function

    # Cleanup after the test
    logger.removeHandler(handler)
    log_stream.close()


# cache fixtures


@pytest.fixture
def storage_root(tmp_path) -> Path:
    root = tmp_path / "cache" / "repositories"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def fast_lock_settings() -> LockSettings:
    return LockSettings(
        retry_interval_ms=20, stale_timeout_ms=60000, timeout_ms=2000
    )


@pytest.fixture
def locks(storage_root, fast_lock_settings) -> LockManager:
    return LockManager(lock_dir_for(storage_root), fast_lock_settings)


@pytest.fixture
def fake_git() -> FakeGitClient:
    return FakeGitClient(branches=["main", "develop"], default_branch="main")


@pytest.fixture
def repository_config(storage_root, fast_lock_settings) -> RepositoryConfig:
    return RepositoryConfig(
        storage_path=str(storage_root), lock_settings=fast_lock_settings
    )


@pytest.fixture
def cache_config(repository_config) -> CacheConfig:
    return CacheConfig(repository=repository_config)
