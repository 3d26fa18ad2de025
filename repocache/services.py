"""Explicit construction of the cache services from a configuration object."""

from typing import NamedTuple

from repocache.config import CacheConfig
from repocache.manager import RepositoryManager
from repocache.scheduler import CleanupScheduler


class Services(NamedTuple):
    manager: RepositoryManager
    scheduler: CleanupScheduler


def build_services(config: CacheConfig) -> Services:
    """
    Build the repository manager and its cleanup scheduler.

    The scheduler is returned stopped; callers start it when serving.

    Raises:
        StorageError: If the storage directories cannot be created
    """
    manager = RepositoryManager(config.repository)
    scheduler = CleanupScheduler(manager, config.cleanup)
    return Services(manager, scheduler)
