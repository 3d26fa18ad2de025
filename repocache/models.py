"""Result types returned by the repository cache."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from repocache.git.metadata import RepositoryMetadata


@dataclass
class RepositoryInfo:
    """Where a repository lives in the cache and what is known about it."""

    url: str
    branch: str
    local_path: Path
    exists: bool
    metadata: Optional["RepositoryMetadata"] = None

    @property
    def commit_hash(self) -> Optional[str]:
        return self.metadata.commit_hash if self.metadata else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "branch": self.branch,
            "local_path": str(self.local_path),
            "exists": self.exists,
            "metadata": (
                self.metadata.model_dump(mode="json") if self.metadata else None
            ),
        }


@dataclass
class UpdateResult:
    updated: bool
    previous_hash: str
    current_hash: str
    changes: int = 0


@dataclass
class SingleRepositoryStats:
    """Size of one cache entry, used to pick an execution strategy."""

    file_count: int
    total_size_mb: float
    code_file_count: int
    largest_file_size_mb: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RepositoryStats:
    """Aggregate over every entry of the cache."""

    total_repositories: int
    disk_usage: int
    oldest_access: Optional[datetime] = None
    newest_access: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_repositories": self.total_repositories,
            "disk_usage": self.disk_usage,
            "oldest_access": (
                self.oldest_access.isoformat() if self.oldest_access else None
            ),
            "newest_access": (
                self.newest_access.isoformat() if self.newest_access else None
            ),
        }


@dataclass
class EvictionReport:
    deleted: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)
    failed: List[Path] = field(default_factory=list)
    freed_bytes: int = 0
    remaining_bytes: int = 0


@dataclass
class SchedulerStatus:
    enabled: bool
    scheduled: bool
    running: bool
    next_run: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "scheduled": self.scheduled,
            "running": self.running,
            "next_run": self.next_run.isoformat() if self.next_run else None,
        }
