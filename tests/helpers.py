"""Test doubles and builders shared by the repocache tests."""

import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from git import Actor, Repo

from repocache.git.metadata import RepositoryMetadata, write_metadata
from repocache.git.process import GitCommandError

AUTHOR = Actor("Test User", "test@example.com")


class FakeGitClient:
    """
    In-memory stand-in for GitClient.

    Cloning creates an empty directory with a ``.git`` subdirectory, which is
    all the cache needs to recognize an entry.
    """

    def __init__(
        self,
        branches: Iterable[str] = ("main",),
        default_branch: Optional[str] = "main",
        head: str = "a" * 40,
        clone_delay: float = 0.0,
    ):
        self.branches = set(branches)
        self.default_branch = default_branch
        self.head = head
        self.clone_delay = clone_delay
        self.changes = 0
        self.fail_fetch = False
        self.calls: List[tuple] = []
        self._checked_out: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def _record(self, *call) -> None:
        with self._lock:
            self.calls.append(call)

    def count(self, name: str) -> int:
        return len([c for c in self.calls if c[0] == name])

    def clone(self, url, path, depth, branch=None):
        self._record("clone", url, str(path), depth, branch)
        if self.clone_delay:
            time.sleep(self.clone_delay)
        if branch is not None and branch not in self.branches:
            raise GitCommandError(
                ["git", "clone", url], 128, f"Remote branch {branch} not found"
            )
        Path(path, ".git").mkdir(parents=True)
        self._checked_out[str(path)] = branch or self.default_branch

    def fetch(self, path):
        self._record("fetch", str(path))
        if self.fail_fetch:
            raise GitCommandError(["git", "fetch", "origin"], 128, "network down")

    def pull(self, path, remote, branch):
        self._record("pull", str(path), remote, branch)

    def remote_default_branch(self, url):
        self._record("remote_default_branch", url)
        return self.default_branch

    def remote_branch_exists(self, url, branch):
        self._record("remote_branch_exists", url, branch)
        return branch in self.branches

    def clean(self, path, keep=None):
        self._record("clean", str(path), keep)

    def latest_commit(self, path):
        return self.head

    def current_branch(self, path):
        return self._checked_out.get(str(path))

    def remote_url(self, path):
        return None

    def changed_files(self, path, old, new):
        return self.changes if old != new else 0


def make_upstream(path: Path, files: Dict[str, str], branch: str = "main") -> Repo:
    """Create a git repository with one commit holding ``files`` on ``branch``."""
    repo = Repo.init(path)
    commit_files(repo, files, "Initial commit")
    repo.git.branch("-M", branch)
    return repo


def commit_files(repo: Repo, files: Dict[str, str], message: str) -> str:
    root = Path(repo.working_tree_dir)
    for name, content in files.items():
        target = root / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
    repo.index.add(list(files))
    commit = repo.index.commit(message, author=AUTHOR, committer=AUTHOR)
    return commit.hexsha


def make_entry(
    storage_root: Path,
    name: str,
    last_accessed: Optional[datetime],
    size: int = 0,
    last_updated: Optional[datetime] = None,
    url: str = "https://github.com/acme/widgets",
    branch: str = "main",
) -> Path:
    """
    Create a cache entry on disk without git.

    ``size`` bytes are written to a payload file. Without ``last_accessed`` no
    metadata sidecar is written.
    """
    entry = storage_root / name
    (entry / ".git").mkdir(parents=True)
    if size:
        (entry / "payload.bin").write_bytes(b"\0" * size)
    if last_accessed is not None:
        write_metadata(
            entry,
            RepositoryMetadata(
                url=url,
                branch=branch,
                last_updated=last_updated or last_accessed,
                last_accessed=last_accessed,
                commit_hash="a" * 40,
                clone_method="https",
            ),
        )
    return entry
