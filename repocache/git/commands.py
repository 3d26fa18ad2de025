"""
Git access layer used by the clone/update engine.

Network-bound operations (clone, fetch, pull, ls-remote) go through
``run_git`` so that every one of them has a deadline. Reads of local
repository state use GitPython.
"""

import logging
import re
import threading
from pathlib import Path
from typing import List, Optional, Union

from git import Repo
from git.exc import GitError

from .process import GitCommandError, run_git

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_SYMREF_PATTERN = re.compile(r"^ref:\s+refs/heads/(\S+)\s+HEAD$", re.MULTILINE)


class GitClient:
    """
    Thin wrapper around the git operations the cache needs.

    At most ``max_concurrent_operations`` network operations run at the same
    time across all threads sharing a client.
    """

    def __init__(self, timeout: float = 300, max_concurrent_operations: int = 5):
        self.timeout = timeout
        self._slots = threading.BoundedSemaphore(max_concurrent_operations)

    def _network(self, args: List[str], cwd: Optional[PathLike] = None, check=True):
        with self._slots:
            return run_git(args, cwd=cwd, timeout=self.timeout, check=check)

    # Remote operations

    def clone(
        self, url: str, path: PathLike, depth: int, branch: Optional[str] = None
    ) -> None:
        args = ["clone", f"--depth={depth}"]
        if branch:
            args += ["--single-branch", f"--branch={branch}"]
        args += ["--", url, str(path)]
        self._network(args)

    def fetch(self, path: PathLike) -> None:
        self._network(["fetch", "origin"], cwd=path)

    def pull(self, path: PathLike, remote: str, branch: str) -> None:
        self._network(["pull", "--ff-only", remote, branch], cwd=path)

    def remote_default_branch(self, url: str) -> Optional[str]:
        """Branch the remote HEAD points to, None when it cannot be determined."""
        result = self._network(["ls-remote", "--symref", url, "HEAD"])
        match = _SYMREF_PATTERN.search(result.stdout)
        if match:
            return match.group(1)
        return None

    def remote_branch_exists(self, url: str, branch: str) -> bool:
        # --exit-code makes ls-remote exit with 2 when no ref matched
        result = self._network(
            ["ls-remote", "--exit-code", "--heads", url, f"refs/heads/{branch}"],
            check=False,
        )
        if result.returncode == 0:
            return True
        if result.returncode == 2:
            return False
        raise GitCommandError(result.args, result.returncode, result.stderr)

    # Local operations

    def clean(self, path: PathLike, keep: Optional[List[str]] = None) -> None:
        """Remove untracked and ignored files, except the ``keep`` patterns."""
        args = ["-f", "-d", "-x"]
        for pattern in keep or []:
            args += ["-e", pattern]
        try:
            Repo(str(path)).git.clean(*args)
        except GitError as e:
            raise GitCommandError(["git", "clean"] + args, 1, str(e))

    def latest_commit(self, path: PathLike) -> str:
        try:
            return Repo(str(path)).head.commit.hexsha
        except (GitError, ValueError) as e:
            raise GitCommandError(["git", "log", "-n", "1"], 1, str(e))

    def current_branch(self, path: PathLike) -> Optional[str]:
        """Checked out branch, None when HEAD is detached."""
        try:
            repo = Repo(str(path))
        except GitError as e:
            raise GitCommandError(["git", "status"], 1, str(e))
        if repo.head.is_detached:
            return None
        return repo.active_branch.name

    def remote_url(self, path: PathLike, remote: str = "origin") -> Optional[str]:
        try:
            repo = Repo(str(path))
            if remote not in [r.name for r in repo.remotes]:
                return None
            return repo.remotes[remote].url
        except GitError as e:
            raise GitCommandError(["git", "remote", "get-url", remote], 1, str(e))

    def changed_files(self, path: PathLike, old: str, new: str) -> int:
        """Number of files that differ between two commits, 0 if unknown."""
        if old == new:
            return 0
        try:
            output = Repo(str(path)).git.diff("--name-only", old, new)
        except GitError as e:
            logger.debug(f"Could not diff {old[:7]}..{new[:7]} in {path}: {e}")
            return 0
        return len([line for line in output.splitlines() if line.strip()])
