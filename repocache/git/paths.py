"""
URL normalization and cache path resolution.

Every cache entry lives in a flat directory under the storage root, named after
the repository owner, repository name and branch:

    <storage_root>/<owner>_<repo>_<branch>_<sha1(branch)[:8]>/

The short digest keeps two branches whose readable names sanitize to the same
string (``feature/x`` and ``feature-x``) in separate entries.
"""

import hashlib
import re
from pathlib import Path
from typing import Tuple, Union

from repocache.exceptions import InvalidUrlError

LOCK_DIR_NAME = "repository_locks"
BRANCH_HASH_LENGTH = 8

_URL_PATTERN = re.compile(r"^https?://[^\s/$.?#][^\s]*$|^git@[^\s:]+:[^\s]+$")
_OWNER_REPO_PATTERN = re.compile(r"[/:]([^/:]+)/([^/]+?)(?:\.git)?$")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def normalize_url(url: str) -> str:
    """
    Normalize a repository URL to its canonical form.

    Trailing slashes and ``.git`` suffixes are stripped until the URL no longer
    changes, so normalizing a canonical URL returns it unchanged.

    Examples:
        https://github.com/user/repo.git/ -> https://github.com/user/repo
        git@github.com:user/repo.git -> git@github.com:user/repo

    Raises:
        InvalidUrlError: If the URL is empty or is not an HTTP(S) or SSH git URL
    """
    if not url or not isinstance(url, str):
        raise InvalidUrlError(url, "must be a non-empty string")

    normalized = url.strip()
    previous = None
    while normalized != previous:
        previous = normalized
        normalized = normalized.rstrip("/")
        if normalized.endswith(".git"):
            normalized = normalized[: -len(".git")]

    if not _URL_PATTERN.match(normalized):
        raise InvalidUrlError(url)

    return normalized


def parse_owner_repo(url: str) -> Tuple[str, str]:
    """
    Extract (owner, repository name) from the last two path segments of a URL.

    Raises:
        InvalidUrlError: If the URL has fewer than two path segments
    """
    match = _OWNER_REPO_PATTERN.search(url)
    if not match:
        raise InvalidUrlError(url, "cannot parse owner and repository name")
    return match.group(1), match.group(2)


def branch_hash(branch: str) -> str:
    return hashlib.sha1(branch.encode("utf-8")).hexdigest()[:BRANCH_HASH_LENGTH]


def entry_dir_name(url: str, branch: str) -> str:
    """Directory name of the cache entry for a canonical URL and branch."""
    owner, repo = parse_owner_repo(url)
    safe_branch = _UNSAFE_CHARS.sub("-", branch)
    return f"{owner}_{repo}_{safe_branch}_{branch_hash(branch)}"


def resolve_path(storage_root: Union[str, Path], url: str, branch: str) -> Path:
    """
    Resolve the local path of the cache entry for ``url`` at ``branch``.

    The result only depends on its arguments: the same canonical URL and branch
    always map to the same directory, different branches to different ones.
    """
    return Path(storage_root) / entry_dir_name(url, branch)


def lock_dir_for(storage_root: Union[str, Path]) -> Path:
    """Lock files live next to the storage root, not inside it."""
    return Path(storage_root).parent / LOCK_DIR_NAME


def detect_clone_method(url: str) -> str:
    if url.startswith("git@") or url.startswith("ssh://"):
        return "ssh"
    return "https"


def is_cache_entry(path: Union[str, Path]) -> bool:
    """A cache entry is a directory holding git metadata."""
    path = Path(path)
    return path.is_dir() and (path / ".git").exists()
