"""
Exception classes for the repository cache.

Every error raised by the cache core derives from RepositoryError and carries a
machine-readable ``code`` that the request-handling layer maps to a transport
status.
"""

from typing import Any, Dict, Optional


class RepositoryError(Exception):
    """Base exception for all repository cache errors."""

    code = "REPOSITORY_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class InvalidUrlError(RepositoryError):
    """Raised when a repository URL is malformed or cannot be parsed."""

    code = "INVALID_URL"

    def __init__(self, url: Any, reason: str = ""):
        self.url = url
        if reason:
            message = f"Invalid repository URL '{url}': {reason}"
        else:
            message = f"Invalid repository URL format: {url}"
        super().__init__(message, {"url": url})


class CloneFailedError(RepositoryError):
    """Raised when a clone, including every branch fallback, did not succeed."""

    code = "CLONE_FAILED"


class UpdateFailedError(RepositoryError):
    """Raised when fetch/pull of an existing cache entry failed."""

    code = "UPDATE_FAILED"


class NotFoundError(RepositoryError):
    """Raised when an operation references a cache entry missing on disk."""

    code = "NOT_FOUND"

    def __init__(self, local_path: Any):
        self.local_path = local_path
        super().__init__(
            f"Repository not found: {local_path}", {"local_path": str(local_path)}
        )


class LockFailedError(RepositoryError):
    """Raised when a cache entry lock cannot be acquired within its timeout."""

    code = "LOCK_FAILED"

    def __init__(self, lock_file: Any, message: str = ""):
        self.lock_file = lock_file
        if message:
            text = f"Lock error for {lock_file}: {message}"
        else:
            text = f"Could not acquire lock for {lock_file}"
        super().__init__(text, {"lock_file": str(lock_file)})


class MetadataError(RepositoryError):
    """Raised when the metadata sidecar cannot be read or written."""

    code = "METADATA_ERROR"


class StorageError(RepositoryError):
    """Raised on filesystem-level failures (permissions, disk full, listing)."""

    code = "STORAGE_ERROR"


class AlreadyRunningError(RepositoryError):
    """Raised when a cleanup pass is requested while another one is running."""

    code = "CLEANUP_RUNNING"

    def __init__(self, message: str = "Cleanup is already running"):
        super().__init__(message)


class ConfigError(Exception):
    """Raised when the configuration file cannot be loaded or validated."""

    def __init__(self, path: Any, message: str):
        self.path = path
        super().__init__(f"Invalid configuration in {path}: {message}")
