"""Configuration for the repository cache: storage location, git, cleanup and logging"""

import logging
import os
import platform
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from repocache.exceptions import ConfigError

logger = logging.getLogger(__name__)

APP_NAME = "repocache"
CONFIG_ENV_VAR = "REPOCACHE_CONFIG"

_home = os.path.expanduser("~")

xdg_config_home = os.environ.get("XDG_CONFIG_HOME") or os.path.join(_home, ".config")
xdg_data_home = os.environ.get("XDG_DATA_HOME") or os.path.join(
    _home, ".local", "share"
)

data_dir = os.path.join(xdg_data_home, APP_NAME)

if platform.system() == "Darwin":
    # macOS
    config_dir = Path("~/Library/Application Support/repocache").expanduser()
else:
    # Linux or others
    config_dir = Path(os.path.join(xdg_config_home, APP_NAME))


def get_config_file() -> Path:
    return config_dir / "config.yaml"


def default_storage_path() -> str:
    return os.path.join(data_dir, "repositories")


class LockSettings(BaseModel):
    """Per-entry lock acquisition settings."""

    retries: Optional[int] = Field(
        None,
        ge=0,
        description="Retries on contention, unbounded within timeout_ms if unset",
    )
    retry_interval_ms: int = Field(500, gt=0, description="Wait between retries")
    stale_timeout_ms: int = Field(
        60000, gt=0, description="Age after which a held lock is considered abandoned"
    )
    timeout_ms: int = Field(60000, gt=0, description="Upper bound on the total wait")


class RepositoryConfig(BaseModel):
    """Settings of the repository cache manager."""

    storage_path: str = Field(default_factory=default_storage_path)
    clone_depth: int = Field(1, ge=1)
    update_threshold_hours: float = Field(24, ge=0)
    max_concurrent_operations: int = Field(5, ge=1)
    default_branch: str = "main"
    git_timeout_seconds: float = Field(300, gt=0)
    lock_settings: LockSettings = Field(default_factory=LockSettings)

    @field_validator("storage_path")
    @classmethod
    def validate_storage_path(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("storage_path must be a non-empty string")
        return v

    @field_validator("default_branch")
    @classmethod
    def validate_default_branch(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("default_branch must be a non-empty string")
        return v.strip()

    @property
    def storage_root(self) -> Path:
        return Path(self.storage_path).expanduser()


class CleanupConfig(BaseModel):
    """Settings of the periodic cleanup of cached repositories."""

    enabled: bool = True
    interval_hours: float = Field(24, gt=0)
    retention_days: float = Field(7, ge=0)
    max_storage_gb: Optional[float] = Field(10, ge=0)
    cleanup_on_startup: bool = False

    @property
    def max_storage_bytes(self) -> Optional[int]:
        if not self.max_storage_gb:
            return None
        return int(self.max_storage_gb * 1024 * 1024 * 1024)


class LoggingConfig(BaseModel):
    """Log level and optional rotating log file."""

    level: str = "info"
    file: Optional[str] = None
    max_size_mb: float = Field(10, gt=0)
    backup_count: int = Field(5, ge=0)
    console_output: bool = True

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        if logging.getLevelName(v.upper()) == f"Level {v.upper()}":
            raise ValueError(f"unknown log level '{v}'")
        return v.lower()


class CacheConfig(BaseModel):
    """Root configuration object, built once at startup and passed around."""

    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "CacheConfig":
        """
        Load the configuration from a YAML file.

        Sections not related to the cache (server, executor...) are ignored.

        Raises:
            ConfigError: If the file cannot be read or does not validate
        """
        path = Path(path)
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigError(path, "file not found")
        except yaml.YAMLError as e:
            raise ConfigError(path, f"YAML file format error: {e}")

        if not isinstance(data, dict):
            raise ConfigError(path, "top level must be a mapping")

        known = {k: v for k, v in data.items() if k in cls.model_fields}
        try:
            return cls.model_validate(known)
        except ValidationError as e:
            messages = []
            for err in e.errors():
                loc = ".".join(str(part) for part in err["loc"])
                messages.append(f"{loc}: {err['msg']}")
            raise ConfigError(path, "; ".join(messages))


def load_config(path: Optional[Union[str, Path]] = None) -> CacheConfig:
    """
    Resolve and load the configuration.

    Lookup order: explicit path, $REPOCACHE_CONFIG, the user config file. When
    none of them exists the defaults are used.
    """
    if path is not None:
        return CacheConfig.from_yaml(path)

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return CacheConfig.from_yaml(env_path)

    user_config = get_config_file()
    if user_config.exists():
        return CacheConfig.from_yaml(user_config)

    logger.debug("No configuration file found, using defaults")
    return CacheConfig()

