"""
ProjectSync Configuration — Load and validate projectsync.yaml at startup.

Usage:
    from projectsync.engine.config import load_config, get_config
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from projectsync.engine.errors import ConfigError

CONFIG_FILE_NAME = "projectsync.yaml"


# ---------------------------------------------------------------------------
# Pydantic models for projectsync.yaml
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///projectsync.db"
    pool_size: int = 10
    max_overflow: int = 20
    pool_recycle: int = 1800
    pool_pre_ping: bool = True


class RedisConfig(BaseModel):
    url: str = "redis://localhost:6379/0"
    session_db: int = 4
    # Broadcast store writes so other processes refresh their live queries
    change_feed: bool = True


class CeleryConfig(BaseModel):
    broker: str = "redis://localhost:6379/0"
    result_backend: str = "redis://localhost:6379/1"
    queue: str = "provisioning"


class StorageConfig(BaseModel):
    root: str = ".projectsync/blobs"
    public_base_url: Optional[str] = None
    max_upload_size_mb: int = 50
    chunk_size: int = 256 * 1024

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("chunk_size must be positive")
        return v


class DriveConfig(BaseModel):
    base_url: str = "https://www.googleapis.com/drive/v3"
    token: Optional[str] = None
    timeout: float = 30.0
    parent_folder_id: Optional[str] = None
    # Queue a provisioning run for every created project
    provision_on_create: bool = False


class SecurityConfig(BaseModel):
    session_timeout: int = 3600
    password_min_length: int = 6


class LogAsyncQueueConfig(BaseModel):
    flush_interval_ms: int = 100
    flush_batch_size: int = 50
    max_queue_size: int = 10000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = ".projectsync/logs"
    async_queue: LogAsyncQueueConfig = LogAsyncQueueConfig()


class PlatformConfig(BaseModel):
    """Root model for projectsync.yaml."""
    name: str = "ProjectSync"
    environment: str = "dev"

    database: DatabaseConfig = DatabaseConfig()
    redis: RedisConfig = RedisConfig()
    celery: CeleryConfig = CeleryConfig()
    storage: StorageConfig = StorageConfig()
    drive: DriveConfig = DriveConfig()
    security: SecurityConfig = SecurityConfig()
    logging: LoggingConfig = LoggingConfig()
    receipt_mime_types: List[str] = Field(
        default_factory=lambda: ["image/*", "application/pdf"]
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[PlatformConfig] = None


def _find_project_root() -> Path:
    """Find the project root by looking for projectsync.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / CONFIG_FILE_NAME).exists():
            return parent
    return current


def load_config(config_path: Optional[str] = None) -> PlatformConfig:
    """
    Load and validate projectsync.yaml.

    Args:
        config_path: Explicit path to the file. If None, auto-discovers from CWD.

    Returns:
        Validated PlatformConfig instance (defaults when the file is absent).

    Raises:
        ConfigError: The file exists but is not valid YAML or fails validation.
    """
    global _config

    if config_path is None:
        config_path = str(_find_project_root() / CONFIG_FILE_NAME)

    path = Path(config_path)
    if not path.exists():
        _config = PlatformConfig()
        return _config

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", config_path=str(path)) from e

    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping", config_path=str(path))

    # Accept either a flat file or one wrapped under "projectsync:"
    data = raw.get("projectsync", raw)

    try:
        _config = PlatformConfig(**data)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}", config_path=str(path)) from e
    return _config


def get_config() -> PlatformConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_environment() -> str:
    return get_config().environment
