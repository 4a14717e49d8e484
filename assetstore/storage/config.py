"""
Storage configuration.

Describes which backend to use, its connection settings, and the optional
cache policy in front of it. Configuration can come from a dict, a YAML
file, or the environment, and ``build_storage`` turns it into a ready
adapter.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import ConfigurationError
from .backends.base import StorageBackend
from .cache.base import CacheBackend, NullCache
from .cache.caching import DEFAULT_MAX_CACHEABLE_FILE_SIZE, DEFAULT_TTL, CachingStorage
from .cache.memory import DEFAULT_MAX_ITEMS, DEFAULT_MAX_SIZE, MemoryCache
from .cache.redis import DEFAULT_KEY_PREFIX, RedisCache
from .registry import get_storage_registry

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT_PREFIX = "ASSETSTORE_STORAGE"

_S3_TYPES = {"aws_s3", "s3_compatible"}


class RedisSettings(BaseModel):
    """Connection settings for the shared Redis cache."""

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: str | None = Field(default=None, description="Redis password")
    db: int = Field(default=0, ge=0, description="Redis database index")
    key_prefix: str = Field(default=DEFAULT_KEY_PREFIX, description="Prefix for every cache key")
    url: str | None = Field(default=None, description="Redis URL, overrides host/port")


class CacheConfig(BaseModel):
    """Cache policy placed in front of a storage backend."""

    enabled: bool = Field(default=True, description="Enable caching")
    type: Literal["memory", "redis"] = Field(default="memory", description="Cache backend")
    default_ttl: int = Field(default=DEFAULT_TTL, ge=0, description="Entry TTL in seconds")
    max_size: int = Field(default=DEFAULT_MAX_SIZE, gt=0, description="Memory cache byte limit")
    max_items: int = Field(default=DEFAULT_MAX_ITEMS, gt=0, description="Memory cache entry limit")
    max_file_size: int = Field(
        default=DEFAULT_MAX_CACHEABLE_FILE_SIZE, ge=0, description="Largest object that is cached"
    )
    ttl_by_mime_type: dict[str, int] = Field(
        default_factory=dict, description="TTL overrides keyed by MIME type or type/*"
    )
    redis: RedisSettings = Field(default_factory=RedisSettings)


@dataclass
class StorageConfig:
    """
    Configuration for a storage backend and its cache.

    Attributes:
        backend_type: Backend type or alias registered in the StorageRegistry
        config: Backend-specific configuration parameters
        cache: Cache policy, or None for no caching
        environment_prefix: Prefix for environment variable lookup

    Examples:
        >>> config = StorageConfig(
        ...     backend_type="s3",
        ...     config={"bucket_name": "assets", "region": "eu-west-1", "key_prefix": "ws1"},
        ...     cache=CacheConfig(type="memory"),
        ... )
        >>> storage = config.create_storage()
    """

    backend_type: str = "local"
    config: dict[str, Any] = field(default_factory=dict)
    cache: Optional[CacheConfig] = None
    environment_prefix: str = DEFAULT_ENVIRONMENT_PREFIX

    def __post_init__(self) -> None:
        """Apply environment overrides and validate the backend type."""
        self._apply_environment_overrides()
        self._validate_backend_type()

    def _validate_backend_type(self) -> None:
        try:
            get_storage_registry().resolve_backend_type(self.backend_type)
        except KeyError as e:
            supported = sorted(
                get_storage_registry().list_backend_types()
                + list(get_storage_registry().list_aliases())
            )
            raise ConfigurationError(
                f"Unsupported backend_type '{self.backend_type}'. Supported types: {supported}",
                field_name="backend_type",
                actual_value=self.backend_type,
            ) from e

    def _apply_environment_overrides(self) -> None:
        """Apply configuration overrides from environment variables."""
        backend_env = f"{self.environment_prefix}_BACKEND"
        if os.getenv(backend_env):
            self.backend_type = os.getenv(backend_env)

        config_overrides = {}

        env_mappings = {
            f"{self.environment_prefix}_BASE_PATH": "base_path",
            f"{self.environment_prefix}_BUCKET_NAME": "bucket_name",
            f"{self.environment_prefix}_CONTAINER_NAME": "container_name",
            f"{self.environment_prefix}_KEY_PREFIX": "key_prefix",
            f"{self.environment_prefix}_REGION": "region",
            f"{self.environment_prefix}_ENDPOINT": "endpoint",
        }

        for env_var, config_key in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                config_overrides[config_key] = value

        try:
            resolved = get_storage_registry().resolve_backend_type(self.backend_type)
        except KeyError:
            resolved = self.backend_type

        if resolved in _S3_TYPES:
            aws_access_key = os.getenv("AWS_ACCESS_KEY_ID")
            aws_secret_key = os.getenv("AWS_SECRET_ACCESS_KEY")
            aws_region = os.getenv("AWS_DEFAULT_REGION")

            if aws_access_key and "access_key_id" not in self.config:
                config_overrides["access_key_id"] = aws_access_key
            if aws_secret_key and "secret_access_key" not in self.config:
                config_overrides["secret_access_key"] = aws_secret_key
            if aws_region and "region" not in config_overrides and "region" not in self.config:
                config_overrides["region"] = aws_region

        elif resolved == "gcs":
            gcp_project = os.getenv("GOOGLE_CLOUD_PROJECT")
            gcp_credentials = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")

            if gcp_project and "project_id" not in self.config:
                config_overrides["project_id"] = gcp_project
            if gcp_credentials and "credentials_path" not in self.config:
                config_overrides["credentials_path"] = gcp_credentials

        elif resolved == "azure":
            connection_string = os.getenv("AZURE_STORAGE_CONNECTION_STRING")
            if connection_string and "connection_string" not in self.config:
                config_overrides["connection_string"] = connection_string

        self.config.update(config_overrides)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StorageConfig":
        """Create StorageConfig from dictionary."""
        cache_data = data.get("cache")
        try:
            cache = CacheConfig.model_validate(cache_data) if cache_data is not None else None
        except PydanticValidationError as e:
            raise ConfigurationError(
                f"Invalid cache configuration: {e}", config_section="cache"
            ) from e

        return cls(
            backend_type=data.get("backend_type", "local"),
            config=dict(data.get("config") or {}),
            cache=cache,
            environment_prefix=data.get("environment_prefix", DEFAULT_ENVIRONMENT_PREFIX),
        )

    @classmethod
    def from_yaml_file(cls, file_path: Union[str, Path]) -> "StorageConfig":
        """Load StorageConfig from YAML file."""
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Storage config file not found: {file_path}")

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load storage config from {file_path}: {e}", config_file=str(path)
            ) from e

        # Handle nested storage config
        if "storage" in data:
            data = data["storage"]

        return cls.from_dict(data)

    @classmethod
    def from_environment(
        cls,
        environment_prefix: str = DEFAULT_ENVIRONMENT_PREFIX
    ) -> "StorageConfig":
        """Create StorageConfig from environment variables only."""
        cache = None
        cache_type = os.getenv(f"{environment_prefix}_CACHE")
        if cache_type:
            redis_url = os.getenv("REDIS_URL")
            try:
                cache = CacheConfig(
                    type=cache_type,
                    redis=RedisSettings(url=redis_url) if redis_url else RedisSettings(),
                )
            except PydanticValidationError as e:
                raise ConfigurationError(
                    f"Invalid {environment_prefix}_CACHE value '{cache_type}'",
                    field_name=f"{environment_prefix}_CACHE",
                    actual_value=cache_type,
                ) from e
        return cls(cache=cache, environment_prefix=environment_prefix)

    def to_dict(self) -> dict[str, Any]:
        """Convert StorageConfig to dictionary."""
        return {
            "backend_type": self.backend_type,
            "config": self.config,
            "cache": self.cache.model_dump() if self.cache else None,
            "environment_prefix": self.environment_prefix,
        }

    def to_yaml(self) -> str:
        """Convert StorageConfig to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False)

    def save_to_file(self, file_path: Union[str, Path]) -> None:
        """Save StorageConfig to YAML file."""
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            f.write(self.to_yaml())

    def create_backend(self) -> StorageBackend:
        """Create the bare storage backend, without caching."""
        return get_storage_registry().create_backend(self.backend_type, self.config)

    def create_storage(self) -> StorageBackend:
        """Create the backend wrapped in the configured cache."""
        return build_storage(self)


def build_cache(cache_config: CacheConfig, namespace: str = "") -> CacheBackend:
    """
    Create the cache backend described by ``cache_config``.

    Args:
        cache_config: Cache policy
        namespace: Workspace namespace isolating Redis keys between tenants
    """
    if not cache_config.enabled:
        return NullCache()

    if cache_config.type == "redis":
        settings = cache_config.redis
        return RedisCache(
            host=settings.host,
            port=settings.port,
            password=settings.password,
            db=settings.db,
            url=settings.url,
            key_prefix=settings.key_prefix,
            namespace=namespace,
            max_size=cache_config.max_size,
        )

    return MemoryCache(max_size=cache_config.max_size, max_items=cache_config.max_items)


def wrap_with_cache(backend: StorageBackend, cache_config: CacheConfig) -> CachingStorage:
    """Wrap an existing backend in a cache built from ``cache_config``."""
    cache = build_cache(cache_config, namespace=backend.key_prefix)
    return CachingStorage(
        backend,
        cache,
        enabled=cache_config.enabled,
        default_ttl=cache_config.default_ttl,
        max_cacheable_file_size=cache_config.max_file_size,
        ttl_by_mime_type=cache_config.ttl_by_mime_type,
    )


def build_storage(config: StorageConfig) -> StorageBackend:
    """
    Build the storage stack a StorageConfig describes.

    Returns the bare adapter when no cache is configured, otherwise the
    adapter wrapped in ``CachingStorage``.
    """
    backend = config.create_backend()
    if config.cache is None:
        return backend

    logger.info(
        "Wrapping %s backend with %s cache", backend.backend_type,
        config.cache.type if config.cache.enabled else "disabled",
    )
    return wrap_with_cache(backend, config.cache)


def get_default_storage_config() -> StorageConfig:
    """
    Get default storage configuration.

    Looks for a storage.yaml in the usual places, falling back to local
    storage under ./uploads with environment overrides applied.
    """
    config_paths = [
        Path.home() / ".assetstore" / "storage.yaml",
        Path.cwd() / "assetstore-storage.yaml",
        Path.cwd() / "storage.yaml",
    ]

    for config_path in config_paths:
        if config_path.exists():
            logger.debug("Loading storage config from %s", config_path)
            return StorageConfig.from_yaml_file(config_path)

    return StorageConfig.from_environment()
