"""Asset store: multi-backend storage for multi-tenant static assets.

Deployed site files are stored under sanitized, workspace-prefixed keys on
local disk, AWS S3, S3-compatible services, Google Cloud Storage or Azure
Blob Storage. Downloads can be served through an in-memory or Redis cache,
and the active backend can be replaced at runtime without restarting.
"""

__version__ = "0.1.0"
__author__ = "Asset Store Team"
__email__ = "contact@example.com"

# Core API exports
from .core import (
    AssetStoreError,
    BackendUnavailableError,
    ConfigurationError,
    Diagnosis,
    InvalidKeyError,
    NotFoundError,
    PermissionDeniedError,
    UnimplementedError,
    sanitize_key,
    sanitize_prefix,
)

# Storage system
from .storage import (
    AzureBlobStorage,
    CacheConfig,
    CachingStorage,
    DeletePrefixResult,
    DownloadResult,
    DynamicStorage,
    FileMetadata,
    GCSStorage,
    LocalStorage,
    MemoryCache,
    MigrationOptions,
    MigrationResult,
    RedisCache,
    S3Storage,
    StorageBackend,
    StorageConfig,
    StorageMigrator,
    StorageRegistry,
    build_storage,
    get_storage_registry,
)

__all__ = [
    "__version__",
    "__author__",
    "__email__",
    # Errors
    "AssetStoreError",
    "BackendUnavailableError",
    "ConfigurationError",
    "Diagnosis",
    "InvalidKeyError",
    "NotFoundError",
    "PermissionDeniedError",
    "UnimplementedError",
    # Keys
    "sanitize_key",
    "sanitize_prefix",
    # Backends
    "StorageBackend",
    "FileMetadata",
    "DeletePrefixResult",
    "LocalStorage",
    "S3Storage",
    "GCSStorage",
    "AzureBlobStorage",
    # Caching
    "CachingStorage",
    "DownloadResult",
    "MemoryCache",
    "RedisCache",
    "CacheConfig",
    # Holder, configuration and registry
    "DynamicStorage",
    "StorageConfig",
    "build_storage",
    "StorageRegistry",
    "get_storage_registry",
    # Migration
    "MigrationOptions",
    "MigrationResult",
    "StorageMigrator",
]
