"""
Storage layer for multi-tenant static assets.

Every deployed file is stored under a sanitized key on one of several
interchangeable backends (local disk, AWS S3, S3-compatible services,
Google Cloud Storage, Azure Blob Storage). Backends may be wrapped in a
read-through cache and installed into a ``DynamicStorage`` holder that can
be pointed at a different backend while the process keeps serving.

Key Components:
- StorageBackend: Abstract contract every backend implements
- CachingStorage: Cache decorator over any backend
- DynamicStorage: Hot-swappable holder handed to consumers
- StorageConfig / build_storage: Configuration and assembly
- StorageRegistry: Backend discovery by type name or alias
- StorageMigrator: Copy objects between two backends

Example:
    >>> from assetstore.storage import DynamicStorage, StorageConfig, build_storage
    >>>
    >>> storage = DynamicStorage()
    >>> config = StorageConfig(backend_type="minio", config={
    ...     "bucket_name": "assets", "endpoint": "http://localhost:9000",
    ... })
    >>> candidate = build_storage(config)
    >>> candidate.test_connection()
    True
    >>> storage.swap(candidate).close()
"""

from .backends import (
    AzureBlobStorage,
    DeletePrefixResult,
    FileMetadata,
    GCSStorage,
    LocalStorage,
    S3Storage,
    StorageBackend,
)
from .cache import CachingStorage, DownloadResult, MemoryCache, NullCache, RedisCache
from .config import CacheConfig, RedisSettings, StorageConfig, build_storage
from .holder import DynamicStorage, HolderState
from .migration import MigrationOptions, MigrationResult, StorageMigrator
from .registry import StorageRegistry, get_storage_registry

__all__ = [
    "StorageBackend",
    "FileMetadata",
    "DeletePrefixResult",
    "LocalStorage",
    "S3Storage",
    "GCSStorage",
    "AzureBlobStorage",
    "CachingStorage",
    "DownloadResult",
    "MemoryCache",
    "NullCache",
    "RedisCache",
    "CacheConfig",
    "RedisSettings",
    "StorageConfig",
    "build_storage",
    "DynamicStorage",
    "HolderState",
    "MigrationOptions",
    "MigrationResult",
    "StorageMigrator",
    "StorageRegistry",
    "get_storage_registry",
]
