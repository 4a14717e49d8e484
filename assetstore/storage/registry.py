"""
Storage backend registry.

Maps backend type names and aliases to adapter factories so configuration
can name a backend ("s3", "minio", "gcs", ...) without importing it.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from importlib.metadata import entry_points
from typing import Any, Optional

from ..core.exceptions import AssetStoreError
from .backends.base import StorageBackend

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "assetstore.storage.backends"

BackendFactory = Callable[[Optional[dict[str, Any]]], StorageBackend]


class StorageRegistry:
    """
    Registry for storage backend types and factory for creating instances.

    Examples:
        >>> registry = StorageRegistry()
        >>> backend = registry.create_backend("minio", {
        ...     "bucket_name": "assets", "endpoint": "http://localhost:9000",
        ... })
        >>>
        >>> # Register custom backend
        >>> registry.register_backend("custom", CustomStorageBackend)
    """

    def __init__(self):
        """Initialize storage registry with built-in backends."""
        self._backends: dict[str, type[StorageBackend]] = {}
        self._factories: dict[str, BackendFactory] = {}
        self._aliases: dict[str, str] = {}

        self._register_builtin_backends()

    def _register_builtin_backends(self) -> None:
        """Register all built-in storage backends."""
        from .backends.azure import AzureBlobStorage
        from .backends.gcs import GCSStorage
        from .backends.local import LocalStorage
        from .backends.s3 import S3Storage

        self.register_backend("local", LocalStorage, aliases=["file", "filesystem"])
        self.register_backend(
            "aws_s3", S3Storage, aliases=["s3", "aws"], factory=S3Storage.aws
        )
        self.register_backend(
            "s3_compatible",
            S3Storage,
            aliases=["minio", "r2", "s3-compatible"],
            factory=S3Storage.compatible,
        )
        self.register_backend("gcs", GCSStorage, aliases=["google", "google_cloud_storage"])
        self.register_backend("azure", AzureBlobStorage, aliases=["azure_blob", "blob"])

    def register_backend(
        self,
        backend_type: str,
        backend_class: type[StorageBackend],
        aliases: Optional[list[str]] = None,
        factory: Optional[BackendFactory] = None,
    ) -> None:
        """
        Register a storage backend type.

        Args:
            backend_type: Unique identifier for the backend type
            backend_class: Storage backend class (must inherit from StorageBackend)
            aliases: Optional list of alias names for the backend
            factory: Callable building an instance from a config dict;
                defaults to ``backend_class(config=config)``

        Raises:
            ValueError: If backend_type is already registered or backend_class is invalid
        """
        if not backend_type or not isinstance(backend_type, str):
            raise ValueError("backend_type must be a non-empty string")

        if backend_type in self._backends or backend_type in self._aliases:
            raise ValueError(f"Backend type '{backend_type}' is already registered")

        if not isinstance(backend_class, type) or not issubclass(backend_class, StorageBackend):
            raise ValueError("backend_class must inherit from StorageBackend")

        for alias in aliases or []:
            if alias in self._aliases or alias in self._backends:
                raise ValueError(f"Alias '{alias}' is already registered")

        self._backends[backend_type] = backend_class
        self._factories[backend_type] = factory or (lambda config: backend_class(config=config))
        for alias in aliases or []:
            self._aliases[alias] = backend_type

    def unregister_backend(self, backend_type: str) -> None:
        """
        Unregister a storage backend type.

        Raises:
            KeyError: If backend_type is not registered
        """
        if backend_type not in self._backends:
            raise KeyError(f"Backend type '{backend_type}' is not registered")

        del self._backends[backend_type]
        del self._factories[backend_type]

        aliases_to_remove = [
            alias for alias, target in self._aliases.items()
            if target == backend_type
        ]
        for alias in aliases_to_remove:
            del self._aliases[alias]

    def resolve_backend_type(self, backend_type: str) -> str:
        """
        Resolve backend type, handling aliases.

        Raises:
            KeyError: If backend_type is not found
        """
        if backend_type in self._aliases:
            return self._aliases[backend_type]

        if backend_type in self._backends:
            return backend_type

        raise KeyError(f"Unknown backend type: '{backend_type}'")

    def get_backend_class(self, backend_type: str) -> type[StorageBackend]:
        """Get the storage backend class for a given type or alias."""
        return self._backends[self.resolve_backend_type(backend_type)]

    def create_backend(
        self,
        backend_type: str,
        config: Optional[dict[str, Any]] = None
    ) -> StorageBackend:
        """
        Create a storage backend instance.

        Args:
            backend_type: Backend type or alias
            config: Backend-specific configuration

        Returns:
            Configured storage backend instance

        Raises:
            KeyError: If backend_type is not found
            ConfigurationError: If configuration is invalid
        """
        resolved_type = self.resolve_backend_type(backend_type)
        backend = self._factories[resolved_type](dict(config or {}))
        logger.debug("Created %s backend via '%s'", backend.backend_type, backend_type)
        return backend

    def list_backend_types(self) -> list[str]:
        return list(self._backends.keys())

    def list_aliases(self) -> dict[str, str]:
        return dict(self._aliases)

    def get_backend_info(self, backend_type: str) -> dict[str, Any]:
        """
        Get information about a backend type.

        Raises:
            KeyError: If backend_type is not found
        """
        resolved_type = self.resolve_backend_type(backend_type)
        backend_class = self._backends[resolved_type]

        aliases = [
            alias for alias, target in self._aliases.items()
            if target == resolved_type
        ]

        return {
            "backend_type": resolved_type,
            "class_name": backend_class.__name__,
            "module": backend_class.__module__,
            "aliases": aliases,
            "docstring": backend_class.__doc__,
        }

    def health_check_all(self, configs: dict[str, dict[str, Any]]) -> dict[str, Any]:
        """
        Perform a health check on each configured backend.

        Args:
            configs: Backend configuration keyed by backend type or alias

        Returns:
            Dictionary with per-backend health results and a summary
        """
        results: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "backends": {},
            "summary": {
                "total": 0,
                "healthy": 0,
                "unhealthy": 0,
                "failed": 0,
            },
        }

        for backend_type, config in configs.items():
            results["summary"]["total"] += 1

            try:
                backend = self.create_backend(backend_type, config)
            except (KeyError, AssetStoreError) as e:
                results["backends"][backend_type] = {
                    "status": "failed",
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
                results["summary"]["failed"] += 1
                continue

            try:
                health = backend.health_check()
            finally:
                backend.close()

            results["backends"][backend_type] = health
            if health.get("status") == "healthy":
                results["summary"]["healthy"] += 1
            else:
                results["summary"]["unhealthy"] += 1

        return results

    def discover_plugins(self) -> list[str]:
        """
        Register backends advertised under the ``assetstore.storage.backends`` entry point group.

        Returns:
            List of discovered and registered plugin names
        """
        discovered = []

        for entry_point in entry_points(group=ENTRY_POINT_GROUP):
            try:
                plugin_class = entry_point.load()
                self.register_backend(entry_point.name, plugin_class)
            except (ImportError, AttributeError, ValueError) as e:
                logger.warning("Failed to load storage backend plugin '%s': %s", entry_point.name, e)
                continue
            discovered.append(entry_point.name)

        return discovered

    def __str__(self) -> str:
        """String representation of the registry."""
        return f"StorageRegistry({len(self._backends)} backends, {len(self._aliases)} aliases)"

    def __repr__(self) -> str:
        """Detailed string representation."""
        return (f"StorageRegistry("
                f"backends={list(self._backends.keys())}, "
                f"aliases={list(self._aliases.keys())})")


# Global registry instance
_global_registry: Optional[StorageRegistry] = None


def get_storage_registry() -> StorageRegistry:
    """Get the process-wide storage registry, discovering plugins on first access."""
    global _global_registry

    if _global_registry is None:
        _global_registry = StorageRegistry()
        _global_registry.discover_plugins()

    return _global_registry


def reset_storage_registry() -> None:
    """Reset the global storage registry. Used for test isolation."""
    global _global_registry
    _global_registry = None
