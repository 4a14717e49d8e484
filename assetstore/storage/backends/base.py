"""
Base storage backend interface for deployed assets.

Defines the contract every storage adapter implements so that callers get
the same behavior from local disk, S3-compatible stores, Google Cloud
Storage and Azure Blob Storage: identical key sanitization, workspace
prefixing, NotFound signalling and best-effort deletes.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ...core.exceptions import (
    AssetStoreError,
    BackendUnavailableError,
    ConfigurationError,
    Diagnosis,
    InvalidKeyError,
    NotFoundError,
    UnimplementedError,
)
from ...core.keys import (
    normalize_key_prefix,
    prefix_key,
    sanitize_key,
    sanitize_prefix,
    unprefix_key,
)

logger = logging.getLogger(__name__)

DEFAULT_URL_TTL = 3600
SENTINEL_KEY = ".storage-connection-test"
SENTINEL_CONTENT = b"asset storage connection test"
CONNECT_TIMEOUT = 10

_SECRET_MARKERS = ("key", "secret", "password", "token", "credentials", "connection_string")


@dataclass
class FileMetadata:
    """Metadata describing one stored object. ``key`` never carries the workspace prefix."""

    key: str
    size: int
    mime_type: str | None = None
    last_modified: datetime | None = None
    etag: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert metadata to dictionary for serialization."""
        return {
            "key": self.key,
            "size": self.size,
            "mime_type": self.mime_type,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "etag": self.etag,
        }


@dataclass
class DeletePrefixResult:
    """Outcome of a prefix deletion. Partial failures are reported, never raised."""

    deleted_count: int = 0
    failed_keys: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"deleted_count": self.deleted_count, "failed_keys": list(self.failed_keys)}


def mask_config(config: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of an adapter config with secrets masked."""
    return {
        k: "***" if any(marker in k.lower() for marker in _SECRET_MARKERS) and v else v
        for k, v in config.items()
    }


class StorageBackend(ABC):
    """
    Abstract base class for asset storage backends.

    Key Operations:
    - upload / download / delete / exists on single keys
    - get_url: time-bounded access URL (pre-signed where supported)
    - list_keys: every key under a prefix, paginated internally
    - get_metadata: size, MIME type, modification time and ETag
    - delete_prefix: batched deletion that never aborts on partial failure
    - test_connection: container check, list probe and sentinel round trip

    Every key passes through ``sanitize_key`` and the adapter's workspace
    ``key_prefix`` before reaching the backend, and the prefix is stripped
    from every key handed back to callers.

    Adapters hold only immutable configuration and SDK client handles, so a
    single instance is safe to share between threads.
    """

    def __init__(self, config: dict[str, Any] | None = None):
        """
        Initialize storage backend with configuration.

        Args:
            config: Backend-specific configuration parameters
        """
        self.config = dict(config or {})
        try:
            self.key_prefix = normalize_key_prefix(self.config.get("key_prefix"))
        except InvalidKeyError as e:
            raise ConfigurationError(
                f"Invalid key_prefix: {e.message}", field_name="key_prefix"
            ) from e
        self._validate_config()

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Return the backend type identifier."""

    @abstractmethod
    def _validate_config(self) -> None:
        """Validate backend-specific configuration."""

    @abstractmethod
    def upload(self, data: bytes, key: str, metadata: dict[str, Any] | None = None) -> str:
        """
        Store bytes under a key.

        Args:
            data: Object content
            key: Storage key
            metadata: Optional user metadata; ``content_type``/``mime_type`` set the content type

        Returns:
            The sanitized key (without workspace prefix)

        Raises:
            InvalidKeyError: If the key fails sanitization
            BackendUnavailableError: If the backend cannot be written
        """

    @abstractmethod
    def download(self, key: str) -> bytes:
        """
        Read an object's bytes.

        Raises:
            NotFoundError: If the key does not exist
            BackendUnavailableError: If the backend cannot be read
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete an object. Never raises; failures are logged."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """
        Check whether an object exists.

        Raises:
            BackendUnavailableError: For genuine backend failures
        """

    @abstractmethod
    def get_url(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        """Return a time-bounded URL for the object."""

    @abstractmethod
    def list_keys(self, prefix: str | None = None) -> list[str]:
        """Return every key under ``prefix``. No ordering is guaranteed."""

    @abstractmethod
    def get_metadata(self, key: str) -> FileMetadata:
        """
        Get object metadata without downloading content.

        Raises:
            NotFoundError: If the key does not exist
        """

    @abstractmethod
    def delete_prefix(self, prefix: str) -> DeletePrefixResult:
        """Delete every object under ``prefix`` in batches, collecting failures."""

    @abstractmethod
    def _ensure_container(self) -> None:
        """Check the bucket/container exists, creating it when configured to."""

    @abstractmethod
    def _probe_list(self) -> None:
        """Issue a single bounded list request against the backend."""

    @abstractmethod
    def _remove(self, full_key: str) -> None:
        """Delete a prefixed backend key, raising translated errors on failure."""

    def supports_presigned_upload_urls(self) -> bool:
        """Whether ``get_presigned_upload_url`` is available on this backend."""
        return False

    def get_presigned_upload_url(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        """Return a URL that accepts a direct PUT of the object."""
        self._full_key(key)
        raise UnimplementedError(
            f"{self.backend_type} does not support presigned upload URLs",
            feature="presigned_upload_url",
        )

    def test_connection(self) -> bool:
        """
        Verify the backend is usable end to end.

        Checks (and optionally creates) the bucket or container, issues a
        bounded list probe, then writes, reads back and deletes a sentinel
        object under the workspace prefix.

        Returns:
            True when every step succeeded

        Raises:
            BackendUnavailableError: With a diagnosis describing the failing step
            PermissionDeniedError: When the credentials lack a permission
        """
        logger.info("Testing connection to %s backend", self.backend_type)

        self._ensure_container()
        self._probe_list()

        self.upload(SENTINEL_CONTENT, SENTINEL_KEY, {"content_type": "text/plain"})
        try:
            self._verify_sentinel()
        except AssetStoreError:
            # Best effort; delete() logs its own failures
            self.delete(SENTINEL_KEY)
            raise

        self._remove(self._full_key(SENTINEL_KEY))

        logger.info("Connection to %s backend verified", self.backend_type)
        return True

    def _verify_sentinel(self) -> None:
        try:
            content = self.download(SENTINEL_KEY)
        except NotFoundError as e:
            raise BackendUnavailableError(
                f"Sentinel object written to {self.backend_type} could not be read back",
                backend_type=self.backend_type,
                diagnosis=Diagnosis.UNKNOWN,
            ) from e

        if content != SENTINEL_CONTENT:
            raise BackendUnavailableError(
                f"Sentinel object read from {self.backend_type} does not match what was written",
                backend_type=self.backend_type,
                diagnosis=Diagnosis.UNKNOWN,
            )

    def health_check(self) -> dict[str, Any]:
        """
        Perform a health check of the storage backend.

        Returns:
            Dictionary with health status and diagnostic information
        """
        result: dict[str, Any] = {
            "backend_type": self.backend_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "config": mask_config(self.config),
        }
        try:
            self.test_connection()
            result["status"] = "healthy"
        except AssetStoreError as e:
            result.update({
                "status": "unhealthy",
                "error": e.message,
                "error_type": type(e).__name__,
                "diagnosis": getattr(e, "diagnosis", Diagnosis.UNKNOWN).value,
            })
        return result

    def close(self) -> None:
        """Release any held connections. Adapters without pooled resources do nothing."""

    def _full_key(self, key: str) -> str:
        """Sanitize ``key`` and apply the workspace prefix."""
        return prefix_key(self.key_prefix, sanitize_key(key))

    def _full_prefix(self, prefix: str | None) -> str:
        """Sanitize a listing prefix and apply the workspace prefix."""
        sanitized = sanitize_prefix(prefix)
        if not self.key_prefix:
            return sanitized
        return f"{self.key_prefix}/{sanitized}"

    def _strip_prefix(self, backend_key: str) -> str:
        return unprefix_key(self.key_prefix, backend_key)

    def _require_prefix(self, prefix: str) -> str:
        """Validate a delete_prefix argument; an empty prefix would wipe the workspace."""
        sanitized = sanitize_prefix(prefix)
        if not sanitized.strip("/"):
            raise InvalidKeyError("delete_prefix requires a non-empty prefix", key=prefix)
        return self._full_prefix(sanitized)

    def __str__(self) -> str:
        """String representation of the storage backend."""
        return f"{self.__class__.__name__}({self.backend_type})"

    def __repr__(self) -> str:
        """Detailed string representation."""
        return (
            f"{self.__class__.__name__}(backend_type='{self.backend_type}', "
            f"config={mask_config(self.config)})"
        )
