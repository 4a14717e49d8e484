"""
Hot-swappable storage holder.

Consumers receive one ``DynamicStorage`` at startup and keep it for the life
of the process. When the storage configuration changes, the setup workflow
builds and tests a new backend and installs it with ``swap()``; every call
made afterwards uses the new backend while calls already running finish
against the backend they started with.
"""

import logging
import threading
import uuid
from enum import Enum
from typing import Any

from .backends.base import DEFAULT_URL_TTL, DeletePrefixResult, FileMetadata, StorageBackend
from .backends.local import DEFAULT_BASE_PATH, LocalStorage
from .cache.caching import CachingStorage, DownloadResult

logger = logging.getLogger(__name__)


class HolderState(str, Enum):
    """Lifecycle of a DynamicStorage. Reconfiguration may recur indefinitely."""

    UNINITIALIZED = "uninitialized"
    CONFIGURED = "configured"
    RECONFIGURED = "reconfigured"


class DynamicStorage(StorageBackend):
    """
    Storage backend that delegates to a replaceable adapter.

    Each operation reads the current adapter exactly once and runs to
    completion against it, so a concurrent ``swap()`` never splits a call
    across two backends. The swap itself is a single reference assignment
    made under a lock.

    Examples:
        >>> storage = DynamicStorage()            # local disk until configured
        >>> old = storage.swap(S3Storage.aws(cfg))
        >>> old.close()
    """

    def __init__(self, adapter: StorageBackend | None = None):
        """
        Args:
            adapter: Initial adapter; defaults to local storage under ./uploads
        """
        self._lock = threading.Lock()
        self._adapter = adapter if adapter is not None else LocalStorage(DEFAULT_BASE_PATH)
        self._state = HolderState.UNINITIALIZED
        self.instance_id = f"storage-{uuid.uuid4().hex[:12]}"
        super().__init__({})
        logger.info(
            "Storage holder %s created with %s", self.instance_id, self.get_adapter_type()
        )

    def _validate_config(self) -> None:
        pass

    @property
    def backend_type(self) -> str:
        """Backend type of the adapter currently installed."""
        return self._adapter.backend_type

    @property
    def state(self) -> HolderState:
        return self._state

    def swap(self, adapter: StorageBackend) -> StorageBackend:
        """
        Install a new adapter.

        The previous adapter is returned rather than closed; calls that
        captured it may still be running. Close it once they have drained.

        Args:
            adapter: Fully constructed (and ideally tested) adapter

        Returns:
            The adapter that was replaced
        """
        if not isinstance(adapter, StorageBackend):
            raise TypeError("adapter must be a StorageBackend")
        if adapter is self:
            raise ValueError("A DynamicStorage cannot delegate to itself")

        with self._lock:
            previous = self._adapter
            self._adapter = adapter
            if self._state is HolderState.UNINITIALIZED:
                self._state = HolderState.CONFIGURED
            else:
                self._state = HolderState.RECONFIGURED

        logger.info(
            "Storage holder %s swapped %s -> %s (%s)",
            self.instance_id,
            type(previous).__name__,
            type(adapter).__name__,
            self._state.value,
        )
        return previous

    def get_adapter(self) -> StorageBackend:
        """Return the currently installed adapter."""
        return self._adapter

    def get_adapter_type(self) -> str:
        return type(self._adapter).__name__

    def get_underlying_adapter(self) -> StorageBackend:
        """Return the installed adapter without its caching wrapper, if any."""
        adapter = self._adapter
        if isinstance(adapter, CachingStorage):
            return adapter.backend
        return adapter

    def upload(self, data: bytes, key: str, metadata: dict[str, Any] | None = None) -> str:
        adapter = self._adapter
        return adapter.upload(data, key, metadata)

    def download(self, key: str) -> bytes:
        adapter = self._adapter
        return adapter.download(key)

    def download_with_cache_info(self, key: str, mime_type: str | None = None) -> DownloadResult:
        """Download ``key`` with its cache tag; ``none`` when the adapter is not cached."""
        adapter = self._adapter
        if isinstance(adapter, CachingStorage):
            return adapter.download_with_cache_info(key, mime_type)
        return DownloadResult(adapter.download(key), "none")

    def delete(self, key: str) -> None:
        adapter = self._adapter
        adapter.delete(key)

    def exists(self, key: str) -> bool:
        adapter = self._adapter
        return adapter.exists(key)

    def get_url(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        adapter = self._adapter
        return adapter.get_url(key, ttl_seconds)

    def list_keys(self, prefix: str | None = None) -> list[str]:
        adapter = self._adapter
        return adapter.list_keys(prefix)

    def get_metadata(self, key: str) -> FileMetadata:
        adapter = self._adapter
        return adapter.get_metadata(key)

    def delete_prefix(self, prefix: str) -> DeletePrefixResult:
        adapter = self._adapter
        return adapter.delete_prefix(prefix)

    def test_connection(self) -> bool:
        adapter = self._adapter
        return adapter.test_connection()

    def supports_presigned_upload_urls(self) -> bool:
        adapter = self._adapter
        return adapter.supports_presigned_upload_urls()

    def get_presigned_upload_url(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        adapter = self._adapter
        return adapter.get_presigned_upload_url(key, ttl_seconds)

    def health_check(self) -> dict[str, Any]:
        adapter = self._adapter
        result = adapter.health_check()
        result.update({
            "instance_id": self.instance_id,
            "adapter": type(adapter).__name__,
            "state": self._state.value,
        })
        return result

    def _ensure_container(self) -> None:
        self._adapter._ensure_container()

    def _probe_list(self) -> None:
        self._adapter._probe_list()

    def _remove(self, full_key: str) -> None:
        self._adapter._remove(full_key)

    def close(self) -> None:
        self._adapter.close()

    def __repr__(self) -> str:
        return (
            f"DynamicStorage(instance_id='{self.instance_id}', "
            f"adapter={self._adapter!r}, state='{self._state.value}')"
        )
