"""
Local filesystem storage backend.

Stores each object as a file under ``base_path`` with a JSON sidecar holding
its content type and user metadata. Writes are atomic and listings use the
same string-prefix semantics as the object stores.
"""

import hashlib
import json
import logging
import mimetypes
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ...core.exceptions import (
    AssetStoreError,
    BackendUnavailableError,
    ConfigurationError,
    Diagnosis,
    InvalidKeyError,
    NotFoundError,
    PermissionDeniedError,
)
from .base import DEFAULT_URL_TTL, DeletePrefixResult, FileMetadata, StorageBackend
from .metadata import resolve_content_type

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = "./uploads"
DEFAULT_BASE_URL = "http://localhost:3000/files"
METADATA_SUFFIX = ".meta.json"
TEMP_PREFIX = ".upload-tmp-"


def translate_error(exc: OSError, key: str | None = None) -> AssetStoreError:
    """Map a filesystem error onto the storage error taxonomy."""
    if isinstance(exc, FileNotFoundError) and key is not None:
        return NotFoundError(f"File not found: {key}", key=key)
    if isinstance(exc, PermissionError):
        return PermissionDeniedError(
            f"Permission denied on local storage: {exc}", backend_type="local"
        )
    return BackendUnavailableError(
        f"Local storage error: {exc}", backend_type="local", diagnosis=Diagnosis.UNKNOWN
    )


class LocalStorage(StorageBackend):
    """
    Local filesystem storage backend.

    Features:
    - Atomic writes using temporary files
    - Automatic directory creation
    - Metadata sidecar files next to each object
    - Path traversal guard on every resolved path

    Configuration:
        base_path: Root directory for storage (default: "./uploads")
        base_url: URL prefix served by the file-serving layer
            (default: "http://localhost:3000/files")
        key_prefix: Workspace namespace applied to every key
        create_dirs: Whether to create directories automatically (default: True)
        remove_empty_dirs: Remove empty directories after deletes (default: True)

    Examples:
        >>> storage = LocalStorage("/var/lib/assets")
        >>> storage.upload(b"<html></html>", "acme/site/commits/abc123/index.html")
        'acme/site/commits/abc123/index.html'
    """

    def __init__(self, base_path: str | None = None, config: dict[str, Any] | None = None):
        """
        Initialize local storage backend.

        Args:
            base_path: Root directory for storage, overrides ``config["base_path"]``
            config: Additional configuration options
        """
        config = dict(config or {})
        if base_path is not None:
            config["base_path"] = str(base_path)
        config.setdefault("base_path", DEFAULT_BASE_PATH)

        self.base_path = Path(config["base_path"]).resolve()
        super().__init__(config)
        self.base_url = self.config.get("base_url", DEFAULT_BASE_URL).rstrip("/")

        if self.config.get("create_dirs", True):
            self.base_path.mkdir(parents=True, exist_ok=True)

    @property
    def backend_type(self) -> str:
        """Return the backend type identifier."""
        return "local"

    def _validate_config(self) -> None:
        """Validate local storage configuration."""
        if self.base_path.exists() and not self.base_path.is_dir():
            raise ConfigurationError(
                f"base_path is not a directory: {self.base_path}", field_name="base_path"
            )

    def _get_file_path(self, full_key: str) -> Path:
        """Resolve a prefixed key to a path, refusing anything outside base_path."""
        if full_key.endswith(METADATA_SUFFIX):
            raise InvalidKeyError(
                f"Keys ending in {METADATA_SUFFIX} are reserved", key=full_key
            )
        file_path = (self.base_path / full_key).resolve()
        if not file_path.is_relative_to(self.base_path):
            raise InvalidKeyError(f"Key resolves outside storage root: {full_key}", key=full_key)
        return file_path

    @staticmethod
    def _get_metadata_path(file_path: Path) -> Path:
        return file_path.with_name(file_path.name + METADATA_SUFFIX)

    def _write_file_atomic(self, file_path: Path, content: bytes) -> None:
        """Write file atomically using temporary file."""
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=file_path.parent,
            delete=False,
            prefix=TEMP_PREFIX,
        ) as tmp_file:
            tmp_file.write(content)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
            temp_path = Path(tmp_file.name)

        try:
            temp_path.replace(file_path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise

    def upload(self, data: bytes, key: str, metadata: dict[str, Any] | None = None) -> str:
        full_key = self._full_key(key)
        file_path = self._get_file_path(full_key)

        sidecar = {
            "content_type": resolve_content_type(metadata),
            "metadata": {
                k: str(v) for k, v in (metadata or {}).items() if v is not None
            },
        }

        try:
            self._write_file_atomic(file_path, data)
            self._write_file_atomic(
                self._get_metadata_path(file_path), json.dumps(sidecar).encode("utf-8")
            )
        except OSError as e:
            raise translate_error(e) from e

        logger.debug("Uploaded %d bytes to %s", len(data), file_path)
        return self._strip_prefix(full_key)

    def download(self, key: str) -> bytes:
        full_key = self._full_key(key)
        file_path = self._get_file_path(full_key)
        try:
            return file_path.read_bytes()
        except IsADirectoryError as e:
            raise NotFoundError(f"File not found: {key}", key=key) from e
        except OSError as e:
            raise translate_error(e, key) from e

    def delete(self, key: str) -> None:
        try:
            self._remove(self._full_key(key))
        except AssetStoreError as e:
            logger.warning("Failed to delete %s from local storage: %s", key, e.message)

    def _remove(self, full_key: str) -> None:
        file_path = self._get_file_path(full_key)
        try:
            file_path.unlink(missing_ok=True)
            self._get_metadata_path(file_path).unlink(missing_ok=True)
        except OSError as e:
            raise translate_error(e) from e
        if self.config.get("remove_empty_dirs", True):
            self._cleanup_empty_dirs(file_path.parent)

    def _cleanup_empty_dirs(self, dir_path: Path) -> None:
        """Remove empty directories up to base_path."""
        current = dir_path
        while current != self.base_path and current.is_relative_to(self.base_path):
            try:
                current.rmdir()
            except OSError:
                # Not empty, already gone, or in use
                break
            current = current.parent

    def exists(self, key: str) -> bool:
        file_path = self._get_file_path(self._full_key(key))
        return file_path.is_file()

    def get_url(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        """Return the URL the file-serving layer exposes for this key. ``ttl_seconds`` is unused."""
        full_key = self._full_key(key)
        return f"{self.base_url}/{self._strip_prefix(full_key)}"

    def _iter_files(self, full_prefix: str):
        """Yield (backend_key, path) for every stored object whose key starts with full_prefix."""
        directory = full_prefix.rpartition("/")[0]
        root = self.base_path / directory if directory else self.base_path
        if not root.is_dir():
            return

        for dirpath, _dirnames, filenames in os.walk(root):
            for filename in filenames:
                if filename.endswith(METADATA_SUFFIX) or filename.startswith(TEMP_PREFIX):
                    continue
                path = Path(dirpath) / filename
                backend_key = path.relative_to(self.base_path).as_posix()
                if backend_key.startswith(full_prefix):
                    yield backend_key, path

    def list_keys(self, prefix: str | None = None) -> list[str]:
        full_prefix = self._full_prefix(prefix)
        try:
            return [self._strip_prefix(k) for k, _ in self._iter_files(full_prefix)]
        except OSError as e:
            raise translate_error(e) from e

    def get_metadata(self, key: str) -> FileMetadata:
        full_key = self._full_key(key)
        file_path = self._get_file_path(full_key)

        try:
            stat = file_path.stat()
            content = file_path.read_bytes()
        except (FileNotFoundError, IsADirectoryError) as e:
            raise NotFoundError(f"File not found: {key}", key=key) from e
        except OSError as e:
            raise translate_error(e, key) from e

        mime_type = None
        metadata_path = self._get_metadata_path(file_path)
        if metadata_path.exists():
            try:
                mime_type = json.loads(metadata_path.read_text(encoding="utf-8")).get(
                    "content_type"
                )
            except (OSError, ValueError):
                logger.debug("Ignoring unreadable metadata sidecar %s", metadata_path)
        if not mime_type:
            mime_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"

        return FileMetadata(
            key=self._strip_prefix(full_key),
            size=stat.st_size,
            mime_type=mime_type,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            etag=hashlib.md5(content).hexdigest(),
        )

    def delete_prefix(self, prefix: str) -> DeletePrefixResult:
        full_prefix = self._require_prefix(prefix)
        result = DeletePrefixResult()

        try:
            backend_keys = [k for k, _ in self._iter_files(full_prefix)]
        except OSError as e:
            raise translate_error(e) from e

        for backend_key in backend_keys:
            try:
                self._remove(backend_key)
                result.deleted_count += 1
            except AssetStoreError as e:
                logger.warning("Failed to delete %s: %s", backend_key, e.message)
                result.failed_keys.append(self._strip_prefix(backend_key))

        logger.info(
            "Deleted %d files under %s (%d failed)",
            result.deleted_count, prefix, len(result.failed_keys),
        )
        return result

    def _ensure_container(self) -> None:
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise translate_error(e) from e
        if not os.access(self.base_path, os.W_OK):
            raise PermissionDeniedError(
                f"Storage directory is not writable: {self.base_path}", backend_type="local"
            )

    def _probe_list(self) -> None:
        try:
            with os.scandir(self.base_path) as entries:
                next(entries, None)
        except OSError as e:
            raise translate_error(e) from e

    def health_check(self) -> dict[str, Any]:
        """Perform health check of local storage."""
        result = super().health_check()
        result["base_path"] = str(self.base_path)
        return result
