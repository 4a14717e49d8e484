"""
Google Cloud Storage backend.

Stores assets as blobs in a GCS bucket. Signed URLs use V4 signing and
therefore require service account credentials.
"""

import json
import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Any, Dict, List, Optional

import requests
from google.api_core import exceptions as gcs_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import storage
from google.oauth2 import service_account

from ...core.exceptions import (
    AssetStoreError,
    ConfigurationError,
    Diagnosis,
    NotFoundError,
    create_backend_error,
    create_configuration_error,
)
from .base import (
    CONNECT_TIMEOUT,
    DEFAULT_URL_TTL,
    DeletePrefixResult,
    FileMetadata,
    StorageBackend,
)
from .metadata import gcs_metadata_key, normalize_metadata, resolve_content_type

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 100
DELETE_CONCURRENCY = 10

GCS_ERRORS = (
    gcs_exceptions.GoogleAPIError,
    auth_exceptions.GoogleAuthError,
    requests.exceptions.RequestException,
)

_MISSING_PERMISSION = re.compile(r"does not have (?P<permission>storage\.\w+\.\w+) access")


def translate_error(
    exc: Exception,
    bucket: str,
    key: Optional[str] = None,
) -> AssetStoreError:
    """Map a google-cloud-storage exception onto the storage error taxonomy."""
    backend_type = "gcs"

    if isinstance(exc, gcs_exceptions.NotFound):
        if key is not None:
            return NotFoundError(f"File not found: {key}", key=key)
        return create_backend_error(
            Diagnosis.MISSING_BUCKET, f"Bucket '{bucket}' does not exist", backend_type, exc
        )
    if isinstance(exc, gcs_exceptions.Forbidden):
        match = _MISSING_PERMISSION.search(str(exc))
        message = f"Access denied to bucket '{bucket}'"
        if match:
            message += f": service account lacks {match.group('permission')}"
        return create_backend_error(Diagnosis.ACCESS_DENIED, message, backend_type, exc)
    if isinstance(exc, (gcs_exceptions.Unauthorized, auth_exceptions.DefaultCredentialsError,
                        auth_exceptions.RefreshError)):
        return create_backend_error(
            Diagnosis.INVALID_CREDENTIALS,
            f"Google Cloud credentials were rejected: {exc}",
            backend_type,
            exc,
        )
    if isinstance(exc, requests.exceptions.Timeout):
        return create_backend_error(
            Diagnosis.TIMEOUT, f"Timed out talking to Google Cloud Storage: {exc}", backend_type, exc
        )
    if isinstance(exc, (requests.exceptions.ConnectionError, auth_exceptions.TransportError)):
        return create_backend_error(
            Diagnosis.ENDPOINT_UNREACHABLE,
            f"Could not reach Google Cloud Storage: {exc}",
            backend_type,
            exc,
        )

    return create_backend_error(Diagnosis.UNKNOWN, f"Unknown backend error: {exc}", backend_type, exc)


class GCSStorage(StorageBackend):
    """
    Google Cloud Storage backend.

    Configuration:
        bucket_name: GCS bucket name (required)
        project_id: Google Cloud project ID (optional)
        credentials_path: Path to a service account JSON file (optional)
        credentials_json: Service account info as dict or JSON string (optional)
        key_prefix: Workspace namespace applied to every key
        location: Bucket location used when creating the bucket
        create_if_missing: Create the bucket in test_connection (default: False)
        timeout: Connect timeout in seconds (default: 10)
        read_timeout: Read timeout in seconds (default: 60)

    Without explicit credentials the client falls back to Application
    Default Credentials.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize GCS storage backend.

        Args:
            config: GCS-specific configuration including bucket name and credentials
        """
        super().__init__(config)
        self.bucket_name = self.config["bucket_name"]
        self.timeout = (
            self.config.get("timeout", CONNECT_TIMEOUT),
            self.config.get("read_timeout", 60),
        )
        self._client = None
        self._bucket = None
        self._client_lock = threading.Lock()

    @property
    def backend_type(self) -> str:
        """Return the backend type identifier."""
        return "gcs"

    def _validate_config(self) -> None:
        """Validate GCS configuration."""
        bucket_name = self.config.get("bucket_name")
        if not bucket_name:
            raise create_configuration_error(
                "bucket_name is required for GCS storage", "bucket_name", self.backend_type
            )
        if len(bucket_name) < 3 or len(bucket_name) > 222:
            raise ConfigurationError(
                "bucket_name must be 3-222 characters long",
                field_name="bucket_name",
                actual_value=bucket_name,
            )
        credentials_json = self.config.get("credentials_json")
        if isinstance(credentials_json, str):
            try:
                json.loads(credentials_json)
            except ValueError as e:
                raise ConfigurationError(
                    "credentials_json is not valid JSON", field_name="credentials_json"
                ) from e

    @property
    def client(self):
        """Get Google Cloud Storage client with lazy initialization."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = self._create_client()
        return self._client

    def _create_client(self):
        client_kwargs: Dict[str, Any] = {}
        if self.config.get("project_id"):
            client_kwargs["project"] = self.config["project_id"]

        try:
            if self.config.get("credentials_path"):
                client_kwargs["credentials"] = service_account.Credentials.from_service_account_file(
                    self.config["credentials_path"]
                )
            elif self.config.get("credentials_json"):
                info = self.config["credentials_json"]
                if isinstance(info, str):
                    info = json.loads(info)
                client_kwargs["credentials"] = service_account.Credentials.from_service_account_info(info)
                client_kwargs.setdefault("project", info.get("project_id"))
            return storage.Client(**client_kwargs)
        except (OSError, ValueError) as e:
            raise create_backend_error(
                Diagnosis.INVALID_CREDENTIALS,
                f"Could not load Google Cloud credentials: {e}",
                self.backend_type,
                e,
            ) from e
        except GCS_ERRORS as e:
            raise translate_error(e, self.bucket_name) from e

    @property
    def bucket(self):
        """Get GCS bucket with lazy initialization."""
        if self._bucket is None:
            self._bucket = self.client.bucket(self.bucket_name)
        return self._bucket

    def upload(self, data: bytes, key: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        blob_name = self._full_key(key)
        blob = self.bucket.blob(blob_name)
        blob.metadata = normalize_metadata(metadata, gcs_metadata_key) or None

        try:
            blob.upload_from_string(
                data, content_type=resolve_content_type(metadata), timeout=self.timeout
            )
        except GCS_ERRORS as e:
            raise translate_error(e, self.bucket_name) from e

        logger.debug("Uploaded %d bytes to gs://%s/%s", len(data), self.bucket_name, blob_name)
        return self._strip_prefix(blob_name)

    def download(self, key: str) -> bytes:
        blob_name = self._full_key(key)
        blob = self.bucket.blob(blob_name)
        try:
            return blob.download_as_bytes(timeout=self.timeout)
        except GCS_ERRORS as e:
            raise translate_error(e, self.bucket_name, key) from e

    def delete(self, key: str) -> None:
        try:
            self._remove(self._full_key(key))
        except AssetStoreError as e:
            logger.warning("Failed to delete %s from GCS: %s", key, e.message)

    def _remove(self, full_key: str) -> None:
        try:
            self.bucket.blob(full_key).delete(timeout=self.timeout)
        except gcs_exceptions.NotFound:
            # Already gone
            return
        except GCS_ERRORS as e:
            raise translate_error(e, self.bucket_name) from e

    def exists(self, key: str) -> bool:
        blob_name = self._full_key(key)
        blob = self.bucket.blob(blob_name)
        try:
            return blob.exists(timeout=self.timeout)
        except GCS_ERRORS as e:
            raise translate_error(e, self.bucket_name) from e

    def _sign(self, blob_name: str, ttl_seconds: int, method: str) -> str:
        blob = self.bucket.blob(blob_name)
        try:
            return blob.generate_signed_url(
                version="v4",
                expiration=timedelta(seconds=ttl_seconds),
                method=method,
            )
        except AttributeError as e:
            # Raised by google-auth when the credentials cannot sign
            raise create_backend_error(
                Diagnosis.INVALID_CREDENTIALS,
                "Signing URLs requires service account credentials with a private key",
                self.backend_type,
                e,
            ) from e
        except GCS_ERRORS as e:
            raise translate_error(e, self.bucket_name) from e

    def get_url(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        return self._sign(self._full_key(key), ttl_seconds, "GET")

    def supports_presigned_upload_urls(self) -> bool:
        return True

    def get_presigned_upload_url(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        return self._sign(self._full_key(key), ttl_seconds, "PUT")

    def _list_blob_names(self, full_prefix: str, max_results: Optional[int] = None) -> List[str]:
        blobs = self.client.list_blobs(
            self.bucket_name,
            prefix=full_prefix or None,
            max_results=max_results,
            timeout=self.timeout,
        )
        return [blob.name for blob in blobs]

    def list_keys(self, prefix: Optional[str] = None) -> List[str]:
        full_prefix = self._full_prefix(prefix)
        try:
            return [self._strip_prefix(name) for name in self._list_blob_names(full_prefix)]
        except GCS_ERRORS as e:
            raise translate_error(e, self.bucket_name) from e

    def get_metadata(self, key: str) -> FileMetadata:
        blob_name = self._full_key(key)
        blob = self.bucket.blob(blob_name)
        try:
            blob.reload(timeout=self.timeout)
        except GCS_ERRORS as e:
            raise translate_error(e, self.bucket_name, key) from e

        return FileMetadata(
            key=self._strip_prefix(blob_name),
            size=blob.size or 0,
            mime_type=blob.content_type,
            last_modified=blob.updated,
            etag=blob.etag,
        )

    def _delete_blob(self, blob_name: str) -> bool:
        """Delete one blob for delete_prefix; NotFound counts as deleted."""
        try:
            self.bucket.blob(blob_name).delete(timeout=self.timeout)
        except gcs_exceptions.NotFound:
            pass
        except GCS_ERRORS as e:
            logger.warning("Failed to delete %s: %s", blob_name, e)
            return False
        return True

    def delete_prefix(self, prefix: str) -> DeletePrefixResult:
        full_prefix = self._require_prefix(prefix)
        result = DeletePrefixResult()

        try:
            blob_names = self._list_blob_names(full_prefix)
        except GCS_ERRORS as e:
            raise translate_error(e, self.bucket_name) from e

        with ThreadPoolExecutor(max_workers=DELETE_CONCURRENCY) as executor:
            for start in range(0, len(blob_names), DELETE_BATCH_SIZE):
                batch = blob_names[start:start + DELETE_BATCH_SIZE]
                outcomes = executor.map(self._delete_blob, batch)
                for blob_name, deleted in zip(batch, outcomes):
                    if deleted:
                        result.deleted_count += 1
                    else:
                        result.failed_keys.append(self._strip_prefix(blob_name))

        logger.info(
            "Deleted %d blobs under %s from %s (%d failed)",
            result.deleted_count, prefix, self.bucket_name, len(result.failed_keys),
        )
        return result

    def _ensure_container(self) -> None:
        try:
            if self.bucket.exists(timeout=self.timeout):
                return
        except GCS_ERRORS as e:
            raise translate_error(e, self.bucket_name) from e

        if not self.config.get("create_if_missing", False):
            raise create_backend_error(
                Diagnosis.MISSING_BUCKET,
                f"Bucket '{self.bucket_name}' does not exist",
                self.backend_type,
            )

        logger.info("Bucket %s does not exist, creating it", self.bucket_name)
        try:
            self.client.create_bucket(
                self.bucket_name, location=self.config.get("location"), timeout=self.timeout
            )
        except GCS_ERRORS as e:
            raise translate_error(e, self.bucket_name) from e

    def _probe_list(self) -> None:
        try:
            self._list_blob_names(self._full_prefix(None), max_results=1)
        except GCS_ERRORS as e:
            raise translate_error(e, self.bucket_name) from e

    def close(self) -> None:
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None
                self._bucket = None

    def health_check(self) -> Dict[str, Any]:
        """Perform health check of GCS storage."""
        result = super().health_check()
        result["bucket_name"] = self.bucket_name
        return result
