"""
Azure Blob Storage backend.

Authenticates with a connection string, an account key, or a managed
identity (DefaultAzureCredential). Read URLs are SAS tokens signed with the
account key or, for managed identities, a user delegation key.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.identity import DefaultAzureCredential
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)

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
from .metadata import azure_metadata_key, normalize_metadata, resolve_content_type

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 256
_DELETED_STATUSES = {202, 404}
_ACCESS_DENIED_CODES = {
    "AuthorizationFailure",
    "AuthorizationPermissionMismatch",
    "AuthorizationResourceTypeMismatch",
    "InsufficientAccountPermissions",
}


def translate_error(
    exc: Exception,
    container: str,
    key: Optional[str] = None,
) -> AssetStoreError:
    """Map an azure-core exception onto the storage error taxonomy."""
    backend_type = "azure"
    error_code = str(getattr(exc, "error_code", "") or "")

    if isinstance(exc, ResourceNotFoundError):
        if error_code != "ContainerNotFound" and key is not None:
            return NotFoundError(f"File not found: {key}", key=key)
        return create_backend_error(
            Diagnosis.MISSING_BUCKET, f"Container '{container}' does not exist", backend_type, exc
        )
    if isinstance(exc, ClientAuthenticationError) or error_code == "AuthenticationFailed":
        return create_backend_error(
            Diagnosis.INVALID_CREDENTIALS,
            "Azure rejected the credentials; check the account name and key or managed identity",
            backend_type,
            exc,
        )
    if isinstance(exc, HttpResponseError) and (
        error_code in _ACCESS_DENIED_CODES or exc.status_code == 403
    ):
        return create_backend_error(
            Diagnosis.ACCESS_DENIED,
            f"Access denied to container '{container}' ({error_code or 'Forbidden'})",
            backend_type,
            exc,
        )
    if isinstance(exc, (ServiceRequestError, ServiceResponseError)):
        if "timeout" in type(exc).__name__.lower() or "timed out" in str(exc).lower():
            return create_backend_error(
                Diagnosis.TIMEOUT, f"Timed out talking to Azure Blob Storage: {exc}", backend_type, exc
            )
        return create_backend_error(
            Diagnosis.ENDPOINT_UNREACHABLE,
            f"Could not reach Azure Blob Storage: {exc}",
            backend_type,
            exc,
        )

    return create_backend_error(Diagnosis.UNKNOWN, f"Unknown backend error: {exc}", backend_type, exc)


class AzureBlobStorage(StorageBackend):
    """
    Azure Blob Storage backend.

    Configuration:
        container_name: Blob container name (required)
        connection_string: Storage account connection string
        account_name: Storage account name (with account_key or use_managed_identity)
        account_key: Storage account key
        use_managed_identity: Authenticate with DefaultAzureCredential
        key_prefix: Workspace namespace applied to every key
        create_if_missing: Create the container in test_connection (default: True)
        connection_timeout / read_timeout: Seconds (default: 10 / 60)
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.container_name = self.config["container_name"]
        self._service_client = None
        self._container_client = None
        self._client_lock = threading.Lock()

    @property
    def backend_type(self) -> str:
        """Return the backend type identifier."""
        return "azure"

    def _validate_config(self) -> None:
        """Validate Azure configuration."""
        container_name = self.config.get("container_name")
        if not container_name:
            raise create_configuration_error(
                "container_name is required for Azure storage", "container_name", self.backend_type
            )
        if len(container_name) < 3 or len(container_name) > 63 or container_name != container_name.lower():
            raise ConfigurationError(
                "container_name must be 3-63 lowercase characters",
                field_name="container_name",
                actual_value=container_name,
            )

        has_connection_string = bool(self.config.get("connection_string"))
        has_account = bool(self.config.get("account_name"))
        if not has_connection_string and not has_account:
            raise ConfigurationError(
                "Azure storage requires connection_string or account_name",
                field_name="connection_string",
            )
        if (
            not has_connection_string
            and not self.config.get("account_key")
            and not self.config.get("use_managed_identity")
        ):
            raise ConfigurationError(
                "account_name requires account_key or use_managed_identity",
                field_name="account_key",
            )

    @property
    def service_client(self) -> BlobServiceClient:
        """Get the BlobServiceClient with lazy initialization."""
        if self._service_client is None:
            with self._client_lock:
                if self._service_client is None:
                    self._service_client = self._create_client()
        return self._service_client

    def _create_client(self) -> BlobServiceClient:
        timeouts = {
            "connection_timeout": self.config.get("connection_timeout", CONNECT_TIMEOUT),
            "read_timeout": self.config.get("read_timeout", 60),
        }
        try:
            if self.config.get("connection_string"):
                return BlobServiceClient.from_connection_string(
                    self.config["connection_string"], **timeouts
                )

            account_url = f"https://{self.config['account_name']}.blob.core.windows.net"
            if self.config.get("use_managed_identity"):
                credential: Any = DefaultAzureCredential()
            else:
                credential = {
                    "account_name": self.config["account_name"],
                    "account_key": self.config["account_key"],
                }
            return BlobServiceClient(account_url=account_url, credential=credential, **timeouts)
        except ValueError as e:
            raise create_backend_error(
                Diagnosis.INVALID_CREDENTIALS,
                f"Invalid Azure storage credentials: {e}",
                self.backend_type,
                e,
            ) from e

    @property
    def container_client(self):
        if self._container_client is None:
            self._container_client = self.service_client.get_container_client(self.container_name)
        return self._container_client

    def upload(self, data: bytes, key: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        blob_name = self._full_key(key)
        try:
            self.container_client.upload_blob(
                blob_name,
                data,
                overwrite=True,
                content_settings=ContentSettings(content_type=resolve_content_type(metadata)),
                metadata=normalize_metadata(metadata, azure_metadata_key),
            )
        except AzureError as e:
            raise translate_error(e, self.container_name) from e

        logger.debug("Uploaded %d bytes to azure://%s/%s", len(data), self.container_name, blob_name)
        return self._strip_prefix(blob_name)

    def download(self, key: str) -> bytes:
        blob_name = self._full_key(key)
        try:
            return self.container_client.download_blob(blob_name).readall()
        except AzureError as e:
            raise translate_error(e, self.container_name, key) from e

    def delete(self, key: str) -> None:
        try:
            self._remove(self._full_key(key))
        except AssetStoreError as e:
            logger.warning("Failed to delete %s from Azure: %s", key, e.message)

    def _remove(self, full_key: str) -> None:
        try:
            self.container_client.delete_blob(full_key)
        except ResourceNotFoundError as e:
            if getattr(e, "error_code", None) == "ContainerNotFound":
                raise translate_error(e, self.container_name) from e
        except AzureError as e:
            raise translate_error(e, self.container_name) from e

    def exists(self, key: str) -> bool:
        blob_name = self._full_key(key)
        try:
            return self.container_client.get_blob_client(blob_name).exists()
        except AzureError as e:
            raise translate_error(e, self.container_name) from e

    def _account_key(self) -> Optional[str]:
        credential = self.service_client.credential
        return getattr(credential, "account_key", None)

    def _sas_args(
        self, blob_name: str, ttl_seconds: int, permission: BlobSasPermissions
    ) -> Dict[str, Any]:
        """Build generate_blob_sas arguments; raises AzureError when no signing key is available."""
        now = datetime.now(timezone.utc)
        expiry = now + timedelta(seconds=ttl_seconds)
        sas_args: Dict[str, Any] = {
            "account_name": self.service_client.account_name,
            "container_name": self.container_name,
            "blob_name": blob_name,
            "permission": permission,
            "expiry": expiry,
        }

        account_key = self._account_key()
        if account_key:
            sas_args["account_key"] = account_key
        else:
            sas_args["user_delegation_key"] = self.service_client.get_user_delegation_key(
                key_start_time=now - timedelta(minutes=5), key_expiry_time=expiry
            )
        return sas_args

    def get_url(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        blob_name = self._full_key(key)
        blob_client = self.container_client.get_blob_client(blob_name)
        try:
            sas_args = self._sas_args(blob_name, ttl_seconds, BlobSasPermissions(read=True))
        except AzureError as e:
            logger.warning(
                "Could not obtain a user delegation key, returning unsigned URL for %s: %s",
                key, e,
            )
            return blob_client.url

        return f"{blob_client.url}?{generate_blob_sas(**sas_args)}"

    def supports_presigned_upload_urls(self) -> bool:
        return True

    def get_presigned_upload_url(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        blob_name = self._full_key(key)
        blob_client = self.container_client.get_blob_client(blob_name)
        try:
            sas_args = self._sas_args(
                blob_name, ttl_seconds, BlobSasPermissions(create=True, write=True)
            )
        except AzureError as e:
            raise translate_error(e, self.container_name) from e

        return f"{blob_client.url}?{generate_blob_sas(**sas_args)}"

    def list_keys(self, prefix: Optional[str] = None) -> List[str]:
        full_prefix = self._full_prefix(prefix)
        try:
            return [
                self._strip_prefix(blob.name)
                for blob in self.container_client.list_blobs(name_starts_with=full_prefix or None)
            ]
        except AzureError as e:
            raise translate_error(e, self.container_name) from e

    def get_metadata(self, key: str) -> FileMetadata:
        blob_name = self._full_key(key)
        try:
            properties = self.container_client.get_blob_client(blob_name).get_blob_properties()
        except AzureError as e:
            raise translate_error(e, self.container_name, key) from e

        content_settings = properties.content_settings
        return FileMetadata(
            key=self._strip_prefix(blob_name),
            size=properties.size,
            mime_type=content_settings.content_type if content_settings else None,
            last_modified=properties.last_modified,
            etag=(properties.etag or "").strip('"') or None,
        )

    def delete_prefix(self, prefix: str) -> DeletePrefixResult:
        full_prefix = self._require_prefix(prefix)
        result = DeletePrefixResult()

        try:
            blob_names = [
                blob.name for blob in self.container_client.list_blobs(name_starts_with=full_prefix)
            ]
        except AzureError as e:
            raise translate_error(e, self.container_name) from e

        for start in range(0, len(blob_names), DELETE_BATCH_SIZE):
            batch = blob_names[start:start + DELETE_BATCH_SIZE]
            try:
                responses = list(
                    self.container_client.delete_blobs(*batch, raise_on_any_failure=False)
                )
            except AzureError as e:
                logger.warning("Batch delete of %d blobs under %s failed: %s", len(batch), prefix, e)
                result.failed_keys.extend(self._strip_prefix(name) for name in batch)
                continue

            for blob_name, response in zip(batch, responses):
                if response.status_code in _DELETED_STATUSES:
                    result.deleted_count += 1
                else:
                    logger.warning(
                        "Failed to delete %s: HTTP %s", blob_name, response.status_code
                    )
                    result.failed_keys.append(self._strip_prefix(blob_name))

        logger.info(
            "Deleted %d blobs under %s from %s (%d failed)",
            result.deleted_count, prefix, self.container_name, len(result.failed_keys),
        )
        return result

    def _ensure_container(self) -> None:
        try:
            if self.container_client.exists():
                return
        except AzureError as e:
            raise translate_error(e, self.container_name) from e

        if not self.config.get("create_if_missing", True):
            raise create_backend_error(
                Diagnosis.MISSING_BUCKET,
                f"Container '{self.container_name}' does not exist",
                self.backend_type,
            )

        logger.info("Container %s does not exist, creating it", self.container_name)
        try:
            self.container_client.create_container()
        except ResourceExistsError:
            # Created concurrently
            pass
        except AzureError as e:
            raise translate_error(e, self.container_name) from e

    def _probe_list(self) -> None:
        try:
            pages = self.container_client.list_blobs(
                name_starts_with=self._full_prefix(None) or None, results_per_page=1
            ).by_page()
            next(iter(pages), None)
        except AzureError as e:
            raise translate_error(e, self.container_name) from e

    def close(self) -> None:
        with self._client_lock:
            if self._service_client is not None:
                self._service_client.close()
                self._service_client = None
                self._container_client = None

    def health_check(self) -> Dict[str, Any]:
        """Perform health check of Azure storage."""
        result = super().health_check()
        result["container_name"] = self.container_name
        return result
