"""
S3-compatible storage backend.

One implementation serves native AWS S3 and any S3-compatible service
(MinIO, Cloudflare R2, Wasabi, ...). The difference between the two is
confined to an endpoint resolver: AWS derives its endpoint from the region,
compatible services parse a configured endpoint URL.
"""

import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
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
from .metadata import (
    S3_MAX_TOTAL_BYTES,
    normalize_metadata,
    resolve_content_type,
    s3_metadata_key,
)

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000
LIST_PAGE_SIZE = 1000
DEFAULT_REGION = "us-east-1"

S3_ERRORS = (ClientError, BotoCoreError)

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
_MISSING_BUCKET_CODES = {"NoSuchBucket"}
_ACCESS_DENIED_CODES = {"AccessDenied", "AllAccessDisabled", "403", "Forbidden"}
_BAD_TOKEN_CODES = {"ExpiredToken", "InvalidToken", "TokenRefreshRequired"}
_IAM_NOT_AUTHORIZED = re.compile(
    r"not authorized to perform:?\s*(?P<action>s3:\w+)(?:\s+on resource:?\s*\"?(?P<resource>[^\s\"]+))?",
    re.IGNORECASE,
)


def translate_error(
    exc: Exception,
    backend_type: str,
    bucket: str,
    key: Optional[str] = None,
) -> AssetStoreError:
    """
    Map a boto3/botocore exception onto the storage error taxonomy.

    Args:
        exc: Exception raised by the S3 client
        backend_type: Adapter type used in the message
        bucket: Bucket the operation targeted
        key: Caller-facing key for object operations; None for bucket operations

    Returns:
        NotFoundError for a missing object, otherwise a diagnosed backend error
    """
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        detail = error.get("Message") or str(exc)
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

        if code in _MISSING_BUCKET_CODES:
            return create_backend_error(
                Diagnosis.MISSING_BUCKET, f"Bucket '{bucket}' does not exist", backend_type, exc
            )
        if code in _NOT_FOUND_CODES or status == 404:
            if key is not None:
                return NotFoundError(f"File not found: {key}", key=key)
            return create_backend_error(
                Diagnosis.MISSING_BUCKET, f"Bucket '{bucket}' does not exist", backend_type, exc
            )
        if code == "InvalidAccessKeyId":
            return create_backend_error(
                Diagnosis.INVALID_ACCESS_KEY,
                "The access key ID is not recognised by the storage service",
                backend_type,
                exc,
            )
        if code == "SignatureDoesNotMatch":
            return create_backend_error(
                Diagnosis.SIGNATURE_MISMATCH,
                "The secret access key does not match the access key ID",
                backend_type,
                exc,
            )
        if code in _BAD_TOKEN_CODES:
            return create_backend_error(
                Diagnosis.INVALID_CREDENTIALS,
                f"Session credentials were rejected: {detail}",
                backend_type,
                exc,
            )
        if code in _ACCESS_DENIED_CODES or status == 403:
            match = _IAM_NOT_AUTHORIZED.search(detail)
            if match:
                message = (
                    f"Access denied to bucket '{bucket}': credentials are not "
                    f"authorized to perform {match.group('action')}"
                )
                if match.group("resource"):
                    message += f" on {match.group('resource')}"
            else:
                message = f"Access denied to bucket '{bucket}'"
            return create_backend_error(Diagnosis.ACCESS_DENIED, message, backend_type, exc)

        return create_backend_error(
            Diagnosis.UNKNOWN, f"Unknown backend error ({code or status}): {detail}", backend_type, exc
        )

    if isinstance(exc, (ConnectTimeoutError, ReadTimeoutError)):
        return create_backend_error(
            Diagnosis.TIMEOUT, f"Timed out talking to the storage endpoint: {exc}", backend_type, exc
        )
    if isinstance(exc, EndpointConnectionError):
        return create_backend_error(
            Diagnosis.ENDPOINT_UNREACHABLE,
            f"Could not reach the storage endpoint: {exc}",
            backend_type,
            exc,
        )
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return create_backend_error(
            Diagnosis.INVALID_CREDENTIALS, f"No usable credentials: {exc}", backend_type, exc
        )

    return create_backend_error(Diagnosis.UNKNOWN, f"Unknown backend error: {exc}", backend_type, exc)


@dataclass(frozen=True)
class ResolvedEndpoint:
    """Connection parameters an endpoint resolver hands to the S3 client."""

    endpoint_url: str
    region: str
    use_ssl: bool
    force_path_style: bool


class AwsEndpointResolver:
    """Native AWS S3: the endpoint is derived from the region."""

    backend_type = "aws_s3"

    def resolve(self, config: Dict[str, Any]) -> ResolvedEndpoint:
        region = config.get("region") or DEFAULT_REGION
        return ResolvedEndpoint(
            endpoint_url=f"https://s3.{region}.amazonaws.com",
            region=region,
            use_ssl=True,
            force_path_style=bool(config.get("force_path_style", False)),
        )


class CustomEndpointResolver:
    """Generic S3-compatible services: the endpoint URL is supplied by configuration."""

    backend_type = "s3_compatible"

    def resolve(self, config: Dict[str, Any]) -> ResolvedEndpoint:
        endpoint = config.get("endpoint")
        if not endpoint:
            raise ConfigurationError(
                "endpoint is required for S3-compatible storage", field_name="endpoint"
            )

        parsed = urlparse(endpoint if "://" in endpoint else f"https://{endpoint}")
        try:
            port = parsed.port
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid endpoint URL: {endpoint}", field_name="endpoint", actual_value=endpoint
            ) from e
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ConfigurationError(
                f"Invalid endpoint URL: {endpoint}", field_name="endpoint", actual_value=endpoint
            )

        netloc = f"{parsed.hostname}:{port}" if port else parsed.hostname
        return ResolvedEndpoint(
            endpoint_url=f"{parsed.scheme}://{netloc}",
            region=config.get("region") or DEFAULT_REGION,
            use_ssl=parsed.scheme == "https",
            force_path_style=bool(config.get("force_path_style", True)),
        )


class S3Storage(StorageBackend):
    """
    S3-compatible storage backend.

    Configuration:
        bucket_name: Bucket name (required)
        region: Region (default: "us-east-1")
        endpoint: Endpoint URL, required for S3-compatible services
        access_key_id / secret_access_key / session_token: Credentials
            (optional, falls back to the boto3 credential chain)
        key_prefix: Workspace namespace applied to every key
        force_path_style: Path-style addressing (default: True for custom endpoints)
        create_if_missing: Create the bucket in test_connection (default: True)
        connect_timeout / read_timeout: Socket timeouts in seconds (default: 10 / 60)
        max_attempts: Total attempts per request, including the first (default: 1)

    Examples:
        >>> storage = S3Storage.aws({"bucket_name": "assets", "region": "eu-west-1"})
        >>> storage = S3Storage.compatible({
        ...     "bucket_name": "assets",
        ...     "endpoint": "http://localhost:9000",
        ... })
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, resolver: Any = None):
        """
        Initialize S3 storage backend.

        Args:
            config: S3 configuration including bucket name and credentials
            resolver: Endpoint resolver; chosen from ``config["endpoint"]`` when omitted
        """
        config = dict(config or {})
        if resolver is None:
            resolver = CustomEndpointResolver() if config.get("endpoint") else AwsEndpointResolver()
        self.resolver = resolver
        super().__init__(config)
        self.endpoint = self.resolver.resolve(self.config)
        self.bucket_name = self.config["bucket_name"]
        self._s3_client = None
        self._client_lock = threading.Lock()

    @classmethod
    def aws(cls, config: Optional[Dict[str, Any]] = None) -> "S3Storage":
        """Create an adapter for native AWS S3."""
        return cls(config, resolver=AwsEndpointResolver())

    @classmethod
    def compatible(cls, config: Optional[Dict[str, Any]] = None) -> "S3Storage":
        """Create an adapter for an S3-compatible service at ``config["endpoint"]``."""
        return cls(config, resolver=CustomEndpointResolver())

    @property
    def backend_type(self) -> str:
        """Return the backend type identifier."""
        return self.resolver.backend_type

    def _validate_config(self) -> None:
        """Validate S3 configuration."""
        bucket_name = self.config.get("bucket_name")
        if not bucket_name:
            raise create_configuration_error(
                "bucket_name is required for S3 storage", "bucket_name", self.backend_type
            )
        if len(bucket_name) < 3 or len(bucket_name) > 63:
            raise ConfigurationError(
                "bucket_name must be 3-63 characters long",
                field_name="bucket_name",
                actual_value=bucket_name,
            )
        if bool(self.config.get("access_key_id")) != bool(self.config.get("secret_access_key")):
            raise ConfigurationError(
                "access_key_id and secret_access_key must be provided together",
                field_name="access_key_id",
            )
        # Raises ConfigurationError for malformed endpoints
        self.resolver.resolve(self.config)

    @property
    def s3_client(self):
        """Get boto3 S3 client with lazy initialization."""
        if self._s3_client is None:
            with self._client_lock:
                if self._s3_client is None:
                    self._s3_client = self._create_client()
        return self._s3_client

    def _create_client(self):
        client_config = Config(
            connect_timeout=self.config.get("connect_timeout", CONNECT_TIMEOUT),
            read_timeout=self.config.get("read_timeout", 60),
            retries={"max_attempts": self.config.get("max_attempts", 1), "mode": "standard"},
            signature_version="s3v4",
            s3={"addressing_style": "path" if self.endpoint.force_path_style else "auto"},
        )

        client_kwargs: Dict[str, Any] = {
            "config": client_config,
            "region_name": self.endpoint.region,
            "endpoint_url": self.endpoint.endpoint_url,
            "use_ssl": self.endpoint.use_ssl,
        }
        if self.config.get("access_key_id"):
            client_kwargs["aws_access_key_id"] = self.config["access_key_id"]
            client_kwargs["aws_secret_access_key"] = self.config["secret_access_key"]
        if self.config.get("session_token"):
            client_kwargs["aws_session_token"] = self.config["session_token"]

        # Sessions are not thread-safe; give each adapter its own
        session = boto3.session.Session()
        return session.client("s3", **client_kwargs)

    def _error(self, exc: Exception, key: Optional[str] = None) -> AssetStoreError:
        return translate_error(exc, self.backend_type, self.bucket_name, key)

    def upload(self, data: bytes, key: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        object_key = self._full_key(key)
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=object_key,
                Body=data,
                ContentType=resolve_content_type(metadata),
                Metadata=normalize_metadata(
                    metadata, s3_metadata_key, ascii_only=True, max_total_bytes=S3_MAX_TOTAL_BYTES
                ),
            )
        except S3_ERRORS as e:
            raise self._error(e) from e

        logger.debug("Uploaded %d bytes to s3://%s/%s", len(data), self.bucket_name, object_key)
        return self._strip_prefix(object_key)

    def download(self, key: str) -> bytes:
        object_key = self._full_key(key)
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=object_key)
            return response["Body"].read()
        except S3_ERRORS as e:
            raise self._error(e, key) from e

    def delete(self, key: str) -> None:
        try:
            self._remove(self._full_key(key))
        except AssetStoreError as e:
            logger.warning("Failed to delete %s from %s: %s", key, self.backend_type, e.message)

    def _remove(self, full_key: str) -> None:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=full_key)
        except S3_ERRORS as e:
            raise self._error(e) from e

    def exists(self, key: str) -> bool:
        object_key = self._full_key(key)
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=object_key)
            return True
        except S3_ERRORS as e:
            error = self._error(e, key)
            if isinstance(error, NotFoundError):
                return False
            raise error from e

    def get_url(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        object_key = self._full_key(key)
        try:
            return self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": object_key},
                ExpiresIn=ttl_seconds,
            )
        except S3_ERRORS as e:
            raise self._error(e) from e

    def supports_presigned_upload_urls(self) -> bool:
        return True

    def get_presigned_upload_url(self, key: str, ttl_seconds: int = DEFAULT_URL_TTL) -> str:
        object_key = self._full_key(key)
        try:
            return self.s3_client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket_name, "Key": object_key},
                ExpiresIn=ttl_seconds,
            )
        except S3_ERRORS as e:
            raise self._error(e) from e

    def _iter_object_keys(self, full_prefix: str) -> Iterator[str]:
        """Yield every backend key under full_prefix, following continuation tokens."""
        continuation_token = None

        while True:
            list_args = {
                "Bucket": self.bucket_name,
                "Prefix": full_prefix,
                "MaxKeys": LIST_PAGE_SIZE,
            }
            if continuation_token:
                list_args["ContinuationToken"] = continuation_token

            response = self.s3_client.list_objects_v2(**list_args)

            for obj in response.get("Contents", []):
                yield obj["Key"]

            if not response.get("IsTruncated", False):
                break
            continuation_token = response.get("NextContinuationToken")

    def list_keys(self, prefix: Optional[str] = None) -> List[str]:
        full_prefix = self._full_prefix(prefix)
        try:
            return [self._strip_prefix(k) for k in self._iter_object_keys(full_prefix)]
        except S3_ERRORS as e:
            raise self._error(e) from e

    def get_metadata(self, key: str) -> FileMetadata:
        object_key = self._full_key(key)
        try:
            head = self.s3_client.head_object(Bucket=self.bucket_name, Key=object_key)
        except S3_ERRORS as e:
            raise self._error(e, key) from e

        return FileMetadata(
            key=self._strip_prefix(object_key),
            size=head.get("ContentLength", 0),
            mime_type=head.get("ContentType"),
            last_modified=head.get("LastModified"),
            etag=head.get("ETag", "").strip('"') or None,
        )

    def delete_prefix(self, prefix: str) -> DeletePrefixResult:
        full_prefix = self._require_prefix(prefix)
        result = DeletePrefixResult()

        try:
            object_keys = list(self._iter_object_keys(full_prefix))
        except S3_ERRORS as e:
            raise self._error(e) from e

        for start in range(0, len(object_keys), DELETE_BATCH_SIZE):
            batch = object_keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = self.s3_client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except S3_ERRORS as e:
                logger.warning(
                    "Batch delete of %d objects under %s failed: %s", len(batch), prefix, e
                )
                result.failed_keys.extend(self._strip_prefix(k) for k in batch)
                continue

            errors = response.get("Errors", [])
            for error in errors:
                logger.warning(
                    "Failed to delete %s: %s", error.get("Key"), error.get("Message") or error.get("Code")
                )
                result.failed_keys.append(self._strip_prefix(error.get("Key", "")))
            result.deleted_count += len(batch) - len(errors)

        logger.info(
            "Deleted %d objects under %s from %s (%d failed)",
            result.deleted_count, prefix, self.bucket_name, len(result.failed_keys),
        )
        return result

    def _ensure_container(self) -> None:
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return
        except S3_ERRORS as e:
            error = self._error(e)
            if getattr(error, "diagnosis", None) is not Diagnosis.MISSING_BUCKET:
                raise error from e
            if not self.config.get("create_if_missing", True):
                raise error from e

        logger.info("Bucket %s does not exist, creating it", self.bucket_name)
        create_args: Dict[str, Any] = {"Bucket": self.bucket_name}
        if self.backend_type == "aws_s3" and self.endpoint.region != DEFAULT_REGION:
            create_args["CreateBucketConfiguration"] = {"LocationConstraint": self.endpoint.region}
        try:
            self.s3_client.create_bucket(**create_args)
        except S3_ERRORS as e:
            raise self._error(e) from e

    def _probe_list(self) -> None:
        try:
            self.s3_client.list_objects_v2(
                Bucket=self.bucket_name, Prefix=self._full_prefix(None), MaxKeys=1
            )
        except S3_ERRORS as e:
            raise self._error(e) from e

    def close(self) -> None:
        with self._client_lock:
            if self._s3_client is not None:
                self._s3_client.close()
                self._s3_client = None

    def health_check(self) -> Dict[str, Any]:
        """Perform health check of S3 storage."""
        result = super().health_check()
        result.update({
            "bucket_name": self.bucket_name,
            "endpoint": self.endpoint.endpoint_url,
        })
        return result
