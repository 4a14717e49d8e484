"""Storage backend implementations for deployed assets."""

from .azure import AzureBlobStorage
from .base import DeletePrefixResult, FileMetadata, StorageBackend
from .gcs import GCSStorage
from .local import LocalStorage
from .s3 import AwsEndpointResolver, CustomEndpointResolver, S3Storage

__all__ = [
    "StorageBackend",
    "FileMetadata",
    "DeletePrefixResult",
    "LocalStorage",
    "S3Storage",
    "AwsEndpointResolver",
    "CustomEndpointResolver",
    "GCSStorage",
    "AzureBlobStorage",
]
