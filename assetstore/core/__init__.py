"""Core types shared by every storage component."""

from .exceptions import (
    AssetStoreError,
    BackendUnavailableError,
    ConfigurationError,
    Diagnosis,
    InvalidKeyError,
    NotFoundError,
    PermissionDeniedError,
    UnimplementedError,
    ValidationError,
)
from .keys import prefix_key, sanitize_key, sanitize_prefix, unprefix_key

__all__ = [
    "AssetStoreError",
    "BackendUnavailableError",
    "ConfigurationError",
    "Diagnosis",
    "InvalidKeyError",
    "NotFoundError",
    "PermissionDeniedError",
    "UnimplementedError",
    "ValidationError",
    "prefix_key",
    "sanitize_key",
    "sanitize_prefix",
    "unprefix_key",
]
