"""User metadata normalization shared by the cloud adapters.

Each backend restricts metadata keys differently. Entries that cannot be
represented are dropped or rewritten instead of failing the upload.
"""

import logging
import re
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
MAX_VALUE_BYTES = 1024
S3_MAX_TOTAL_BYTES = 2048

CONTENT_TYPE_KEYS = ("content_type", "mime_type", "mimeType", "content-type")

_S3_INVALID = re.compile(r"[^a-z0-9-]")
_GCS_INVALID = re.compile(r"[^a-z0-9_-]")
_AZURE_INVALID = re.compile(r"[^A-Za-z0-9_]")


def resolve_content_type(metadata: dict[str, Any] | None) -> str:
    """Pick the content type from metadata, defaulting to application/octet-stream."""
    if metadata:
        for name in CONTENT_TYPE_KEYS:
            value = metadata.get(name)
            if value:
                return str(value)
    return DEFAULT_CONTENT_TYPE


def s3_metadata_key(name: str) -> str:
    return _S3_INVALID.sub("-", name.lower())


def gcs_metadata_key(name: str) -> str:
    return _GCS_INVALID.sub("-", name.lower())


def azure_metadata_key(name: str) -> str:
    """Azure metadata names must be valid C# identifiers."""
    transformed = _AZURE_INVALID.sub("_", name)
    if transformed and not (transformed[0].isascii() and transformed[0].isalpha()):
        transformed = "x" + transformed[1:]
    return transformed


def _truncate(value: str, limit: int) -> str:
    encoded = value.encode("utf-8")
    if len(encoded) <= limit:
        return value
    return encoded[:limit].decode("utf-8", errors="ignore")


def normalize_metadata(
    metadata: dict[str, Any] | None,
    transform_key: Callable[[str], str],
    ascii_only: bool = False,
    max_total_bytes: int | None = None,
) -> dict[str, str]:
    """
    Normalize user metadata for a backend.

    Args:
        metadata: Raw caller metadata
        transform_key: Backend-specific key rewrite
        ascii_only: Drop values that are not plain ASCII
        max_total_bytes: Stop adding entries once keys plus values exceed this size

    Returns:
        Metadata safe to pass to the backend SDK
    """
    if not metadata:
        return {}

    normalized: dict[str, str] = {}
    total = 0

    for name, raw_value in metadata.items():
        if name in CONTENT_TYPE_KEYS or raw_value is None:
            continue

        key = transform_key(str(name))
        if not key:
            logger.debug("Dropping metadata entry with unusable name %r", name)
            continue

        value = _truncate(str(raw_value), MAX_VALUE_BYTES)
        if ascii_only and not value.isascii():
            logger.debug("Dropping non-ASCII metadata value for %r", name)
            continue

        entry_size = len(key.encode("utf-8")) + len(value.encode("utf-8"))
        if max_total_bytes is not None and total + entry_size > max_total_bytes:
            logger.debug("Dropping metadata entry %r, total size limit reached", name)
            continue

        normalized[key] = value
        total += entry_size

    return normalized
