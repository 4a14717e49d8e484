"""Storage key sanitization and workspace prefixing.

Keys follow ``{owner}/{repo}/{asset_type}/{identifier}/{path...}`` and are
restricted to an ASCII subset. Every adapter runs keys through these helpers
so sanitization is identical across backends.
"""

import re

from .exceptions import InvalidKeyError

KEY_PATTERN = re.compile(r"^[A-Za-z0-9/_.~-]+$")


def _check_characters(value: str, original: str) -> None:
    if ".." in value:
        raise InvalidKeyError(
            f"Key must not contain '..': {original!r}",
            key=original,
            recovery_suggestions=["Use keys relative to the asset root"],
        )
    if not KEY_PATTERN.match(value):
        raise InvalidKeyError(
            f"Key contains characters outside [A-Za-z0-9/_.~-]: {original!r}",
            key=original,
            recovery_suggestions=["URL-encode or replace unsupported characters"],
        )


def sanitize_key(key: str) -> str:
    """
    Sanitize a storage key.

    Strips leading and trailing slashes, then rejects ``..`` and any
    character outside ``[A-Za-z0-9/_.~-]``.

    Raises:
        InvalidKeyError: If the key is empty or fails validation
    """
    if not isinstance(key, str):
        raise InvalidKeyError(f"Key must be a string, got {type(key).__name__}")

    sanitized = key.strip("/")
    if not sanitized:
        raise InvalidKeyError("Key cannot be empty", key=key)

    _check_characters(sanitized, key)
    return sanitized


def sanitize_prefix(prefix: str | None) -> str:
    """
    Sanitize a listing prefix.

    Unlike keys, a prefix may be empty (meaning "everything") and keeps a
    trailing slash so ``a/b/`` does not match ``a/bc``.
    """
    if not prefix:
        return ""

    sanitized = prefix.lstrip("/")
    if not sanitized:
        return ""

    _check_characters(sanitized, prefix)
    return sanitized


def normalize_key_prefix(key_prefix: str | None) -> str:
    """Normalize a workspace key prefix, returning '' when none is set."""
    if not key_prefix:
        return ""
    return sanitize_key(key_prefix)


def prefix_key(key_prefix: str, key: str) -> str:
    """Apply the workspace prefix to an already sanitized key or prefix."""
    if not key_prefix:
        return key
    return f"{key_prefix}/{key}"


def unprefix_key(key_prefix: str, key: str) -> str:
    """Strip the workspace prefix from a backend key."""
    if not key_prefix:
        return key
    marker = f"{key_prefix}/"
    if key.startswith(marker):
        return key[len(marker):]
    return key
