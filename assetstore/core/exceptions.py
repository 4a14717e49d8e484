"""Asset store exception hierarchy.

Every failure surfaced by a storage adapter, cache, or the dynamic holder is
one of the types below. Errors carry structured context and recovery
suggestions so operators can act on them without reading SDK internals.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class AssetStoreError(Exception):
    """Base exception for all asset store errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error identifier
        context: Additional error context and metadata
        recovery_suggestions: List of suggested recovery actions
        component: Component where the error originated
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        recovery_suggestions: Optional[List[str]] = None,
        component: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self._default_error_code()
        self.context = context or {}
        self.recovery_suggestions = recovery_suggestions or []
        self.component = component or self._infer_component()

    def _default_error_code(self) -> str:
        """Generate default error code based on exception class name."""
        return self.__class__.__name__.upper().replace("ERROR", "_ERROR")

    def _infer_component(self) -> str:
        """Infer component name from exception class."""
        name = self.__class__.__name__.lower()
        if "key" in name or "notfound" in name:
            return "storage"
        elif "backend" in name or "permission" in name or "unimplemented" in name:
            return "backend"
        elif "configuration" in name or "validation" in name:
            return "config"
        else:
            return "core"

    def add_context(self, key: str, value: Any) -> None:
        """Add additional context to the error."""
        self.context[key] = value

    def add_recovery_suggestion(self, suggestion: str) -> None:
        """Add a recovery suggestion to help users resolve the error."""
        if suggestion not in self.recovery_suggestions:
            self.recovery_suggestions.append(suggestion)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to structured dictionary for logging/reporting."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "component": self.component,
            "context": self.context,
            "recovery_suggestions": self.recovery_suggestions,
        }


class ValidationError(AssetStoreError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        expected_type: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        if field_name:
            self.add_context("field_name", field_name)
        if expected_type:
            self.add_context("expected_type", expected_type)
        if actual_value is not None:
            self.add_context("actual_value", str(actual_value))


class ConfigurationError(ValidationError):
    """Raised when adapter or cache configuration is invalid or incomplete."""

    def __init__(
        self,
        message: str,
        config_file: Optional[str] = None,
        config_section: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        if config_file:
            self.add_context("config_file", config_file)
        if config_section:
            self.add_context("config_section", config_section)


class InvalidKeyError(AssetStoreError):
    """Raised when a storage key fails sanitization.

    Raised client-side, before any backend call is made.
    """

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if key is not None:
            self.add_context("key", key)
        self.key = key


class NotFoundError(AssetStoreError):
    """Raised when a key does not exist in the backend."""

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if key is not None:
            self.add_context("key", key)
        self.key = key


class Diagnosis(str, Enum):
    """Actionable classification of a backend failure."""

    MISSING_BUCKET = "missing_bucket"
    ACCESS_DENIED = "access_denied"
    INVALID_ACCESS_KEY = "invalid_access_key"
    SIGNATURE_MISMATCH = "signature_mismatch"
    INVALID_CREDENTIALS = "invalid_credentials"
    ENDPOINT_UNREACHABLE = "endpoint_unreachable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


_RECOVERY_BY_DIAGNOSIS: Dict[Diagnosis, List[str]] = {
    Diagnosis.MISSING_BUCKET: [
        "Create the bucket or container, or enable create_if_missing",
        "Check the bucket/container name for typos",
    ],
    Diagnosis.ACCESS_DENIED: [
        "Grant the credentials read, write, list and delete permissions on the bucket",
    ],
    Diagnosis.INVALID_ACCESS_KEY: [
        "Check that the access key ID exists and is active",
    ],
    Diagnosis.SIGNATURE_MISMATCH: [
        "Check the secret access key; it does not match the access key ID",
    ],
    Diagnosis.INVALID_CREDENTIALS: [
        "Check the configured credentials or service account",
    ],
    Diagnosis.ENDPOINT_UNREACHABLE: [
        "Check the endpoint URL, DNS resolution and network connectivity",
    ],
    Diagnosis.TIMEOUT: [
        "Check network latency to the storage endpoint",
    ],
    Diagnosis.UNKNOWN: [
        "Inspect the original error for details",
    ],
}


class BackendUnavailableError(AssetStoreError):
    """Raised when a backend cannot be reached or used.

    Covers network failures, authentication problems and misconfiguration.
    The ``diagnosis`` attribute classifies the cause.
    """

    def __init__(
        self,
        message: str,
        backend_type: Optional[str] = None,
        diagnosis: Diagnosis = Diagnosis.UNKNOWN,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.backend_type = backend_type
        self.diagnosis = diagnosis
        if backend_type:
            self.add_context("backend_type", backend_type)
        self.add_context("diagnosis", diagnosis.value)
        for suggestion in _RECOVERY_BY_DIAGNOSIS.get(diagnosis, []):
            self.add_recovery_suggestion(suggestion)


class PermissionDeniedError(BackendUnavailableError):
    """Raised when the backend rejects an operation for lack of permission."""

    def __init__(
        self,
        message: str,
        backend_type: Optional[str] = None,
        diagnosis: Diagnosis = Diagnosis.ACCESS_DENIED,
        **kwargs,
    ):
        super().__init__(message, backend_type=backend_type, diagnosis=diagnosis, **kwargs)


class UnimplementedError(AssetStoreError):
    """Raised when a backend does not support a feature."""

    def __init__(self, message: str, feature: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if feature:
            self.add_context("feature", feature)


# Convenience functions for creating common exception scenarios

def create_backend_error(
    diagnosis: Diagnosis,
    message: str,
    backend_type: str,
    original_error: Optional[BaseException] = None,
) -> BackendUnavailableError:
    """Create the backend error matching a diagnosis.

    ``ACCESS_DENIED`` becomes a ``PermissionDeniedError``; everything else is a
    plain ``BackendUnavailableError``.
    """
    error_class = (
        PermissionDeniedError
        if diagnosis is Diagnosis.ACCESS_DENIED
        else BackendUnavailableError
    )
    error = error_class(message, backend_type=backend_type, diagnosis=diagnosis)

    if original_error is not None:
        error.add_context("original_error", str(original_error))
        error.add_context("original_error_type", type(original_error).__name__)

    return error


def create_configuration_error(
    message: str,
    field_name: str,
    backend_type: Optional[str] = None,
) -> ConfigurationError:
    """Create a configuration error pointing at the offending field."""
    error = ConfigurationError(message=message, field_name=field_name)
    if backend_type:
        error.add_context("backend_type", backend_type)
    error.add_recovery_suggestion(f"Set a valid value for '{field_name}'")
    return error
