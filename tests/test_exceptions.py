"""Tests for the error taxonomy."""

import pytest

from assetstore.core.exceptions import (
    AssetStoreError,
    BackendUnavailableError,
    ConfigurationError,
    Diagnosis,
    InvalidKeyError,
    NotFoundError,
    PermissionDeniedError,
    UnimplementedError,
    ValidationError,
    create_backend_error,
    create_configuration_error,
)


class TestAssetStoreError:
    """Test the base error."""

    def test_defaults(self):
        """Test default code and component inference."""
        error = AssetStoreError("boom")
        assert error.message == "boom"
        assert error.error_code == "ASSETSTORE_ERROR"
        assert error.component == "core"
        assert str(error) == "boom"

    def test_context_and_suggestions(self):
        """Test context and de-duplicated recovery suggestions."""
        error = AssetStoreError("boom")
        error.add_context("key", "a.txt")
        error.add_recovery_suggestion("retry")
        error.add_recovery_suggestion("retry")

        data = error.to_dict()
        assert data["error_type"] == "AssetStoreError"
        assert data["context"] == {"key": "a.txt"}
        assert data["recovery_suggestions"] == ["retry"]

    @pytest.mark.parametrize("error,component", [
        (InvalidKeyError("x"), "storage"),
        (NotFoundError("x"), "storage"),
        (BackendUnavailableError("x"), "backend"),
        (PermissionDeniedError("x"), "backend"),
        (UnimplementedError("x"), "backend"),
        (ConfigurationError("x"), "config"),
        (ValidationError("x"), "config"),
    ])
    def test_component_inference(self, error, component):
        """Test components are inferred from the class name."""
        assert error.component == component


class TestStorageErrors:
    """Test storage specific errors."""

    def test_key_errors_carry_key(self):
        """Test InvalidKey and NotFound expose the offending key."""
        assert InvalidKeyError("bad", key="../x").key == "../x"
        error = NotFoundError("missing", key="a.txt")
        assert error.key == "a.txt"
        assert error.context["key"] == "a.txt"

    def test_backend_error_diagnosis(self):
        """Test the diagnosis is recorded with matching recovery suggestions."""
        error = BackendUnavailableError(
            "unreachable", backend_type="aws_s3", diagnosis=Diagnosis.ENDPOINT_UNREACHABLE
        )
        assert error.diagnosis is Diagnosis.ENDPOINT_UNREACHABLE
        assert error.context["diagnosis"] == "endpoint_unreachable"
        assert error.context["backend_type"] == "aws_s3"
        assert error.recovery_suggestions

    def test_permission_denied_is_backend_error(self):
        """Test PermissionDeniedError defaults to ACCESS_DENIED."""
        error = PermissionDeniedError("denied")
        assert isinstance(error, BackendUnavailableError)
        assert error.diagnosis is Diagnosis.ACCESS_DENIED

    def test_configuration_error_context(self):
        """Test configuration errors record file, section and field."""
        error = ConfigurationError(
            "bad", config_file="storage.yaml", config_section="cache", field_name="type"
        )
        assert error.context == {
            "field_name": "type",
            "config_file": "storage.yaml",
            "config_section": "cache",
        }


class TestFactories:
    """Test error factory helpers."""

    def test_access_denied_builds_permission_error(self):
        """Test ACCESS_DENIED maps to PermissionDeniedError."""
        error = create_backend_error(Diagnosis.ACCESS_DENIED, "denied", "gcs")
        assert type(error) is PermissionDeniedError

    @pytest.mark.parametrize("diagnosis", [d for d in Diagnosis if d is not Diagnosis.ACCESS_DENIED])
    def test_other_diagnoses_build_backend_error(self, diagnosis):
        """Test every other diagnosis maps to BackendUnavailableError."""
        error = create_backend_error(diagnosis, "failed", "azure", ValueError("inner"))
        assert type(error) is BackendUnavailableError
        assert error.diagnosis is diagnosis
        assert error.context["original_error"] == "inner"
        assert error.context["original_error_type"] == "ValueError"

    def test_configuration_error_factory(self):
        """Test the configuration error helper."""
        error = create_configuration_error("missing", "bucket_name", backend_type="aws_s3")
        assert error.context["field_name"] == "bucket_name"
        assert error.context["backend_type"] == "aws_s3"
        assert error.recovery_suggestions == ["Set a valid value for 'bucket_name'"]
