"""Tests for the storage backend registry."""

from unittest.mock import MagicMock, patch

import pytest

from assetstore.core.exceptions import ConfigurationError
from assetstore.storage.backends.azure import AzureBlobStorage
from assetstore.storage.backends.gcs import GCSStorage
from assetstore.storage.backends.local import LocalStorage
from assetstore.storage.backends.s3 import S3Storage
from assetstore.storage.registry import (
    StorageRegistry,
    get_storage_registry,
    reset_storage_registry,
)


class CustomStorage(LocalStorage):
    """Local storage registered under a custom name."""

    @property
    def backend_type(self) -> str:
        return "custom"


class TestStorageRegistry:
    """Test StorageRegistry."""

    def setup_method(self):
        """Set up test fixtures."""
        self.registry = StorageRegistry()

    def test_builtin_backends(self):
        """Test every built-in backend type is registered."""
        assert set(self.registry.list_backend_types()) == {
            "local", "aws_s3", "s3_compatible", "gcs", "azure",
        }

    @pytest.mark.parametrize("alias,expected", [
        ("file", "local"),
        ("filesystem", "local"),
        ("s3", "aws_s3"),
        ("aws", "aws_s3"),
        ("minio", "s3_compatible"),
        ("r2", "s3_compatible"),
        ("s3-compatible", "s3_compatible"),
        ("google", "gcs"),
        ("google_cloud_storage", "gcs"),
        ("azure_blob", "azure"),
        ("blob", "azure"),
        ("gcs", "gcs"),
    ])
    def test_resolve_aliases(self, alias, expected):
        """Test aliases resolve to canonical types."""
        assert self.registry.resolve_backend_type(alias) == expected

    def test_resolve_unknown(self):
        """Test unknown types raise KeyError."""
        with pytest.raises(KeyError):
            self.registry.resolve_backend_type("ftp")

    def test_get_backend_class(self):
        """Test classes are looked up through aliases."""
        assert self.registry.get_backend_class("minio") is S3Storage
        assert self.registry.get_backend_class("google") is GCSStorage
        assert self.registry.get_backend_class("blob") is AzureBlobStorage
        assert self.registry.get_backend_class("file") is LocalStorage

    def test_create_local(self, tmp_path):
        """Test creating a local backend from config."""
        backend = self.registry.create_backend("file", {"base_path": str(tmp_path)})
        assert isinstance(backend, LocalStorage)
        assert backend.base_path == tmp_path.resolve()

    def test_create_s3_flavours(self):
        """Test S3 aliases pick the right endpoint resolver."""
        aws = self.registry.create_backend("s3", {"bucket_name": "assets"})
        minio = self.registry.create_backend(
            "minio", {"bucket_name": "assets", "endpoint": "http://localhost:9000"}
        )
        assert aws.backend_type == "aws_s3"
        assert minio.backend_type == "s3_compatible"

    def test_create_invalid_config(self):
        """Test adapter validation errors surface from create_backend."""
        with pytest.raises(ConfigurationError):
            self.registry.create_backend("minio", {"bucket_name": "assets"})

    def test_create_does_not_mutate_config(self, tmp_path):
        """Test the caller's config dict is copied."""
        config = {"base_path": str(tmp_path)}
        self.registry.create_backend("local", config)
        assert config == {"base_path": str(tmp_path)}

    def test_register_custom(self, tmp_path):
        """Test registering and creating a custom backend."""
        self.registry.register_backend("custom", CustomStorage, aliases=["mine"])

        backend = self.registry.create_backend("mine", {"base_path": str(tmp_path)})

        assert isinstance(backend, CustomStorage)
        assert backend.backend_type == "custom"

    def test_register_with_factory(self, tmp_path):
        """Test a custom factory is used instead of the class constructor."""
        factory = MagicMock(return_value=CustomStorage(str(tmp_path)))
        self.registry.register_backend("custom", CustomStorage, factory=factory)

        self.registry.create_backend("custom", {"x": 1})

        factory.assert_called_once_with({"x": 1})

    def test_register_duplicates_rejected(self):
        """Test duplicate types and aliases are rejected."""
        with pytest.raises(ValueError):
            self.registry.register_backend("local", CustomStorage)
        with pytest.raises(ValueError):
            self.registry.register_backend("s3", CustomStorage)
        with pytest.raises(ValueError):
            self.registry.register_backend("custom", CustomStorage, aliases=["minio"])

    def test_register_requires_storage_backend(self):
        """Test only StorageBackend subclasses are accepted."""
        with pytest.raises(ValueError):
            self.registry.register_backend("custom", dict)  # type: ignore[arg-type]
        with pytest.raises(ValueError):
            self.registry.register_backend("", CustomStorage)

    def test_unregister(self):
        """Test unregistering removes the type and its aliases."""
        self.registry.unregister_backend("azure")

        assert "azure" not in self.registry.list_backend_types()
        assert "blob" not in self.registry.list_aliases()
        with pytest.raises(KeyError):
            self.registry.unregister_backend("azure")

    def test_backend_info(self):
        """Test backend info describes the class and aliases."""
        info = self.registry.get_backend_info("r2")

        assert info["backend_type"] == "s3_compatible"
        assert info["class_name"] == "S3Storage"
        assert set(info["aliases"]) == {"minio", "r2", "s3-compatible"}
        assert info["module"] == "assetstore.storage.backends.s3"

    def test_str(self):
        """Test string representation."""
        assert str(self.registry) == "StorageRegistry(5 backends, 11 aliases)"


class TestHealthCheckAll:
    """Test health checks across several backends."""

    def test_mixed_results(self, tmp_path):
        """Test healthy, failed-to-create and unknown backends are summarized."""
        registry = StorageRegistry()

        results = registry.health_check_all({
            "local": {"base_path": str(tmp_path / "assets")},
            "minio": {"bucket_name": "assets"},
            "ftp": {},
        })

        assert results["summary"] == {"total": 3, "healthy": 1, "unhealthy": 0, "failed": 2}
        assert results["backends"]["local"]["status"] == "healthy"
        assert results["backends"]["minio"]["error_type"] == "ConfigurationError"
        assert results["backends"]["ftp"]["error_type"] == "KeyError"

    def test_unhealthy(self, tmp_path):
        """Test unhealthy backends are counted and closed."""
        registry = StorageRegistry()

        with patch("assetstore.storage.backends.local.os.access", return_value=False):
            results = registry.health_check_all({"file": {"base_path": str(tmp_path)}})

        assert results["summary"]["unhealthy"] == 1
        assert results["backends"]["file"]["diagnosis"] == "access_denied"


class TestPluginDiscovery:
    """Test entry point discovery."""

    def test_discover_plugins(self):
        """Test plugins advertised as entry points are registered."""
        entry_point = MagicMock()
        entry_point.name = "custom"
        entry_point.load.return_value = CustomStorage
        registry = StorageRegistry()

        with patch("assetstore.storage.registry.entry_points", return_value=[entry_point]) as mock_eps:
            discovered = registry.discover_plugins()

        mock_eps.assert_called_once_with(group="assetstore.storage.backends")
        assert discovered == ["custom"]
        assert registry.get_backend_class("custom") is CustomStorage

    def test_broken_plugin_skipped(self):
        """Test plugins that fail to load are logged and skipped."""
        broken = MagicMock()
        broken.name = "broken"
        broken.load.side_effect = ImportError("missing dependency")
        invalid = MagicMock()
        invalid.name = "invalid"
        invalid.load.return_value = dict
        registry = StorageRegistry()

        with patch("assetstore.storage.registry.entry_points", return_value=[broken, invalid]):
            assert registry.discover_plugins() == []


class TestGlobalRegistry:
    """Test the process-wide registry."""

    def test_singleton(self):
        """Test the global registry is created once."""
        assert get_storage_registry() is get_storage_registry()

    def test_reset(self):
        """Test reset creates a fresh registry on next access."""
        first = get_storage_registry()
        first.register_backend("custom", CustomStorage)

        reset_storage_registry()

        assert get_storage_registry() is not first
        with pytest.raises(KeyError):
            get_storage_registry().resolve_backend_type("custom")
