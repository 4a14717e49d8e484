"""
Tests for migrating objects between storage backends.
"""

from unittest.mock import MagicMock

import pytest

from assetstore.core.exceptions import BackendUnavailableError, ConfigurationError, Diagnosis
from assetstore.storage.backends.base import FileMetadata
from assetstore.storage.backends.local import LocalStorage
from assetstore.storage.migration import (
    MigrationEstimate,
    MigrationOptions,
    MigrationStatus,
    StorageMigrator,
    format_bytes,
)


class FailingUploadStorage(LocalStorage):
    """Local storage that refuses uploads for selected keys."""

    def __init__(self, base_path, fail_keys=None):
        super().__init__(base_path)
        self.fail_keys = fail_keys

    def upload(self, data, key, metadata=None):
        if key != ".storage-connection-test" and (self.fail_keys is None or key in self.fail_keys):
            raise BackendUnavailableError("upload refused", backend_type="local")
        return super().upload(data, key, metadata)


class TruncatingStorage(LocalStorage):
    """Local storage that reports the wrong size after upload."""

    def get_metadata(self, key):
        metadata = super().get_metadata(key)
        return FileMetadata(key=metadata.key, size=metadata.size - 1, mime_type=metadata.mime_type)


@pytest.fixture
def source(tmp_path, site_files):
    storage = LocalStorage(str(tmp_path / "source"))
    for key, data in site_files.items():
        content_type = "text/html" if key.endswith(".html") else None
        storage.upload(data, key, {"content_type": content_type} if content_type else None)
    return storage


@pytest.fixture
def target(tmp_path):
    return LocalStorage(str(tmp_path / "target"))


class TestMigrationOptions:
    """Test option validation."""

    def test_defaults(self):
        """Test default options."""
        options = MigrationOptions()
        assert options.continue_on_error is True
        assert options.concurrency == 5
        assert options.verify_integrity is True
        assert options.delete_source_after is False
        assert options.skip_existing is False

    def test_concurrency_must_be_positive(self):
        """Test zero concurrency is rejected."""
        with pytest.raises(ConfigurationError):
            MigrationOptions(concurrency=0)


class TestStorageMigrator:
    """Test StorageMigrator."""

    def test_same_backend_rejected(self, source):
        """Test migrating a backend onto itself is refused."""
        with pytest.raises(ValueError):
            StorageMigrator(source, source)

    def test_estimate(self, source, site_files):
        """Test the estimate counts files and bytes."""
        estimate = StorageMigrator(source, MagicMock(spec=LocalStorage)).estimate()

        assert estimate.file_count == len(site_files)
        assert estimate.total_bytes == sum(len(d) for d in site_files.values())

    def test_estimate_with_prefix(self, source):
        """Test the estimate honours a prefix."""
        estimate = StorageMigrator(source, MagicMock(spec=LocalStorage)).estimate("acme/other/")
        assert estimate.file_count == 1

    def test_migrate_everything(self, source, target, site_files):
        """Test every object is copied with its bytes and content type."""
        result = StorageMigrator(source, target).migrate()

        assert result.success is True
        assert result.status is MigrationStatus.COMPLETED
        assert result.total_files == len(site_files)
        assert result.migrated_files == len(site_files)
        assert result.migrated_bytes == result.total_bytes
        assert result.errors == []
        for key, data in site_files.items():
            assert target.download(key) == data
            assert source.exists(key)
        assert target.get_metadata("acme/site/commits/abc123/index.html").mime_type == "text/html"
        assert not target.exists(".storage-connection-test")

    def test_filter_prefix(self, source, target):
        """Test only keys under the prefix are migrated."""
        result = StorageMigrator(source, target).migrate(
            MigrationOptions(filter_prefix="acme/site/commits/def456/")
        )

        assert result.total_files == 1
        assert target.list_keys() == ["acme/site/commits/def456/index.html"]

    def test_skip_existing(self, source, target):
        """Test keys already in the target are skipped and left untouched."""
        target.upload(b"already here", "acme/other/commits/abc123/index.html")

        result = StorageMigrator(source, target).migrate(MigrationOptions(skip_existing=True))

        assert result.skipped_files == 1
        assert result.migrated_files == 4
        assert target.download("acme/other/commits/abc123/index.html") == b"already here"

    def test_delete_source_after(self, source, target, site_files):
        """Test source objects are removed once copied."""
        result = StorageMigrator(source, target).migrate(MigrationOptions(delete_source_after=True))

        assert result.success
        assert source.list_keys() == []
        assert sorted(target.list_keys()) == sorted(site_files)

    def test_continue_on_error(self, source, tmp_path):
        """Test failures are recorded and the rest of the files still migrate."""
        failing_key = "acme/site/commits/abc123/assets/app.js"
        target = FailingUploadStorage(str(tmp_path / "target"), fail_keys={failing_key})

        result = StorageMigrator(source, target).migrate()

        assert result.success is False
        assert result.status is MigrationStatus.FAILED
        assert result.failed_files == 1
        assert result.migrated_files == 4
        assert result.errors[0].key == failing_key
        assert "upload refused" in result.errors[0].error

    def test_stop_on_error(self, source, tmp_path):
        """Test the run stops after the first failing batch."""
        target = FailingUploadStorage(str(tmp_path / "target"))

        result = StorageMigrator(source, target).migrate(
            MigrationOptions(continue_on_error=False, concurrency=1)
        )

        assert result.status is MigrationStatus.FAILED
        assert result.failed_files == 1
        assert result.migrated_files == 0
        assert result.total_files == 5

    def test_verification_failure(self, source, tmp_path):
        """Test a size mismatch after upload fails the file."""
        target = TruncatingStorage(str(tmp_path / "target"))

        result = StorageMigrator(source, target).migrate()

        assert result.failed_files == 5
        assert "Verification failed" in result.errors[0].error

    def test_verification_can_be_disabled(self, source, tmp_path):
        """Test verify_integrity=False skips the size check."""
        target = TruncatingStorage(str(tmp_path / "target"))

        result = StorageMigrator(source, target).migrate(MigrationOptions(verify_integrity=False))

        assert result.success

    def test_progress_callback(self, source, target, site_files):
        """Test the callback sees every file once."""
        seen = []
        StorageMigrator(source, target, progress_callback=lambda k, s: seen.append((k, s))).migrate()

        assert sorted(k for k, _ in seen) == sorted(site_files)
        assert all(s is MigrationStatus.COMPLETED for _, s in seen)

    def test_cancel_between_batches(self, source, target):
        """Test cancellation stops the run after the current batch."""
        migrator = StorageMigrator(source, target)
        migrator.progress_callback = lambda key, status: migrator.cancel()

        result = migrator.migrate(MigrationOptions(concurrency=2))

        assert result.status is MigrationStatus.CANCELLED
        assert result.success is False
        assert result.migrated_files == 2
        assert migrator.is_cancelled

    def test_target_unavailable(self, source):
        """Test an unreachable target aborts before anything is copied."""
        target = MagicMock(spec=LocalStorage)
        target.backend_type = "aws_s3"
        target.test_connection.side_effect = BackendUnavailableError(
            "unreachable", backend_type="aws_s3", diagnosis=Diagnosis.ENDPOINT_UNREACHABLE
        )

        with pytest.raises(BackendUnavailableError):
            StorageMigrator(source, target).migrate()
        target.upload.assert_not_called()

    def test_result_to_dict(self, source, target):
        """Test the result serializes its status."""
        data = StorageMigrator(source, target).migrate().to_dict()
        assert data["status"] == "completed"
        assert data["migrated_files"] == 5


class TestFormatBytes:
    """Test human-readable sizes."""

    @pytest.mark.parametrize("size,expected", [
        (0, "0 B"),
        (1023, "1023 B"),
        (1536, "1.5 KB"),
        (5 * 1024 * 1024, "5.0 MB"),
        (3 * 1024 ** 3, "3.0 GB"),
    ])
    def test_format(self, size, expected):
        """Test unit selection."""
        assert format_bytes(size) == expected

    def test_estimate_formatted_size(self):
        """Test the estimate exposes a formatted size."""
        assert MigrationEstimate(file_count=1, total_bytes=2048).formatted_size == "2.0 KB"
