"""
Copy stored objects from one backend to another.

Used when a deployment moves its assets between providers: the migrator
lists the source, copies each object to the target with its content type,
optionally verifies and deletes the source copy, and reports a summary.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from ..core.exceptions import AssetStoreError, BackendUnavailableError, ConfigurationError
from ..observability.logging import trace_operation
from .backends.base import StorageBackend

logger = logging.getLogger(__name__)

MAX_RECORDED_ERRORS = 100


class MigrationStatus(Enum):
    """Status of a migration run or of a single file within it."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class MigrationOptions:
    """
    Options controlling a migration run.

    Attributes:
        continue_on_error: Keep going when individual files fail
        concurrency: Number of files copied in parallel
        verify_integrity: Compare target size with the bytes copied
        delete_source_after: Delete each source object once it is copied
        skip_existing: Skip keys that already exist in the target
        filter_prefix: Only migrate keys under this prefix
    """

    continue_on_error: bool = True
    concurrency: int = 5
    verify_integrity: bool = True
    delete_source_after: bool = False
    skip_existing: bool = False
    filter_prefix: Optional[str] = None

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ConfigurationError(
                "concurrency must be at least 1",
                field_name="concurrency",
                actual_value=self.concurrency,
            )


@dataclass
class MigrationError:
    """A file that could not be migrated."""

    key: str
    error: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class MigrationEstimate:
    """Scope of a migration before it runs."""

    file_count: int
    total_bytes: int

    @property
    def formatted_size(self) -> str:
        return format_bytes(self.total_bytes)


@dataclass
class MigrationResult:
    """Summary of a finished, failed or cancelled migration."""

    success: bool
    status: MigrationStatus
    total_files: int
    migrated_files: int = 0
    failed_files: int = 0
    skipped_files: int = 0
    total_bytes: int = 0
    migrated_bytes: int = 0
    duration_ms: float = 0.0
    errors: list[MigrationError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "total_files": self.total_files,
            "migrated_files": self.migrated_files,
            "failed_files": self.failed_files,
            "skipped_files": self.skipped_files,
            "total_bytes": self.total_bytes,
            "migrated_bytes": self.migrated_bytes,
            "duration_ms": self.duration_ms,
            "errors": [error.to_dict() for error in self.errors],
        }


@dataclass
class _FileOutcome:
    key: str
    status: MigrationStatus
    size: int = 0
    error: Optional[str] = None


ProgressCallback = Callable[[str, MigrationStatus], None]


class StorageMigrator:
    """
    Copies objects from a source backend to a target backend.

    Files are processed in batches of ``options.concurrency``; the cancel
    flag and the stop-on-error condition are checked between batches, so a
    batch that has started always finishes.

    Examples:
        >>> migrator = StorageMigrator(LocalStorage("./uploads"), S3Storage.aws(cfg))
        >>> migrator.estimate().file_count
        42
        >>> result = migrator.migrate(MigrationOptions(skip_existing=True))
        >>> result.success
        True
    """

    def __init__(
        self,
        source: StorageBackend,
        target: StorageBackend,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        if source is target:
            raise ValueError("source and target must be different backends")
        self.source = source
        self.target = target
        self.progress_callback = progress_callback
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop the running migration after the current batch."""
        self._cancelled.set()
        logger.info("Migration cancellation requested")

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def estimate(self, filter_prefix: Optional[str] = None) -> MigrationEstimate:
        """Count the files and bytes a migration would copy."""
        keys = self.source.list_keys(filter_prefix)
        return MigrationEstimate(file_count=len(keys), total_bytes=self._total_size(keys))

    def migrate(self, options: Optional[MigrationOptions] = None) -> MigrationResult:
        """
        Run the migration.

        Args:
            options: Migration options (defaults used when omitted)

        Returns:
            MigrationResult summarising the run

        Raises:
            BackendUnavailableError: If the target fails its connection test
        """
        options = options or MigrationOptions()
        self._cancelled.clear()
        start_time = time.time()

        try:
            self.target.test_connection()
        except BackendUnavailableError as e:
            logger.error("Migration target %s is unavailable: %s", self.target.backend_type, e)
            raise

        keys = self.source.list_keys(options.filter_prefix)
        result = MigrationResult(
            success=False,
            status=MigrationStatus.IN_PROGRESS,
            total_files=len(keys),
            total_bytes=self._total_size(keys),
        )

        logger.info(
            "Migrating %d files (%s) from %s to %s",
            len(keys),
            format_bytes(result.total_bytes),
            self.source.backend_type,
            self.target.backend_type,
        )

        with trace_operation(
            "storage.migrate",
            source=self.source.backend_type,
            target=self.target.backend_type,
            total_files=len(keys),
        ) as span:
            with ThreadPoolExecutor(max_workers=options.concurrency) as executor:
                for start in range(0, len(keys), options.concurrency):
                    if self.is_cancelled:
                        result.status = MigrationStatus.CANCELLED
                        break

                    batch = keys[start:start + options.concurrency]
                    futures = [executor.submit(self._migrate_file, key, options) for key in batch]
                    for future in as_completed(futures):
                        self._record(result, future.result())

                    if result.failed_files and not options.continue_on_error:
                        result.status = MigrationStatus.FAILED
                        break

            if result.status is MigrationStatus.IN_PROGRESS:
                result.status = (
                    MigrationStatus.COMPLETED if result.failed_files == 0 else MigrationStatus.FAILED
                )
            span.update(
                migration_status=result.status.value,
                migrated_files=result.migrated_files,
                failed_files=result.failed_files,
            )

        result.success = result.status is MigrationStatus.COMPLETED
        result.duration_ms = (time.time() - start_time) * 1000

        logger.info(
            "Migration %s: %d/%d migrated, %d skipped, %d failed in %.0fms",
            result.status.value,
            result.migrated_files,
            result.total_files,
            result.skipped_files,
            result.failed_files,
            result.duration_ms,
        )
        return result

    def _migrate_file(self, key: str, options: MigrationOptions) -> _FileOutcome:
        """Copy one object. Storage errors become a failed outcome."""
        try:
            if options.skip_existing and self.target.exists(key):
                return _FileOutcome(key, MigrationStatus.SKIPPED)

            data = self.source.download(key)
            metadata = self.source.get_metadata(key)
            self.target.upload(data, key, {"content_type": metadata.mime_type})

            if options.verify_integrity:
                copied = self.target.get_metadata(key)
                if copied.size != len(data):
                    return _FileOutcome(
                        key,
                        MigrationStatus.FAILED,
                        error=(
                            f"Verification failed: target has {copied.size} bytes, "
                            f"expected {len(data)}"
                        ),
                    )

            if options.delete_source_after:
                self.source.delete(key)

            return _FileOutcome(key, MigrationStatus.COMPLETED, size=len(data))

        except AssetStoreError as e:
            logger.warning("Failed to migrate %s: %s", key, e)
            return _FileOutcome(key, MigrationStatus.FAILED, error=str(e))

    def _record(self, result: MigrationResult, outcome: _FileOutcome) -> None:
        if outcome.status is MigrationStatus.COMPLETED:
            result.migrated_files += 1
            result.migrated_bytes += outcome.size
        elif outcome.status is MigrationStatus.SKIPPED:
            result.skipped_files += 1
        else:
            result.failed_files += 1
            if len(result.errors) < MAX_RECORDED_ERRORS:
                result.errors.append(MigrationError(outcome.key, outcome.error or "Unknown error"))

        if self.progress_callback is not None:
            self.progress_callback(outcome.key, outcome.status)

    def _total_size(self, keys: list[str]) -> int:
        total = 0
        for key in keys:
            try:
                total += self.source.get_metadata(key).size
            except AssetStoreError:
                # Deleted since listing
                continue
        return total


def format_bytes(size: int) -> str:
    """Format a byte count for humans."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.1f} GB"
