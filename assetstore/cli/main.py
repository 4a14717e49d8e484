#!/usr/bin/env python3
"""Asset store CLI - inspect and manage stored assets from the shell."""

import functools
import json
import sys
from pathlib import Path
from typing import Any, Callable, Optional

import click

from assetstore.core.exceptions import AssetStoreError, BackendUnavailableError
from assetstore.observability import LoggingConfig, configure_logging, correlation_context
from assetstore.storage.backends.base import DEFAULT_URL_TTL, StorageBackend
from assetstore.storage.cache.caching import CachingStorage
from assetstore.storage.config import StorageConfig, build_storage
from assetstore.storage.migration import MigrationOptions, MigrationStatus, StorageMigrator


def handle_storage_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Turn storage errors into a clean CLI failure."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except AssetStoreError as e:
            message = e.message
            if isinstance(e, BackendUnavailableError):
                message = f"{message} [{e.diagnosis.value}]"
            for suggestion in e.recovery_suggestions:
                click.echo(f"  hint: {suggestion}", err=True)
            raise click.ClickException(message) from e

    return wrapper


def _load_config(config_path: Optional[Path]) -> StorageConfig:
    if config_path is not None:
        return StorageConfig.from_yaml_file(config_path)
    return StorageConfig.from_environment()


def get_storage(ctx: click.Context) -> StorageBackend:
    """Build the configured storage once per invocation."""
    obj = ctx.ensure_object(dict)
    if "storage" not in obj:
        storage = build_storage(obj["config"])
        ctx.call_on_close(storage.close)
        obj["storage"] = storage
    return obj["storage"]


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Storage configuration YAML file (default: environment variables)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Log level",
)
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines")
@click.pass_context
@handle_storage_errors
def cli(ctx: click.Context, config_path: Optional[Path], log_level: str, json_logs: bool) -> None:
    """Asset store - manage deployed static assets across storage backends."""
    configure_logging(
        LoggingConfig(level=log_level, format="json" if json_logs else "console")
    )
    ctx.ensure_object(dict)
    ctx.obj["correlation_id"] = ctx.with_resource(correlation_context())
    ctx.obj["config"] = _load_config(config_path)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print the full health report as JSON")
@click.pass_context
@handle_storage_errors
def check(ctx: click.Context, as_json: bool) -> None:
    """Test the connection to the configured backend."""
    storage = get_storage(ctx)

    if as_json:
        report = storage.health_check()
        click.echo(json.dumps(report, indent=2, default=str))
        if report.get("status") != "healthy":
            ctx.exit(1)
        return

    storage.test_connection()
    click.echo(f"✓ {storage.backend_type} backend is reachable and writable")


@cli.command(name="ls")
@click.argument("prefix", required=False)
@click.option("--long", "-l", "long_format", is_flag=True, help="Show size and type")
@click.pass_context
@handle_storage_errors
def list_keys(ctx: click.Context, prefix: Optional[str], long_format: bool) -> None:
    """List keys, optionally under PREFIX."""
    storage = get_storage(ctx)
    for key in storage.list_keys(prefix):
        if long_format:
            metadata = storage.get_metadata(key)
            mime_type = metadata.mime_type or "-"
            click.echo(f"{metadata.size:>12}  {mime_type:<32}  {key}")
        else:
            click.echo(key)


@cli.command()
@click.argument("key")
@click.pass_context
@handle_storage_errors
def cat(ctx: click.Context, key: str) -> None:
    """Write the object stored at KEY to stdout."""
    data = get_storage(ctx).download(key)
    stdout = click.get_binary_stream("stdout")
    stdout.write(data)
    stdout.flush()


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("key")
@click.option("--content-type", help="Content type (default: guessed from KEY)")
@click.pass_context
@handle_storage_errors
def put(ctx: click.Context, file: Path, key: str, content_type: Optional[str]) -> None:
    """Upload FILE to KEY."""
    metadata = {"content_type": content_type} if content_type else None
    stored_key = get_storage(ctx).upload(file.read_bytes(), key, metadata)
    click.echo(f"✓ Uploaded {file} to {stored_key}")


@cli.command()
@click.argument("key")
@click.pass_context
@handle_storage_errors
def rm(ctx: click.Context, key: str) -> None:
    """Delete KEY. Deleting a missing key is not an error."""
    get_storage(ctx).delete(key)
    click.echo(f"✓ Deleted {key}")


@cli.command(name="rm-prefix")
@click.argument("prefix")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
@handle_storage_errors
def rm_prefix(ctx: click.Context, prefix: str, yes: bool) -> None:
    """Delete every key under PREFIX."""
    if not yes:
        click.confirm(f"Delete every object under '{prefix}'?", abort=True)

    result = get_storage(ctx).delete_prefix(prefix)
    click.echo(f"✓ Deleted {result.deleted_count} objects under {prefix}")
    if result.failed_keys:
        for key in result.failed_keys:
            click.echo(f"  failed: {key}", err=True)
        raise click.ClickException(f"{len(result.failed_keys)} objects could not be deleted")


@cli.command()
@click.argument("key")
@click.option(
    "--ttl",
    type=click.IntRange(min=1),
    default=DEFAULT_URL_TTL,
    show_default=True,
    help="Lifetime of signed URLs in seconds",
)
@click.option("--upload", is_flag=True, help="Print a presigned upload URL instead")
@click.pass_context
@handle_storage_errors
def url(ctx: click.Context, key: str, ttl: int, upload: bool) -> None:
    """Print a URL for KEY."""
    storage = get_storage(ctx)
    if upload:
        click.echo(storage.get_presigned_upload_url(key, ttl))
    else:
        click.echo(storage.get_url(key, ttl))


@cli.command()
@click.option(
    "--target-config",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML configuration of the target backend",
)
@click.option("--prefix", "filter_prefix", help="Only migrate keys under this prefix")
@click.option("--concurrency", type=click.IntRange(min=1), default=5, show_default=True)
@click.option("--skip-existing", is_flag=True, help="Skip keys already in the target")
@click.option("--delete-source", is_flag=True, help="Delete source objects once copied")
@click.option("--no-verify", is_flag=True, help="Do not compare sizes after copying")
@click.option("--stop-on-error", is_flag=True, help="Stop at the first failed file")
@click.option("--dry-run", is_flag=True, help="Show what would be migrated without doing it")
@click.pass_context
@handle_storage_errors
def migrate(
    ctx: click.Context,
    target_config: Path,
    filter_prefix: Optional[str],
    concurrency: int,
    skip_existing: bool,
    delete_source: bool,
    no_verify: bool,
    stop_on_error: bool,
    dry_run: bool,
) -> None:
    """Copy every object from the configured backend to another one."""
    source = get_storage(ctx)
    target = build_storage(StorageConfig.from_yaml_file(target_config))
    ctx.call_on_close(target.close)

    migrator = StorageMigrator(source, target)
    estimate = migrator.estimate(filter_prefix)
    click.echo(
        f"{estimate.file_count} files ({estimate.formatted_size}) "
        f"from {source.backend_type} to {target.backend_type}"
    )
    if dry_run:
        return

    if delete_source and not click.confirm("Source objects will be deleted. Continue?"):
        raise click.Abort()

    options = MigrationOptions(
        continue_on_error=not stop_on_error,
        concurrency=concurrency,
        verify_integrity=not no_verify,
        delete_source_after=delete_source,
        skip_existing=skip_existing,
        filter_prefix=filter_prefix,
    )

    with click.progressbar(length=estimate.file_count, label="Migrating") as bar:
        migrator.progress_callback = lambda key, status: bar.update(1)
        result = migrator.migrate(options)

    click.echo(
        f"{result.status.value}: {result.migrated_files} migrated, "
        f"{result.skipped_files} skipped, {result.failed_files} failed "
        f"in {result.duration_ms / 1000:.1f}s"
    )
    for error in result.errors:
        click.echo(f"  {error.key}: {error.error}", err=True)

    if result.status is not MigrationStatus.COMPLETED:
        raise click.ClickException("Migration did not complete")


@cli.command(name="cache-stats")
@click.option("--reset", is_flag=True, help="Clear the cache after printing its statistics")
@click.pass_context
@handle_storage_errors
def cache_stats(ctx: click.Context, reset: bool) -> None:
    """Show cache statistics for the configured storage."""
    storage = get_storage(ctx)
    if not isinstance(storage, CachingStorage):
        click.echo("Caching is not configured")
        return

    stats = storage.refresh_stats()
    click.echo(json.dumps({"type": storage.cache_type, **stats.to_dict()}, indent=2))

    if reset:
        storage.clear_cache()
        click.echo("✓ Cache cleared")


@cli.command()
def version() -> None:
    """Show asset store version."""
    from assetstore import __version__

    click.echo(f"assetstore v{__version__}")


def main() -> int:
    """Main entry point."""
    try:
        cli()
        return 0
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
