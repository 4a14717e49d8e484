"""Shared fixtures for asset store tests."""

from collections.abc import Generator
from pathlib import Path

import pytest

from assetstore.observability.config import set_config
from assetstore.storage.backends.local import LocalStorage
from assetstore.storage.registry import reset_storage_registry


@pytest.fixture(autouse=True)
def isolated_globals() -> Generator[None, None, None]:
    """Reset process-wide registry and logging config between tests."""
    reset_storage_registry()
    set_config(None)
    yield
    reset_storage_registry()
    set_config(None)


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    """Empty directory used as a local storage root."""
    root = tmp_path / "assets"
    root.mkdir()
    return root


@pytest.fixture
def local_storage(storage_root: Path) -> LocalStorage:
    """Local storage backend rooted in a temporary directory."""
    return LocalStorage(str(storage_root))


@pytest.fixture
def site_files() -> dict[str, bytes]:
    """A small deployed site keyed by asset path."""
    return {
        "acme/site/commits/abc123/index.html": b"<html><body>hello</body></html>",
        "acme/site/commits/abc123/assets/app.js": b"console.log('hi');",
        "acme/site/commits/abc123/assets/style.css": b"body { margin: 0; }",
        "acme/site/commits/def456/index.html": b"<html><body>v2</body></html>",
        "acme/other/commits/abc123/index.html": b"<html>other</html>",
    }
