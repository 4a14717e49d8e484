"""Command-line interface for the asset store."""

from .main import cli, main

__all__ = ["cli", "main"]
