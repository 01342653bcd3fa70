"""Command-line interface for BizTrack."""

from .runner import create_cli, main

__all__ = ["create_cli", "main"]
