"""Command line interface for mcphub."""

from mcphub.cli.commands import main

__all__ = ["main"]
