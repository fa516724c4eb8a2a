"""Command-line interface for worldbackup.

This module provides the main CLI entry point and assembles all commands.

Commands:
- run: Back up the targets of a config file, once or periodically
- purge: Remove data files of inactive players from a world
- serve: Run the reference chunked-upload store
"""

from __future__ import annotations

import click

from worldbackup.cli.backup import run
from worldbackup.cli.purge import purge
from worldbackup.cli.serve import serve


@click.group()
@click.version_option(package_name="worldbackup")
def cli() -> None:
    """worldbackup - unattended backups of a live world tree."""


cli.add_command(run)
cli.add_command(purge)
cli.add_command(serve)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = ["cli", "main"]
