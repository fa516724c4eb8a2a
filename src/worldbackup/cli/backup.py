"""Backup command for worldbackup CLI.

Commands:
- run: Back up every target of a config file
"""

from __future__ import annotations

import sys
import time
from pathlib import Path

import click

from worldbackup.authority import AuthorityLoop, SyncBridge
from worldbackup.backup import BackupRunner, BackupScheduler, BackupWorker, TargetResult
from worldbackup.core import ConfigError, load_config, setup_logging


def _print_results(results: list[TargetResult]) -> None:
    for result in results:
        if result.error is not None:
            click.echo(f"  FAILED  {result.source}: {result.error}", err=True)
        else:
            click.echo(f"  {'OK' if result.ok else 'PARTIAL':7} {result.source}: {result.summary}")


@click.command()
@click.argument("config_path", type=click.Path(path_type=Path))
@click.option("--once", is_flag=True, help="Run one backup and exit.")
def run(config_path: Path, once: bool) -> None:
    """Back up the targets listed in CONFIG_PATH.

    Without --once, a backup runs at start and then every interval_seconds
    until interrupted.
    """
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    setup_logging(config.log_level, config.log_path)
    if not config.targets:
        click.echo("Error: no targets configured.", err=True)
        sys.exit(1)

    authority = AuthorityLoop()
    authority.start()
    runner = BackupRunner(SyncBridge(authority), chunk_size=config.chunk_size)
    worker = BackupWorker(runner, config.targets)

    try:
        if once:
            result = worker.execute()
            if result.result:
                _print_results(result.result)
            if not result.success or not all(r.ok for r in result.result or []):
                sys.exit(1)
            return

        scheduler = BackupScheduler(worker, config.interval_seconds, run_on_start=True)
        scheduler.start()
        click.echo(f"Backing up {len(config.targets)} targets every {config.interval_seconds}s")
        click.echo("Press Ctrl+C to stop.")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            click.echo("\nStopping...")
        finally:
            scheduler.stop()
    finally:
        authority.stop()
