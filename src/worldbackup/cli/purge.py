"""Purge command for worldbackup CLI.

Commands:
- purge: Remove data files of inactive players
"""

from __future__ import annotations

from pathlib import Path

import click

from worldbackup.authority import AuthorityLoop, SyncBridge
from worldbackup.core import DEFAULT_TASKS_LIMIT, setup_logging
from worldbackup.purge import ActivityList, DatFilePurge, PurgeRunner


@click.command()
@click.argument(
    "world_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)
@click.option(
    "--away-days",
    type=float,
    default=30.0,
    show_default=True,
    help="Players not seen for this many days are inactive.",
)
@click.option(
    "--tasks-limit",
    type=click.IntRange(min=1),
    default=DEFAULT_TASKS_LIMIT,
    show_default=True,
    help="Deletions per batch.",
)
@click.option("--dry-run", is_flag=True, help="Only report inactive players.")
def purge(world_dir: Path, away_days: float, tasks_limit: int, dry_run: bool) -> None:
    """Delete playerdata and stats files of inactive players in WORLD_DIR."""
    setup_logging()
    activity = ActivityList.from_data_files(world_dir / "playerdata", away_days * 86400)

    if dry_run:
        inactive = [
            p.stem
            for p in sorted((world_dir / "playerdata").glob("*.dat"))
            if not activity.is_active(p.stem)
        ]
        for player_id in inactive:
            click.echo(player_id)
        click.echo(f"{len(inactive)} inactive, {len(activity)} active")
        return

    authority = AuthorityLoop()
    authority.start()
    try:
        runner = PurgeRunner(SyncBridge(authority), [DatFilePurge(world_dir)], tasks_limit=tasks_limit)
        for result in runner.run(activity):
            if result.error:
                click.echo(f"{result.name}: failed: {result.error}", err=True)
            else:
                click.echo(f"{result.name}: {result.purged} removed")
    finally:
        authority.stop()
