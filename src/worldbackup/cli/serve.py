"""Serve command for worldbackup CLI.

Commands:
- serve: Run the reference chunked-upload store with uvicorn
"""

from __future__ import annotations

from pathlib import Path

import click
import uvicorn

from worldbackup.core import setup_logging
from worldbackup.server.app import build_store, create_app


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", type=int, default=8000, show_default=True, help="Bind port.")
@click.option(
    "--storage-path",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="WORLDBACKUP_STORAGE_PATH",
    default=Path("storage"),
    show_default=True,
    help="Directory holding uploaded files.",
)
@click.option(
    "--db-path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="WORLDBACKUP_DB_PATH",
    default=None,
    help="Metadata database (default: <storage-path>/store.db).",
)
@click.option(
    "--token",
    envvar="WORLDBACKUP_TOKEN",
    default=None,
    help="Bearer token required from clients.",
)
@click.option(
    "--log-path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="WORLDBACKUP_LOG_PATH",
    default=None,
    help="Also log to this file.",
)
def serve(
    host: str,
    port: int,
    storage_path: Path,
    db_path: Path | None,
    token: str | None,
    log_path: Path | None,
) -> None:
    """Run the reference chunked-upload store."""
    setup_logging(log_path=log_path)
    app = create_app(build_store(storage_path, db_path), token=token)
    uvicorn.run(app, host=host, port=port, log_config=None)
