# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Command line entry point.

Usage::

    edgegc run
    edgegc run --job devices
    edgegc init-db --database-url sqlite:///edge.db

Exit codes: 0 on success or when every requested job is disabled,
2 on any unrecovered error.
"""

import asyncio
from typing import List, Optional

import structlog
import typer

from edgegc.exceptions import ReclaimError

EXIT_OK = 0
EXIT_ERROR = 2

logger = structlog.get_logger()

app = typer.Typer(
    name="edgegc",
    help="Reclaim storage and rows of deleted edge devices and images.",
    no_args_is_help=True,
)


async def _run_pipeline(config, stages: Optional[List[str]]) -> None:
    from edgegc.core import (
        initialize_reclaim_state,
        run_reclaim_pipeline,
        shutdown_reclaim_state,
    )

    state = await initialize_reclaim_state(config)
    try:
        await run_reclaim_pipeline(config, state, stages)
    finally:
        await shutdown_reclaim_state(state)


async def _init_db(database_url: str, legacy_repo_commit_column: bool) -> None:
    from edgegc.db import connect_database, init_schema

    db = await connect_database(database_url, max_connections=1)
    try:
        await init_schema(db, legacy_repo_commit_column=legacy_repo_commit_column)
    finally:
        await db.close()


@app.command("run")
def run(
    job: Optional[str] = typer.Option(
        None,
        "--job",
        "-j",
        help="Run a single stage: delete_images, images, devices, orphan_commits, "
        "orphan_installed_packages",
    ),
) -> None:
    """Run the cleanup pipeline (configured from the environment)."""
    from edgegc.env import create_config_from_env
    from edgegc.logging import configure_logging

    try:
        config = create_config_from_env()
    except ReclaimError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_ERROR)

    configure_logging(config.log_level, config.log_json)

    try:
        asyncio.run(_run_pipeline(config, [job] if job else None))
    except ReclaimError as e:
        logger.error("cleanup_failed", error=str(e))
        raise typer.Exit(code=EXIT_ERROR)
    except Exception as e:
        logger.exception("cleanup_crashed", error=str(e))
        raise typer.Exit(code=EXIT_ERROR)


@app.command("init-db")
def init_db(
    database_url: str = typer.Option(
        ..., "--database-url", envvar="DATABASE_URL", help="Relational store URL"
    ),
    legacy_repo_commit_column: bool = typer.Option(
        False, "--legacy-repo-commit-column", help="Create the legacy repos.commit_id column"
    ),
) -> None:
    """Create the cleanup tables (local runs and tests)."""
    try:
        asyncio.run(_init_db(database_url, legacy_repo_commit_column))
    except ReclaimError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_ERROR)
    typer.echo("Schema initialized.")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
