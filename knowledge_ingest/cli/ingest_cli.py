"""Typer CLI for running and inspecting ingestion jobs without the API."""

import os

os.environ.setdefault("LOGFIRE_IGNORE_NO_CONFIG", "1")

from pathlib import Path

from dotenv import load_dotenv

_project_root = Path(__file__).resolve().parent.parent.parent
load_dotenv(_project_root / ".env")
load_dotenv(_project_root / ".env.local")

import asyncio
import json

import typer

from knowledge_ingest.config import get_settings
from knowledge_ingest.db.migrate import run_migrations
from knowledge_ingest.errors import KnowledgeIngestError
from knowledge_ingest.services.registry import build_scheduler
from knowledge_ingest.services.scheduler import KnowledgeScheduler

app = typer.Typer(help="Singapore pharmacy knowledge ingestion")


def _build_scheduler() -> KnowledgeScheduler:
    return build_scheduler(get_settings())


def _echo_json(payload) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


@app.command()
def jobs():
    """List registered jobs and their status."""
    scheduler = _build_scheduler()
    _echo_json([view.model_dump(mode="json") for view in scheduler.get_all_jobs_status()])


@app.command()
def run(name: str = typer.Argument(..., help="Job name, e.g. moh-guidelines")):
    """Run one job now and print its result."""
    scheduler = _build_scheduler()
    try:
        result = asyncio.run(scheduler.trigger_job(name))
    except KnowledgeIngestError as e:
        typer.echo(typer.style(str(e), fg=typer.colors.RED), err=True)
        raise typer.Exit(code=2) from e

    _echo_json(result.model_dump(mode="json"))
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def emergency(source: str = typer.Argument(..., help="moh, hsa, ndf or all")):
    """Run every job for a source immediately."""
    scheduler = _build_scheduler()
    try:
        results = asyncio.run(scheduler.trigger_emergency_update(source))
    except (KnowledgeIngestError, ValueError) as e:
        typer.echo(typer.style(str(e), fg=typer.colors.RED), err=True)
        raise typer.Exit(code=2) from e

    _echo_json([result.model_dump(mode="json") for result in results])
    if not all(result.success for result in results):
        raise typer.Exit(code=1)


@app.command()
def health():
    """Print aggregate scheduler health for this process.

    Jobs started here are the only ones counted. For a running server
    query GET /knowledge/health instead.
    """
    scheduler = _build_scheduler()
    _echo_json(scheduler.get_health_status().model_dump(mode="json"))


@app.command()
def migrate():
    """Apply SQL migrations (needs DATABASE_URL)."""
    for name in run_migrations():
        typer.echo(f"  OK {name}")
    typer.echo("Migrations complete.")


if __name__ == "__main__":
    app()
