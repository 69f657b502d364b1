"""iterforge init — create the database and a project, optionally importing a codebase.

Creates:
  .iterforge.db      — projects, versions, messages and file embeddings
  iterforge.yaml     — project config (project.id, models); kept if present

With --from DIR the directory's text files become version 1 (complete) and are
indexed for semantic search. Indexing is skipped with a warning when no
embedding API key is set.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from iterforge.cli.errors import err_config, err_no_api_key, err_source_dir_missing
from iterforge.config import DEFAULT_DB_NAME, ConfigError, load_config, write_project_config
from iterforge.db.connection import Database
from iterforge.db.models import VersionStatus
from iterforge.db.repository import Repository
from iterforge.db.schema import initialize
from iterforge.rag.index import FileIndexer
from iterforge.rag.llm_client import provider_of, validate_api_key
from iterforge.sandbox.target import read_snapshot
from iterforge.versions.store import VersionStore

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    name: Annotated[
        str | None,
        typer.Option("--name", help="Project name. Defaults to the directory name."),
    ] = None,
    source: Annotated[
        Path | None,
        typer.Option("--from", help="Import this directory as version 1."),
    ] = None,
    foreign: Annotated[
        bool,
        typer.Option("--foreign", help="Imported codebase: never create files unless asked."),
    ] = False,
) -> None:
    """Create the database and a new project."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    if source is not None and not source.is_dir():
        console.print(err_source_dir_missing(str(source)))
        raise typer.Exit(1)

    try:
        cfg = load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    project_name = name or cfg.project.name or project_dir.name
    db_path = project_dir / DEFAULT_DB_NAME
    if db_path.exists():
        console.print(f"[yellow]⚠[/]  {db_path} already exists; adding a new project to it.")

    conn = Database(db_path).connect()
    try:
        initialize(conn)
        repo = Repository(conn)
        store = VersionStore(repo)
        project = asyncio.run(store.create_project(project_name, is_foreign=foreign))
        console.print(f"  [green]✓[/] {DEFAULT_DB_NAME} (project {project.id})")

        if source is not None:
            files = read_snapshot(source)
            version = asyncio.run(
                store.create_version(
                    project.id,
                    1,
                    f"Imported from {source}",
                    files,
                    name="Initial import",
                    description=f"Imported {len(files)} files from {source}",
                    status=VersionStatus.COMPLETE,
                )
            )
            console.print(f"  [green]✓[/] version 1 ({len(files)} files from {source})")
            _index_import(repo, cfg.retrieval.embedding_model, project.id, version.id, files)
    finally:
        conn.close()

    cfg_path = write_project_config(project_dir, project.id, project_name, foreign=foreign)
    console.print(f"  [green]✓[/] {cfg_path.name}")

    console.print(f"\n[bold green]✓ Project '{project_name}' initialized.[/]")
    console.print("\nNext steps:")
    console.print('  1. iterforge iterate "<change request>"   (generate a new version)')
    console.print("  2. iterforge versions list                (browse history)")


def _index_import(
    repo: Repository, model: str, project_id: str, version_id: str, files: dict[str, str]
) -> None:
    try:
        validate_api_key(model)
    except EnvironmentError:
        console.print(err_no_api_key(provider_of(model)))
        console.print("  [yellow]⚠[/] Semantic index skipped; keyword search still works.")
        return

    report = asyncio.run(FileIndexer(repo, model).index_version(project_id, version_id, files))
    console.print(
        f"  [green]✓[/] indexed {report.indexed + report.reused} files "
        f"({len(report.skipped)} skipped, {len(report.failed)} failed)"
    )
