"""iterforge iterate — run one change request through the pipeline.

Usage:
  iterforge iterate "add a dark mode toggle" [--project ID] [--apply-dir DIR]

Flags:
  --project ID      Project id (default: project.id from iterforge.yaml)
  --db PATH         Path to .iterforge.db (default: .iterforge.db)
  --apply-dir DIR   Apply the committed changes to this directory
                    (default: sandbox.workspace from config, if set)
  --max-files N     Cap on semantically retrieved files
  --no-restart      Do not send the restart signal after applying
"""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from iterforge.classify.cache import FIFOCache
from iterforge.classify.classifier import CommandClassifier, LLMClassificationBackend
from iterforge.cli.errors import (
    err_config,
    err_empty_prompt,
    err_iteration_failed,
    err_no_api_key,
    err_no_db,
    err_no_project,
    err_project_not_found,
    warn_iteration,
)
from iterforge.config import DEFAULT_DB_NAME, ConfigError, IterforgeConfig, load_config
from iterforge.db.connection import Database
from iterforge.db.repository import Repository
from iterforge.db.schema import initialize
from iterforge.errors import IterationFailed, ValidationError
from iterforge.generate.generator import LLMGenerator
from iterforge.pipeline.orchestrator import IterationOptions, IterationResult, Orchestrator
from iterforge.rag.budget import BudgetAllocation
from iterforge.rag.context import ContextBuilder
from iterforge.rag.conversation import SqliteConversationStore
from iterforge.rag.index import FileIndexer, SqliteSemanticIndex
from iterforge.rag.llm_client import provider_of, validate_api_key
from iterforge.sandbox.target import DirectoryTarget
from iterforge.versions.store import VersionStore

console = Console()


def build_orchestrator(
    repo: Repository, cfg: IterforgeConfig, *, apply_dir: Path | None = None
) -> Orchestrator:
    """Wire the pipeline's collaborators from config."""
    versions = VersionStore(repo)
    conversations = SqliteConversationStore(repo)
    classifier = CommandClassifier(
        LLMClassificationBackend(cfg.classifier.model, timeout=cfg.generation.timeout),
        FIFOCache(cfg.classifier.cache_size),
        confidence_threshold=cfg.classifier.confidence_threshold,
    )
    builder = ContextBuilder(
        versions,
        conversations,
        SqliteSemanticIndex(repo, cfg.retrieval.embedding_model),
        allocation=BudgetAllocation(total_chars=cfg.retrieval.char_budget),
        similarity_threshold=cfg.retrieval.similarity_threshold,
    )
    generator = LLMGenerator(
        cfg.generation.model,
        temperature=cfg.generation.temperature,
        max_tokens=cfg.generation.max_tokens,
        num_retries=cfg.generation.num_retries,
        timeout=cfg.generation.timeout,
    )
    workspace = apply_dir or (Path(cfg.sandbox.workspace) if cfg.sandbox.workspace else None)
    target = (
        DirectoryTarget(workspace, restart_command=cfg.sandbox.restart_command or None)
        if workspace is not None
        else None
    )
    return Orchestrator(
        versions,
        classifier,
        builder,
        generator,
        conversations=conversations,
        indexer=FileIndexer(repo, cfg.retrieval.embedding_model),
        target=target,
    )


def iterate_cmd(
    prompt: Annotated[str, typer.Argument(help="The change request or question.")],
    project: Annotated[
        str | None,
        typer.Option("--project", "-p", help="Project id (default: project.id in iterforge.yaml)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .iterforge.db."),
    ] = Path(DEFAULT_DB_NAME),
    apply_dir: Annotated[
        Path | None,
        typer.Option("--apply-dir", help="Apply committed changes to this directory."),
    ] = None,
    max_files: Annotated[
        int | None,
        typer.Option("--max-files", min=1, help="Cap on semantically retrieved files."),
    ] = None,
    no_restart: Annotated[
        bool,
        typer.Option("--no-restart", help="Do not restart the target after applying."),
    ] = False,
) -> None:
    """Classify, retrieve, generate, reconcile and commit one new version."""
    if not prompt.strip():
        console.print(err_empty_prompt())
        raise typer.Exit(1)

    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    project_id = project or cfg.project.id
    if not project_id:
        console.print(err_no_project())
        raise typer.Exit(1)

    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    for model in (cfg.generation.model, cfg.classifier.model):
        try:
            validate_api_key(model)
        except EnvironmentError:
            console.print(err_no_api_key(provider_of(model)))
            raise typer.Exit(1)

    options = IterationOptions(
        message_limit=cfg.retrieval.message_limit,
        max_files=max_files or cfg.retrieval.max_files,
        include_tests=cfg.retrieval.include_tests,
        restart=cfg.sandbox.restart and not no_restart,
    )

    conn = _open_db(db)
    repo = Repository(conn)
    if repo.get_project(project_id) is None:
        conn.close()
        console.print(err_project_not_found(project_id))
        raise typer.Exit(1)

    try:
        orchestrator = build_orchestrator(repo, cfg, apply_dir=apply_dir)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            task = prog.add_task("Generating…", total=None)
            options.on_progress = lambda stage, detail: prog.update(
                task, description=f"{stage}: {detail}"
            )
            result = asyncio.run(orchestrator.run_iteration(project_id, prompt, options))
    except ValidationError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1)
    except IterationFailed as exc:
        console.print(err_iteration_failed(exc.stage, str(exc.cause), exc.version_id))
        raise typer.Exit(1)
    finally:
        conn.close()

    _print_result(result)


def _print_result(result: IterationResult) -> None:
    if result.answer is not None:
        console.print(escape(result.answer))
    else:
        console.print(
            f"[bold green]✓ Version {result.version_number}[/] [dim]({result.version_id})[/]"
        )
        if result.description:
            console.print(f"  {escape(result.description)}")

        table = Table(show_header=True, box=None, padding=(0, 1))
        table.add_column("Change", style="bold")
        table.add_column("Path")
        for path in result.modified_files:
            table.add_row("[yellow]modified[/]", escape(path))
        for path in result.new_files:
            table.add_row("[green]new[/]", escape(path))
        for path in result.deleted_files:
            table.add_row("[red]deleted[/]", escape(path))
        if table.row_count:
            console.print(table)
        else:
            console.print("  [dim]No file changes.[/]")

    for warning in result.warnings:
        console.print(warn_iteration(warning))


def _open_db(db_path: Path) -> sqlite3.Connection:
    conn = Database(db_path).connect()
    initialize(conn)
    return conn
