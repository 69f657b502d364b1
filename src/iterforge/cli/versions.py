"""iterforge versions CLI commands.

Commands:
  iterforge versions list [--project ID]     — versions, oldest first
  iterforge versions show <id> [--files]     — one version's record
  iterforge versions diff <id1> <id2>        — per-path added/modified/deleted
  iterforge versions history <id>            — parent chain, oldest first
"""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from iterforge.cli.errors import (
    err_config,
    err_no_db,
    err_no_project,
    err_version_not_found,
)
from iterforge.config import DEFAULT_DB_NAME, ConfigError, load_config
from iterforge.db.connection import Database
from iterforge.db.models import Version, VersionStatus
from iterforge.db.repository import Repository
from iterforge.db.schema import initialize
from iterforge.errors import VersionNotFound
from iterforge.versions.store import VersionStore, compare_versions

console = Console()

versions_app = typer.Typer(
    name="versions",
    help="Browse version history (list, show, diff, history).",
    add_completion=False,
)

_STATUS_STYLE = {
    VersionStatus.COMPLETE: "[green]complete[/]",
    VersionStatus.GENERATING: "[yellow]generating[/]",
    VersionStatus.FAILED: "[red]failed[/]",
}

_DIFF_STYLE = {
    "added": "[green]added[/]",
    "modified": "[yellow]modified[/]",
    "deleted": "[red]deleted[/]",
    "unchanged": "[dim]unchanged[/]",
}

DbOption = Annotated[Path, typer.Option("--db", help="Path to .iterforge.db.")]


@versions_app.command("list")
def versions_list_cmd(
    project: Annotated[
        str | None,
        typer.Option("--project", "-p", help="Project id (default: project.id in iterforge.yaml)."),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", min=1, help="Maximum rows.")] = 50,
    db: DbOption = Path(DEFAULT_DB_NAME),
) -> None:
    """List a project's versions in number order."""
    project_id = project or _configured_project_id()
    if not project_id:
        console.print(err_no_project())
        raise typer.Exit(1)

    conn = _open_db(db)
    try:
        store = VersionStore(Repository(conn))
        versions = asyncio.run(store.list_versions(project_id, limit=limit))
        total = asyncio.run(store.count_versions(project_id))
    finally:
        conn.close()

    if not versions:
        console.print("[yellow]No versions yet.[/]\n  Run:  iterforge iterate \"<change request>\"")
        raise typer.Exit(0)

    table = Table(title="Versions", show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="bold")
    table.add_column("Status")
    table.add_column("Files", justify="right")
    table.add_column("Intent", style="dim")
    table.add_column("Description")
    table.add_column("Id", style="dim")
    for version in versions:
        table.add_row(
            str(version.version_number),
            _STATUS_STYLE[version.status],
            str(len(version.files)),
            version.command_type or "",
            escape(version.description or version.prompt[:60]),
            version.id,
        )
    console.print(table)
    console.print(f"\n  {len(versions)}/{total} shown")


@versions_app.command("show")
def versions_show_cmd(
    version_id: Annotated[str, typer.Argument(help="Version id.")],
    files: Annotated[bool, typer.Option("--files", help="List every file path.")] = False,
    db: DbOption = Path(DEFAULT_DB_NAME),
) -> None:
    """Show one version's record."""
    version = _load_version(db, version_id)

    console.print(f"[bold]Version {version.version_number}[/] — {escape(version.name)}")
    console.print(f"  Id:       {version.id}")
    console.print(f"  Status:   {_STATUS_STYLE[version.status]}")
    console.print(f"  Intent:   {version.command_type or '-'}")
    console.print(f"  Parent:   {version.parent_version_id or '-'}")
    console.print(f"  Created:  {version.created_at}")
    console.print(f"  Prompt:   {escape(version.prompt)}")
    if version.description:
        console.print(f"  Summary:  {escape(version.description)}")
    console.print(f"  Files:    {len(version.files)}")

    meta = version.metadata
    for key in ("modified_files", "new_files", "deleted_files"):
        if meta.get(key):
            label = key.replace("_", " ").capitalize()
            console.print(f"  {label}: {escape(', '.join(meta[key]))}")
    for warning in meta.get("warnings", []):
        console.print(f"  [yellow]⚠[/] {escape(str(warning))}")
    if meta.get("error"):
        stage = meta.get("stage", "?")
        console.print(f"  [red]Error ({stage}):[/] {escape(str(meta['error']))}")

    if files:
        for path in sorted(version.files):
            console.print(f"    {escape(path)}")


@versions_app.command("diff")
def versions_diff_cmd(
    version1: Annotated[str, typer.Argument(help="Older version id.")],
    version2: Annotated[str, typer.Argument(help="Newer version id.")],
    all_files: Annotated[
        bool, typer.Option("--all", help="Include unchanged files.")
    ] = False,
    db: DbOption = Path(DEFAULT_DB_NAME),
) -> None:
    """Compare two versions path by path."""
    v1 = _load_version(db, version1)
    v2 = _load_version(db, version2)
    comparison = compare_versions(v1, v2)

    table = Table(
        title=f"Version {v1.version_number} → {v2.version_number}",
        show_header=True,
        header_style="bold",
    )
    table.add_column("Status")
    table.add_column("Path")
    for diff in comparison.diffs:
        if diff.status == "unchanged" and not all_files:
            continue
        table.add_row(_DIFF_STYLE[diff.status], escape(diff.filename))
    console.print(table)

    s = comparison.summary
    console.print(
        f"\n  +{s.files_added}  ~{s.files_modified}  -{s.files_deleted}  "
        f"[dim]={s.files_unchanged}[/]"
    )


@versions_app.command("history")
def versions_history_cmd(
    version_id: Annotated[str, typer.Argument(help="Version id.")],
    db: DbOption = Path(DEFAULT_DB_NAME),
) -> None:
    """Show the parent chain of a version, oldest first."""
    conn = _open_db(db)
    try:
        store = VersionStore(Repository(conn))
        history = asyncio.run(store.get_version_history(version_id))
    except VersionNotFound:
        console.print(err_version_not_found(version_id))
        raise typer.Exit(1)
    finally:
        conn.close()

    for version in history:
        console.print(
            f"  {version.version_number:>3}  {_STATUS_STYLE[version.status]}  "
            f"{escape(version.description or version.prompt[:60])}  [dim]{version.id}[/]"
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _configured_project_id() -> str:
    try:
        return load_config().project.id
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def _load_version(db: Path, version_id: str) -> Version:
    conn = _open_db(db)
    try:
        return asyncio.run(VersionStore(Repository(conn)).get_version(version_id))
    except VersionNotFound:
        console.print(err_version_not_found(version_id))
        raise typer.Exit(1)
    finally:
        conn.close()


def _open_db(db_path: Path) -> sqlite3.Connection:
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    conn = Database(db_path).connect()
    initialize(conn)
    return conn
