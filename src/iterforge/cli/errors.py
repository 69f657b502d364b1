"""iterforge rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from iterforge.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".iterforge.db") -> str:
    """No .iterforge.db found."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  iterforge init"
    )


def err_no_project() -> str:
    """Neither --project nor project.id in iterforge.yaml."""
    return (
        "[red]Error:[/] No project selected.\n"
        "  Pass:  --project <id>\n"
        "  Or run:  iterforge init  (writes project.id to iterforge.yaml)"
    )


def err_project_not_found(project_id: str) -> str:
    return (
        f"[red]Error:[/] Project '{escape(project_id)}' does not exist in this database.\n"
        "  Run:  iterforge versions list --project <id>  with a valid id, or  iterforge init"
    )


def err_version_not_found(version_id: str) -> str:
    return (
        f"[red]Error:[/] Version '{escape(version_id)}' not found.\n"
        "  Run:  iterforge versions list  to see available versions."
    )


def err_source_dir_missing(path: str) -> str:
    """--from directory does not exist."""
    return (
        f"[red]Error:[/] Source directory not found: '{escape(path)}'\n"
        "  Pass an existing directory to import:  iterforge init --from <dir>"
    )


def err_config(message: str) -> str:
    """iterforge.yaml or the global config is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {escape(message)}\n"
        "  Fix the value in iterforge.yaml or ~/.iterforge/config.yaml."
    )


def err_empty_prompt() -> str:
    return (
        "[red]Error:[/] The request is empty.\n"
        '  Example:  iterforge iterate "add a dark mode toggle to the header"'
    )


def err_iteration_failed(stage: str, cause: str, version_id: str | None) -> str:
    """A pipeline stage failed; the version (if any) was marked failed."""
    lines = [f"[red]Error:[/] Iteration failed during {stage}: {escape(cause)}"]
    if version_id:
        lines.append(f"  Version {version_id} was marked failed; its number is not reused.")
    lines.append("  Re-run the request, or rephrase it if the model output was malformed.")
    return "\n".join(lines)


def warn_iteration(message: str) -> str:
    return f"[yellow]⚠[/] {escape(message)}"
