# Copyright (c) Syntropy Systems
"""chrome-ranger status command."""

import typer
from rich.console import Console
from rich.table import Table

from chrome_ranger.config import (
    CONFIG_FILE,
    ConfigError,
    get_state_dir,
    load_config,
    require_project_dir,
)
from chrome_ranger.revisions import GitRevisionResolver, RefResolved
from chrome_ranger.status import cell_statuses
from chrome_ranger.store import ResultStore

console = Console()


def status() -> None:
    """Show matrix completion per Chrome version and ref.

    Cells count successful iterations against the configured target.
    Results recorded for a ref's earlier commits are not counted.
    """
    try:
        project_dir = require_project_dir()
        config = load_config(project_dir / CONFIG_FILE)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    state_dir = get_state_dir(project_dir)
    resolver = GitRevisionResolver(config.repo_path(project_dir), state_dir)

    revisions: list[tuple[str, str]] = []
    for ref in config.code.refs:
        resolution = resolver.resolve(ref)
        if isinstance(resolution, RefResolved):
            revisions.append((ref, resolution.sha))
        else:
            console.print(f"[yellow]Warning:[/yellow] {resolution.reason}")

    history = ResultStore(state_dir).load()
    cells = cell_statuses(config.chrome.versions, revisions, history, config.iterations)

    table = Table(title=f"{config.iterations} iteration(s) per cell")
    table.add_column("Chrome", style="cyan")
    for ref, sha in revisions:
        table.add_column(f"{ref} ({sha[:7]})")

    for version in config.chrome.versions:
        row = [version]
        for ref, _sha in revisions:
            cell = cells[(version, ref)]
            if cell.complete:
                style = "green"
            elif cell.failed:
                style = "red"
            elif cell.passed:
                style = "yellow"
            else:
                style = "dim"
            row.append(f"[{style}]{cell.label()}[/{style}]")
        table.add_row(*row)

    console.print(table)
