# Copyright (c) Syntropy Systems
"""chrome-ranger clean command."""

import typer
from rich.console import Console

from chrome_ranger.config import (
    CONFIG_FILE,
    ConfigError,
    get_state_dir,
    load_config,
    require_project_dir,
)
from chrome_ranger.revisions import GitRevisionResolver

console = Console()


def clean() -> None:
    """Remove all worktrees created for refs.

    Recorded results and captured output are kept.
    """
    try:
        project_dir = require_project_dir()
        config = load_config(project_dir / CONFIG_FILE)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    state_dir = get_state_dir(project_dir)
    resolver = GitRevisionResolver(config.repo_path(project_dir), state_dir)
    removed = resolver.clean_worktrees()

    console.print(f"[green]Removed {len(removed)} worktree(s)[/green] from {resolver.worktrees_dir}")
