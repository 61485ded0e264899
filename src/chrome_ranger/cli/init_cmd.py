# Copyright (c) Syntropy Systems
"""chrome-ranger init command."""

from pathlib import Path

import typer
from rich.console import Console

from chrome_ranger.config import ConfigError, write_scaffold

console = Console()


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite an existing chrome-ranger.yaml",
    ),
) -> None:
    """Scaffold a chrome-ranger.yaml config file."""
    try:
        config_path = write_scaffold(path.resolve(), force=force)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(f"[green]Created[/green] {config_path}")
    console.print("  [dim]edit chrome.versions and code.refs, then run:[/dim] chrome-ranger run")
