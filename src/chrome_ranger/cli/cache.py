# Copyright (c) Syntropy Systems
"""chrome-ranger cache commands."""

import typer
from rich.console import Console

from chrome_ranger.browsers import clean_cache, resolve_cache_dir
from chrome_ranger.config import CONFIG_FILE, ConfigError, find_project_dir, load_config

console = Console()

cache_app = typer.Typer(
    help="Manage the Chrome binary cache.",
    no_args_is_help=True,
)


@cache_app.command("clean")
def clean() -> None:
    """Remove all cached Chrome binaries."""
    configured = None
    project_dir = find_project_dir()
    if project_dir is not None:
        try:
            configured = load_config(project_dir / CONFIG_FILE).chrome.cache_dir
        except ConfigError:
            configured = None

    cache_dir = resolve_cache_dir(configured, project_dir)
    if clean_cache(cache_dir):
        console.print(f"[green]Removed cached Chrome binaries[/green] from {cache_dir}")
    else:
        console.print(f"[dim]Nothing cached in {cache_dir}[/dim]")
