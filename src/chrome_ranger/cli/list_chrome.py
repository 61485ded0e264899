# Copyright (c) Syntropy Systems
"""chrome-ranger list-chrome command."""

from typing import Optional

import typer
from rich.console import Console

from chrome_ranger.browsers import BrowserError, ChromeProvisioner, resolve_cache_dir

console = Console()


def list_chrome(
    latest: Optional[int] = typer.Option(
        None,
        "--latest", "-n",
        min=1,
        help="Show only the N most recent versions",
    ),
) -> None:
    """List known-good Chrome for Testing versions, newest first."""
    try:
        with ChromeProvisioner(resolve_cache_dir()) as provisioner:
            versions = provisioner.list_versions()
    except BrowserError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    if latest is not None:
        versions = versions[:latest]

    for version in versions:
        console.print(version, highlight=False)
