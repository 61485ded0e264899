# Copyright (c) Syntropy Systems
"""chrome-ranger run command."""
from __future__ import annotations

import signal
from threading import Event
from typing import TYPE_CHECKING, Optional

import typer
from rich.console import Console
from rich.markup import escape

from chrome_ranger.browsers import ChromeProvisioner, resolve_cache_dir
from chrome_ranger.config import (
    CONFIG_FILE,
    ConfigError,
    get_state_dir,
    load_config,
    require_project_dir,
)
from chrome_ranger.coordinator import NoBinariesError, RunCoordinator, RunOptions
from chrome_ranger.events import (
    CellSkipped,
    IterationCompleted,
    PhaseStarted,
    WarmupCompleted,
)
from chrome_ranger.lockfile import LockError
from chrome_ranger.revisions import GitRevisionResolver
from chrome_ranger.store import RUNS_FILE

if TYPE_CHECKING:
    from types import FrameType

    from chrome_ranger.events import ProgressEvent
    from chrome_ranger.models.run import RunSummary

console = Console()

EXIT_CANCELLED = 130

_PHASE_TITLES = {
    "resolve": "Resolving refs",
    "setup": "Running setup",
    "binaries": "Ensuring Chrome binaries",
    "warmup": "Warming up",
    "iterations": "Running",
}


def _major(version: str) -> str:
    return version.split(".", 1)[0]


def print_event(event: ProgressEvent) -> None:
    """Render one progress event as a console line."""
    if isinstance(event, PhaseStarted):
        title = _PHASE_TITLES.get(event.phase, event.phase)
        detail = f" [dim]{escape(event.detail)}[/dim]" if event.detail else ""
        console.print(f"\n[bold]{title}[/bold]{detail}")
    elif isinstance(event, CellSkipped):
        console.print(
            f"  [yellow]skipped {event.kind}[/yellow] {escape(event.name)}: {escape(event.reason)}"
        )
    elif isinstance(event, WarmupCompleted):
        mark = "[green]✓[/green]" if event.exit_code == 0 else f"[red]✗ exit:{event.exit_code}[/red]"
        console.print(
            f"  \\[warmup] chrome@{_major(event.version)} x {escape(event.ref)} "
            f"({event.sha[:7]})  {event.duration_ms}ms  {mark}"
        )
    elif isinstance(event, IterationCompleted):
        width = len(str(event.total))
        color = "green" if event.exit_code == 0 else "red"
        console.print(
            f"  [{event.index:>{width}}/{event.total}] chrome@{_major(event.version)} x "
            f"{escape(event.ref)} ({event.sha[:7]}) #{event.iteration}  "
            f"{event.duration_ms}ms  [{color}]exit:{event.exit_code}[/{color}]"
        )


def _print_summary(summary: RunSummary) -> None:
    if summary.aborted:
        console.print(
            f"\n[yellow]Cancelled.[/yellow] {summary.completed} run(s) logged before stopping"
        )
        return
    if summary.total == 0:
        console.print("\nNothing to run.")
        return
    suffix = f" [red]({summary.failed} failed)[/red]" if summary.failed else ""
    console.print(
        f"\n[green]Done.[/green] {summary.completed} run(s) logged to "
        f".chrome-ranger/{RUNS_FILE}{suffix}"
    )


def run(
    chrome: Optional[list[str]] = typer.Option(
        None,
        "--chrome", "-c",
        help="Only run these Chrome versions (repeatable)",
    ),
    refs: Optional[list[str]] = typer.Option(
        None,
        "--refs", "-r",
        help="Only run these git refs (repeatable)",
    ),
    append: Optional[int] = typer.Option(
        None,
        "--append",
        help="Add N more iterations to each targeted cell",
    ),
    replace: bool = typer.Option(
        False,
        "--replace",
        help="Delete recorded results for targeted cells and run them again",
    ),
) -> None:
    """Execute the matrix of Chrome versions x git refs.

    Completed iterations are skipped, so an interrupted run picks up where it
    stopped. Failing iterations are recorded and do not fail the command.
    """
    try:
        options = RunOptions(
            version_filter=list(chrome or []),
            ref_filter=list(refs or []),
            append=append,
            replace=replace,
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    try:
        project_dir = require_project_dir()
        config = load_config(project_dir / CONFIG_FILE)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    state_dir = get_state_dir(project_dir)
    cache_dir = resolve_cache_dir(config.chrome.cache_dir, project_dir)
    cancel_event = Event()

    def _signal_handler(signum: int, frame: FrameType | None) -> None:
        """Handle SIGINT/SIGTERM by cancelling the run."""
        _ = frame
        if not cancel_event.is_set():
            console.print(
                f"\n[yellow]{signal.Signals(signum).name} received, stopping workers...[/yellow]"
            )
        cancel_event.set()

    previous = {
        signum: signal.signal(signum, _signal_handler)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }

    try:
        with ChromeProvisioner(cache_dir) as provisioner:
            coordinator = RunCoordinator(
                config,
                state_dir,
                GitRevisionResolver(config.repo_path(project_dir), state_dir),
                provisioner,
                listener=print_event,
                cancel_event=cancel_event,
            )
            summary = coordinator.run(options)
    except (LockError, NoBinariesError, OSError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e
    finally:
        for signum, handler in previous.items():
            _ = signal.signal(signum, handler)

    _print_summary(summary)
    if summary.aborted:
        raise typer.Exit(EXIT_CANCELLED)
