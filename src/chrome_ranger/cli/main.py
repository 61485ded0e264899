# Copyright (c) Syntropy Systems
"""Main CLI entry point for chrome-ranger."""

import logging

import typer
from rich.logging import RichHandler

from chrome_ranger.cli.cache import cache_app
from chrome_ranger.cli.clean import clean
from chrome_ranger.cli.init_cmd import init
from chrome_ranger.cli.list_chrome import list_chrome
from chrome_ranger.cli.run_cmd import run
from chrome_ranger.cli.status import status

app = typer.Typer(
    name="chrome-ranger",
    help=(
        "Run a command against a matrix of Chrome versions x git refs, "
        "resuming where the last run stopped."
    ),
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        envvar="CHROME_RANGER_VERBOSE",
        help="Show debug logging",
    ),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False)],
        force=True,
    )


# Register commands
_ = app.command()(init)
_ = app.command()(run)
_ = app.command()(status)
_ = app.command(name="list-chrome")(list_chrome)
_ = app.command()(clean)

# Register cache sub-app
app.add_typer(cache_app, name="cache")


if __name__ == "__main__":
    app()
