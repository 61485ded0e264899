# Copyright (c) Syntropy Systems
"""One-shot setup command per checked-out revision."""
from __future__ import annotations

import logging
import subprocess
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

MARKER_FILE = ".chrome-ranger-setup-done"


def is_setup_done(directory: Path, sha: str) -> bool:
    """Whether setup already succeeded in directory at this sha."""
    try:
        return (directory / MARKER_FILE).read_text(encoding="utf-8").strip() == sha
    except OSError:
        return False


def mark_setup_done(directory: Path, sha: str) -> None:
    _ = (directory / MARKER_FILE).write_text(f"{sha}\n", encoding="utf-8")


def run_setup(command: str, directory: Path, sha: str) -> bool:
    """Run the setup command once per (directory, sha).

    Returns:
        True when setup succeeded now or earlier at the same sha.

    """
    if is_setup_done(directory, sha):
        logger.debug("Setup already done in %s at %s", directory, sha[:7])
        return True

    try:
        result = subprocess.run(  # noqa: S602
            command,
            shell=True,
            cwd=str(directory),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError as e:
        logger.warning("Setup could not start in %s: %s", directory, e)
        return False

    if result.returncode != 0:
        logger.warning("Setup failed in %s (exit %d)", directory, result.returncode)
        return False

    mark_setup_done(directory, sha)
    return True
