# Copyright (c) Syntropy Systems
"""Pytest fixtures for chrome-ranger tests."""

import os
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

# Store original cwd at module load time
_original_cwd = Path.cwd()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def state_dir(temp_dir: Path) -> Path:
    """State directory inside the temporary project."""
    return temp_dir / ".chrome-ranger"


@pytest.fixture
def ranger_project(temp_dir: Path) -> Generator[Path, None, None]:
    """Create a temporary project directory with a config file."""
    (temp_dir / "chrome-ranger.yaml").write_text(
        "command: 'true'\n"
        "iterations: 2\n"
        "chrome:\n"
        "  versions: ['120.0.1', '121.0.1']\n"
        "code:\n"
        "  repo: .\n"
        "  refs: [main]\n"
    )

    # Change to temp directory
    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)
