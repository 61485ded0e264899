# Copyright (c) Syntropy Systems
"""Tests for chrome-ranger CLI commands."""

import json
import os
import shutil
import subprocess
import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

from chrome_ranger.browsers import ChromeProvisioner
from chrome_ranger.cli.main import app
from chrome_ranger.lockfile import LOCK_FILE

runner = CliRunner()

VERSIONS = ["120.0.1", "121.0.1"]


@pytest.fixture
def git_project(ranger_project: Path) -> Path:
    """ranger_project as a git repository with cached fake Chrome binaries."""
    if shutil.which("git") is None or not sys.platform.startswith("linux"):
        pytest.skip("needs git on linux")

    def git(*args: str) -> None:
        subprocess.run(["git", *args], cwd=ranger_project, capture_output=True, check=True)

    git("init", "--quiet")
    git("config", "user.email", "test@example.com")
    git("config", "user.name", "Test")
    git("config", "commit.gpgsign", "false")
    git("symbolic-ref", "HEAD", "refs/heads/main")
    (ranger_project / ".gitignore").write_text(".chrome-ranger/\ncache/\n")
    git("add", ".")
    git("commit", "--quiet", "-m", "initial")

    cache = ranger_project / "cache"
    for version in VERSIONS:
        executable = cache / "chrome" / f"linux64-{version}" / "chrome-linux64" / "chrome"
        executable.parent.mkdir(parents=True)
        executable.write_text("")

    (ranger_project / "chrome-ranger.yaml").write_text(
        "command: 'true'\n"
        "iterations: 2\n"
        "chrome:\n"
        "  versions: ['120.0.1', '121.0.1']\n"
        "  cache_dir: cache\n"
        "code:\n"
        "  repo: .\n"
        "  refs: [main]\n"
    )
    return ranger_project


class TestInitCommand:
    """Tests for chrome-ranger init."""

    def test_init_creates_config(self, temp_dir: Path) -> None:
        result = runner.invoke(app, ["init", str(temp_dir)])

        assert result.exit_code == 0
        assert "Created" in result.stdout
        assert (temp_dir / "chrome-ranger.yaml").exists()

    def test_init_refuses_overwrite(self, ranger_project: Path) -> None:
        before = (ranger_project / "chrome-ranger.yaml").read_text()

        result = runner.invoke(app, ["init"])

        assert result.exit_code == 1
        assert "already exists" in result.stdout
        assert (ranger_project / "chrome-ranger.yaml").read_text() == before

    def test_init_force(self, ranger_project: Path) -> None:
        result = runner.invoke(app, ["init", "--force"])

        assert result.exit_code == 0
        assert "npx playwright test" in (ranger_project / "chrome-ranger.yaml").read_text()


class TestRunCommand:
    """Tests for chrome-ranger run."""

    def test_append_and_replace_conflict(self, ranger_project: Path) -> None:
        result = runner.invoke(app, ["run", "--append", "1", "--replace"])

        assert result.exit_code == 1
        assert "mutually exclusive" in result.stdout

    def test_append_must_be_positive(self, ranger_project: Path) -> None:
        result = runner.invoke(app, ["run", "--append", "0"])

        assert result.exit_code == 1
        assert "positive" in result.stdout

    def test_no_config(self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(temp_dir)

        result = runner.invoke(app, ["run"])

        assert result.exit_code == 1
        assert "chrome-ranger init" in result.stdout

    def test_lock_held(self, ranger_project: Path) -> None:
        state_dir = ranger_project / ".chrome-ranger"
        state_dir.mkdir()
        (state_dir / LOCK_FILE).write_text(f"{os.getpid()}\n")

        result = runner.invoke(app, ["run"])

        assert result.exit_code == 1
        assert f"PID {os.getpid()}" in result.stdout

    def test_full_run(self, git_project: Path) -> None:
        result = runner.invoke(app, ["run"])

        assert result.exit_code == 0, result.stdout
        assert "Done." in result.stdout
        lines = (git_project / ".chrome-ranger" / "runs.jsonl").read_text().splitlines()
        records = [json.loads(line) for line in lines]
        assert len(records) == 4
        assert {r["chrome"] for r in records} == set(VERSIONS)
        assert all(r["ref"] == "main" and r["exitCode"] == 0 for r in records)

    def test_rerun_has_nothing_to_do(self, git_project: Path) -> None:
        _ = runner.invoke(app, ["run"])

        result = runner.invoke(app, ["run"])

        assert result.exit_code == 0
        assert "Nothing to run" in result.stdout

    def test_filtered_append(self, git_project: Path) -> None:
        _ = runner.invoke(app, ["run"])

        result = runner.invoke(app, ["run", "--chrome", "121.0.1", "--append", "1"])

        assert result.exit_code == 0, result.stdout
        lines = (git_project / ".chrome-ranger" / "runs.jsonl").read_text().splitlines()
        assert len(lines) == 5
        assert json.loads(lines[-1])["iteration"] == 2

    def test_unknown_ref_reported(self, git_project: Path) -> None:
        result = runner.invoke(app, ["run", "--refs", "main", "--refs", "nope"])

        assert result.exit_code == 0
        assert "skipped ref" in result.stdout


class TestStatusCommand:
    """Tests for chrome-ranger status."""

    def test_no_config(self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(temp_dir)

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 1

    def test_status_after_run(self, git_project: Path) -> None:
        _ = runner.invoke(app, ["run"])

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "120.0.1" in result.stdout
        assert "2/2" in result.stdout


class TestCleanCommands:
    """Tests for chrome-ranger clean and cache clean."""

    def test_clean_removes_worktrees(self, git_project: Path) -> None:
        _ = runner.invoke(app, ["run"])
        assert (git_project / ".chrome-ranger" / "worktrees" / "main").is_dir()

        result = runner.invoke(app, ["clean"])

        assert result.exit_code == 0
        assert "Removed 1 worktree(s)" in result.stdout
        assert not (git_project / ".chrome-ranger" / "worktrees").exists()
        assert (git_project / ".chrome-ranger" / "runs.jsonl").exists()

    def test_cache_clean(self, ranger_project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("XDG_CACHE_HOME", str(ranger_project / "xdg"))

        result = runner.invoke(app, ["cache", "clean"])
        assert result.exit_code == 0
        assert "Nothing cached" in result.stdout

        (ranger_project / "xdg" / "chrome-ranger" / "chrome").mkdir(parents=True)
        result = runner.invoke(app, ["cache", "clean"])
        assert result.exit_code == 0
        assert "Removed cached Chrome binaries" in result.stdout
        assert not (ranger_project / "xdg" / "chrome-ranger").exists()


class TestListChromeCommand:
    """Tests for chrome-ranger list-chrome."""

    def test_latest(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            ChromeProvisioner,
            "list_versions",
            lambda self: ["121.0.6167.85", "120.0.6099.109", "113.0.5672.0"],
        )

        result = runner.invoke(app, ["list-chrome", "--latest", "2"])

        assert result.exit_code == 0
        assert result.stdout.split() == ["121.0.6167.85", "120.0.6099.109"]
