# Copyright (c) Syntropy Systems
"""Git ref resolution and per-ref worktrees."""
from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from typing_extensions import TypeAlias

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

WORKTREES_DIR = "worktrees"
GIT_TIMEOUT = 120.0


@dataclass(frozen=True)
class RefResolved:
    ref: str
    sha: str


@dataclass(frozen=True)
class RefNotFound:
    ref: str
    reason: str


RefResolution: TypeAlias = Union[RefResolved, RefNotFound]


class GitError(RuntimeError):
    """A git command needed to prepare a worktree failed."""


def _run_git(
    argv: list[str],
    *,
    cwd: Path | None = None,
    timeout: float = GIT_TIMEOUT,
) -> subprocess.CompletedProcess[str] | None:
    git = shutil.which("git")
    if git is None:
        return None
    try:
        return subprocess.run(  # noqa: S603
            [git, *argv],
            cwd=str(cwd) if cwd is not None else None,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None


def _check_git(argv: list[str], *, cwd: Path | None = None) -> str:
    result = _run_git(argv, cwd=cwd)
    if result is None:
        msg = f"git {' '.join(argv)} could not be run"
        raise GitError(msg)
    if result.returncode != 0:
        msg = f"git {' '.join(argv)} failed: {result.stderr.strip()}"
        raise GitError(msg)
    return result.stdout.strip()


def worktree_dir_name(ref: str, existing: set[str]) -> str:
    """Directory name for a ref, disambiguated against names already taken."""
    base = ref.replace("/", "-")
    if base not in existing:
        return base
    suffix = 2
    while f"{base}-{suffix}" in existing:
        suffix += 1
    return f"{base}-{suffix}"


class GitRevisionResolver:
    """Resolves refs in a repository and keeps one detached worktree per ref."""

    repo_dir: Path
    worktrees_dir: Path
    _assigned: dict[str, Path]

    def __init__(self, repo_dir: Path, state_dir: Path) -> None:
        self.repo_dir = repo_dir
        self.worktrees_dir = state_dir / WORKTREES_DIR
        self._assigned = {}

    def resolve(self, ref: str) -> RefResolution:
        """Resolve a ref name to a full commit sha."""
        result = _run_git(
            ["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"],
            cwd=self.repo_dir,
            timeout=30,
        )
        if result is None:
            return RefNotFound(ref, "git is not available")
        sha = result.stdout.strip()
        if result.returncode != 0 or not sha:
            return RefNotFound(ref, f"Git ref not found: {ref}")
        return RefResolved(ref, sha)

    def _worktree_head(self, path: Path) -> str | None:
        result = _run_git(["rev-parse", "HEAD"], cwd=path, timeout=30)
        if result is None or result.returncode != 0:
            return None
        # A nested directory of another checkout is not a worktree of its own
        toplevel = _run_git(["rev-parse", "--show-toplevel"], cwd=path, timeout=30)
        if toplevel is None or toplevel.returncode != 0:
            return None
        if toplevel.stdout.strip() != str(path.resolve()):
            return None
        return result.stdout.strip()

    def prepare_working_directory(self, ref: str, sha: str) -> Path:
        """Ensure a detached worktree for ref checked out at sha.

        Idempotent: an existing worktree already at sha is reused as is.

        Raises:
            GitError: the worktree could not be created or checked out.

        """
        self.worktrees_dir.mkdir(parents=True, exist_ok=True)

        path = self._assigned.get(ref)
        if path is None:
            taken = {p.name for p in self._assigned.values()}
            path = self.worktrees_dir / worktree_dir_name(ref, taken)
            self._assigned[ref] = path

        if path.is_dir():
            head = self._worktree_head(path)
            if head == sha:
                return path
            if head is not None:
                logger.info("Moving worktree %s from %s to %s", path, head[:7], sha[:7])
                _ = _check_git(["checkout", "--quiet", "--detach", sha], cwd=path)
                return path
            logger.warning("Replacing invalid worktree directory %s", path)
            shutil.rmtree(path)
            _ = _run_git(["worktree", "prune"], cwd=self.repo_dir)

        _ = _check_git(
            ["worktree", "add", "--detach", str(path), sha],
            cwd=self.repo_dir,
        )
        return path

    def clean_worktrees(self) -> list[Path]:
        """Remove every worktree under the state directory."""
        removed: list[Path] = []
        if not self.worktrees_dir.is_dir():
            return removed

        for entry in sorted(self.worktrees_dir.iterdir()):
            result = _run_git(
                ["worktree", "remove", "--force", str(entry)],
                cwd=self.repo_dir,
            )
            if result is None or result.returncode != 0:
                shutil.rmtree(entry, ignore_errors=True)
            removed.append(entry)

        _ = _run_git(["worktree", "prune"], cwd=self.repo_dir)
        shutil.rmtree(self.worktrees_dir, ignore_errors=True)
        self._assigned.clear()
        return removed
