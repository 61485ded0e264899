# Copyright (c) Syntropy Systems
"""Shared builders and fakes for chrome-ranger tests."""
from __future__ import annotations

from pathlib import Path

from chrome_ranger.browsers import BinaryInstalled, BinaryResolution, BinaryUnavailable
from chrome_ranger.config import RangerConfig, parse_config
from chrome_ranger.models.run import ResolvedRevision, RunRecord
from chrome_ranger.revisions import RefNotFound, RefResolution, RefResolved


def make_record(  # noqa: PLR0913
    version: str = "120",
    ref: str = "main",
    sha: str = "a" * 40,
    iteration: int = 0,
    exit_code: int = 0,
    run_id: str | None = None,
) -> RunRecord:
    """Build a RunRecord with sensible defaults."""
    return RunRecord(
        id=run_id or f"{version}-{sha[:7]}-{iteration}-{exit_code}",
        version=version,
        ref=ref,
        sha=sha,
        iteration=iteration,
        timestamp="2024-01-01T00:00:00.000Z",
        duration_ms=10,
        exit_code=exit_code,
    )


def make_config(command: str = "true", **overrides: object) -> RangerConfig:
    """Build a validated config; top-level keys can be overridden."""
    data: dict[str, object] = {
        "command": command,
        "iterations": 2,
        "chrome": {"versions": ["120", "121"]},
        "code": {"repo": ".", "refs": ["main"]},
    }
    data.update(overrides)
    return parse_config(data)


def revision(name: str, sha: str, path: Path | None = None) -> ResolvedRevision:
    return ResolvedRevision(name=name, sha=sha, working_directory=path or Path("/tmp"))


class FakeResolver:
    """Resolver backed by a ref -> sha mapping; unknown refs are not found."""

    def __init__(self, shas: dict[str, str], workdir: Path) -> None:
        self.shas = dict(shas)
        self.workdir = workdir
        self.prepared: list[tuple[str, str]] = []

    def resolve(self, ref: str) -> RefResolution:
        if ref in self.shas:
            return RefResolved(ref, self.shas[ref])
        return RefNotFound(ref, f"Git ref not found: {ref}")

    def prepare_working_directory(self, ref: str, sha: str) -> Path:
        self.prepared.append((ref, sha))
        path = self.workdir / ref.replace("/", "-")
        path.mkdir(parents=True, exist_ok=True)
        return path


class FakeProvisioner:
    """Returns a fake binary path, except for versions listed as missing."""

    def __init__(self, missing: tuple[str, ...] = ()) -> None:
        self.missing = set(missing)

    def ensure(self, version: str) -> BinaryResolution:
        if version in self.missing:
            return BinaryUnavailable(version, f"Failed to download Chrome {version}")
        return BinaryInstalled(version, Path(f"/opt/chrome-{version}/chrome"))
