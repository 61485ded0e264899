# Copyright (c) Syntropy Systems
"""Models for the run matrix and recorded results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from pydantic import Field

from .base import FrozenModel

if TYPE_CHECKING:
    from pathlib import Path


def utcnow() -> str:
    """Get current UTC time as ISO format string with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RunRecord(FrozenModel):
    """One completed iteration attempt, as stored in runs.jsonl."""

    id: str
    version: str = Field(alias="chrome")
    ref: str
    sha: str
    iteration: int = Field(ge=0)
    timestamp: str
    duration_ms: int = Field(alias="durationMs", ge=0)
    exit_code: int = Field(alias="exitCode")

    @property
    def succeeded(self) -> bool:
        """Return whether the attempt exited cleanly."""
        return self.exit_code == 0

    def to_json_line(self) -> str:
        """Serialize to a single JSONL line (without trailing newline)."""
        return self.model_dump_json(by_alias=True)


@dataclass(frozen=True)
class Slot:
    """One addressable unit of work.

    Identity is (version, sha, iteration); ``ref`` is the display name the
    slot was computed under and is only used for filtering and reporting.
    """

    version: str
    ref: str
    sha: str
    iteration: int

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.version, self.sha, self.iteration)

    @property
    def cell(self) -> tuple[str, str]:
        """(version, ref) pair used for warmup gating."""
        return (self.version, self.ref)


@dataclass(frozen=True)
class ResolvedRevision:
    """A ref resolved to a commit and prepared on disk."""

    name: str
    sha: str
    working_directory: Path

    @property
    def short_sha(self) -> str:
        return self.sha[:7]


@dataclass
class PoolSummary:
    """Aggregate outcome of a pool run over real iterations."""

    total: int = 0
    completed: int = 0
    failed: int = 0


@dataclass
class RunSummary:
    """Final outcome of one ``run`` invocation."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped_refs: list[str] = field(default_factory=list)
    skipped_versions: list[str] = field(default_factory=list)
    failed_warmups: list[tuple[str, str]] = field(default_factory=list)
    aborted: bool = False
