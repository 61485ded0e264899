# Copyright (c) Syntropy Systems
"""Progress events emitted by the run engine.

Listeners may be called from worker threads. Each event carries everything
needed to render it on its own.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Union

from typing_extensions import TypeAlias


@dataclass(frozen=True)
class PhaseStarted:
    """A coordinator phase began (resolving refs, setup, warmup, ...)."""

    phase: str
    detail: str = ""


@dataclass(frozen=True)
class CellSkipped:
    """A ref or version was dropped from this invocation."""

    kind: str  # ref, version, setup, warmup
    name: str
    reason: str


@dataclass(frozen=True)
class IterationStarted:
    version: str
    ref: str
    sha: str
    iteration: int


@dataclass(frozen=True)
class IterationCompleted:
    version: str
    ref: str
    sha: str
    iteration: int
    run_id: str
    exit_code: int
    duration_ms: int
    index: int  # 1-based count of finished iterations
    total: int


@dataclass(frozen=True)
class WarmupCompleted:
    version: str
    ref: str
    sha: str
    exit_code: int
    duration_ms: int


@dataclass(frozen=True)
class RunCompleted:
    total: int
    completed: int
    failed: int
    aborted: bool


ProgressEvent: TypeAlias = Union[
    PhaseStarted,
    CellSkipped,
    IterationStarted,
    IterationCompleted,
    WarmupCompleted,
    RunCompleted,
]


class ProgressListener(Protocol):
    def __call__(self, event: ProgressEvent) -> None:
        ...


def ignore_events(event: ProgressEvent) -> None:
    """Listener that drops every event."""
    _ = event
