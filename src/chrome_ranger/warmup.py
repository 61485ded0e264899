# Copyright (c) Syntropy Systems
"""Discardable warmup executions used to gate broken cells."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chrome_ranger.events import WarmupCompleted, ignore_events
from chrome_ranger.runner import IterationInput, run_iteration

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from chrome_ranger.events import ProgressListener
    from chrome_ranger.models.run import Slot
    from chrome_ranger.pool import WorkerPool

logger = logging.getLogger(__name__)

Cell = tuple[str, str]  # (version, ref name)


@dataclass(frozen=True)
class WarmupTask:
    """One (version, ref) cell to warm up."""

    version: str
    ref: str
    sha: str
    chrome_bin: str
    working_directory: Path

    @property
    def cell(self) -> Cell:
        return (self.version, self.ref)


@dataclass
class WarmupOutcome:
    passed: list[Cell] = field(default_factory=list)
    failed: dict[Cell, int] = field(default_factory=dict)  # first failing exit code

    @property
    def failed_cells(self) -> set[Cell]:
        return set(self.failed)


def warmup_tasks(
    slots: Sequence[Slot],
    chrome_bins: Mapping[str, str],
    working_directories: Mapping[str, Path],
) -> list[WarmupTask]:
    """One task per distinct (version, ref) among pending slots, in slot order."""
    seen: set[Cell] = set()
    tasks: list[WarmupTask] = []
    for slot in slots:
        if slot.cell in seen:
            continue
        seen.add(slot.cell)
        tasks.append(
            WarmupTask(
                version=slot.version,
                ref=slot.ref,
                sha=slot.sha,
                chrome_bin=chrome_bins[slot.version],
                working_directory=working_directories[slot.ref],
            )
        )
    return tasks


def run_warmups(  # noqa: PLR0913
    tasks: Sequence[WarmupTask],
    warmup_count: int,
    *,
    command: str,
    pool: WorkerPool[WarmupTask],
    listener: ProgressListener = ignore_events,
    grace_period: float = 5.0,
) -> WarmupOutcome:
    """Run ``warmup_count`` discarded attempts per cell.

    The first non-zero exit marks a cell failed; queued attempts for that
    cell are skipped while other cells continue. Nothing is persisted.
    """
    outcome = WarmupOutcome()
    if warmup_count <= 0 or not tasks:
        outcome.passed = [task.cell for task in tasks]
        return outcome

    expanded = [task for task in tasks for _ in range(warmup_count)]
    state_lock = threading.Lock()
    cancel_event = pool.cancel_event

    def handle(task: WarmupTask) -> None:
        with state_lock:
            if task.cell in outcome.failed:
                return

        result = run_iteration(
            IterationInput(
                command=command,
                version=task.version,
                chrome_bin=task.chrome_bin,
                revision_name=task.ref,
                revision_sha=task.sha,
                working_directory=task.working_directory,
                iteration=0,
            ),
            cancel_event=cancel_event,
            grace_period=grace_period,
        )
        if result.cancelled or cancel_event.is_set():
            return

        listener(
            WarmupCompleted(
                version=task.version,
                ref=task.ref,
                sha=task.sha,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
            )
        )
        if result.exit_code != 0:
            with state_lock:
                if task.cell not in outcome.failed:
                    outcome.failed[task.cell] = result.exit_code
                    logger.warning(
                        "Warmup failed for %s x %s (exit %d), skipping its iterations",
                        task.version,
                        task.ref,
                        result.exit_code,
                    )

    pool.run(expanded, handle)

    outcome.passed = [task.cell for task in tasks if task.cell not in outcome.failed]
    return outcome
