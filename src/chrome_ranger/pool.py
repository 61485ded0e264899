# Copyright (c) Syntropy Systems
"""Bounded worker pool shared by the warmup and iteration phases."""
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from threading import Event, Thread
from typing import TYPE_CHECKING, Generic, TypeVar

from chrome_ranger.events import IterationCompleted, IterationStarted, ignore_events
from chrome_ranger.models.run import PoolSummary, RunRecord
from chrome_ranger.runner import IterationInput, run_iteration

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from chrome_ranger.events import ProgressListener
    from chrome_ranger.models.run import Slot
    from chrome_ranger.store import SerializedAppender

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerPool(Generic[T]):
    """Runs a handler over tasks with at most ``workers`` threads.

    Workers pull from a shared cursor, so each task runs exactly once. A
    set cancel event stops dispatch of further tasks. An exception from a
    handler sets the cancel event, so in-flight siblings stop their commands,
    and is re-raised from run() once all workers have returned.
    """

    workers: int
    cancel_event: Event
    _cursor: int
    _cursor_lock: threading.Lock
    _stop: Event
    _error: BaseException | None

    def __init__(self, workers: int, cancel_event: Event | None = None) -> None:
        if workers < 1:
            msg = f"workers must be >= 1, got {workers}"
            raise ValueError(msg)
        self.workers = workers
        self.cancel_event = cancel_event if cancel_event is not None else Event()
        self._cursor = 0
        self._cursor_lock = threading.Lock()
        self._stop = Event()
        self._error = None

    def _next_index(self) -> int:
        with self._cursor_lock:
            index = self._cursor
            self._cursor += 1
            return index

    def _worker(self, tasks: Sequence[T], handler: Callable[[T], None]) -> None:
        while not (self._stop.is_set() or self.cancel_event.is_set()):
            index = self._next_index()
            if index >= len(tasks):
                return
            try:
                handler(tasks[index])
            except Exception as e:  # noqa: BLE001
                with self._cursor_lock:
                    if self._error is None:
                        self._error = e
                    else:
                        logger.error("Additional worker failure: %s", e)
                self._stop.set()
                # Siblings still running a command must not outlive the failure
                self.cancel_event.set()
                return

    def run(self, tasks: Sequence[T], handler: Callable[[T], None]) -> None:
        """Process every task (unless cancelled) and wait for all workers."""
        self._cursor = 0
        self._stop.clear()
        self._error = None
        if not tasks:
            return

        threads = [
            Thread(
                target=self._worker,
                args=(tasks, handler),
                name=f"chrome-ranger-worker-{i}",
                daemon=True,
            )
            for i in range(min(self.workers, len(tasks)))
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        if self._error is not None:
            raise self._error


@dataclass(frozen=True)
class IterationTask:
    """A slot bound to the binary and checkout it runs against."""

    slot: Slot
    chrome_bin: str
    working_directory: Path


def run_iterations(  # noqa: PLR0913
    tasks: Sequence[IterationTask],
    *,
    command: str,
    pool: WorkerPool[IterationTask],
    appender: SerializedAppender,
    listener: ProgressListener = ignore_events,
    grace_period: float = 5.0,
) -> PoolSummary:
    """Execute real iterations, recording each completed attempt.

    A failing command is an ordinary outcome counted in ``failed``. An
    attempt interrupted by cancellation is not recorded at all.
    """
    summary = PoolSummary(total=len(tasks))
    totals_lock = threading.Lock()
    store = appender.store
    cancel_event = pool.cancel_event

    def handle(task: IterationTask) -> None:
        slot = task.slot
        listener(
            IterationStarted(
                version=slot.version,
                ref=slot.ref,
                sha=slot.sha,
                iteration=slot.iteration,
            )
        )
        result = run_iteration(
            IterationInput(
                command=command,
                version=slot.version,
                chrome_bin=task.chrome_bin,
                revision_name=slot.ref,
                revision_sha=slot.sha,
                working_directory=task.working_directory,
                iteration=slot.iteration,
            ),
            cancel_event=cancel_event,
            grace_period=grace_period,
        )
        if result.cancelled or cancel_event.is_set():
            logger.info(
                "Discarding interrupted iteration %s x %s #%d",
                slot.version,
                slot.ref,
                slot.iteration,
            )
            return

        run_id = str(uuid.uuid4())
        _ = store.write_output(run_id, "stdout", result.stdout)
        _ = store.write_output(run_id, "stderr", result.stderr)
        appender.append(
            RunRecord(
                id=run_id,
                version=slot.version,
                ref=slot.ref,
                sha=slot.sha,
                iteration=slot.iteration,
                timestamp=result.timestamp,
                duration_ms=result.duration_ms,
                exit_code=result.exit_code,
            )
        )

        with totals_lock:
            summary.completed += 1
            if result.exit_code != 0:
                summary.failed += 1
            index = summary.completed

        listener(
            IterationCompleted(
                version=slot.version,
                ref=slot.ref,
                sha=slot.sha,
                iteration=slot.iteration,
                run_id=run_id,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
                index=index,
                total=summary.total,
            )
        )

    pool.run(tasks, handle)
    return summary
