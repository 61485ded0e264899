# Copyright (c) Syntropy Systems
"""Tests for the worker pool and iteration recording."""

import threading
import time
from pathlib import Path

import pytest

from chrome_ranger.events import IterationCompleted, IterationStarted, ProgressEvent
from chrome_ranger.models.run import RunRecord, Slot
from chrome_ranger.pool import IterationTask, WorkerPool, run_iterations
from chrome_ranger.store import ResultStore, SerializedAppender


class FailingAppender(SerializedAppender):
    """Appender whose log write always fails."""

    def append(self, record: RunRecord) -> None:
        raise OSError("disk full")


def make_tasks(count: int, workdir: Path, version: str = "120") -> list[IterationTask]:
    return [
        IterationTask(
            slot=Slot(version, "main", "a" * 40, i),
            chrome_bin="/opt/chrome/chrome",
            working_directory=workdir,
        )
        for i in range(count)
    ]


class TestWorkerPool:
    """Tests for WorkerPool dispatch."""

    def test_rejects_zero_workers(self) -> None:
        with pytest.raises(ValueError, match="workers"):
            WorkerPool(0)

    def test_each_task_runs_once(self) -> None:
        seen: list[int] = []
        lock = threading.Lock()

        def handler(task: int) -> None:
            with lock:
                seen.append(task)

        WorkerPool[int](4).run(list(range(50)), handler)

        assert sorted(seen) == list(range(50))

    def test_concurrency_bounded_by_workers(self) -> None:
        active = 0
        peak = 0
        lock = threading.Lock()

        def handler(task: int) -> None:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with lock:
                active -= 1

        WorkerPool[int](3).run(list(range(12)), handler)

        assert 1 <= peak <= 3

    def test_single_worker_preserves_order(self) -> None:
        seen: list[int] = []
        WorkerPool[int](1).run(list(range(10)), seen.append)
        assert seen == list(range(10))

    def test_empty_tasks(self) -> None:
        WorkerPool[int](2).run([], lambda task: None)

    def test_handler_exception_propagates(self) -> None:
        seen: list[int] = []

        def handler(task: int) -> None:
            if task == 2:
                raise OSError("disk full")
            seen.append(task)

        with pytest.raises(OSError, match="disk full"):
            WorkerPool[int](1).run(list(range(10)), handler)

        # Dispatch stopped after the failure
        assert seen == [0, 1]

    def test_handler_exception_sets_cancel_event(self) -> None:
        pool = WorkerPool[int](2)

        def handler(task: int) -> None:
            raise OSError("disk full")

        with pytest.raises(OSError):
            pool.run([0, 1], handler)

        assert pool.cancel_event.is_set()

    def test_cancelled_before_start_runs_nothing(self) -> None:
        cancel = threading.Event()
        cancel.set()
        seen: list[int] = []

        WorkerPool[int](2, cancel).run(list(range(5)), seen.append)

        assert seen == []


class TestRunIterations:
    """Tests for run_iterations."""

    def test_records_every_attempt(self, temp_dir: Path, state_dir: Path) -> None:
        store = ResultStore(state_dir)
        tasks = make_tasks(6, temp_dir)

        summary = run_iterations(
            tasks,
            command='echo "run $ITERATION"',
            pool=WorkerPool[IterationTask](3),
            appender=SerializedAppender(store),
        )

        records = store.load()
        assert summary.total == 6
        assert summary.completed == 6
        assert summary.failed == 0
        assert sorted(r.iteration for r in records) == list(range(6))
        assert len({r.id for r in records}) == 6
        for record in records:
            assert store.read_output(record.id, "stdout") == f"run {record.iteration}\n".encode()
            assert store.read_output(record.id, "stderr") == b""

    def test_failures_recorded_and_counted(self, temp_dir: Path, state_dir: Path) -> None:
        store = ResultStore(state_dir)

        summary = run_iterations(
            make_tasks(4, temp_dir),
            command='[ $((ITERATION % 2)) -eq 0 ] || exit 3',
            pool=WorkerPool[IterationTask](2),
            appender=SerializedAppender(store),
        )

        records = {r.iteration: r for r in store.load()}
        assert summary.completed == 4
        assert summary.failed == 2
        assert records[0].exit_code == 0
        assert records[1].exit_code == 3

    def test_events_emitted(self, temp_dir: Path, state_dir: Path) -> None:
        events: list[ProgressEvent] = []
        lock = threading.Lock()

        def listener(event: ProgressEvent) -> None:
            with lock:
                events.append(event)

        _ = run_iterations(
            make_tasks(3, temp_dir),
            command="true",
            pool=WorkerPool[IterationTask](2),
            appender=SerializedAppender(ResultStore(state_dir)),
            listener=listener,
        )

        started = [e for e in events if isinstance(e, IterationStarted)]
        completed = [e for e in events if isinstance(e, IterationCompleted)]
        assert len(started) == 3
        assert sorted(e.index for e in completed) == [1, 2, 3]
        assert all(e.total == 3 for e in completed)

    def test_cancelled_attempts_not_recorded(self, temp_dir: Path, state_dir: Path) -> None:
        store = ResultStore(state_dir)
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        timer.start()

        summary = run_iterations(
            make_tasks(4, temp_dir),
            command="sleep 30",
            pool=WorkerPool[IterationTask](2, cancel),
            appender=SerializedAppender(store),
            grace_period=1,
        )
        timer.join()

        assert summary.completed == 0
        assert store.load() == []

    def test_append_failure_stops_running_siblings(
        self, temp_dir: Path, state_dir: Path
    ) -> None:
        store = ResultStore(state_dir)
        started = time.monotonic()

        with pytest.raises(OSError, match="disk full"):
            _ = run_iterations(
                make_tasks(2, temp_dir),
                command='if [ "$ITERATION" = 0 ]; then exit 0; else sleep 30; fi',
                pool=WorkerPool[IterationTask](2),
                appender=FailingAppender(store),
                grace_period=1,
            )

        assert time.monotonic() - started < 10
        assert store.load() == []
