# Copyright (c) Syntropy Systems
"""Append-only result log and captured output blobs.

Layout under the state directory::

    runs.jsonl              one RunRecord per line
    output/<id>.stdout      raw captured bytes
    output/<id>.stderr      raw captured bytes
"""
from __future__ import annotations

import logging
import os
import threading
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from pydantic import ValidationError

from chrome_ranger.models.run import RunRecord

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

logger = logging.getLogger(__name__)

RUNS_FILE = "runs.jsonl"
OUTPUT_DIR = "output"

Stream = Literal["stdout", "stderr"]
STREAMS: tuple[Stream, ...] = ("stdout", "stderr")


@dataclass
class DeleteResult:
    """Records partitioned by a delete_where call."""

    kept: list[RunRecord]
    removed: list[RunRecord]


class ResultStore:
    """Persisted history of completed iterations.

    Appends are not synchronized here; concurrent writers must go through a
    SerializedAppender.
    """

    state_dir: Path
    runs_path: Path
    output_dir: Path

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir
        self.runs_path = state_dir / RUNS_FILE
        self.output_dir = state_dir / OUTPUT_DIR

    def load(self) -> list[RunRecord]:
        """Read all records, skipping lines that fail to parse.

        A missing or empty log is an empty history.
        """
        records: list[RunRecord] = []
        if not self.runs_path.exists():
            return records

        with self.runs_path.open("rb") as f:
            for lineno, raw_line in enumerate(f, start=1):
                try:
                    line = raw_line.decode("utf-8").strip()
                    if not line:
                        continue
                    records.append(RunRecord.model_validate_json(line))
                except (UnicodeDecodeError, ValidationError):
                    logger.warning("Skipping corrupt line %d in %s", lineno, self.runs_path)

        return records

    def append(self, record: RunRecord) -> None:
        """Durably append one record as a single line."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        with self.runs_path.open("a", encoding="utf-8") as f:
            _ = f.write(record.to_json_line() + "\n")
            f.flush()
            os.fsync(f.fileno())

    def output_path(self, run_id: str, stream: Stream) -> Path:
        """Path of the captured output blob for a run."""
        return self.output_dir / f"{run_id}.{stream}"

    def write_output(self, run_id: str, stream: Stream, data: bytes) -> Path:
        """Write a captured stream. Empty output still produces a file."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_path(run_id, stream)
        _ = path.write_bytes(data)
        return path

    def read_output(self, run_id: str, stream: Stream) -> bytes | None:
        """Read a captured stream, or None if the run never wrote one."""
        path = self.output_path(run_id, stream)
        if not path.exists():
            return None
        return path.read_bytes()

    def delete_where(self, predicate: Callable[[RunRecord], bool]) -> DeleteResult:
        """Remove every record matching predicate along with its output blobs.

        The log is rewritten with the kept records, or removed entirely when
        nothing is kept.
        """
        kept: list[RunRecord] = []
        removed: list[RunRecord] = []
        for record in self.load():
            (removed if predicate(record) else kept).append(record)

        for record in removed:
            for stream in STREAMS:
                with suppress(FileNotFoundError):
                    self.output_path(record.id, stream).unlink()

        if not kept:
            with suppress(FileNotFoundError):
                self.runs_path.unlink()
        else:
            tmp_path = self.runs_path.with_suffix(".jsonl.tmp")
            with tmp_path.open("w", encoding="utf-8") as f:
                for record in kept:
                    _ = f.write(record.to_json_line() + "\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.runs_path)

        if removed:
            logger.info("Removed %d record(s) from %s", len(removed), self.runs_path)
        return DeleteResult(kept=kept, removed=removed)


class SerializedAppender:
    """Single logical writer shared by all pool workers of one invocation.

    Guarantees appends never interleave; makes no promise about order.
    """

    store: ResultStore
    _lock: threading.Lock

    def __init__(self, store: ResultStore) -> None:
        self.store = store
        self._lock = threading.Lock()

    def append(self, record: RunRecord) -> None:
        with self._lock:
            self.store.append(record)
