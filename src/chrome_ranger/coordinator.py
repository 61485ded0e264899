# Copyright (c) Syntropy Systems
"""Orchestration of one ``run`` invocation.

Phases, in order: lock, resolve refs and prepare checkouts, setup, ensure
binaries, compute pending slots, warmup, iterate, summarize. The lock is
released on every exit path. Cell-level problems (unknown ref, failed setup,
missing binary, failed warmup) drop the affected slots and the run goes on.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import Event
from typing import TYPE_CHECKING, Optional, Protocol

from chrome_ranger.browsers import BinaryUnavailable
from chrome_ranger.events import CellSkipped, PhaseStarted, RunCompleted, ignore_events
from chrome_ranger.lockfile import Lockfile
from chrome_ranger.matrix import append_slots, filter_slots, full_matrix, pending
from chrome_ranger.models.run import ResolvedRevision, RunSummary
from chrome_ranger.pool import IterationTask, WorkerPool, run_iterations
from chrome_ranger.revisions import GitError, RefNotFound
from chrome_ranger.setup_runner import run_setup
from chrome_ranger.store import ResultStore, SerializedAppender
from chrome_ranger.warmup import WarmupTask, run_warmups, warmup_tasks

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from chrome_ranger.browsers import BinaryResolution
    from chrome_ranger.config import RangerConfig
    from chrome_ranger.events import ProgressListener
    from chrome_ranger.models.run import RunRecord, Slot
    from chrome_ranger.revisions import RefResolution

logger = logging.getLogger(__name__)


class NoBinariesError(RuntimeError):
    """None of the requested browser versions could be provisioned."""


class RevisionResolver(Protocol):
    def resolve(self, ref: str) -> RefResolution:
        ...

    def prepare_working_directory(self, ref: str, sha: str) -> Path:
        ...


class BinaryProvisioner(Protocol):
    def ensure(self, version: str) -> BinaryResolution:
        ...


@dataclass
class RunOptions:
    """Invocation mode and filters for one run.

    ``append`` and ``replace`` are mutually exclusive; with neither, the run
    fills whatever the configured matrix is still missing.
    """

    version_filter: list[str] = field(default_factory=list)
    ref_filter: list[str] = field(default_factory=list)
    append: Optional[int] = None
    replace: bool = False

    def __post_init__(self) -> None:
        if self.append is not None and self.replace:
            msg = "--append and --replace are mutually exclusive"
            raise ValueError(msg)
        if self.append is not None and self.append <= 0:
            msg = "--append must be a positive integer"
            raise ValueError(msg)


def _selected(values: Sequence[str], wanted: Sequence[str]) -> list[str]:
    if not wanted:
        return list(values)
    return [v for v in values if v in wanted]


def _unknown(values: Sequence[str], wanted: Sequence[str]) -> list[str]:
    return [w for w in dict.fromkeys(wanted) if w not in values]


class RunCoordinator:
    """Runs the configured matrix against one project's state directory."""

    config: RangerConfig
    state_dir: Path
    store: ResultStore
    resolver: RevisionResolver
    provisioner: BinaryProvisioner
    setup_runner: Callable[[str, Path, str], bool]
    listener: ProgressListener
    cancel_event: Event

    def __init__(  # noqa: PLR0913
        self,
        config: RangerConfig,
        state_dir: Path,
        resolver: RevisionResolver,
        provisioner: BinaryProvisioner,
        *,
        setup_runner: Callable[[str, Path, str], bool] = run_setup,
        listener: ProgressListener = ignore_events,
        cancel_event: Event | None = None,
    ) -> None:
        self.config = config
        self.state_dir = state_dir
        self.store = ResultStore(state_dir)
        self.resolver = resolver
        self.provisioner = provisioner
        self.setup_runner = setup_runner
        self.listener = listener
        self.cancel_event = cancel_event if cancel_event is not None else Event()

    def run(self, options: RunOptions | None = None) -> RunSummary:
        """Execute one invocation.

        Raises:
            LockHeldError: another live process holds the project lock.
            NoBinariesError: no requested browser version is available.
            OSError: the result store could not be written.

        """
        options = options or RunOptions()
        with Lockfile(self.state_dir):
            summary = self._run_locked(options)
        self.listener(
            RunCompleted(
                total=summary.total,
                completed=summary.completed,
                failed=summary.failed,
                aborted=summary.aborted,
            )
        )
        return summary

    def _skip(self, summary: RunSummary, kind: str, name: str, reason: str) -> None:
        logger.warning("Skipping %s %s: %s", kind, name, reason)
        if kind == "version":
            summary.skipped_versions.append(name)
        elif kind in ("ref", "setup") and name not in summary.skipped_refs:
            summary.skipped_refs.append(name)
        self.listener(CellSkipped(kind=kind, name=name, reason=reason))

    def _aborted(self, summary: RunSummary) -> bool:
        if self.cancel_event.is_set():
            summary.aborted = True
            return True
        return False

    def _resolve_revisions(
        self, refs: Sequence[str], summary: RunSummary
    ) -> list[ResolvedRevision]:
        self.listener(PhaseStarted("resolve", ", ".join(refs)))
        revisions: list[ResolvedRevision] = []
        for ref in refs:
            resolution = self.resolver.resolve(ref)
            if isinstance(resolution, RefNotFound):
                self._skip(summary, "ref", ref, resolution.reason)
                continue
            try:
                path = self.resolver.prepare_working_directory(ref, resolution.sha)
            except GitError as e:
                self._skip(summary, "ref", ref, str(e))
                continue
            revisions.append(ResolvedRevision(ref, resolution.sha, path))
        return revisions

    def _run_setup(
        self, revisions: Sequence[ResolvedRevision], summary: RunSummary
    ) -> list[ResolvedRevision]:
        command = self.config.setup
        if not command:
            return list(revisions)
        self.listener(PhaseStarted("setup", command))
        ready: list[ResolvedRevision] = []
        for revision in revisions:
            if self.setup_runner(command, revision.working_directory, revision.sha):
                ready.append(revision)
            else:
                self._skip(summary, "setup", revision.name, f"setup failed at {revision.short_sha}")
        return ready

    def _ensure_binaries(self, versions: Sequence[str], summary: RunSummary) -> dict[str, str]:
        self.listener(PhaseStarted("binaries", ", ".join(versions)))
        binaries: dict[str, str] = {}
        for version in versions:
            resolution = self.provisioner.ensure(version)
            if isinstance(resolution, BinaryUnavailable):
                self._skip(summary, "version", version, resolution.reason)
                continue
            binaries[version] = str(resolution.executable_path)
        if versions and not binaries:
            msg = "No Chrome binaries available"
            raise NoBinariesError(msg)
        return binaries

    def _compute_slots(
        self,
        options: RunOptions,
        versions: Sequence[str],
        revisions: Sequence[ResolvedRevision],
    ) -> list[Slot]:
        history: list[RunRecord]
        if options.replace:

            # Only cells this run will regenerate; skipped refs and versions keep
            # their history
            active_versions = set(versions)
            active_refs = {revision.name for revision in revisions}

            def targeted(record: RunRecord) -> bool:
                return (
                    record.version in active_versions
                    and record.ref in active_refs
                    and (not options.version_filter or record.version in options.version_filter)
                    and (not options.ref_filter or record.ref in options.ref_filter)
                )

            history = self.store.delete_where(targeted).kept
            matrix = full_matrix(versions, revisions, self.config.iterations)
            return pending(filter_slots(matrix, options.version_filter, options.ref_filter), history)

        history = self.store.load()
        if options.append is not None:
            return append_slots(
                versions,
                revisions,
                history,
                options.append,
                options.version_filter,
                options.ref_filter,
            )

        matrix = full_matrix(versions, revisions, self.config.iterations)
        return pending(filter_slots(matrix, options.version_filter, options.ref_filter), history)

    def _run_locked(self, options: RunOptions) -> RunSummary:  # noqa: PLR0911
        summary = RunSummary()
        versions = _selected(self.config.chrome.versions, options.version_filter)
        refs = _selected(self.config.code.refs, options.ref_filter)
        for name in _unknown(self.config.chrome.versions, options.version_filter):
            self._skip(summary, "version", name, "not listed in chrome.versions")
        for name in _unknown(self.config.code.refs, options.ref_filter):
            self._skip(summary, "ref", name, "not listed in code.refs")
        if not versions or not refs:
            logger.warning("Filters matched no configured versions or refs")
            return summary

        revisions = self._resolve_revisions(refs, summary)
        revisions = self._run_setup(revisions, summary)
        if not revisions:
            logger.warning("No refs available. Nothing to run.")
            return summary
        if self._aborted(summary):
            return summary

        binaries = self._ensure_binaries(versions, summary)
        active_versions = [v for v in versions if v in binaries]
        if self._aborted(summary):
            return summary

        slots = self._compute_slots(options, active_versions, revisions)
        if not slots:
            logger.info("All iterations already recorded. Nothing to run.")
            return summary

        directories = {revision.name: revision.working_directory for revision in revisions}

        if self.config.warmup > 0:
            tasks = warmup_tasks(slots, binaries, directories)
            self.listener(
                PhaseStarted("warmup", f"{len(tasks) * self.config.warmup} warmup run(s)")
            )
            outcome = run_warmups(
                tasks,
                self.config.warmup,
                command=self.config.command,
                pool=WorkerPool[WarmupTask](self.config.workers, self.cancel_event),
                listener=self.listener,
                grace_period=self.config.kill_grace_period,
            )
            if self._aborted(summary):
                return summary
            for version, ref in outcome.failed:
                summary.failed_warmups.append((version, ref))
                self._skip(
                    summary,
                    "warmup",
                    f"{version} x {ref}",
                    f"warmup exited {outcome.failed[(version, ref)]}",
                )
            failed_cells = outcome.failed_cells
            slots = [slot for slot in slots if slot.cell not in failed_cells]
            if not slots:
                logger.warning("All warmups failed. Nothing to run.")
                return summary

        self.listener(
            PhaseStarted("iterations", f"{len(slots)} iteration(s), {self.config.workers} worker(s)")
        )
        result = run_iterations(
            [
                IterationTask(
                    slot=slot,
                    chrome_bin=binaries[slot.version],
                    working_directory=directories[slot.ref],
                )
                for slot in slots
            ],
            command=self.config.command,
            pool=WorkerPool[IterationTask](self.config.workers, self.cancel_event),
            appender=SerializedAppender(self.store),
            listener=self.listener,
            grace_period=self.config.kill_grace_period,
        )
        summary.total = result.total
        summary.completed = result.completed
        summary.failed = result.failed
        _ = self._aborted(summary)
        return summary
