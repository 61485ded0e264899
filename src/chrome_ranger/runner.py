# Copyright (c) Syntropy Systems
"""Iteration executor with orphan prevention."""
from __future__ import annotations

import contextlib
import ctypes
import logging
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chrome_ranger.models.run import utcnow

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from pathlib import Path
    from threading import Event

logger = logging.getLogger(__name__)

# Exit code for failures that happen before or around the child process
SPAWN_FAILURE_EXIT_CODE = 1

# How often a waiting worker checks its cancel event
POLL_INTERVAL = 0.2


def _load_prctl() -> Callable[..., int] | None:
    # Resolved in the parent so the forked child never touches the loader
    if sys.platform != "linux":
        return None
    try:
        libc = ctypes.CDLL("libc.so.6", use_errno=True)
    except OSError:
        return None
    return getattr(libc, "prctl", None)


_PRCTL = _load_prctl()


def setup_pdeathsig() -> None:
    """Set PDEATHSIG so child dies when parent dies.

    This prevents orphan processes when the runner crashes.
    Only works on Linux.
    """
    if _PRCTL is None:
        return
    pr_set_pdeathsig = 1
    with contextlib.suppress(OSError):
        _ = _PRCTL(pr_set_pdeathsig, signal.SIGKILL)


def normalize_exit_code(returncode: int) -> int:
    """Map Popen's negative signal codes to the shell convention 128 + N."""
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


@dataclass(frozen=True)
class IterationInput:
    """Everything needed to run one attempt of the user command."""

    command: str
    version: str
    chrome_bin: str
    revision_name: str
    revision_sha: str
    working_directory: Path
    iteration: int
    extra_env: Mapping[str, str] = field(default_factory=dict)

    def environment(self) -> dict[str, str]:
        """Parent environment plus the fixed iteration variables."""
        env = os.environ.copy()
        env.update(self.extra_env)
        env.update(
            {
                "CHROME_BIN": self.chrome_bin,
                "CHROME_VERSION": self.version,
                "CODE_REF": self.revision_name,
                "CODE_SHA": self.revision_sha,
                "CODE_DIR": str(self.working_directory),
                "ITERATION": str(self.iteration),
            }
        )
        return env


@dataclass
class IterationResult:
    """Outcome of one attempt. Always produced, never raised."""

    exit_code: int
    stdout: bytes
    stderr: bytes
    duration_ms: int
    timestamp: str
    cancelled: bool = False


class CommandRunner:
    """Runs a shell command with proper process management.

    Features:
    - Uses start_new_session=True for reliable process group
    - Sets PDEATHSIG on Linux to prevent orphans
    - Captures stdout and stderr separately in memory
    - Provides graceful and forceful termination
    """

    command: str
    workdir: Path
    env: dict[str, str]
    _process: subprocess.Popen[bytes] | None
    _stdout: bytes
    _stderr: bytes

    def __init__(self, command: str, workdir: Path, env: dict[str, str]) -> None:
        """Initialize a command runner.

        Args:
            command: Shell command line
            workdir: Working directory to run the command in
            env: Complete environment for the child

        """
        self.command = command
        self.workdir = workdir
        self.env = env
        self._process = None
        self._stdout = b""
        self._stderr = b""

    def start(self) -> None:
        """Start the command process."""
        self._process = subprocess.Popen(  # noqa: S602
            self.command,
            shell=True,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=self.env,
            cwd=str(self.workdir),
            start_new_session=True,  # Creates new process group
            preexec_fn=setup_pdeathsig if sys.platform == "linux" else None,  # noqa: PLW1509
        )

    def wait(self, cancel_event: Event | None = None, grace_period: float = 5.0) -> tuple[int, bool]:
        """Wait for exit while draining output.

        Returns:
            (returncode, cancelled)

        """
        if self._process is None:
            msg = "Command has not been started"
            raise RuntimeError(msg)
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return self.kill(grace_period), True
            try:
                self._collect(self._process.communicate(timeout=POLL_INTERVAL))
            except subprocess.TimeoutExpired:
                continue
            return self._process.returncode, False

    def kill(self, grace_period: float = 5.0) -> int:
        """Kill the command process group.

        First sends SIGTERM to the process group, waits for grace_period,
        then sends SIGKILL if still alive.

        Returns:
            Popen return code (negative signal number if killed)

        """
        if self._process is None:
            return SPAWN_FAILURE_EXIT_CODE

        if self._process.poll() is None:
            try:
                pgid = os.getpgid(self._process.pid)
            except (OSError, ProcessLookupError):
                pgid = None

            if pgid is not None:
                with contextlib.suppress(OSError, ProcessLookupError):
                    os.killpg(pgid, signal.SIGTERM)
                try:
                    self._collect(self._process.communicate(timeout=grace_period))
                except subprocess.TimeoutExpired:
                    # Still alive - SIGKILL
                    with contextlib.suppress(OSError, ProcessLookupError):
                        os.killpg(pgid, signal.SIGKILL)

        with contextlib.suppress(subprocess.TimeoutExpired, ValueError):
            self._collect(self._process.communicate(timeout=5.0))
        return self._process.returncode if self._process.returncode is not None else -signal.SIGKILL

    def _collect(self, output: tuple[bytes | None, bytes | None]) -> None:
        stdout, stderr = output
        if stdout:
            self._stdout += stdout
        if stderr:
            self._stderr += stderr

    @property
    def stdout(self) -> bytes:
        return self._stdout

    @property
    def stderr(self) -> bytes:
        return self._stderr

    @property
    def pid(self) -> int | None:
        """Get the process ID."""
        if self._process is None:
            return None
        return self._process.pid


def run_iteration(
    spec: IterationInput,
    cancel_event: Event | None = None,
    grace_period: float = 5.0,
) -> IterationResult:
    """Execute one attempt of the user command.

    Never raises for command-level problems: a spawn error or any failure
    while waiting becomes a result with a non-zero exit code and whatever
    output was captured.
    """
    timestamp = utcnow()
    start = time.monotonic()
    runner = CommandRunner(spec.command, spec.working_directory, spec.environment())

    def elapsed_ms() -> int:
        return max(0, round((time.monotonic() - start) * 1000))

    try:
        runner.start()
    except (OSError, subprocess.SubprocessError, ValueError) as e:
        logger.debug("Failed to spawn %r in %s: %s", spec.command, spec.working_directory, e)
        return IterationResult(
            exit_code=SPAWN_FAILURE_EXIT_CODE,
            stdout=b"",
            stderr=f"chrome-ranger: failed to start command: {e}\n".encode(),
            duration_ms=elapsed_ms(),
            timestamp=timestamp,
        )

    try:
        returncode, cancelled = runner.wait(cancel_event, grace_period)
    except (OSError, subprocess.SubprocessError, ValueError) as e:
        logger.debug("Error while waiting for pid %s: %s", runner.pid, e)
        returncode = runner.kill(grace_period=0)
        return IterationResult(
            exit_code=normalize_exit_code(returncode) or SPAWN_FAILURE_EXIT_CODE,
            stdout=runner.stdout,
            stderr=runner.stderr + f"chrome-ranger: {e}\n".encode(),
            duration_ms=elapsed_ms(),
            timestamp=timestamp,
        )

    return IterationResult(
        exit_code=normalize_exit_code(returncode),
        stdout=runner.stdout,
        stderr=runner.stderr,
        duration_ms=elapsed_ms(),
        timestamp=timestamp,
        cancelled=cancelled,
    )
