# Copyright (c) Syntropy Systems
"""Process-level lock guarding a project's state directory.

The lock file holds the decimal pid of its holder. Acquisition tries an
exclusive create first and only inspects an existing file when that fails.
"""
from __future__ import annotations

import enum
import errno
import logging
import os
from contextlib import suppress
from typing import TYPE_CHECKING

from typing_extensions import Self

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

logger = logging.getLogger(__name__)

LOCK_FILE = "lock"

# Reclaiming a stale lock once is normal; needing more means another
# process keeps recreating it.
MAX_ACQUIRE_ATTEMPTS = 3


class LockError(Exception):
    """The lock could not be acquired."""


class LockHeldError(LockError):
    """The lock belongs to a live process."""

    pid: int

    def __init__(self, pid: int, path: Path) -> None:
        self.pid = pid
        super().__init__(
            f"Another chrome-ranger process (PID {pid}) is running against this "
            f"project. If this is wrong, remove {path}"
        )


class OwnerState(enum.Enum):
    """Classification of an existing lock file."""

    STALE = "stale"
    HELD = "held"


def pid_alive(pid: int) -> bool:
    """Check whether a pid is alive using signal 0."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    except OSError:
        return False
    return True


def classify_owner(content: str) -> tuple[OwnerState, int | None]:
    """Classify lock file content.

    Empty, non-numeric and numeric-but-dead are all STALE; only a numeric pid
    of a live process is HELD.
    """
    text = content.strip()
    if not text.isdigit():
        return OwnerState.STALE, None
    pid = int(text)
    if pid_alive(pid):
        return OwnerState.HELD, pid
    return OwnerState.STALE, pid


class Lockfile:
    """Exclusive lock on a state directory, usable as a context manager."""

    state_dir: Path
    path: Path
    _acquired: bool

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir
        self.path = state_dir / LOCK_FILE
        self._acquired = False

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        try:
            _ = os.write(fd, f"{os.getpid()}\n".encode())
        finally:
            os.close(fd)
        return True

    def acquire(self) -> None:
        """Take the lock, reclaiming it from a dead or unknown owner.

        Raises:
            LockHeldError: a live process holds the lock.
            LockError: the lock kept reappearing after reclaiming it.

        """
        self.state_dir.mkdir(parents=True, exist_ok=True)

        for _attempt in range(MAX_ACQUIRE_ATTEMPTS):
            if self._try_create():
                self._acquired = True
                return

            try:
                content = self.path.read_text(encoding="utf-8", errors="replace")
            except FileNotFoundError:
                # Released between our create and read
                continue

            state, pid = classify_owner(content)
            if state is OwnerState.HELD and pid is not None:
                raise LockHeldError(pid, self.path)

            logger.warning(
                "Reclaiming stale lock %s (owner: %s)",
                self.path,
                pid if pid is not None else "unknown",
            )
            with suppress(FileNotFoundError):
                self.path.unlink()

        msg = (
            f"Could not acquire {self.path} after {MAX_ACQUIRE_ATTEMPTS} attempts: "
            f"{os.strerror(errno.EEXIST)}"
        )
        raise LockError(msg)

    def release(self) -> None:
        """Remove the lock file if we hold it. Calling twice is harmless."""
        if not self._acquired:
            return
        with suppress(FileNotFoundError):
            self.path.unlink()
        self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    def __enter__(self) -> Self:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()
