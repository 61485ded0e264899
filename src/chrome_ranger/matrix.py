# Copyright (c) Syntropy Systems
"""Work matrix computation.

Pure functions over configuration and recorded history. Filtering by
revision is always by ref name; resumability matching is always by sha, so a
ref that moved to a new commit starts from an empty cell while records for
the old commit stay in the log untouched.
"""
from __future__ import annotations

import itertools
from typing import TYPE_CHECKING

from chrome_ranger.models.run import Slot

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from chrome_ranger.models.run import ResolvedRevision, RunRecord


def full_matrix(
    versions: Sequence[str],
    revisions: Sequence[ResolvedRevision],
    iterations: int,
) -> list[Slot]:
    """Build every slot for versions x revisions x iterations.

    Order is version-major, then revision, then iteration ascending.
    """
    return [
        Slot(version=version, ref=revision.name, sha=revision.sha, iteration=i)
        for version, revision, i in itertools.product(
            versions, revisions, range(iterations)
        )
    ]


def satisfied_keys(history: Iterable[RunRecord]) -> set[tuple[str, str, int]]:
    """Return the (version, sha, iteration) keys with a successful record."""
    return {
        (record.version, record.sha, record.iteration)
        for record in history
        if record.exit_code == 0
    }


def pending(matrix: Sequence[Slot], history: Iterable[RunRecord]) -> list[Slot]:
    """Drop slots already satisfied by a successful record, preserving order."""
    done = satisfied_keys(history)
    return [slot for slot in matrix if slot.key not in done]


def _matches(value: str, allowed: Sequence[str] | None) -> bool:
    return not allowed or value in allowed


def filter_slots(
    matrix: Sequence[Slot],
    version_filter: Sequence[str] | None = None,
    name_filter: Sequence[str] | None = None,
) -> list[Slot]:
    """Keep slots matching both filters. An empty or missing filter matches all."""
    return [
        slot
        for slot in matrix
        if _matches(slot.version, version_filter) and _matches(slot.ref, name_filter)
    ]


def append_slots(  # noqa: PLR0913
    versions: Sequence[str],
    revisions: Sequence[ResolvedRevision],
    history: Iterable[RunRecord],
    count: int,
    version_filter: Sequence[str] | None = None,
    name_filter: Sequence[str] | None = None,
) -> list[Slot]:
    """Emit ``count`` new slots per cell, numbered after the highest recorded one.

    Failed attempts advance the counter too: numbering looks only at which
    iteration indices exist for (version, sha), never at exit codes.
    """
    highest: dict[tuple[str, str], int] = {}
    for record in history:
        key = (record.version, record.sha)
        highest[key] = max(highest.get(key, -1), record.iteration)

    slots: list[Slot] = []
    for version, revision in itertools.product(versions, revisions):
        if not _matches(version, version_filter):
            continue
        if not _matches(revision.name, name_filter):
            continue
        start = highest.get((version, revision.sha), -1) + 1
        slots.extend(
            Slot(version=version, ref=revision.name, sha=revision.sha, iteration=i)
            for i in range(start, start + count)
        )
    return slots
