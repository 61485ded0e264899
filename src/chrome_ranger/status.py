# Copyright (c) Syntropy Systems
"""Per-cell aggregation of recorded results."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from chrome_ranger.models.run import RunRecord


@dataclass
class CellStatus:
    """Counts for one (version, sha) cell."""

    version: str
    ref: str
    sha: str
    target: int
    passed: int = 0
    failed: int = 0

    @property
    def complete(self) -> bool:
        return self.passed >= self.target

    def label(self) -> str:
        """Short human label such as ``3/5`` or ``5/5 ✓``."""
        text = f"{self.passed}/{self.target}"
        if self.complete:
            text += " ✓"
        if self.failed:
            text += f" ({self.failed} failed)"
        return text


def cell_statuses(
    versions: Sequence[str],
    revisions: Sequence[tuple[str, str]],
    history: Iterable[RunRecord],
    target: int,
) -> dict[tuple[str, str], CellStatus]:
    """Aggregate history into cells keyed by (version, ref).

    Only records for each ref's current sha count; records left behind by
    a ref's earlier commits are ignored.
    """
    cells = {
        (version, ref): CellStatus(version=version, ref=ref, sha=sha, target=target)
        for version in versions
        for ref, sha in revisions
    }
    by_sha: dict[tuple[str, str], list[CellStatus]] = {}
    for cell in cells.values():
        by_sha.setdefault((cell.version, cell.sha), []).append(cell)

    for record in history:
        for cell in by_sha.get((record.version, record.sha), []):
            if record.exit_code == 0:
                cell.passed += 1
            else:
                cell.failed += 1
    return cells
