# Copyright (c) Syntropy Systems
"""Tests for per-cell status aggregation."""

from helpers import make_record

from chrome_ranger.status import CellStatus, cell_statuses

SHA = "a" * 40
OLD_SHA = "f" * 40


class TestCellStatus:
    """Tests for CellStatus labels."""

    def test_partial(self) -> None:
        assert CellStatus("120", "main", SHA, target=5, passed=3).label() == "3/5"

    def test_complete(self) -> None:
        cell = CellStatus("120", "main", SHA, target=5, passed=5)
        assert cell.complete
        assert cell.label() == "5/5 ✓"

    def test_failures_shown(self) -> None:
        cell = CellStatus("120", "main", SHA, target=5, passed=2, failed=1)
        assert cell.label() == "2/5 (1 failed)"


class TestCellStatuses:
    """Tests for cell_statuses."""

    def test_counts_by_cell(self) -> None:
        history = [
            make_record(version="120", sha=SHA, iteration=0),
            make_record(version="120", sha=SHA, iteration=1, exit_code=1),
            make_record(version="121", sha=SHA, iteration=0),
        ]

        cells = cell_statuses(["120", "121"], [("main", SHA)], history, target=2)

        assert (cells["120", "main"].passed, cells["120", "main"].failed) == (1, 1)
        assert cells["121", "main"].passed == 1

    def test_old_sha_ignored(self) -> None:
        history = [make_record(sha=OLD_SHA, iteration=0)]

        cells = cell_statuses(["120"], [("main", SHA)], history, target=1)

        assert cells["120", "main"].passed == 0

    def test_empty_history(self) -> None:
        cells = cell_statuses(["120"], [("main", SHA)], [], target=3)
        assert cells["120", "main"].label() == "0/3"
