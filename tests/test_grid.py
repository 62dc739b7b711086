"""Tests for the Grid data model."""

from __future__ import annotations

import pytest

from extraedit.grid import Grid


class TestConstruction:
    def test_short_rows_padded(self) -> None:
        grid = Grid(["A", "B", "C"], [["1"], ["1", "2", "3"]])
        assert grid.rows[0] == ["1", "", ""]

    def test_short_header_extended_with_letters(self) -> None:
        grid = Grid(["Name"], [["x", "y", "z"]])
        assert grid.header == ["Name", "B", "C"]

    def test_values_stringified(self) -> None:
        grid = Grid(["n"], [[1], [None]])  # type: ignore[list-item]
        assert grid.rows == [["1"], ["None"]]

    def test_default(self) -> None:
        grid = Grid.default()
        assert grid.header == ["A", "B", "C", "D", "E"]
        assert grid.row_count == 20
        assert all(cell == "" for row in grid.rows for cell in row)


class TestCells:
    def test_set_cell_reports_change(self) -> None:
        grid = Grid(["A"], [[""]])
        assert grid.set_cell(0, 0, "x")
        assert not grid.set_cell(0, 0, "x")
        assert grid.get_cell(0, 0) == "x"

    def test_out_of_range(self) -> None:
        grid = Grid(["A"], [[""]])
        with pytest.raises(IndexError):
            grid.get_cell(1, 0)
        with pytest.raises(IndexError):
            grid.set_cell(0, 1, "x")


class TestStructure:
    """Tests for row and column insertion and removal."""

    def test_insert_rows(self) -> None:
        grid = Grid(["A", "B"], [["1", "2"], ["3", "4"]])
        grid.insert_rows(1, 2)
        assert grid.rows == [["1", "2"], ["", ""], ["", ""], ["3", "4"]]

    def test_insert_rows_at_end(self) -> None:
        grid = Grid(["A"], [["1"]])
        grid.insert_rows(1)
        assert grid.rows == [["1"], [""]]

    def test_remove_rows_clamps(self) -> None:
        grid = Grid(["A"], [["1"], ["2"], ["3"]])
        assert grid.remove_rows(1, 5) == 2
        assert grid.rows == [["1"]]

    def test_insert_columns_labels(self) -> None:
        grid = Grid(["Name", "Age"], [["Al", "3"]])
        grid.insert_columns(1)
        assert grid.header == ["Name", "Column 2", "Age"]
        assert grid.rows == [["Al", "", "3"]]

    def test_remove_columns(self) -> None:
        grid = Grid(["A", "B", "C"], [["1", "2", "3"]])
        assert grid.remove_columns(0, 2) == 2
        assert grid.header == ["C"]
        assert grid.rows == [["3"]]

    def test_invalid_positions(self) -> None:
        grid = Grid(["A"], [["1"]])
        with pytest.raises(IndexError):
            grid.insert_rows(3)
        with pytest.raises(IndexError):
            grid.remove_columns(1)


class TestRenameColumn:
    def test_rename(self) -> None:
        grid = Grid(["A", "B"], [])
        assert grid.rename_column(1, "  Total ")
        assert grid.header == ["A", "Total"]

    def test_blank_label_falls_back(self) -> None:
        grid = Grid(["A", "B"], [])
        grid.rename_column(1, "   ")
        assert grid.header[1] == "Column 2"

    def test_unchanged(self) -> None:
        grid = Grid(["A"], [])
        assert not grid.rename_column(0, "A")

    def test_copy_is_deep(self) -> None:
        grid = Grid(["A"], [["1"]])
        clone = grid.copy()
        clone.set_cell(0, 0, "2")
        clone.rename_column(0, "Z")
        assert grid.rows == [["1"]]
        assert grid.header == ["A"]
