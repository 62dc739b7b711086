"""Row-major grid with a distinguished header row."""

from __future__ import annotations

from dataclasses import dataclass, field

from extraedit.utils import column_index_to_letter

DEFAULT_ROWS = 20
DEFAULT_COLUMNS = 5


def default_column_label(index: int) -> str:
    """Label for a column created by an edit (1-based, as users count)."""
    return f"Column {index + 1}"


@dataclass
class Grid:
    """Header labels plus data rows of string cells.

    Every data row is exactly as long as the header. Construction pads
    short rows with empty strings and extends a short header with
    alphabetic labels, so the invariant holds from the start.
    """

    header: list[str]
    rows: list[list[str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.header = [str(label) for label in self.header]
        self.rows = [[str(cell) for cell in row] for row in self.rows]
        width = max([len(self.header), *(len(row) for row in self.rows)], default=0)
        for index in range(len(self.header), width):
            self.header.append(column_index_to_letter(index))
        for row in self.rows:
            row.extend([""] * (width - len(row)))

    @classmethod
    def default(cls, rows: int = DEFAULT_ROWS, columns: int = DEFAULT_COLUMNS) -> Grid:
        """An empty grid with alphabetic labels, used for empty files."""
        header = [column_index_to_letter(i) for i in range(columns)]
        return cls(header, [[""] * columns for _ in range(rows)])

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def col_count(self) -> int:
        return len(self.header)

    def copy(self) -> Grid:
        return Grid(list(self.header), [list(row) for row in self.rows])

    def get_cell(self, row: int, col: int) -> str:
        self._check_cell(row, col)
        return self.rows[row][col]

    def set_cell(self, row: int, col: int, value: str) -> bool:
        """Set a cell value; return whether it changed."""
        self._check_cell(row, col)
        if self.rows[row][col] == value:
            return False
        self.rows[row][col] = value
        return True

    def insert_rows(self, at: int, count: int = 1) -> None:
        """Insert ``count`` empty rows so the first new row has index ``at``."""
        if not 0 <= at <= self.row_count:
            raise IndexError(f"Row insert position {at} out of range 0..{self.row_count}")
        for _ in range(count):
            self.rows.insert(at, [""] * self.col_count)

    def remove_rows(self, at: int, count: int = 1) -> int:
        """Remove up to ``count`` rows starting at ``at``; return how many."""
        if not 0 <= at < self.row_count:
            raise IndexError(f"Row {at} out of range 0..{self.row_count - 1}")
        removed = min(count, self.row_count - at)
        del self.rows[at : at + removed]
        return removed

    def insert_columns(self, at: int, count: int = 1) -> None:
        """Insert ``count`` empty columns so the first new column has index ``at``."""
        if not 0 <= at <= self.col_count:
            raise IndexError(f"Column insert position {at} out of range 0..{self.col_count}")
        for offset in range(count):
            self.header.insert(at + offset, default_column_label(at + offset))
            for row in self.rows:
                row.insert(at + offset, "")

    def remove_columns(self, at: int, count: int = 1) -> int:
        """Remove up to ``count`` columns starting at ``at``; return how many."""
        if not 0 <= at < self.col_count:
            raise IndexError(f"Column {at} out of range 0..{self.col_count - 1}")
        removed = min(count, self.col_count - at)
        del self.header[at : at + removed]
        for row in self.rows:
            del row[at : at + removed]
        return removed

    def rename_column(self, col: int, label: str) -> bool:
        """Rename a column; a blank label falls back to ``Column <n>``."""
        if not 0 <= col < self.col_count:
            raise IndexError(f"Column {col} out of range 0..{self.col_count - 1}")
        label = label.strip() or default_column_label(col)
        if self.header[col] == label:
            return False
        self.header[col] = label
        return True

    def _check_cell(self, row: int, col: int) -> None:
        if not 0 <= row < self.row_count:
            raise IndexError(f"Row {row} out of range 0..{self.row_count - 1}")
        if not 0 <= col < self.col_count:
            raise IndexError(f"Column {col} out of range 0..{self.col_count - 1}")
