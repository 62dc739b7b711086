"""Edit sessions: the single-owner, in-memory state of one open file.

A session owns the content (a grid plus metadata, or rich-text HTML), the
dirty flag, the save state and the last change timestamp. Every mutating
operation marks the session dirty and notifies change listeners, which is
what the autosave scheduler subscribes to.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from extraedit.exceptions import ValidationError
from extraedit.grid import Grid
from extraedit.grid_ingest import GridIngestion, ingest_grid
from extraedit.metadata import CellMetadataStore, HorizontalAlign, StructuralAction
from extraedit.rich_text import word_count
from extraedit.sniffer import FormatTag
from extraedit.utils import cell_to_a1, normalize_hex_color

Clock = Callable[[], float]
DirtyListener = Callable[[bool], None]
ChangeListener = Callable[[], None]

MAX_FONT_SIZE = 409.0
ROW_DELETE_GUIDANCE = "Please click on a cell in the row you want to delete"
COLUMN_DELETE_GUIDANCE = "Please click on a cell in the column you want to delete"
FORMAT_GUIDANCE = "Please select the cells you want to format"


class SaveState(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


@dataclass(frozen=True)
class OperationResult:
    """Outcome of an edit operation.

    ``guidance`` is a user-facing hint for operations that were refused
    as no-ops (e.g. deleting a row with nothing selected).
    """

    changed: bool
    guidance: str | None = None


class BaseSession:
    """Dirty tracking and save-state machinery shared by all sessions."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._dirty = False
        self._generation = 0
        self._dirty_listeners: list[DirtyListener] = []
        self._change_listeners: list[ChangeListener] = []
        self.save_state = SaveState.IDLE
        self.last_error: str | None = None
        self.last_change_time: float | None = None
        self.last_saved_at: float | None = None

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def generation(self) -> int:
        """Number of edits made so far; a save records the one it captured."""
        return self._generation

    @property
    def is_saving(self) -> bool:
        return self.save_state is SaveState.SAVING

    def mark_dirty(self) -> None:
        """Record an edit: bump the generation and stamp the change time."""
        self._generation += 1
        self.last_change_time = self._clock()
        if self.save_state is SaveState.SAVED:
            self.save_state = SaveState.IDLE
        self._set_dirty(True)
        for listener in list(self._change_listeners):
            listener()

    def mark_clean(self, generation: int | None = None) -> bool:
        """Clear the dirty flag if no edit happened after ``generation``.

        Returns:
            True if the session is now clean
        """
        if generation is not None and generation != self._generation:
            return False
        self._set_dirty(False)
        return True

    def begin_save(self) -> int | None:
        """Enter the saving state; return the captured generation.

        Returns None when a save is already in flight.
        """
        if self.is_saving:
            return None
        self.save_state = SaveState.SAVING
        return self._generation

    def finish_save(self, generation: int, error: str | None = None) -> None:
        """Leave the saving state after success or failure."""
        if error is not None:
            self.save_state = SaveState.ERROR
            self.last_error = error
            return
        self.last_error = None
        self.last_saved_at = self._clock()
        self.mark_clean(generation)
        self.save_state = SaveState.SAVED if not self._dirty else SaveState.IDLE

    def abort_save(self) -> None:
        """Release a save that ended without a result; edits stay dirty."""
        if self.is_saving:
            self.save_state = SaveState.IDLE

    def on_dirty_change(self, callback: DirtyListener) -> Callable[[], None]:
        """Call ``callback(dirty)`` whenever the dirty flag flips.

        Returns:
            A function that unsubscribes the callback
        """
        self._dirty_listeners.append(callback)
        return lambda: self._remove(self._dirty_listeners, callback)

    def on_change(self, callback: ChangeListener) -> Callable[[], None]:
        """Call ``callback()`` after every dirty-marking edit."""
        self._change_listeners.append(callback)
        return lambda: self._remove(self._change_listeners, callback)

    def _set_dirty(self, dirty: bool) -> None:
        if self._dirty == dirty:
            return
        self._dirty = dirty
        for listener in list(self._dirty_listeners):
            listener(dirty)

    @staticmethod
    def _remove(listeners: list[Any], callback: Any) -> None:
        if callback in listeners:
            listeners.remove(callback)


# =============================================================================
# Spreadsheet sessions
# =============================================================================


@dataclass(frozen=True)
class Selection:
    """A rectangular, inclusive cell range with the cell it started from."""

    anchor_row: int
    anchor_col: int
    end_row: int
    end_col: int

    @property
    def top(self) -> int:
        return min(self.anchor_row, self.end_row)

    @property
    def bottom(self) -> int:
        return max(self.anchor_row, self.end_row)

    @property
    def left(self) -> int:
        return min(self.anchor_col, self.end_col)

    @property
    def right(self) -> int:
        return max(self.anchor_col, self.end_col)

    def cells(self) -> Iterator[tuple[int, int]]:
        for row in range(self.top, self.bottom + 1):
            for col in range(self.left, self.right + 1):
                yield row, col

    def __str__(self) -> str:
        start = cell_to_a1(self.top, self.left)
        end = cell_to_a1(self.bottom, self.right)
        return start if start == end else f"{start}:{end}"


class FormatAttribute(str, Enum):
    BOLD = "bold"
    ITALIC = "italic"
    UNDERLINE = "underline"
    ALIGN = "align"
    FONT_SIZE = "font_size"
    FONT_COLOR = "font_color"
    BACKGROUND_COLOR = "background_color"

    @property
    def is_toggle(self) -> bool:
        return self in (FormatAttribute.BOLD, FormatAttribute.ITALIC, FormatAttribute.UNDERLINE)


class EditSession(BaseSession):
    """Editing state of one open spreadsheet.

    Formatting toggles use the anchor-cell policy: the anchor's current
    value decides the new value for the whole range, so a mixed selection
    becomes uniformly on or uniformly off.
    """

    def __init__(
        self,
        grid: Grid,
        metadata: CellMetadataStore | None = None,
        *,
        file_name: str = "",
        format_tag: FormatTag = FormatTag.CSV,
        sheet_names: tuple[str, ...] = ("Sheet1",),
        active_sheet: int = 0,
        source: bytes | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        super().__init__(clock)
        self.grid = grid
        self.metadata = metadata if metadata is not None else CellMetadataStore()
        self.file_name = file_name
        self.format_tag = format_tag
        self.sheet_names = sheet_names
        self.active_sheet = active_sheet
        self.source = source
        self.selection: Selection | None = None

    @classmethod
    def from_ingestion(
        cls,
        ingestion: GridIngestion,
        file_name: str,
        source: bytes | None = None,
        clock: Clock = time.monotonic,
    ) -> EditSession:
        return cls(
            ingestion.grid,
            ingestion.metadata,
            file_name=file_name,
            format_tag=ingestion.format_tag,
            sheet_names=ingestion.sheet_names,
            active_sheet=ingestion.active_sheet,
            source=source,
            clock=clock,
        )

    @property
    def sheet_name(self) -> str:
        return self.sheet_names[self.active_sheet]

    # -- selection ---------------------------------------------------------

    def select(
        self,
        row: int,
        col: int,
        end_row: int | None = None,
        end_col: int | None = None,
    ) -> Selection:
        """Select a cell, or the range from (row, col) to (end_row, end_col)."""
        selection = Selection(
            row,
            col,
            row if end_row is None else end_row,
            col if end_col is None else end_col,
        )
        self._check_range(selection)
        self.selection = selection
        return selection

    def clear_selection(self) -> None:
        self.selection = None

    # -- cell content ------------------------------------------------------

    def set_cell(self, row: int, col: int, value: str) -> OperationResult:
        self._check_range(Selection(row, col, row, col))
        if not self.grid.set_cell(row, col, value):
            return OperationResult(changed=False)
        self.mark_dirty()
        return OperationResult(changed=True)

    def rename_column(self, col: int, label: str) -> OperationResult:
        """Rename a column header; a blank label becomes ``Column <n>``."""
        if not 0 <= col < self.grid.col_count:
            raise ValidationError("column", f"{col} is out of range")
        if not self.grid.rename_column(col, label):
            return OperationResult(changed=False)
        self.mark_dirty()
        return OperationResult(changed=True)

    # -- formatting --------------------------------------------------------

    def apply_format(
        self,
        attribute: FormatAttribute | str,
        value: Any = None,
        cell_range: Selection | None = None,
    ) -> OperationResult:
        """Apply a formatting attribute to a range (default: the selection).

        Toggles (bold/italic/underline) flip based on the anchor cell when
        ``value`` is None, or set explicitly when it is a bool. Alignment,
        font size and colors are absolute; None clears them.

        Raises:
            ValidationError: If the attribute, value or range is invalid
        """
        try:
            attribute = FormatAttribute(attribute)
        except ValueError as e:
            raise ValidationError("attribute", f"unknown format attribute {attribute!r}") from e

        target = cell_range or self.selection
        if target is None:
            return OperationResult(changed=False, guidance=FORMAT_GUIDANCE)
        self._check_range(target)

        if attribute.is_toggle and value is None:
            anchor_format = self.metadata.get(target.anchor_row, target.anchor_col)
            current = getattr(anchor_format, attribute.value)
            new_value: Any = None if current else True
        else:
            new_value = self._validate_format_value(attribute, value)

        changed = False
        for row, col in target.cells():
            before = self.metadata.get(row, col)
            if self.metadata.set(row, col, {attribute.value: new_value}) != before:
                changed = True

        if not changed:
            return OperationResult(changed=False)
        logger.debug("Applied {}={!r} to {}", attribute.value, new_value, target)
        self.mark_dirty()
        return OperationResult(changed=True)

    @staticmethod
    def _validate_format_value(attribute: FormatAttribute, value: Any) -> Any:
        if value is None:
            return None
        if attribute.is_toggle:
            if not isinstance(value, bool):
                raise ValidationError(attribute.value, "must be True, False or None")
            return value or None
        if attribute is FormatAttribute.ALIGN:
            try:
                return HorizontalAlign(value)
            except ValueError as e:
                raise ValidationError("align", "must be left, center or right") from e
        if attribute is FormatAttribute.FONT_SIZE:
            if isinstance(value, bool) or not isinstance(value, int | float):
                raise ValidationError("font_size", "must be a number of points")
            if not 0 < value <= MAX_FONT_SIZE:
                raise ValidationError("font_size", f"must be between 0 and {MAX_FONT_SIZE:g}")
            return float(value)
        try:
            return normalize_hex_color(str(value))
        except ValueError as e:
            raise ValidationError(attribute.value, str(e)) from e

    # -- structure ---------------------------------------------------------

    def insert_row(self, anchor: int | None = None, count: int = 1) -> OperationResult:
        """Insert rows below the anchor (or selection), else at the end."""
        self._check_count(count)
        if anchor is None and self.selection is not None:
            anchor = self.selection.anchor_row
        if anchor is None:
            at = self.grid.row_count
        else:
            self._check_row(anchor)
            at = anchor + 1
        self.grid.insert_rows(at, count)
        self.metadata.apply_shift(StructuralAction.INSERT_ROW, at, count)
        logger.debug("Inserted {} row(s) at {}", count, at)
        self.mark_dirty()
        return OperationResult(changed=True)

    def insert_column(self, anchor: int | None = None, count: int = 1) -> OperationResult:
        """Insert columns after the anchor (or selection), else at the end."""
        self._check_count(count)
        if anchor is None and self.selection is not None:
            anchor = self.selection.anchor_col
        if anchor is None:
            at = self.grid.col_count
        else:
            self._check_col(anchor)
            at = anchor + 1
        self.grid.insert_columns(at, count)
        self.metadata.apply_shift(StructuralAction.INSERT_COLUMN, at, count)
        logger.debug("Inserted {} column(s) at {}", count, at)
        self.mark_dirty()
        return OperationResult(changed=True)

    def remove_row(self, anchor: int | None = None, count: int = 1) -> OperationResult:
        """Remove rows starting at the anchor (or selection).

        With neither, this is a no-op that returns user guidance.
        """
        self._check_count(count)
        if anchor is None and self.selection is not None:
            anchor = self.selection.anchor_row
        if anchor is None:
            return OperationResult(changed=False, guidance=ROW_DELETE_GUIDANCE)
        self._check_row(anchor)
        removed = self.grid.remove_rows(anchor, count)
        self.metadata.apply_shift(StructuralAction.REMOVE_ROW, anchor, removed)
        self._clamp_selection()
        logger.debug("Removed {} row(s) at {}", removed, anchor)
        self.mark_dirty()
        return OperationResult(changed=True)

    def remove_column(self, anchor: int | None = None, count: int = 1) -> OperationResult:
        """Remove columns starting at the anchor (or selection).

        With neither, this is a no-op that returns user guidance.
        """
        self._check_count(count)
        if anchor is None and self.selection is not None:
            anchor = self.selection.anchor_col
        if anchor is None:
            return OperationResult(changed=False, guidance=COLUMN_DELETE_GUIDANCE)
        self._check_col(anchor)
        removed = self.grid.remove_columns(anchor, count)
        self.metadata.apply_shift(StructuralAction.REMOVE_COLUMN, anchor, removed)
        self._clamp_selection()
        logger.debug("Removed {} column(s) at {}", removed, anchor)
        self.mark_dirty()
        return OperationResult(changed=True)

    # -- sheets ------------------------------------------------------------

    def switch_sheet(self, index: int) -> None:
        """Load another worksheet from the original bytes.

        Unsaved edits to the current sheet are discarded.
        """
        if not 0 <= index < len(self.sheet_names):
            raise ValidationError("sheet", f"{index} is out of range")
        if self.source is None:
            raise ValidationError("sheet", "no workbook bytes to switch sheets from")
        if index == self.active_sheet:
            return
        ingestion = ingest_grid(self.source, self.file_name, sheet_index=index)
        if self.dirty:
            logger.warning("Discarding unsaved edits to sheet {}", self.sheet_name)
        self.grid = ingestion.grid
        self.metadata = ingestion.metadata
        self.active_sheet = index
        self.selection = None
        self.mark_clean()

    # -- validation helpers ------------------------------------------------

    @staticmethod
    def _check_count(count: int) -> None:
        if count < 1:
            raise ValidationError("count", "must be at least 1")

    def _check_row(self, row: int) -> None:
        if not 0 <= row < self.grid.row_count:
            raise ValidationError("row", f"{row} is out of range 0..{self.grid.row_count - 1}")

    def _check_col(self, col: int) -> None:
        if not 0 <= col < self.grid.col_count:
            raise ValidationError(
                "column", f"{col} is out of range 0..{self.grid.col_count - 1}"
            )

    def _check_range(self, selection: Selection) -> None:
        self._check_row(selection.top)
        self._check_row(selection.bottom)
        self._check_col(selection.left)
        self._check_col(selection.right)

    def _clamp_selection(self) -> None:
        selection = self.selection
        if selection is None:
            return
        if self.grid.row_count == 0 or self.grid.col_count == 0:
            self.selection = None
            return
        last_row, last_col = self.grid.row_count - 1, self.grid.col_count - 1
        self.selection = Selection(
            min(selection.anchor_row, last_row),
            min(selection.anchor_col, last_col),
            min(selection.end_row, last_row),
            min(selection.end_col, last_col),
        )


# =============================================================================
# Document sessions
# =============================================================================


class DocumentSession(BaseSession):
    """Editing state of one open rich-text document."""

    def __init__(
        self,
        html: str,
        *,
        file_name: str = "",
        format_tag: FormatTag = FormatTag.HTML,
        clock: Clock = time.monotonic,
    ) -> None:
        super().__init__(clock)
        self.html = html
        self.file_name = file_name
        self.format_tag = format_tag

    def set_content(self, html: str) -> OperationResult:
        """Replace the document HTML."""
        if html == self.html:
            return OperationResult(changed=False)
        self.html = html
        self.mark_dirty()
        return OperationResult(changed=True)

    @property
    def word_count(self) -> int:
        return word_count(self.html)
