"""Sparse per-cell formatting metadata.

The store maps (row, col) data coordinates to CellFormat values. An
absent key means the default format. Structural grid edits reindex the
store exclusively through shift_metadata(), so no stored coordinate ever
points outside the grid.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from typing import Any

from extraedit.utils import normalize_hex_color

CellKey = tuple[int, int]


class HorizontalAlign(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


@dataclass(frozen=True)
class CellFormat:
    """Optional visual attributes of one cell.

    ``None`` means "inherit the default". Toggle attributes are never
    stored as an explicit False; False is normalized to None so that a
    toggled-off cell compares equal to an untouched one.
    """

    bold: bool | None = None
    italic: bool | None = None
    underline: bool | None = None
    align: HorizontalAlign | None = None
    font_size: float | None = None  # points
    font_color: str | None = None  # "#RRGGBB"
    background_color: str | None = None  # "#RRGGBB"

    def __post_init__(self) -> None:
        for name in ("bold", "italic", "underline"):
            if getattr(self, name) is False:
                object.__setattr__(self, name, None)
        if isinstance(self.align, str) and not isinstance(self.align, HorizontalAlign):
            object.__setattr__(self, "align", HorizontalAlign(self.align))
        for name in ("font_color", "background_color"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, normalize_hex_color(value))

    @property
    def is_default(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def merged(self, partial: Mapping[str, Any]) -> CellFormat:
        """Return a copy with ``partial`` applied; None values clear attributes.

        Raises:
            KeyError: If ``partial`` names an unknown attribute
        """
        known = {f.name for f in fields(self)}
        unknown = set(partial) - known
        if unknown:
            raise KeyError(f"Unknown cell format attribute(s): {sorted(unknown)}")
        return replace(self, **partial)

    def to_dict(self) -> dict[str, Any]:
        """Non-default attributes only, with enums as plain values."""
        result: dict[str, Any] = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            result[key] = value.value if isinstance(value, Enum) else value
        return result


DEFAULT_FORMAT = CellFormat()


class StructuralAction(str, Enum):
    INSERT_ROW = "insert_row"
    REMOVE_ROW = "remove_row"
    INSERT_COLUMN = "insert_column"
    REMOVE_COLUMN = "remove_column"


def shift_metadata(
    entries: Mapping[CellKey, CellFormat],
    action: StructuralAction,
    index: int,
    amount: int = 1,
) -> dict[CellKey, CellFormat]:
    """Reindex metadata entries for a structural grid edit.

    This is the only place coordinates are remapped. On insert, keys at or
    past ``index`` on the affected axis move by ``amount``. On remove, keys
    inside ``[index, index + amount)`` are dropped and keys past the range
    move back by ``amount``. The input mapping is not modified.

    Args:
        entries: Current (row, col) -> CellFormat mapping
        action: Which structural edit happened
        index: First affected row or column
        amount: Number of rows or columns inserted or removed

    Returns:
        A new mapping with shifted keys
    """
    if index < 0:
        raise ValueError(f"index must be >= 0, got {index}")
    if amount < 1:
        raise ValueError(f"amount must be >= 1, got {amount}")

    on_rows = action in (StructuralAction.INSERT_ROW, StructuralAction.REMOVE_ROW)
    inserting = action in (StructuralAction.INSERT_ROW, StructuralAction.INSERT_COLUMN)

    shifted: dict[CellKey, CellFormat] = {}
    for (row, col), fmt in entries.items():
        position = row if on_rows else col
        if inserting:
            if position >= index:
                position += amount
        elif position >= index + amount:
            position -= amount
        elif position >= index:
            continue  # Inside the removed range
        key = (position, col) if on_rows else (row, position)
        shifted[key] = fmt
    return shifted


class CellMetadataStore:
    """Mutable sparse map of cell coordinates to formats.

    Owned by exactly one edit session; it needs no locking.
    """

    def __init__(self, entries: Mapping[CellKey, CellFormat] | None = None) -> None:
        self._entries: dict[CellKey, CellFormat] = {}
        for key, fmt in (entries or {}).items():
            if not fmt.is_default:
                self._entries[key] = fmt

    def get(self, row: int, col: int) -> CellFormat:
        """Return the format of a cell (the default if none is stored)."""
        return self._entries.get((row, col), DEFAULT_FORMAT)

    def set(self, row: int, col: int, partial: Mapping[str, Any]) -> CellFormat:
        """Merge ``partial`` into a cell's format and return the result.

        A cell whose merged format is the default is removed from the store.
        """
        merged = self.get(row, col).merged(partial)
        if merged.is_default:
            self._entries.pop((row, col), None)
        else:
            self._entries[(row, col)] = merged
        return merged

    def clear(self) -> None:
        self._entries.clear()

    def apply_shift(self, action: StructuralAction, index: int, amount: int = 1) -> None:
        """Reindex the store in place for a structural edit."""
        self._entries = shift_metadata(self._entries, action, index, amount)

    def prune(self, row_count: int, col_count: int) -> int:
        """Drop entries outside a grid of the given size; return how many."""
        stale = [
            key
            for key in self._entries
            if not (0 <= key[0] < row_count and 0 <= key[1] < col_count)
        ]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def items(self) -> Iterator[tuple[CellKey, CellFormat]]:
        return iter(sorted(self._entries.items()))

    def to_dict(self) -> dict[CellKey, CellFormat]:
        return dict(self._entries)

    def copy(self) -> CellMetadataStore:
        return CellMetadataStore(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CellMetadataStore):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"CellMetadataStore({len(self._entries)} entries)"
