"""Tests for cell formatting metadata and structural reindexing."""

from __future__ import annotations

import pytest

from extraedit.metadata import (
    DEFAULT_FORMAT,
    CellFormat,
    CellMetadataStore,
    HorizontalAlign,
    StructuralAction,
    shift_metadata,
)

BOLD = CellFormat(bold=True)
RED = CellFormat(background_color="#FF0000")


class TestCellFormat:
    """Tests for CellFormat normalization."""

    def test_false_toggles_normalize_to_none(self) -> None:
        fmt = CellFormat(bold=False, italic=False, underline=False)
        assert fmt == DEFAULT_FORMAT
        assert fmt.is_default

    def test_align_string_becomes_enum(self) -> None:
        assert CellFormat(align="center").align is HorizontalAlign.CENTER  # type: ignore[arg-type]

    def test_colors_normalized(self) -> None:
        assert CellFormat(font_color="f00").font_color == "#FF0000"

    def test_merged_none_clears(self) -> None:
        fmt = CellFormat(bold=True, italic=True).merged({"bold": None})
        assert fmt == CellFormat(italic=True)

    def test_merged_rejects_unknown(self) -> None:
        with pytest.raises(KeyError):
            BOLD.merged({"strike": True})

    def test_to_dict(self) -> None:
        fmt = CellFormat(bold=True, align=HorizontalAlign.RIGHT, font_size=14.0)
        assert fmt.to_dict() == {"bold": True, "align": "right", "font_size": 14.0}


class TestShiftMetadata:
    """Tests for the pure reindexing function."""

    def test_insert_row_shifts_at_and_after(self) -> None:
        entries = {(0, 0): BOLD, (2, 1): RED, (5, 0): BOLD}
        shifted = shift_metadata(entries, StructuralAction.INSERT_ROW, 2)
        assert shifted == {(0, 0): BOLD, (3, 1): RED, (6, 0): BOLD}

    def test_insert_column_by_amount(self) -> None:
        entries = {(0, 0): BOLD, (1, 3): RED}
        shifted = shift_metadata(entries, StructuralAction.INSERT_COLUMN, 1, amount=2)
        assert shifted == {(0, 0): BOLD, (1, 5): RED}

    def test_remove_row_drops_and_shifts(self) -> None:
        entries = {(0, 0): BOLD, (1, 0): RED, (2, 0): BOLD}
        shifted = shift_metadata(entries, StructuralAction.REMOVE_ROW, 1)
        assert shifted == {(0, 0): BOLD, (1, 0): BOLD}

    def test_remove_column_range(self) -> None:
        entries = {(0, 0): BOLD, (0, 1): RED, (0, 2): RED, (0, 3): BOLD}
        shifted = shift_metadata(entries, StructuralAction.REMOVE_COLUMN, 1, amount=2)
        assert shifted == {(0, 0): BOLD, (0, 1): BOLD}

    def test_input_not_modified(self) -> None:
        entries = {(1, 1): BOLD}
        shift_metadata(entries, StructuralAction.INSERT_ROW, 0)
        assert entries == {(1, 1): BOLD}

    @pytest.mark.parametrize(
        ("insert", "remove"),
        [
            (StructuralAction.INSERT_ROW, StructuralAction.REMOVE_ROW),
            (StructuralAction.INSERT_COLUMN, StructuralAction.REMOVE_COLUMN),
        ],
    )
    def test_insert_then_remove_is_identity(
        self, insert: StructuralAction, remove: StructuralAction
    ) -> None:
        entries = {(r, c): BOLD for r in range(4) for c in range(4) if (r + c) % 2}
        for index in range(5):
            restored = shift_metadata(shift_metadata(entries, insert, index, 2), remove, index, 2)
            assert restored == entries

    def test_invalid_arguments(self) -> None:
        with pytest.raises(ValueError):
            shift_metadata({}, StructuralAction.INSERT_ROW, -1)
        with pytest.raises(ValueError):
            shift_metadata({}, StructuralAction.REMOVE_ROW, 0, amount=0)


class TestCellMetadataStore:
    """Tests for the mutable store."""

    def test_get_default(self) -> None:
        assert CellMetadataStore().get(3, 3) is DEFAULT_FORMAT

    def test_set_merges(self) -> None:
        store = CellMetadataStore()
        store.set(0, 0, {"bold": True})
        store.set(0, 0, {"align": "center"})
        assert store.get(0, 0) == CellFormat(bold=True, align=HorizontalAlign.CENTER)

    def test_set_back_to_default_removes_entry(self) -> None:
        store = CellMetadataStore()
        store.set(1, 2, {"bold": True})
        store.set(1, 2, {"bold": None})
        assert (1, 2) not in store
        assert len(store) == 0

    def test_default_entries_dropped_on_construction(self) -> None:
        store = CellMetadataStore({(0, 0): DEFAULT_FORMAT, (0, 1): BOLD})
        assert len(store) == 1

    def test_apply_shift(self) -> None:
        store = CellMetadataStore({(2, 0): BOLD})
        store.apply_shift(StructuralAction.INSERT_ROW, 0)
        assert store.get(3, 0) == BOLD
        assert (2, 0) not in store

    def test_prune(self) -> None:
        store = CellMetadataStore({(0, 0): BOLD, (5, 0): BOLD, (0, 9): RED})
        assert store.prune(row_count=3, col_count=3) == 2
        assert list(store.items()) == [((0, 0), BOLD)]

    def test_items_sorted(self) -> None:
        store = CellMetadataStore({(1, 0): BOLD, (0, 2): RED, (0, 1): BOLD})
        assert [key for key, _ in store.items()] == [(0, 1), (0, 2), (1, 0)]

    def test_copy_is_independent(self) -> None:
        store = CellMetadataStore({(0, 0): BOLD})
        clone = store.copy()
        clone.set(0, 0, {"bold": None})
        assert store.get(0, 0) == BOLD
        assert clone != store
