"""Tests for CellStore against in-memory SQLite."""

from __future__ import annotations

import pytest

from models.cell_model import Cell
from storage import DeleteOp, SheetExistsError, StorageError, UpsertOp


def make_cell(row: int, col: int, value: str, sheet: str = "default", **styles) -> Cell:
    return Cell(sheet=sheet, row=row, col=col, value=value, **styles)


class TestPointOperations:
    def test_get_missing(self, store) -> None:
        assert store.get("default", 0, 0) is None
        assert store.get_value("default", 0, 0) is None

    def test_upsert_then_get(self, store) -> None:
        store.upsert(make_cell(1, 2, "hello", font_weight="bold"))

        cell = store.get("default", 1, 2)
        assert cell is not None
        assert cell.value == "hello"
        assert cell.font_weight == "bold"

    def test_upsert_replaces_value_and_styles(self, store) -> None:
        store.upsert(make_cell(0, 0, "1", font_weight="bold", background_color="#fff"))
        store.upsert(make_cell(0, 0, "2", font_style="italic"))

        cell = store.get("default", 0, 0)
        assert cell.value == "2"
        assert cell.font_style == "italic"
        assert cell.font_weight is None
        assert cell.background_color is None
        assert len(store.list_by_sheet("default")) == 1

    def test_sheets_are_separate_namespaces(self, store) -> None:
        store.upsert(make_cell(0, 0, "a", sheet="one"))
        store.upsert(make_cell(0, 0, "b", sheet="two"))

        assert store.get_value("one", 0, 0) == "a"
        assert store.get_value("two", 0, 0) == "b"

    def test_delete_is_idempotent(self, store) -> None:
        store.upsert(make_cell(3, 3, "x"))
        store.delete("default", 3, 3)
        store.delete("default", 3, 3)
        assert store.get("default", 3, 3) is None

    def test_list_by_sheet_is_ordered(self, store) -> None:
        store.upsert(make_cell(2, 0, "c"))
        store.upsert(make_cell(0, 1, "b"))
        store.upsert(make_cell(0, 0, "a"))
        store.upsert(make_cell(0, 0, "other", sheet="elsewhere"))

        cells = store.list_by_sheet("default")
        assert [(c.row, c.col, c.value) for c in cells] == [(0, 0, "a"), (0, 1, "b"), (2, 0, "c")]

    def test_missing_sheet_violates_constraint(self, store) -> None:
        with pytest.raises(StorageError):
            store.upsert(Cell(row=0, col=0, value="orphan"))


class TestTransaction:
    def test_applies_mixed_operations(self, store) -> None:
        store.upsert(make_cell(0, 0, "old"))

        store.transaction([
            UpsertOp(make_cell(0, 1, "new")),
            DeleteOp("default", 0, 0),
        ])

        assert store.get("default", 0, 0) is None
        assert store.get_value("default", 0, 1) == "new"

    def test_failure_rolls_back_everything(self, store) -> None:
        store.upsert(make_cell(0, 0, "keep"))

        with pytest.raises(StorageError):
            store.transaction([
                UpsertOp(make_cell(0, 0, "changed")),
                UpsertOp(make_cell(5, 5, "added")),
                UpsertOp(Cell(row=1, col=1, value="no sheet")),
            ])

        assert store.get_value("default", 0, 0) == "keep"
        assert store.get("default", 5, 5) is None

    def test_empty_batch(self, store) -> None:
        store.transaction([])
        assert store.list_by_sheet("default") == []


class TestSheets:
    def test_list_includes_sheets_with_cells(self, store) -> None:
        store.create_sheet("budget")
        store.upsert(make_cell(0, 0, "1", sheet="notes"))

        assert store.list_sheets() == ["budget", "notes"]

    def test_create_duplicate(self, store) -> None:
        store.create_sheet("budget")
        with pytest.raises(SheetExistsError):
            store.create_sheet("budget")

    def test_create_name_already_used_by_cells(self, store) -> None:
        store.upsert(make_cell(0, 0, "1", sheet="notes"))
        with pytest.raises(SheetExistsError):
            store.create_sheet("notes")

    def test_delete_removes_cells(self, store) -> None:
        store.create_sheet("budget")
        store.upsert(make_cell(0, 0, "1", sheet="budget"))
        store.upsert(make_cell(0, 1, "2", sheet="budget"))
        store.upsert(make_cell(0, 0, "3"))

        assert store.delete_sheet("budget") == 2
        assert not store.sheet_exists("budget")
        assert store.list_by_sheet("budget") == []
        assert store.get_value("default", 0, 0) == "3"
