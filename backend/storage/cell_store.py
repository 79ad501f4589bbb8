"""
Keyed cell storage: (sheet, row, col) -> Cell.

All writes go through SQLAlchemy Core. Upserts replace the value and
every style field in one statement (last writer wins). ``transaction``
applies a batch of upserts/deletes all-or-nothing.
"""

import threading
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Union
from contextlib import contextmanager

from sqlalchemy import delete, distinct, select, union
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from config.logging_config import LoggerMixin
from models.cell_model import Cell
from .database import cells_table, sheets_table


class StorageError(Exception):
    """The store is unavailable or a constraint was violated."""


class SheetExistsError(StorageError):
    """A sheet with that name already exists."""


@dataclass(frozen=True)
class UpsertOp:
    cell: Cell


@dataclass(frozen=True)
class DeleteOp:
    sheet: str
    row: int
    col: int


StoreOp = Union[UpsertOp, DeleteOp]

_STYLE_COLUMNS = ("value", "font_weight", "font_style", "background_color")


def _row_to_cell(row) -> Cell:
    return Cell(
        sheet=row.sheet,
        row=row.row,
        col=row.col,
        value=row.value,
        font_weight=row.font_weight,
        font_style=row.font_style,
        background_color=row.background_color,
    )


class CellStore(LoggerMixin):
    """Cell persistence guarded by its own lock, independent of the session registry."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._lock = threading.RLock()

    @contextmanager
    def _connect(self, write: bool = False) -> Iterator[Connection]:
        with self._lock:
            try:
                if write:
                    with self.engine.begin() as conn:
                        yield conn
                else:
                    with self.engine.connect() as conn:
                        yield conn
            except IntegrityError as exc:
                self.logger.warning("Store constraint violated, rolled back", error=str(exc.orig))
                raise StorageError(f"Constraint violation: {exc.orig}") from exc
            except SQLAlchemyError as exc:
                self.logger.error("Store operation failed", error=str(exc))
                raise StorageError(str(exc)) from exc

    def _upsert_statement(self, cell: Cell):
        values = cell.to_dict()
        dialect = self.engine.dialect.name
        if dialect == "sqlite":
            stmt = sqlite.insert(cells_table).values(**values)
        elif dialect == "postgresql":
            stmt = postgresql.insert(cells_table).values(**values)
        else:
            raise StorageError(f"Upsert not supported for dialect {dialect!r}")
        return stmt.on_conflict_do_update(
            index_elements=["sheet", "row", "col"],
            set_={column: stmt.excluded[column] for column in _STYLE_COLUMNS},
        )

    @staticmethod
    def _delete_statement(sheet: str, row: int, col: int):
        return delete(cells_table).where(
            cells_table.c.sheet == sheet,
            cells_table.c.row == row,
            cells_table.c.col == col,
        )

    def _apply(self, conn: Connection, op: StoreOp) -> None:
        if isinstance(op, UpsertOp):
            conn.execute(self._upsert_statement(op.cell))
        elif isinstance(op, DeleteOp):
            conn.execute(self._delete_statement(op.sheet, op.row, op.col))
        else:
            raise TypeError(f"Unknown store operation: {op!r}")

    # Point operations

    def get(self, sheet: str, row: int, col: int) -> Optional[Cell]:
        stmt = select(cells_table).where(
            cells_table.c.sheet == sheet,
            cells_table.c.row == row,
            cells_table.c.col == col,
        )
        with self._connect() as conn:
            found = conn.execute(stmt).first()
        return _row_to_cell(found) if found is not None else None

    def get_value(self, sheet: str, row: int, col: int) -> Optional[str]:
        """Stored value text, or None when the cell is absent."""
        cell = self.get(sheet, row, col)
        return cell.value if cell is not None else None

    def upsert(self, cell: Cell) -> None:
        with self._connect(write=True) as conn:
            conn.execute(self._upsert_statement(cell))

    def delete(self, sheet: str, row: int, col: int) -> None:
        with self._connect(write=True) as conn:
            conn.execute(self._delete_statement(sheet, row, col))

    def list_by_sheet(self, sheet: str) -> List[Cell]:
        stmt = (
            select(cells_table)
            .where(cells_table.c.sheet == sheet)
            .order_by(cells_table.c.row, cells_table.c.col)
        )
        with self._connect() as conn:
            return [_row_to_cell(row) for row in conn.execute(stmt)]

    def transaction(self, ops: Sequence[StoreOp]) -> None:
        """Apply every operation or none of them."""
        with self._connect(write=True) as conn:
            for op in ops:
                self._apply(conn, op)
        self.logger.debug("Committed store transaction", operations=len(ops))

    # Sheets

    def list_sheets(self) -> List[str]:
        stmt = union(
            select(sheets_table.c.name),
            select(distinct(cells_table.c.sheet)),
        )
        with self._connect() as conn:
            return sorted(row[0] for row in conn.execute(stmt))

    def sheet_exists(self, name: str) -> bool:
        return name in self.list_sheets()

    def create_sheet(self, name: str) -> None:
        with self._lock:
            if self.sheet_exists(name):
                raise SheetExistsError(f"Sheet {name!r} already exists")
            with self._connect(write=True) as conn:
                conn.execute(sheets_table.insert().values(name=name))

    def delete_sheet(self, name: str) -> int:
        """Remove a sheet and all of its cells atomically; returns cells removed."""
        with self._connect(write=True) as conn:
            removed = conn.execute(delete(cells_table).where(cells_table.c.sheet == name)).rowcount
            conn.execute(delete(sheets_table).where(sheets_table.c.name == name))
        return removed
