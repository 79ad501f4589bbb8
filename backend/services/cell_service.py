"""
Cell mutation path: resolve formulas, persist, then fan out.

A write whose formula fails is rejected before anything is stored or
broadcast. Store calls run in the threadpool so the store lock is never
taken while the registry lock is held, and vice versa.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from starlette.concurrency import run_in_threadpool

from config.logging_config import LoggerMixin, PerformanceLogger
from config.websocket_config import ErrorCode
from models.cell_model import Cell, CellPosition
from models.message_model import CellUpdate
from storage.cell_store import CellStore, DeleteOp, UpsertOp
from .formula_engine import FormulaError, FormulaEvaluator
from .session_registry import SessionRegistry


class CellValueTooLong(ValueError):
    code = ErrorCode.VALUE_TOO_LONG


class CellService(LoggerMixin):
    """Applies client mutations to the store and broadcasts the results."""

    def __init__(self, store: CellStore, registry: SessionRegistry,
                 evaluator: Optional[FormulaEvaluator] = None,
                 default_sheet: str = "default",
                 system_user_id: str = "system",
                 max_value_length: Optional[int] = None):
        self.store = store
        self.registry = registry
        self.evaluator = evaluator or FormulaEvaluator()
        self.default_sheet = default_sheet
        self.system_user_id = system_user_id
        self.max_value_length = max_value_length

    def _prepare(self, cell: Cell) -> Cell:
        cell = cell.with_sheet(self.default_sheet)
        if self.max_value_length is not None and len(cell.value) > self.max_value_length:
            raise CellValueTooLong(
                f"Value for {cell.sheet}!{cell.address} exceeds {self.max_value_length} characters")
        return cell

    def _resolve(self, cell: Cell, lookup) -> Cell:
        if not cell.is_formula:
            return cell
        try:
            resolved = self.evaluator.evaluate(cell.value, cell.sheet, lookup)
        except FormulaError as exc:
            self.logger.info(
                "Formula rejected",
                sheet=cell.sheet,
                address=cell.address,
                code=exc.code.value,
                error=exc.message,
            )
            raise
        return cell.with_value(resolved)

    # Reads

    async def list_cells(self, sheet: Optional[str] = None) -> List[Cell]:
        return await run_in_threadpool(self.store.list_by_sheet, sheet or self.default_sheet)

    async def evaluate(self, expr: str, sheet: Optional[str] = None) -> str:
        """Evaluate an expression without storing anything."""
        return await run_in_threadpool(
            self.evaluator.evaluate, expr, sheet or self.default_sheet, self.store.get_value)

    # Writes

    def _save_one(self, cell: Cell) -> Cell:
        with PerformanceLogger("save cell", self.logger, sheet=cell.sheet, address=cell.address):
            resolved = self._resolve(cell, self.store.get_value)
            self.store.upsert(resolved)
        return resolved

    async def set_cell(self, cell: Cell) -> Cell:
        """Resolve, persist and broadcast one cell; returns the stored cell."""
        cell = self._prepare(cell)
        saved = await run_in_threadpool(self._save_one, cell)
        self.logger.info("Cell saved", sheet=saved.sheet, address=saved.address)
        self.registry.broadcast(CellUpdate.from_cell(saved, self.system_user_id))
        return saved

    def _save_many(self, cells: Sequence[Cell]) -> List[Cell]:
        # Later cells in the batch see the values of earlier ones
        pending: Dict[Tuple[str, int, int], str] = {}

        def lookup(sheet: str, row: int, col: int) -> Optional[str]:
            key = (sheet, row, col)
            if key in pending:
                return pending[key]
            return self.store.get_value(sheet, row, col)

        resolved_cells = []
        for cell in cells:
            resolved = self._resolve(cell, lookup)
            pending[resolved.key] = resolved.value
            resolved_cells.append(resolved)

        self.store.transaction([UpsertOp(cell) for cell in resolved_cells])
        return resolved_cells

    async def set_cells_bulk(self, cells: Sequence[Cell]) -> List[Cell]:
        """Save a batch atomically; one bad formula or row rejects the batch."""
        prepared = [self._prepare(cell) for cell in cells]
        saved = await run_in_threadpool(self._save_many, prepared)
        self.logger.info("Cells saved", count=len(saved))
        for cell in saved:
            self.registry.broadcast(CellUpdate.from_cell(cell, self.system_user_id))
        return saved

    async def clear_cells(self, positions: Sequence[CellPosition]) -> int:
        ops = [
            DeleteOp(position.resolve_sheet(self.default_sheet), position.row, position.col)
            for position in positions
        ]
        await run_in_threadpool(self.store.transaction, ops)
        self.logger.info("Cells cleared", count=len(ops))
        return len(ops)

    # Sheets

    async def list_sheets(self) -> List[str]:
        sheets = await run_in_threadpool(self.store.list_sheets)
        if self.default_sheet not in sheets:
            sheets = sorted(sheets + [self.default_sheet])
        return sheets

    async def create_sheet(self, name: str) -> None:
        await run_in_threadpool(self.store.create_sheet, name)
        self.logger.info("Sheet created", sheet=name)

    async def delete_sheet(self, name: str) -> int:
        removed = await run_in_threadpool(self.store.delete_sheet, name)
        self.logger.info("Sheet deleted", sheet=name, cells_removed=removed)
        return removed
