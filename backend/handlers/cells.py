from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from models.cell_model import Cell, ClearRequest, EvalRequest
from services.cell_service import CellService
from handlers.dependencies import get_cell_service

router = APIRouter()


@router.get("/cells")
async def list_cells(sheet: Optional[str] = Query(default=None),
                     service: CellService = Depends(get_cell_service)):
    """All stored cells of a sheet (``default`` when no sheet is given)."""
    cells = await service.list_cells(sheet)
    return [cell.to_dict() for cell in cells]


@router.post("/cells", response_class=PlainTextResponse)
async def set_cell(cell: Cell, service: CellService = Depends(get_cell_service)):
    """Save one cell. Formulas are resolved first; a bad formula is a 400."""
    await service.set_cell(cell)
    return "saved"


@router.post("/cells/bulk", response_class=PlainTextResponse)
async def set_cells_bulk(cells: List[Cell], service: CellService = Depends(get_cell_service)):
    await service.set_cells_bulk(cells)
    return "saved"


@router.post("/cells/clear", response_class=PlainTextResponse)
async def clear_cells(request: ClearRequest, service: CellService = Depends(get_cell_service)):
    await service.clear_cells(request.cells)
    return "cleared"


@router.post("/evaluate", response_class=PlainTextResponse)
async def evaluate(request: EvalRequest, service: CellService = Depends(get_cell_service)):
    """Evaluate an expression against a sheet without storing it."""
    return await service.evaluate(request.expr, request.sheet)
