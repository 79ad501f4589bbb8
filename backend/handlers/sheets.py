from fastapi import APIRouter, Depends, HTTPException

from config.websocket_config import ErrorCode
from models.cell_model import SheetCreate
from services.cell_service import CellService
from handlers.dependencies import get_cell_service

router = APIRouter()


@router.get("/sheets")
async def list_sheets(service: CellService = Depends(get_cell_service)):
    return await service.list_sheets()


@router.post("/sheets", status_code=201)
async def create_sheet(request: SheetCreate, service: CellService = Depends(get_cell_service)):
    await service.create_sheet(request.name)
    return {"name": request.name}


@router.delete("/sheets/{name}")
async def delete_sheet(name: str, service: CellService = Depends(get_cell_service)):
    """Delete a sheet with all of its cells."""
    if name not in await service.list_sheets():
        raise HTTPException(
            status_code=404,
            detail={"code": ErrorCode.SHEET_NOT_FOUND.value, "message": f"Sheet {name!r} not found"},
        )
    removed = await service.delete_sheet(name)
    return {"name": name, "cells_removed": removed}
