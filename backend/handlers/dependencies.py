from fastapi import Request

from services.cell_service import CellService
from services.session_registry import SessionRegistry


def get_cell_service(request: Request) -> CellService:
    return request.app.state.cell_service


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry
