from fastapi import FastAPI

from handlers.cells import router as cells_router
from handlers.health import router as health_router
from handlers.sheets import router as sheets_router
from handlers.websocket import router as websocket_router


def register_routes(app: FastAPI):
    app.include_router(health_router)
    app.include_router(cells_router)
    app.include_router(sheets_router)
    app.include_router(websocket_router)
