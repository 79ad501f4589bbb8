from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from config import get_cors_config, get_logger, get_settings, setup_logging
from config.settings import Settings
from config.websocket_config import ErrorCode, WebSocketConfig
from handlers import register_routes
from services.cell_service import CellService, CellValueTooLong
from services.formula_engine import FormulaError, FormulaEvaluator
from services.session_registry import SessionRegistry
from storage import CellStore, SheetExistsError, StorageError, create_db_engine, init_db

logger = get_logger(__name__)


def _error(status_code: int, code: ErrorCode, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": {"code": code.value, "message": message}})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(FormulaError)
    async def formula_error_handler(request: Request, exc: FormulaError):
        return JSONResponse(status_code=400, content={"detail": exc.to_dict()})

    @app.exception_handler(CellValueTooLong)
    async def value_too_long_handler(request: Request, exc: CellValueTooLong):
        return _error(422, exc.code, str(exc))

    @app.exception_handler(SheetExistsError)
    async def sheet_exists_handler(request: Request, exc: SheetExistsError):
        return _error(409, ErrorCode.SHEET_EXISTS, str(exc))

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error("Storage error", path=request.url.path, error=str(exc))
        return _error(500, ErrorCode.STORAGE_ERROR, "Failed to save changes")


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    settings = settings or get_settings()
    engine = engine or create_db_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    init_db(engine)

    registry = SessionRegistry()
    store = CellStore(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting", app=settings.APP_NAME, version=settings.APP_VERSION)
        yield
        registry.close_all()
        engine.dispose()
        logger.info("Stopped", app=settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Real-time collaborative spreadsheet backend",
        docs_url="/api/docs" if settings.ENABLE_DOCS else None,
        redoc_url="/api/redoc" if settings.ENABLE_DOCS else None,
        lifespan=lifespan,
    )
    app.add_middleware(CORSMiddleware, **get_cors_config(settings))

    app.state.settings = settings
    app.state.registry = registry
    app.state.store = store
    app.state.websocket_config = WebSocketConfig.from_settings(settings)
    app.state.cell_service = CellService(
        store,
        registry,
        evaluator=FormulaEvaluator(max_length=settings.MAX_FORMULA_LENGTH),
        default_sheet=settings.DEFAULT_SHEET,
        system_user_id=settings.SYSTEM_USER_ID,
        max_value_length=settings.MAX_CELL_VALUE_LENGTH,
    )

    register_exception_handlers(app)
    register_routes(app)
    return app


def run() -> None:
    settings = get_settings()
    setup_logging(settings)
    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=settings.DEBUG,
        **WebSocketConfig.from_settings(settings).uvicorn_options(),
    )


if __name__ == "__main__":
    run()
