from fastapi import APIRouter, Depends, Request

from services.session_registry import SessionRegistry
from handlers.dependencies import get_registry

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, registry: SessionRegistry = Depends(get_registry)):
    return {
        "status": "healthy",
        "version": request.app.state.settings.APP_VERSION,
        "sessions": len(registry),
    }
