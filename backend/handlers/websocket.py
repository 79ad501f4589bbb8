from fastapi import APIRouter, WebSocket

from config.websocket_config import WebSocketConfig
from services.collaboration import CollaborationGateway

router = APIRouter()


@router.websocket("/ws")
async def collaboration_socket(websocket: WebSocket):
    """Live updates: presence events and relayed cell edits."""
    config: WebSocketConfig = websocket.app.state.websocket_config
    gateway = CollaborationGateway(websocket, websocket.app.state.registry, config)
    await gateway.run()
