"""
WebSocket configuration for real-time collaboration.
"""

from enum import Enum, IntEnum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .settings import Settings, get_settings


class MessageType(str, Enum):
    """Type tags carried by broadcast messages."""

    CELL_UPDATE = "CellUpdate"
    USER_JOINED = "UserJoined"
    USER_LEFT = "UserLeft"


class WebSocketCloseCode(IntEnum):
    """Close codes the gateway sends to clients."""

    NORMAL = 1000
    GOING_AWAY = 1001
    TRY_AGAIN_LATER = 1013


class ErrorCode(str, Enum):
    """Stable error codes returned to clients on rejected requests."""

    # Formula errors
    FORMULA_PARSE_ERROR = "formula_parse_error"
    FORMULA_REFERENCE_ERROR = "formula_reference_error"
    FORMULA_ARITHMETIC_ERROR = "formula_arithmetic_error"
    FORMULA_TYPE_ERROR = "formula_type_error"

    # Request errors
    VALUE_TOO_LONG = "value_too_long"
    SHEET_EXISTS = "sheet_exists"
    SHEET_NOT_FOUND = "sheet_not_found"

    # Storage errors
    STORAGE_ERROR = "storage_error"


class WebSocketConfig(BaseModel):
    """WebSocket configuration settings."""

    ping_interval: float = Field(default=20.0, description="Ping interval in seconds")
    ping_timeout: float = Field(default=20.0, description="Ping timeout in seconds")
    max_connections: int = Field(default=1000, description="Maximum concurrent connections")
    message_queue_size: int = Field(default=256, description="Maximum queued messages per connection")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'WebSocketConfig':
        return cls(**(settings or get_settings()).get_websocket_config())

    def uvicorn_options(self) -> Dict[str, Any]:
        """Keepalive options handed to uvicorn, which answers pings with pongs."""
        return {
            "ws_ping_interval": self.ping_interval,
            "ws_ping_timeout": self.ping_timeout,
        }
