"""
Configuration modules for the live sheets backend.
"""

from .settings import Settings, get_settings
from .logging_config import setup_logging, get_logger, LoggerMixin
from .websocket_config import (
    ErrorCode,
    MessageType,
    WebSocketCloseCode,
    WebSocketConfig,
)
from .cors_config import get_cors_config

__all__ = [
    "Settings",
    "get_settings",
    "setup_logging",
    "get_logger",
    "LoggerMixin",
    "ErrorCode",
    "MessageType",
    "WebSocketCloseCode",
    "WebSocketConfig",
    "get_cors_config"
]
