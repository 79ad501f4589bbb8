"""
Application settings and configuration management.
"""

from typing import Annotated, List, Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Server configuration
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=6889)
    DEBUG: bool = Field(default=False)

    # Application info
    APP_NAME: str = Field(default="Live Sheets")
    APP_VERSION: str = Field(default="1.0.0")

    # CORS configuration
    CORS_ORIGINS: Annotated[List[str], NoDecode] = Field(
        default=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )
    CORS_ALLOW_CREDENTIALS: bool = Field(default=True)
    CORS_ALLOW_METHODS: Annotated[List[str], NoDecode] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"]
    )
    CORS_ALLOW_HEADERS: Annotated[List[str], NoDecode] = Field(default=["*"])

    # WebSocket configuration
    WS_PING_INTERVAL: float = Field(default=20.0)
    WS_PING_TIMEOUT: float = Field(default=20.0)
    WS_MAX_CONNECTIONS: int = Field(default=1000)
    WS_MESSAGE_QUEUE_SIZE: int = Field(default=256)

    # Sheet and cell defaults
    DEFAULT_SHEET: str = Field(default="default")
    SYSTEM_USER_ID: str = Field(default="system")

    # Data validation
    MAX_CELL_VALUE_LENGTH: int = Field(default=32767)  # Excel limit
    MAX_FORMULA_LENGTH: int = Field(default=8192)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    LOG_FILE: Optional[str] = Field(default=None)
    LOG_ROTATION: bool = Field(default=True)
    LOG_MAX_SIZE: str = Field(default="10MB")
    LOG_BACKUP_COUNT: int = Field(default=5)

    # Database
    DATABASE_URL: str = Field(default="sqlite:///./cells.db")
    DATABASE_ECHO: bool = Field(default=False)

    # Development settings
    ENABLE_DOCS: bool = Field(default=True)

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator('CORS_ALLOW_METHODS', mode='before')
    @classmethod
    def parse_cors_methods(cls, v):
        """Parse CORS methods from string or list."""
        if isinstance(v, str):
            return [method.strip().upper() for method in v.split(',') if method.strip()]
        return v

    @field_validator('CORS_ALLOW_HEADERS', mode='before')
    @classmethod
    def parse_cors_headers(cls, v):
        """Parse CORS headers from string or list."""
        if isinstance(v, str):
            return [header.strip() for header in v.split(',') if header.strip()]
        return v

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()

    @field_validator('WS_MESSAGE_QUEUE_SIZE', 'WS_MAX_CONNECTIONS')
    @classmethod
    def validate_positive(cls, v):
        """Queue sizes and connection caps must be positive."""
        if v < 1:
            raise ValueError('Value must be at least 1')
        return v

    @field_validator('DEFAULT_SHEET')
    @classmethod
    def validate_default_sheet(cls, v):
        """Default sheet name cannot be blank."""
        if not v.strip():
            raise ValueError('DEFAULT_SHEET cannot be empty')
        return v.strip()

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.DEBUG

    def get_websocket_config(self) -> dict:
        """Get WebSocket configuration dictionary."""
        return {
            "ping_interval": self.WS_PING_INTERVAL,
            "ping_timeout": self.WS_PING_TIMEOUT,
            "max_connections": self.WS_MAX_CONNECTIONS,
            "message_queue_size": self.WS_MESSAGE_QUEUE_SIZE,
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
