"""
CORS policy for the HTTP API and the socket upgrade.
"""

from typing import Any, Dict, Iterable, List, Optional

from .settings import Settings, get_settings

# Headers the grid client reads from API responses
EXPOSED_HEADERS = ["Content-Length", "Content-Type"]

PREFLIGHT_MAX_AGE = 3600
DEV_PREFLIGHT_MAX_AGE = 86400


def get_cors_config(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Keyword arguments for ``CORSMiddleware``; DEBUG allows any origin."""
    settings = settings or get_settings()

    if settings.is_development:
        # Browsers reject credentials with a wildcard origin
        return {
            "allow_origins": ["*"],
            "allow_credentials": False,
            "allow_methods": ["*"],
            "allow_headers": ["*"],
            "max_age": DEV_PREFLIGHT_MAX_AGE,
        }

    return {
        "allow_origins": validate_cors_origins(settings.CORS_ORIGINS),
        "allow_credentials": settings.CORS_ALLOW_CREDENTIALS,
        "allow_methods": settings.CORS_ALLOW_METHODS,
        "allow_headers": settings.CORS_ALLOW_HEADERS,
        "expose_headers": EXPOSED_HEADERS,
        "max_age": PREFLIGHT_MAX_AGE,
    }


def _normalize_origin(origin: str) -> str:
    if origin == "*" or "://" in origin:
        return origin.rstrip("/")
    host = origin.split(":", 1)[0]
    scheme = "http" if host in ("localhost", "127.0.0.1") else "https"
    return f"{scheme}://{origin}".rstrip("/")


def validate_cors_origins(origins: Iterable[str]) -> List[str]:
    """Drop blanks, add a scheme where missing and strip trailing slashes."""
    normalized = []
    for origin in origins:
        origin = origin.strip()
        if origin:
            normalized.append(_normalize_origin(origin))
    return normalized
