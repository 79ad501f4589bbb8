"""
Structured logging for the live sheets backend.

Everything goes through structlog on top of the stdlib root logger, so
uvicorn, SQLAlchemy and our own modules end up in the same handlers.
"""

import logging
import logging.handlers
import re
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional

import structlog
from structlog.stdlib import LoggerFactory

from .settings import Settings, get_settings

_loggers: Dict[str, structlog.stdlib.BoundLogger] = {}

_SIZE_RE = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*([KMG]?B)?\s*$', re.IGNORECASE)
_SIZE_UNITS = {None: 1, 'B': 1, 'KB': 1024, 'MB': 1024 ** 2, 'GB': 1024 ** 3}
DEFAULT_LOG_FILE_SIZE = 10 * 1024 ** 2

# Our top-level packages; they follow LOG_LEVEL
APP_LOGGERS = ("handlers", "services", "storage", "models", "main")


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure structlog and the stdlib handlers it writes through."""
    settings = settings or get_settings()
    level = getattr(logging, settings.LOG_LEVEL)

    renderer = (structlog.dev.ConsoleRenderer(colors=True) if settings.DEBUG
                else structlog.processors.JSONRenderer())
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    for handler in _build_handlers(settings):
        handler.setLevel(level)
        root.addHandler(handler)

    _set_library_levels(settings)
    for name in APP_LOGGERS:
        logging.getLogger(name).setLevel(level)

    get_logger(__name__).info(
        "Logging configured",
        level=settings.LOG_LEVEL,
        debug_mode=settings.DEBUG,
        log_file=settings.LOG_FILE,
    )


def _build_handlers(settings: Settings) -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    # structlog already rendered the event; the console only prefixes it in debug
    console.setFormatter(logging.Formatter(
        '%(asctime)s %(levelname)-8s %(message)s', datefmt='%H:%M:%S')
        if settings.DEBUG else logging.Formatter(settings.LOG_FORMAT))
    handlers: List[logging.Handler] = [console]

    if settings.LOG_FILE:
        path = Path(settings.LOG_FILE)
        path.parent.mkdir(parents=True, exist_ok=True)
        if settings.LOG_ROTATION:
            file_handler = logging.handlers.RotatingFileHandler(
                path,
                maxBytes=parse_size(settings.LOG_MAX_SIZE),
                backupCount=settings.LOG_BACKUP_COUNT,
                encoding='utf-8',
            )
        else:
            file_handler = logging.FileHandler(path, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
        handlers.append(file_handler)

    return handlers


def _set_library_levels(settings: Settings) -> None:
    noisy = logging.DEBUG if settings.DEBUG else logging.WARNING
    logging.getLogger("websockets").setLevel(noisy)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO if settings.DEBUG else logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DATABASE_ECHO else logging.WARNING)


def parse_size(size: str) -> int:
    """Byte count for sizes like ``"512KB"`` or ``"10MB"``; falls back to 10MB."""
    match = _SIZE_RE.match(size)
    if not match:
        return DEFAULT_LOG_FILE_SIZE
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[unit.upper() if unit else None])


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    if name not in _loggers:
        _loggers[name] = structlog.get_logger(name)
    return _loggers[name]


class LoggerMixin:
    """Gives a class a ``logger`` named after its module and class."""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return get_logger(f"{type(self).__module__}.{type(self).__name__}")


class PerformanceLogger:
    """Times a block and logs the outcome.

    Success is logged at debug, or at info once ``slow_after`` seconds are
    exceeded; a failure is logged at warning and the exception propagates.
    """

    def __init__(self, operation: str, logger: Optional[structlog.stdlib.BoundLogger] = None,
                 slow_after: float = 0.5, **context):
        self.operation = operation
        self.logger = logger or get_logger(__name__)
        self.slow_after = slow_after
        self.context = context
        self.duration: Optional[float] = None
        self._started = 0.0

    def __enter__(self) -> 'PerformanceLogger':
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.duration = time.perf_counter() - self._started

        if exc_type is not None:
            self.logger.warning(f"{self.operation} failed", duration=self.duration,
                                error=str(exc_val), **self.context)
        elif self.duration >= self.slow_after:
            self.logger.info(f"{self.operation} was slow", duration=self.duration, **self.context)
        else:
            self.logger.debug(f"{self.operation} done", duration=self.duration, **self.context)
        return False
