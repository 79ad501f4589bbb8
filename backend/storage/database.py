"""
Database engine and schema for cell storage.
"""

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

metadata = MetaData()

cells_table = Table(
    "cells",
    metadata,
    Column("sheet", String(255), nullable=False, server_default="default"),
    Column("row", Integer, nullable=False),
    Column("col", Integer, nullable=False),
    Column("value", Text, nullable=False),
    Column("font_weight", String(64)),
    Column("font_style", String(64)),
    Column("background_color", String(64)),
    PrimaryKeyConstraint("sheet", "row", "col", name="pk_cells"),
)

sheets_table = Table(
    "sheets",
    metadata,
    Column("name", String(255), primary_key=True),
)


def _is_memory_sqlite(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    # Normalize for SQLAlchemy (some hosts provide postgres://)
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    kwargs = {"echo": echo, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if _is_memory_sqlite(database_url):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **kwargs)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def init_db(engine: Engine) -> None:
    """Create tables if they do not exist."""
    metadata.create_all(engine)
