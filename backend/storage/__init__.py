"""
Cell persistence for the live sheets backend.
"""

from .database import cells_table, create_db_engine, init_db, sheets_table
from .cell_store import (
    CellStore,
    DeleteOp,
    SheetExistsError,
    StorageError,
    StoreOp,
    UpsertOp,
)

__all__ = [
    "CellStore",
    "DeleteOp",
    "SheetExistsError",
    "StorageError",
    "StoreOp",
    "UpsertOp",
    "cells_table",
    "create_db_engine",
    "init_db",
    "sheets_table",
]
