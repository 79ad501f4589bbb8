from .cell_model import (
    Cell,
    CellPosition,
    ClearRequest,
    EvalRequest,
    SheetCreate,
    column_index,
    column_letters,
    format_address,
    parse_address,
)
from .message_model import CellUpdate, UserJoined, UserLeft, parse_cell_update
from .session_model import ConnectionState, InvalidTransition, Session

__all__ = [
    # Cell models
    "Cell",
    "CellPosition",
    "ClearRequest",
    "EvalRequest",
    "SheetCreate",
    "column_index",
    "column_letters",
    "format_address",
    "parse_address",

    # Broadcast messages
    "CellUpdate",
    "UserJoined",
    "UserLeft",
    "parse_cell_update",

    # Session models
    "ConnectionState",
    "InvalidTransition",
    "Session",
]
