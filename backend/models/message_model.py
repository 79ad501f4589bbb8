"""
Broadcast message shapes exchanged over the collaboration socket.
"""

from typing import Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from config.websocket_config import MessageType
from .cell_model import Cell


class BroadcastMessage(BaseModel):
    """Base for every payload the session registry fans out."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    def to_json(self) -> str:
        return self.model_dump_json()


class CellUpdate(BroadcastMessage):
    """A cell mutation as seen by other viewers of the sheet."""

    type: Literal["CellUpdate"] = MessageType.CELL_UPDATE.value
    sheet: str
    row: int
    col: int
    value: str
    font_weight: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("font_weight", "fontWeight"))
    font_style: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("font_style", "fontStyle"))
    background_color: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("background_color", "backgroundColor"))
    user_id: str = Field(validation_alias=AliasChoices("user_id", "userId"))

    @classmethod
    def from_cell(cls, cell: Cell, user_id: str) -> 'CellUpdate':
        """Build the broadcast event for a persisted (resolved) cell."""
        return cls(
            sheet=cell.sheet,
            row=cell.row,
            col=cell.col,
            value=cell.value,
            font_weight=cell.font_weight,
            font_style=cell.font_style,
            background_color=cell.background_color,
            user_id=user_id,
        )


class UserJoined(BroadcastMessage):
    type: Literal["UserJoined"] = MessageType.USER_JOINED.value
    user_id: str


class UserLeft(BroadcastMessage):
    type: Literal["UserLeft"] = MessageType.USER_LEFT.value
    user_id: str


Message = Union[CellUpdate, UserJoined, UserLeft]


def parse_cell_update(raw: str) -> Optional[CellUpdate]:
    """Return the inbound text as a CellUpdate, or None if it has another shape."""
    try:
        return CellUpdate.model_validate_json(raw)
    except ValidationError:
        return None
