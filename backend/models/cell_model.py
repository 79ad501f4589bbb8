from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Any, Dict, List, Tuple
import re

INT32_MAX = 2**31 - 1

CELL_REFERENCE_PATTERN = re.compile(r'([A-Z]+)([0-9]+)')
_ADDRESS_RE = re.compile(r'^([A-Z]+)([0-9]+)$')


def column_index(letters: str) -> int:
    """Decode spreadsheet column letters into a 0-based index (A -> 0, AA -> 26)."""
    column = 0
    for char in letters:
        column = column * 26 + (ord(char) - ord('A') + 1)
    return column - 1


def column_letters(index: int) -> str:
    """Encode a 0-based column index as spreadsheet letters (0 -> A, 26 -> AA)."""
    letters = ""
    index += 1
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord('A') + remainder) + letters
    return letters


def parse_address(address: str) -> Tuple[int, int]:
    """Parse an A1-style address into 0-based (row, column)."""
    match = _ADDRESS_RE.match(address)
    if not match:
        raise ValueError(f"Invalid cell address: {address}")

    letters, row_str = match.groups()
    row = int(row_str) - 1
    if row < 0:
        raise ValueError(f"Row must be at least 1: {address}")
    return row, column_index(letters)


def format_address(row: int, column: int) -> str:
    return f"{column_letters(column)}{row + 1}"


class Cell(BaseModel):
    """A single persisted grid cell.

    ``value`` is always the resolved text; formulas are evaluated before a
    cell reaches the store. Style fields are free-form strings and are
    written on every save, so omitting one clears it.
    """

    model_config = ConfigDict(frozen=True)

    sheet: Optional[str] = None
    row: int = Field(..., ge=0, le=INT32_MAX, description="Row index of the cell")
    col: int = Field(..., ge=0, le=INT32_MAX, description="Column index of the cell")
    value: str = Field(default="", description="Resolved value of the cell")

    font_weight: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("font_weight", "fontWeight"))
    font_style: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("font_style", "fontStyle"))
    background_color: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("background_color", "backgroundColor"))

    @field_validator('sheet')
    @classmethod
    def validate_sheet(cls, value):
        if value is not None and not value.strip():
            return None
        return value

    @property
    def address(self) -> str:
        return format_address(self.row, self.col)

    @property
    def is_formula(self) -> bool:
        return self.value.startswith('=')

    @property
    def key(self) -> Tuple[str, int, int]:
        return (self.sheet, self.row, self.col)

    def with_sheet(self, default_sheet: str) -> 'Cell':
        """Return a copy with the sheet filled in when the request left it out."""
        if self.sheet is not None:
            return self
        return self.model_copy(update={"sheet": default_sheet})

    def with_value(self, value: str) -> 'Cell':
        return self.model_copy(update={"value": value})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sheet": self.sheet,
            "row": self.row,
            "col": self.col,
            "value": self.value,
            "font_weight": self.font_weight,
            "font_style": self.font_style,
            "background_color": self.background_color,
        }


class CellPosition(BaseModel):
    """Coordinate of a cell to clear."""

    sheet: Optional[str] = None
    row: int = Field(..., ge=0, le=INT32_MAX)
    col: int = Field(..., ge=0, le=INT32_MAX)

    def resolve_sheet(self, default_sheet: str) -> str:
        return self.sheet if self.sheet else default_sheet


class ClearRequest(BaseModel):
    cells: List[CellPosition] = Field(default_factory=list)


class EvalRequest(BaseModel):
    expr: str
    sheet: Optional[str] = None


class SheetCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator('name')
    @classmethod
    def validate_name(cls, value):
        value = value.strip()
        if not value:
            raise ValueError("Sheet name cannot be blank")
        if '/' in value:
            raise ValueError("Sheet name cannot contain '/'")
        return value
