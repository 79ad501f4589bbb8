"""
Core services: formula evaluation, session fan-out and the collaboration gateway.
"""

from .formula_engine import (
    FormulaArithmeticError,
    FormulaError,
    FormulaEvaluator,
    FormulaParseError,
    FormulaReferenceError,
    FormulaTypeError,
    evaluate,
)
from .session_registry import (
    SessionChannel,
    SessionConnectionError,
    SessionRegistry,
)
from .collaboration import CollaborationGateway
from .cell_service import CellService, CellValueTooLong

__all__ = [
    "CellService",
    "CellValueTooLong",
    "CollaborationGateway",
    "FormulaArithmeticError",
    "FormulaError",
    "FormulaEvaluator",
    "FormulaParseError",
    "FormulaReferenceError",
    "FormulaTypeError",
    "SessionChannel",
    "SessionConnectionError",
    "SessionRegistry",
    "evaluate",
]
