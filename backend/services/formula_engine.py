"""
Formula evaluation for cell values that start with ``=``.

Evaluation is a single pass: every ``[A-Z]+[0-9]+`` token is looked up in
the store and, when the stored value is a finite number, replaced by that
number. Whatever is left is parsed by a small recursive descent evaluator
that understands numbers, string literals, parentheses, ``+ - * / % ^``
and the aggregates ``SUM`` and ``AVERAGE``. A reference that could not be
resolved stays in the text and fails evaluation; it is never read as zero.
"""

import math
import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from config.websocket_config import ErrorCode
from models.cell_model import CELL_REFERENCE_PATTERN, INT32_MAX, column_index

CellLookup = Callable[[str, int, int], Optional[str]]
Value = Union[float, str]

# Deeper nesting of parentheses, unary signs or powers is rejected
MAX_NESTING = 64


class FormulaError(Exception):
    """Base for every evaluation failure. ``code`` is sent back to the client."""

    code = ErrorCode.FORMULA_PARSE_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code.value, "message": self.message}


class FormulaParseError(FormulaError):
    """Malformed expression, unknown function or unknown identifier."""

    code = ErrorCode.FORMULA_PARSE_ERROR


class FormulaReferenceError(FormulaError):
    """A cell reference was absent or non-numeric where a number was needed."""

    code = ErrorCode.FORMULA_REFERENCE_ERROR


class FormulaArithmeticError(FormulaError):
    """Invalid operation such as dividing by zero or an empty aggregate."""

    code = ErrorCode.FORMULA_ARITHMETIC_ERROR


class FormulaTypeError(FormulaArithmeticError):
    """An operand or aggregate argument was not a number."""

    code = ErrorCode.FORMULA_TYPE_ERROR


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

_DECIMAL_RE = re.compile(r'^[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?$')


def parse_number(text: str) -> Optional[float]:
    """Parse a stored cell value as a finite decimal, or return None."""
    if not _DECIMAL_RE.match(text):
        return None
    number = float(text)
    if not math.isfinite(number):
        return None
    return number


def format_number(number: float) -> str:
    """Canonical text for a number: integral values drop the fraction."""
    if number.is_integer():
        return str(int(number))
    return repr(number)


# ---------------------------------------------------------------------------
# Reference resolution
# ---------------------------------------------------------------------------


def resolve_references(body: str, sheet: str, lookup: CellLookup) -> str:
    """Substitute each resolvable cell reference with its numeric value."""

    def _substitute(match: re.Match) -> str:
        letters, digits = match.groups()
        row = int(digits) - 1
        col = column_index(letters)
        if row < 0 or row > INT32_MAX or col > INT32_MAX:
            return match.group(0)

        stored = lookup(sheet, row, col)
        if stored is None:
            return match.group(0)
        number = parse_number(stored)
        if number is None:
            return match.group(0)

        text = format_number(number)
        # Keep "A1^2" with A1=-3 meaning (-3)^2
        return f"({text})" if number < 0 else text

    return CELL_REFERENCE_PATTERN.sub(_substitute, body)


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(r"""
    (?P<NUMBER>(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?)
  | (?P<STRING>"[^"]*")
  | (?P<NAME>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<OP>[-+*/%^])
  | (?P<LPAREN>\()
  | (?P<RPAREN>\))
  | (?P<COMMA>,)
  | (?P<SPACE>\s+)
  | (?P<MISMATCH>.)
""", re.VERBOSE)

_REFERENCE_NAME_RE = re.compile(r'^[A-Z]+[0-9]+$')

Token = Tuple[str, str, int]


def tokenize(body: str) -> List[Token]:
    tokens: List[Token] = []
    for match in _TOKEN_RE.finditer(body):
        kind = match.lastgroup
        text = match.group()
        if kind == "SPACE":
            continue
        if kind == "MISMATCH":
            raise FormulaParseError(f"Unexpected character {text!r} at position {match.start()}")
        tokens.append((kind, text, match.start()))
    return tokens


# ---------------------------------------------------------------------------
# Built-in functions
# ---------------------------------------------------------------------------


def _numeric_args(name: str, args: Sequence[Value]) -> List[float]:
    if not args:
        raise FormulaArithmeticError(f"{name} requires at least one argument")
    numbers = []
    for position, arg in enumerate(args, start=1):
        if not isinstance(arg, float):
            raise FormulaTypeError(f"{name} argument {position} is not a number: {arg!r}")
        numbers.append(arg)
    return numbers


def _fsum(name: str, numbers: Sequence[float]) -> float:
    try:
        return math.fsum(numbers)
    except (OverflowError, ValueError) as exc:
        raise FormulaArithmeticError(f"{name} overflowed: {exc}") from exc


def _sum(args: Sequence[Value]) -> float:
    return _fsum("SUM", _numeric_args("SUM", args))


def _average(args: Sequence[Value]) -> float:
    numbers = _numeric_args("AVERAGE", args)
    return _fsum("AVERAGE", numbers) / len(numbers)


FUNCTIONS: Dict[str, Callable[[Sequence[Value]], float]] = {
    "SUM": _sum,
    "AVERAGE": _average,
}


# ---------------------------------------------------------------------------
# Parser / evaluator
# ---------------------------------------------------------------------------


def _require_numbers(op: str, left: Value, right: Value) -> Tuple[float, float]:
    if not isinstance(left, float) or not isinstance(right, float):
        raise FormulaTypeError(f"Operator {op!r} needs numbers, got {left!r} and {right!r}")
    return left, right


def _finite(value: float, what: str) -> float:
    if not math.isfinite(value):
        raise FormulaArithmeticError(f"{what} is out of range")
    return value


def _compute(op: str, a: float, b: float) -> float:
    if op == "+":
        return a + b
    if op == "-":
        return a - b
    if op == "*":
        return a * b
    if op in ("/", "%"):
        if b == 0:
            raise FormulaArithmeticError("Division by zero")
        try:
            return a / b if op == "/" else math.fmod(a, b)
        except (OverflowError, ValueError) as exc:
            raise FormulaArithmeticError(f"Invalid {a!r} {op} {b!r}: {exc}") from exc
    try:
        result = a ** b
    except (OverflowError, ZeroDivisionError) as exc:
        raise FormulaArithmeticError(f"Invalid power {a!r} ^ {b!r}: {exc}") from exc
    if isinstance(result, complex):
        raise FormulaArithmeticError(f"Invalid power {a!r} ^ {b!r}")
    return result


def _apply(op: str, left: Value, right: Value) -> float:
    a, b = _require_numbers(op, left, right)
    return _finite(_compute(op, a, b), f"Result of {a!r} {op} {b!r}")


class _Parser:
    """Evaluates while parsing; precedence: additive < multiplicative < unary < power."""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0
        self.depth = 0

    def peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def advance(self) -> Token:
        token = self.peek()
        if token is None:
            raise FormulaParseError("Unexpected end of expression")
        self.pos += 1
        return token

    def expect(self, kind: str) -> Token:
        token = self.advance()
        if token[0] != kind:
            raise FormulaParseError(f"Expected {kind.lower()} at position {token[2]}, found {token[1]!r}")
        return token

    def at_op(self, *ops: str) -> bool:
        token = self.peek()
        return token is not None and token[0] == "OP" and token[1] in ops

    def parse(self) -> Value:
        if not self.tokens:
            raise FormulaParseError("Empty expression")
        value = self.additive()
        token = self.peek()
        if token is not None:
            raise FormulaParseError(f"Unexpected {token[1]!r} at position {token[2]}")
        return value

    def additive(self) -> Value:
        value = self.multiplicative()
        while self.at_op("+", "-"):
            op = self.advance()[1]
            value = _apply(op, value, self.multiplicative())
        return value

    def multiplicative(self) -> Value:
        value = self.unary()
        while self.at_op("*", "/", "%"):
            op = self.advance()[1]
            value = _apply(op, value, self.unary())
        return value

    def unary(self) -> Value:
        # Every nested construct (parentheses, arguments, signs, powers) passes here
        self.depth += 1
        try:
            if self.depth > MAX_NESTING:
                raise FormulaParseError(f"Expression nested deeper than {MAX_NESTING} levels")
            return self._unary()
        finally:
            self.depth -= 1

    def _unary(self) -> Value:
        if self.at_op("+", "-"):
            op = self.advance()[1]
            operand = self.unary()
            if not isinstance(operand, float):
                raise FormulaTypeError(f"Unary {op!r} needs a number, got {operand!r}")
            return -operand if op == "-" else operand
        return self.power()

    def power(self) -> Value:
        base = self.primary()
        if self.at_op("^"):
            self.advance()
            return _apply("^", base, self.unary())
        return base

    def primary(self) -> Value:
        kind, text, position = self.advance()
        if kind == "NUMBER":
            return _finite(float(text), f"Number {text}")
        if kind == "STRING":
            return text[1:-1]
        if kind == "LPAREN":
            value = self.additive()
            self.expect("RPAREN")
            return value
        if kind == "NAME":
            return self.name(text, position)
        raise FormulaParseError(f"Unexpected {text!r} at position {position}")

    def name(self, text: str, position: int) -> Value:
        token = self.peek()
        if token is not None and token[0] == "LPAREN":
            function = FUNCTIONS.get(text)
            if function is None:
                raise FormulaParseError(f"Unknown function {text!r}")
            self.advance()
            return function(self.arguments())
        if _REFERENCE_NAME_RE.match(text):
            raise FormulaReferenceError(f"Cell reference {text} is empty or not a number")
        raise FormulaParseError(f"Unknown identifier {text!r} at position {position}")

    def arguments(self) -> List[Value]:
        args: List[Value] = []
        token = self.peek()
        if token is not None and token[0] == "RPAREN":
            self.advance()
            return args
        while True:
            args.append(self.additive())
            kind, text, position = self.advance()
            if kind == "RPAREN":
                return args
            if kind != "COMMA":
                raise FormulaParseError(f"Expected ',' or ')' at position {position}, found {text!r}")


class FormulaEvaluator:
    """Stateless evaluator for ``=`` formulas against a cell lookup."""

    def __init__(self, max_length: Optional[int] = None):
        self.max_length = max_length

    def evaluate(self, expr: str, sheet: str, lookup: CellLookup) -> str:
        """Evaluate ``expr`` on ``sheet`` and return the canonical result text.

        Raises a :class:`FormulaError` subclass on any failure.
        """
        if self.max_length is not None and len(expr) > self.max_length:
            raise FormulaParseError(f"Formula exceeds {self.max_length} characters")

        body = expr[1:] if expr.startswith("=") else expr
        body = resolve_references(body, sheet, lookup)
        result = _Parser(tokenize(body)).parse()

        if isinstance(result, str):
            return result
        if not math.isfinite(result):
            raise FormulaArithmeticError("Result is not a finite number")
        return format_number(result)


def evaluate(expr: str, sheet: str, lookup: CellLookup) -> str:
    """Evaluate with the default evaluator; see :meth:`FormulaEvaluator.evaluate`."""
    return FormulaEvaluator().evaluate(expr, sheet, lookup)
