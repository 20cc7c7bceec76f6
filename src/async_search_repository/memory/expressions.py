# src/async_search_repository/memory/expressions.py
"""
FILTER / APPLY expressions over aggregation rows.

Grammar: ``@field`` references, numbers, quoted strings, parentheses, the
operators ``|| && == != < <= > >= + - * / % ^`` and unary ``! -``, and calls
to a small function library (``exists``, ``ismissing``, ``upper``, ``lower``,
``strlen``, ``contains``, ``startswith``, ``substr``, ``abs``, ``floor``,
``ceil``, ``sqrt``, ``log``, ``log2``, ``exp``).

An expression compiles once into a closure taking a row lookup.
"""

import math
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from async_search_repository.base.exceptions import QuerySyntaxError

Lookup = Callable[[str], Any]
Evaluator = Callable[[Lookup], Any]
MissingCheck = Callable[[str], bool]

_TOKEN = re.compile(
    r"""\s*(?:
        (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)
      | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
      | (?P<field>@[A-Za-z_][A-Za-z0-9_.]*)
      | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
      | (?P<op>==|!=|<=|>=|&&|\|\||[-+*/%^<>!(),])
    )""",
    re.VERBOSE,
)

_BINARY_PRECEDENCE = {
    "||": 1,
    "&&": 2,
    "==": 3, "!=": 3,
    "<": 4, "<=": 4, ">": 4, ">=": 4,
    "+": 5, "-": 5,
    "*": 6, "/": 6, "%": 6,
    "^": 7,
}
_UNARY_PRECEDENCE = 8


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens = []
    pos = 0
    while pos < len(text):
        if text[pos:].strip() == "":
            break
        match = _TOKEN.match(text, pos)
        if match is None or match.end() == pos:
            raise QuerySyntaxError(f"Unexpected character at position {pos} in {text!r}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


# --- Value semantics ---
def to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return float(value) if isinstance(value, bool) else None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def truthy(value: Any) -> bool:
    if value is None:
        return False
    number = to_number(value)
    if number is not None:
        return number != 0
    return bool(value)


def _arithmetic(op: str, left: Any, right: Any) -> Optional[float]:
    a, b = to_number(left), to_number(right)
    if a is None or b is None:
        return None
    if op == "+":
        return a + b
    if op == "-":
        return a - b
    if op == "*":
        return a * b
    if op == "/":
        return a / b if b != 0 else math.nan
    if op == "%":
        return float(int(a) % int(b)) if int(b) != 0 else math.nan
    return a ** b


def _compare(op: str, left: Any, right: Any) -> bool:
    a, b = to_number(left), to_number(right)
    if a is None or b is None:
        # Falls back to string comparison when either side is not numeric
        a = "" if left is None else str(left)
        b = "" if right is None else str(right)
    if op == "==":
        return a == b
    if op == "!=":
        return a != b
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def _present(value: Any) -> bool:
    return value is not None and value != "" and value != []


def _unary_math(fn: Callable[[float], float]) -> Callable[[Any], Optional[float]]:
    def apply(value: Any) -> Optional[float]:
        number = to_number(value)
        if number is None:
            return None
        try:
            return float(fn(number))
        except ValueError:
            return math.nan
    return apply


def _substr(value: Any, offset: Any, length: Any) -> str:
    text = "" if value is None else str(value)
    start = int(to_number(offset) or 0)
    count = int(to_number(length) or 0)
    if count < 0:
        return text[start:]
    return text[start:start + count]


_FUNCTIONS: Dict[str, Tuple[int, Callable[..., Any]]] = {
    "upper": (1, lambda v: None if v is None else str(v).upper()),
    "lower": (1, lambda v: None if v is None else str(v).lower()),
    "strlen": (1, lambda v: float(len("" if v is None else str(v)))),
    "contains": (2, lambda s, sub: float(str(s or "").count(str(sub or ""))) if sub else 0.0),
    "startswith": (2, lambda s, p: float(str(s or "").startswith(str(p or "")))),
    "substr": (3, _substr),
    "abs": (1, _unary_math(abs)),
    "floor": (1, _unary_math(math.floor)),
    "ceil": (1, _unary_math(math.ceil)),
    "sqrt": (1, _unary_math(math.sqrt)),
    "log": (1, _unary_math(math.log)),
    "log2": (1, _unary_math(math.log2)),
    "exp": (1, _unary_math(math.exp)),
}


# --- Parser ---
class _ExpressionParser:
    def __init__(self, text: str, missing_allowed: Optional[MissingCheck]):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0
        self.missing_allowed = missing_allowed

    def error(self, message: str) -> QuerySyntaxError:
        return QuerySyntaxError(f"{message} in expression {self.text!r}")

    def peek(self) -> Tuple[Optional[str], Optional[str]]:
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None, None

    def advance(self) -> Tuple[str, str]:
        if self.pos >= len(self.tokens):
            raise self.error("Unexpected end")
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def expect(self, value: str):
        kind, text = self.advance()
        if text != value:
            raise self.error(f"Expected '{value}', got '{text}'")

    def parse(self) -> Evaluator:
        if not self.tokens:
            raise self.error("Empty expression")
        evaluator = self.parse_expression(0)
        if self.pos != len(self.tokens):
            raise self.error(f"Unexpected token '{self.tokens[self.pos][1]}'")
        return evaluator

    def parse_expression(self, min_precedence: int) -> Evaluator:
        left = self.parse_prefix()
        while True:
            kind, op = self.peek()
            precedence = _BINARY_PRECEDENCE.get(op) if kind == "op" else None
            if precedence is None or precedence <= min_precedence:
                return left
            self.advance()
            # ``^`` is right associative
            right = self.parse_expression(precedence - 1 if op == "^" else precedence)
            left = _binary(op, left, right)

    def parse_prefix(self) -> Evaluator:
        kind, text = self.advance()
        if kind == "number":
            number = float(text)
            return lambda row: number
        if kind == "string":
            literal = re.sub(r"\\(.)", r"\1", text[1:-1])
            return lambda row: literal
        if kind == "field":
            name = text[1:]
            return lambda row: row(name)
        if kind == "name":
            return self.parse_call(text)
        if text == "(":
            inner = self.parse_expression(0)
            self.expect(")")
            return inner
        if text == "!":
            operand = self.parse_expression(_UNARY_PRECEDENCE)
            return lambda row: 0.0 if truthy(operand(row)) else 1.0
        if text == "-":
            operand = self.parse_expression(_UNARY_PRECEDENCE)
            return lambda row: _arithmetic("-", 0.0, operand(row))
        raise self.error(f"Unexpected token '{text}'")

    def parse_call(self, name: str) -> Evaluator:
        function = name.lower()
        self.expect("(")
        if function in ("exists", "ismissing"):
            kind, field = self.advance()
            if kind != "field":
                raise self.error(f"{function}() takes a field reference")
            self.expect(")")
            field = field[1:]
            if function == "exists":
                return lambda row: 1.0 if _present(row(field)) else 0.0
            if self.missing_allowed is not None and not self.missing_allowed(field):
                raise self.error(f"Field '{field}' does not track missing values")
            return lambda row: 0.0 if _present(row(field)) else 1.0

        if function not in _FUNCTIONS:
            raise self.error(f"Unknown function '{name}'")
        arity, fn = _FUNCTIONS[function]
        args: List[Evaluator] = []
        if self.peek()[1] != ")":
            args.append(self.parse_expression(0))
            while self.peek()[1] == ",":
                self.advance()
                args.append(self.parse_expression(0))
        self.expect(")")
        if len(args) != arity:
            raise self.error(f"{function}() takes {arity} argument(s), got {len(args)}")
        return lambda row: fn(*(arg(row) for arg in args))


def _binary(op: str, left: Evaluator, right: Evaluator) -> Evaluator:
    if op == "&&":
        return lambda row: 1.0 if truthy(left(row)) and truthy(right(row)) else 0.0
    if op == "||":
        return lambda row: 1.0 if truthy(left(row)) or truthy(right(row)) else 0.0
    if op in ("==", "!=", "<", "<=", ">", ">="):
        return lambda row: 1.0 if _compare(op, left(row), right(row)) else 0.0
    return lambda row: _arithmetic(op, left(row), right(row))


def compile_expression(text: str, missing_allowed: Optional[MissingCheck] = None) -> Evaluator:
    """
    Compiles an expression into ``evaluator(lookup) -> value``.

    ``missing_allowed(field)`` tells whether ``ismissing`` may be used on a
    field; the backend rejects it on fields indexed without missing-value
    tracking. Raises QuerySyntaxError on malformed input.
    """
    return _ExpressionParser(text, missing_allowed).parse()
