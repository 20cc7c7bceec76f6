# src/async_search_repository/memory/query_parser.py
"""
Parser and evaluator for the search query grammar the compiler produces.

Supported: ``*``, implicit AND (space), ``|`` unions, ``-`` negation,
parenthesized groups, ``@f:{a|b}`` tags, ``@f:[lo hi]`` numeric ranges (with
``(`` exclusive bounds and ``inf``), ``@f:[lon lat radius unit]`` geo radius,
``@f:term`` / ``@f:(a b)`` / ``@f:(a|b)`` text with leading/trailing ``*``
wildcards, and bare free-text terms. Backslash escapes any character.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from async_search_repository.base.exceptions import QuerySyntaxError
from async_search_repository.base.fields import Distance, Point

_WORD_STOP = set(" \t\n|()")
_WORD_RE = re.compile(r"\w+", re.UNICODE)
_EARTH_RADIUS_M = 6371008.8


@dataclass(frozen=True)
class Pattern:
    """A possibly wildcarded literal; ``trailing`` (a trailing ``*``) is a prefix match."""

    text: str
    leading: bool = False
    trailing: bool = False

    def matches(self, candidate: str) -> bool:
        candidate = candidate.lower()
        text = self.text.lower()
        if self.leading and self.trailing:
            return text in candidate
        if self.trailing:
            return candidate.startswith(text)
        if self.leading:
            return candidate.endswith(text)
        return candidate == text


def _pattern(raw: str) -> Pattern:
    """Unescapes ``raw``; unescaped ``*`` at either end becomes a wildcard."""
    chars: List[Tuple[str, bool]] = []
    i = 0
    while i < len(raw):
        if raw[i] == "\\" and i + 1 < len(raw):
            chars.append((raw[i + 1], True))
            i += 2
        else:
            chars.append((raw[i], False))
            i += 1
    leading = bool(chars) and chars[0] == ("*", False)
    if leading:
        chars = chars[1:]
    trailing = bool(chars) and chars[-1] == ("*", False)
    if trailing:
        chars = chars[:-1]
    return Pattern("".join(c for c, _ in chars).strip(), leading, trailing)


# --- Nodes ---
class Node:
    pass


@dataclass(frozen=True)
class MatchAll(Node):
    pass


@dataclass(frozen=True)
class Not(Node):
    node: Node


@dataclass(frozen=True)
class And(Node):
    nodes: Tuple[Node, ...]


@dataclass(frozen=True)
class Or(Node):
    nodes: Tuple[Node, ...]


@dataclass(frozen=True)
class TagMatch(Node):
    field: str
    patterns: Tuple[Pattern, ...]


@dataclass(frozen=True)
class NumericRange(Node):
    field: str
    low: float
    high: float
    low_exclusive: bool = False
    high_exclusive: bool = False

    def contains(self, value: float) -> bool:
        above = value > self.low if self.low_exclusive else value >= self.low
        below = value < self.high if self.high_exclusive else value <= self.high
        return above and below


@dataclass(frozen=True)
class GeoRadius(Node):
    field: str
    center: Point
    radius_m: float


@dataclass(frozen=True)
class TextTerms(Node):
    """Alternatives of word conjunctions: ``((a AND b) OR c)``."""

    field: Optional[str]
    alternatives: Tuple[Tuple[Pattern, ...], ...]


# --- Parser ---
class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def error(self, message: str) -> QuerySyntaxError:
        return QuerySyntaxError(f"{message} at position {self.pos} in {self.text!r}")

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def peek(self) -> str:
        return "" if self.at_end() else self.text[self.pos]

    def skip_ws(self):
        while not self.at_end() and self.text[self.pos].isspace():
            self.pos += 1

    def expect(self, ch: str):
        if self.peek() != ch:
            raise self.error(f"Expected '{ch}'")
        self.pos += 1

    def read_until(self, stops: str) -> str:
        """Raw text up to (not including) the first unescaped stop character."""
        start = self.pos
        while not self.at_end():
            ch = self.text[self.pos]
            if ch == "\\":
                self.pos += 2
                continue
            if ch in stops:
                break
            self.pos += 1
        return self.text[start:self.pos]

    def read_word(self) -> str:
        start = self.pos
        while not self.at_end():
            ch = self.text[self.pos]
            if ch == "\\":
                self.pos += 2
                continue
            if ch in _WORD_STOP:
                break
            self.pos += 1
        if self.pos == start:
            raise self.error("Expected a term")
        return self.text[start:self.pos]

    def parse(self) -> Node:
        node = self.parse_union()
        self.skip_ws()
        if not self.at_end():
            raise self.error("Unexpected input")
        return node

    def parse_union(self) -> Node:
        alternatives = [self.parse_intersect()]
        self.skip_ws()
        while self.peek() == "|":
            self.pos += 1
            alternatives.append(self.parse_intersect())
            self.skip_ws()
        return alternatives[0] if len(alternatives) == 1 else Or(tuple(alternatives))

    def parse_intersect(self) -> Node:
        nodes = []
        while True:
            self.skip_ws()
            if self.at_end() or self.peek() in "|)":
                break
            nodes.append(self.parse_unary())
        if not nodes:
            raise self.error("Empty expression")
        return nodes[0] if len(nodes) == 1 else And(tuple(nodes))

    def parse_unary(self) -> Node:
        if self.peek() == "-":
            self.pos += 1
            return Not(self.parse_unary())
        return self.parse_atom()

    def parse_atom(self) -> Node:
        ch = self.peek()
        if ch == "(":
            self.pos += 1
            node = self.parse_union()
            self.skip_ws()
            self.expect(")")
            return node
        if ch == "@":
            self.pos += 1
            field = _pattern(self.read_until(":")).text
            self.expect(":")
            return self.parse_field_value(field)
        if ch == "*":
            following = self.text[self.pos + 1:self.pos + 2]
            if not following or following in _WORD_STOP:
                self.pos += 1
                return MatchAll()
        return TextTerms(None, ((_pattern(self.read_word()),),))

    def parse_field_value(self, field: str) -> Node:
        ch = self.peek()
        if ch == "{":
            self.pos += 1
            raw = self.read_until("}")
            self.expect("}")
            parts = _split_unescaped(raw, "|")
            return TagMatch(field, tuple(_pattern(p) for p in parts))
        if ch == "[":
            self.pos += 1
            raw = self.read_until("]")
            self.expect("]")
            return self.parse_range(field, raw.split())
        if ch == "(":
            self.pos += 1
            alternatives = self.parse_text_alternatives()
            self.expect(")")
            return TextTerms(field, alternatives)
        return TextTerms(field, ((_pattern(self.read_word()),),))

    def parse_text_alternatives(self) -> Tuple[Tuple[Pattern, ...], ...]:
        alternatives = []
        while True:
            words = []
            while True:
                self.skip_ws()
                if self.at_end() or self.peek() in "|)":
                    break
                words.append(_pattern(self.read_word()))
            alternatives.append(tuple(words))
            if self.peek() != "|":
                return tuple(alternatives)
            self.pos += 1

    def parse_range(self, field: str, tokens: Sequence[str]) -> Node:
        if len(tokens) == 2:
            low, low_excl = _bound(tokens[0], self)
            high, high_excl = _bound(tokens[1], self)
            return NumericRange(field, low, high, low_excl, high_excl)
        if len(tokens) == 4:
            try:
                center = Point(float(tokens[0]), float(tokens[1]))
                radius = Distance(float(tokens[2]), tokens[3]).to_meters()
            except (ValueError, KeyError) as e:
                raise self.error(f"Invalid geo filter {tokens!r}") from e
            return GeoRadius(field, center, radius)
        raise self.error(f"Invalid range {tokens!r}")


def _bound(token: str, parser: _Parser) -> Tuple[float, bool]:
    exclusive = token.startswith("(")
    token = token.lstrip("(")
    try:
        return float(token), exclusive
    except ValueError as e:
        raise parser.error(f"Invalid numeric bound {token!r}") from e


def _split_unescaped(raw: str, sep: str) -> List[str]:
    parts, current, i = [], [], 0
    while i < len(raw):
        if raw[i] == "\\" and i + 1 < len(raw):
            current.append(raw[i:i + 2])
            i += 2
            continue
        if raw[i] == sep:
            parts.append("".join(current))
            current = []
        else:
            current.append(raw[i])
        i += 1
    parts.append("".join(current))
    return [p for p in parts if p.strip()]


def parse_query(query: str) -> Node:
    """Parses a query string; raises QuerySyntaxError on malformed input."""
    if not query or not query.strip():
        raise QuerySyntaxError("Empty query")
    return _Parser(query.strip()).parse()


# --- Evaluation ---
FieldLookup = Callable[[Optional[str]], Optional[Sequence[Any]]]


def haversine_m(a: Point, b: Point) -> float:
    lon1, lat1, lon2, lat2 = map(math.radians, (a.longitude, a.latitude, b.longitude, b.latitude))
    h = (
        math.sin((lat2 - lat1) / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin((lon2 - lon1) / 2) ** 2
    )
    return 2 * _EARTH_RADIUS_M * math.asin(math.sqrt(h))


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _expand(pattern: Pattern) -> List[Pattern]:
    """Splits a literal the way indexed text is tokenized (on punctuation and spaces)."""
    words = _WORD_RE.findall(pattern.text.lower())
    if len(words) <= 1:
        return [pattern]
    last = len(words) - 1
    return [
        Pattern(w, pattern.leading and i == 0, pattern.trailing and i == last)
        for i, w in enumerate(words)
    ]


def _words(values: Sequence[Any]) -> List[str]:
    words: List[str] = []
    for value in values:
        words.extend(_WORD_RE.findall(str(value).lower()))
    return words


def evaluate(node: Node, values_of: FieldLookup, text_values: Callable[[], Sequence[Any]]) -> bool:
    """
    Evaluates ``node`` against one document.

    ``values_of(field)`` returns the document's indexed values of a field as
    strings/numbers (None when the field is not part of the index);
    ``text_values()`` returns the values of all text fields for free-text terms.
    """
    if isinstance(node, MatchAll):
        return True
    if isinstance(node, Not):
        return not evaluate(node.node, values_of, text_values)
    if isinstance(node, And):
        return all(evaluate(n, values_of, text_values) for n in node.nodes)
    if isinstance(node, Or):
        return any(evaluate(n, values_of, text_values) for n in node.nodes)

    if isinstance(node, TextTerms):
        values = text_values() if node.field is None else (values_of(node.field) or ())
        words = _words(values)
        return any(
            all(any(q.matches(w) for w in words) for p in alternative for q in _expand(p))
            for alternative in node.alternatives
            if alternative
        )

    values = values_of(node.field) or ()
    if isinstance(node, TagMatch):
        return any(p.matches(str(v)) for v in values for p in node.patterns)
    if isinstance(node, NumericRange):
        numbers = (_as_float(v) for v in values)
        return any(n is not None and node.contains(n) for n in numbers)
    if isinstance(node, GeoRadius):
        for value in values:
            try:
                point = Point.parse(str(value))
            except ValueError:
                continue
            if haversine_m(point, node.center) <= node.radius_m:
                return True
        return False
    raise QuerySyntaxError(f"Unsupported query node {node!r}")
