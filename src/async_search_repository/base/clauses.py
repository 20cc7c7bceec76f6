# src/async_search_repository/base/clauses.py
"""
Clause Catalog.

A fixed table mapping ``(FieldType, PartType)`` to a clause template: how many
bound values the clause consumes (its arity) and how it renders into the
backend query language for a given field key.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple

from .exceptions import QueryPlanException, ValueTypeError
from .fields import Distance, Point
from .schema import FieldType
from .utils import escape, to_index_value

log = logging.getLogger(__name__)


class PartType(Enum):
    """Comparison operators a method-name term can carry."""

    SIMPLE_PROPERTY = "simple_property"
    NEGATING_SIMPLE_PROPERTY = "negating_simple_property"
    GREATER_THAN = "greater_than"
    GREATER_THAN_EQUAL = "greater_than_equal"
    LESS_THAN = "less_than"
    LESS_THAN_EQUAL = "less_than_equal"
    BETWEEN = "between"
    BEFORE = "before"
    AFTER = "after"
    STARTING_WITH = "starting_with"
    ENDING_WITH = "ending_with"
    CONTAINING = "containing"
    CONTAINING_ALL = "containing_all"
    NOT_CONTAINING = "not_containing"
    LIKE = "like"
    NOT_LIKE = "not_like"
    IN = "in"
    NOT_IN = "not_in"
    NEAR = "near"
    WITHIN = "within"
    TRUE = "true"
    FALSE = "false"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    EXISTS = "exists"


# --- Value renderers ---
def _as_list(value: Any) -> list:
    if isinstance(value, (list, tuple, set, frozenset)) and not isinstance(value, Point):
        return list(value)
    return [value]


def _text(value: Any) -> str:
    words = to_index_value(value).split()
    if len(words) > 1:
        return "(" + " ".join(escape(w) for w in words) + ")"
    return escape(words[0]) if words else ""


def _tag(value: Any) -> str:
    return escape(to_index_value(value))


def _tags(value: Any) -> str:
    return "|".join(_tag(v) for v in _as_list(value))


def _num(value: Any) -> str:
    return to_index_value(value)


def _point(value: Any) -> Point:
    if isinstance(value, Point):
        return value
    if isinstance(value, str):
        return Point.parse(value)
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return Point(float(value[0]), float(value[1]))
    raise ValueTypeError(f"Expected a Point, got {value!r}")


def _distance(value: Any) -> Distance:
    if isinstance(value, Distance):
        return value
    if isinstance(value, (int, float)):
        return Distance(float(value))
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return Distance(float(value[0]), str(value[1]))
    raise ValueTypeError(f"Expected a Distance, got {value!r}")


def _geo(point: Any, distance: Any) -> str:
    p, d = _point(point), _distance(distance)
    return f"[{_num(p.longitude)} {_num(p.latitude)} {_num(d.value)} {d.unit}]"


def _numeric_any(field: str, value: Any) -> str:
    values = _as_list(value)
    parts = [f"@{field}:[{_num(v)} {_num(v)}]" for v in values]
    return parts[0] if len(parts) == 1 else "(" + " | ".join(parts) + ")"


Renderer = Callable[[str, Sequence[Any]], str]


@dataclass(frozen=True, eq=False)
class ClauseTemplate:
    field_type: Optional[FieldType]
    part_type: Optional[PartType]
    arity: int
    render: Renderer


def _t(field_type, part_type, arity, render) -> ClauseTemplate:
    return ClauseTemplate(field_type, part_type, arity, render)


T, G, N, GEO = FieldType.TEXT, FieldType.TAG, FieldType.NUMERIC, FieldType.GEO
P = PartType


class Clause(Enum):
    """Every clause template the compiler can emit."""

    # Text
    TEXT_SIMPLE_PROPERTY = _t(T, P.SIMPLE_PROPERTY, 1, lambda f, v: f"@{f}:{_text(v[0])}")
    TEXT_NOT = _t(T, P.NEGATING_SIMPLE_PROPERTY, 1, lambda f, v: f"-@{f}:{_text(v[0])}")
    TEXT_STARTING_WITH = _t(T, P.STARTING_WITH, 1, lambda f, v: f"@{f}:{_text(v[0])}*")
    TEXT_ENDING_WITH = _t(T, P.ENDING_WITH, 1, lambda f, v: f"@{f}:*{_text(v[0])}")
    TEXT_CONTAINING = _t(T, P.CONTAINING, 1, lambda f, v: f"@{f}:*{_text(v[0])}*")
    TEXT_NOT_CONTAINING = _t(T, P.NOT_CONTAINING, 1, lambda f, v: f"-@{f}:*{_text(v[0])}*")
    TEXT_LIKE = _t(T, P.LIKE, 1, lambda f, v: f"@{f}:*{_text(v[0])}*")
    TEXT_NOT_LIKE = _t(T, P.NOT_LIKE, 1, lambda f, v: f"-@{f}:*{_text(v[0])}*")
    TEXT_IN = _t(T, P.IN, 1, lambda f, v: f"@{f}:(" + "|".join(_text(x) for x in _as_list(v[0])) + ")")
    TEXT_NOT_IN = _t(T, P.NOT_IN, 1, lambda f, v: f"-@{f}:(" + "|".join(_text(x) for x in _as_list(v[0])) + ")")
    TEXT_ALL = _t(T, None, 1, lambda f, v: _text(v[0]))

    # Tag
    TAG_SIMPLE_PROPERTY = _t(G, P.SIMPLE_PROPERTY, 1, lambda f, v: f"@{f}:{{{_tags(v[0])}}}")
    TAG_NOT = _t(G, P.NEGATING_SIMPLE_PROPERTY, 1, lambda f, v: f"-@{f}:{{{_tags(v[0])}}}")
    TAG_STARTING_WITH = _t(G, P.STARTING_WITH, 1, lambda f, v: f"@{f}:{{{_tag(v[0])}*}}")
    TAG_ENDING_WITH = _t(G, P.ENDING_WITH, 1, lambda f, v: f"@{f}:{{*{_tag(v[0])}}}")
    TAG_LIKE = _t(G, P.LIKE, 1, lambda f, v: f"@{f}:{{*{_tag(v[0])}*}}")
    TAG_CONTAINING = _t(G, P.CONTAINING, 1, lambda f, v: f"@{f}:{{{_tags(v[0])}}}")
    TAG_NOT_CONTAINING = _t(G, P.NOT_CONTAINING, 1, lambda f, v: f"-@{f}:{{{_tags(v[0])}}}")
    TAG_IN = _t(G, P.IN, 1, lambda f, v: f"@{f}:{{{_tags(v[0])}}}")
    TAG_NOT_IN = _t(G, P.NOT_IN, 1, lambda f, v: f"-@{f}:{{{_tags(v[0])}}}")
    TAG_TRUE = _t(G, P.TRUE, 0, lambda f, v: f"@{f}:{{true}}")
    TAG_FALSE = _t(G, P.FALSE, 0, lambda f, v: f"@{f}:{{false}}")
    TAG_CONTAINING_ALL = _t(G, None, 1, lambda f, v: " ".join(f"@{f}:{{{_tag(x)}}}" for x in _as_list(v[0])))

    # Numeric
    NUMERIC_SIMPLE_PROPERTY = _t(N, P.SIMPLE_PROPERTY, 1, lambda f, v: _numeric_any(f, v[0]))
    NUMERIC_NOT = _t(N, P.NEGATING_SIMPLE_PROPERTY, 1, lambda f, v: f"-{_numeric_any(f, v[0])}")
    NUMERIC_GREATER_THAN = _t(N, P.GREATER_THAN, 1, lambda f, v: f"@{f}:[({_num(v[0])} inf]")
    NUMERIC_GREATER_THAN_EQUAL = _t(N, P.GREATER_THAN_EQUAL, 1, lambda f, v: f"@{f}:[{_num(v[0])} inf]")
    NUMERIC_LESS_THAN = _t(N, P.LESS_THAN, 1, lambda f, v: f"@{f}:[-inf ({_num(v[0])}]")
    NUMERIC_LESS_THAN_EQUAL = _t(N, P.LESS_THAN_EQUAL, 1, lambda f, v: f"@{f}:[-inf {_num(v[0])}]")
    NUMERIC_BETWEEN = _t(N, P.BETWEEN, 2, lambda f, v: f"@{f}:[{_num(v[0])} {_num(v[1])}]")
    NUMERIC_BEFORE = _t(N, P.BEFORE, 1, lambda f, v: f"@{f}:[-inf ({_num(v[0])}]")
    NUMERIC_AFTER = _t(N, P.AFTER, 1, lambda f, v: f"@{f}:[({_num(v[0])} inf]")
    NUMERIC_IN = _t(N, P.IN, 1, lambda f, v: _numeric_any(f, v[0]))
    NUMERIC_NOT_IN = _t(N, P.NOT_IN, 1, lambda f, v: f"-{_numeric_any(f, v[0])}")
    NUMERIC_CONTAINING = _t(N, P.CONTAINING, 1, lambda f, v: _numeric_any(f, v[0]))
    NUMERIC_NOT_CONTAINING = _t(N, P.NOT_CONTAINING, 1, lambda f, v: f"-{_numeric_any(f, v[0])}")
    NUMERIC_CONTAINING_ALL = _t(N, None, 1, lambda f, v: " ".join(f"@{f}:[{_num(x)} {_num(x)}]" for x in _as_list(v[0])))

    # Geo
    GEO_NEAR = _t(GEO, P.NEAR, 2, lambda f, v: f"@{f}:{_geo(v[0], v[1])}")
    GEO_WITHIN = _t(GEO, P.WITHIN, 2, lambda f, v: f"@{f}:{_geo(v[0], v[1])}")
    GEO_CONTAINING_ALL = _t(GEO, None, 1, lambda f, v: " ".join(f"@{f}:{_geo(p, Distance(1, 'm'))}" for p in _as_list(v[0])))

    # Sentinels: never rendered into the primary query
    IS_NULL = _t(None, P.IS_NULL, 0, lambda f, v: "")
    IS_NOT_NULL = _t(None, P.IS_NOT_NULL, 0, lambda f, v: "")

    @property
    def arity(self) -> int:
        return self.value.arity

    @property
    def field_type(self) -> Optional[FieldType]:
        return self.value.field_type

    @property
    def is_sentinel(self) -> bool:
        return self in (Clause.IS_NULL, Clause.IS_NOT_NULL)

    def prepare_query(self, field: str, values: Sequence[Any]) -> str:
        """Renders the clause for ``field`` using exactly ``arity`` values."""
        if len(values) != self.arity:
            raise ValueTypeError(
                f"Clause {self.name} expects {self.arity} value(s), got {len(values)}"
            )
        return self.value.render(field, values)

    @staticmethod
    def get(field_type: FieldType, part_type: PartType) -> "Clause":
        """Catalog lookup; raises QueryPlanException for unsupported combinations."""
        if part_type in (PartType.IS_NULL,):
            return Clause.IS_NULL
        if part_type in (PartType.IS_NOT_NULL, PartType.EXISTS):
            return Clause.IS_NOT_NULL
        clause = _CATALOG.get((field_type, part_type))
        if clause is None:
            raise QueryPlanException(
                f"Operator {part_type.name} is not supported on {field_type.name} fields"
            )
        return clause

    @staticmethod
    def containing_all(field_type: FieldType) -> "Clause":
        """All-match variant for collection fields."""
        return _CONTAINING_ALL[field_type]


_CATALOG: Dict[Tuple[FieldType, PartType], Clause] = {
    (c.value.field_type, c.value.part_type): c
    for c in Clause
    if c.value.field_type is not None and c.value.part_type is not None
}

_CONTAINING_ALL: Dict[FieldType, Clause] = {
    FieldType.TAG: Clause.TAG_CONTAINING_ALL,
    FieldType.NUMERIC: Clause.NUMERIC_CONTAINING_ALL,
    FieldType.GEO: Clause.GEO_CONTAINING_ALL,
    FieldType.TEXT: Clause.TEXT_CONTAINING,
}


def total_arity(clauses: Iterable[Clause]) -> int:
    return sum(c.arity for c in clauses if not c.is_sentinel)
