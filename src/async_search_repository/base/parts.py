# src/async_search_repository/base/parts.py
"""
Method-name grammar.

Parses snake_case repository method names into a disjunction of conjunctions of
property comparison terms::

    find_by_status_and_age_greater_than_or_name_starting_with_order_by_age_desc
    -> [[status SIMPLE_PROPERTY, age GREATER_THAN], [name STARTING_WITH]], sort age DESC

Property paths are matched greedily against the model's attributes, descending
into nested models (``address_city`` -> ``address.city``).
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .clauses import PartType
from .exceptions import QueryPlanException
from .results import Order
from .schema import attribute_type, is_model_class, model_attribute_names

log = logging.getLogger(__name__)


class Subject(Enum):
    FIND = "find"
    COUNT = "count"
    EXISTS = "exists"
    DELETE = "delete"


_VERBS = {
    "find": Subject.FIND,
    "get": Subject.FIND,
    "read": Subject.FIND,
    "query": Subject.FIND,
    "search": Subject.FIND,
    "stream": Subject.FIND,
    "count": Subject.COUNT,
    "exists": Subject.EXISTS,
    "delete": Subject.DELETE,
    "remove": Subject.DELETE,
}

# Operator keywords, matched as term suffixes (longest first)
_KEYWORDS = {
    "is_not_null": PartType.IS_NOT_NULL,
    "not_null": PartType.IS_NOT_NULL,
    "is_null": PartType.IS_NULL,
    "null": PartType.IS_NULL,
    "exists": PartType.EXISTS,
    "greater_than_equal": PartType.GREATER_THAN_EQUAL,
    "greater_than": PartType.GREATER_THAN,
    "less_than_equal": PartType.LESS_THAN_EQUAL,
    "less_than": PartType.LESS_THAN,
    "is_between": PartType.BETWEEN,
    "between": PartType.BETWEEN,
    "is_before": PartType.BEFORE,
    "before": PartType.BEFORE,
    "is_after": PartType.AFTER,
    "after": PartType.AFTER,
    "starting_with": PartType.STARTING_WITH,
    "starts_with": PartType.STARTING_WITH,
    "ending_with": PartType.ENDING_WITH,
    "ends_with": PartType.ENDING_WITH,
    "not_containing": PartType.NOT_CONTAINING,
    "containing_all": PartType.CONTAINING_ALL,
    "containing": PartType.CONTAINING,
    "contains": PartType.CONTAINING,
    "not_like": PartType.NOT_LIKE,
    "like": PartType.LIKE,
    "not_in": PartType.NOT_IN,
    "is_in": PartType.IN,
    "in": PartType.IN,
    "near": PartType.NEAR,
    "within": PartType.WITHIN,
    "is_true": PartType.TRUE,
    "true": PartType.TRUE,
    "is_false": PartType.FALSE,
    "false": PartType.FALSE,
    "is_not": PartType.NEGATING_SIMPLE_PROPERTY,
    "not": PartType.NEGATING_SIMPLE_PROPERTY,
    "equals": PartType.SIMPLE_PROPERTY,
    "is": PartType.SIMPLE_PROPERTY,
}
_KEYWORDS_BY_LENGTH = sorted(_KEYWORDS.items(), key=lambda kv: len(kv[0]), reverse=True)

_NO_ARGS = {
    PartType.TRUE,
    PartType.FALSE,
    PartType.IS_NULL,
    PartType.IS_NOT_NULL,
    PartType.EXISTS,
}
_TWO_ARGS = {PartType.BETWEEN, PartType.NEAR, PartType.WITHIN}

_ORDER_BY = re.compile(r"(?:^|_)order_by_")
_IGNORE_CASE = re.compile(r"_(?:ignore|ignoring)_case$")


@dataclass(frozen=True)
class Part:
    """One property comparison term."""

    property: str
    part_type: PartType = PartType.SIMPLE_PROPERTY

    @property
    def num_args(self) -> int:
        if self.part_type in _NO_ARGS:
            return 0
        if self.part_type in _TWO_ARGS:
            return 2
        return 1

    @property
    def is_null_check(self) -> bool:
        return self.part_type in (PartType.IS_NULL, PartType.IS_NOT_NULL, PartType.EXISTS)


@dataclass(frozen=True)
class PartTree:
    subject: Subject
    or_parts: Tuple[Tuple[Part, ...], ...] = ()
    orders: Tuple[Order, ...] = ()
    limit: Optional[int] = None

    @property
    def is_delete(self) -> bool:
        return self.subject is Subject.DELETE

    @property
    def parts(self) -> List[Part]:
        return [part for conjunction in self.or_parts for part in conjunction]

    @classmethod
    def parse(cls, method_name: str, model: type) -> "PartTree":
        """
        Parses ``method_name`` against the attributes of ``model``.

        Raises QueryPlanException when the name does not start with a known
        query verb.
        """
        name = method_name.strip("_")
        head, order = name, ""
        match = _ORDER_BY.search(name)
        if match:
            head, order = name[: match.start()], name[match.end():]

        subject_part, _, predicate = head.partition("_by_")
        if head.endswith("_by"):
            subject_part, predicate = head[: -len("_by")], ""

        words = subject_part.split("_")
        subject = _VERBS.get(words[0])
        if subject is None:
            raise QueryPlanException(f"'{method_name}' does not start with a query verb")

        limit = _subject_modifiers(words[1:], method_name)
        or_parts = tuple(
            tuple(_parse_part(term, model) for term in disjunct.split("_and_") if term)
            for disjunct in predicate.split("_or_")
            if disjunct
        )
        orders = _parse_orders(order, model) if order else ()
        tree = cls(subject, or_parts, orders, limit)
        log.debug(f"Parsed '{method_name}' into {tree}")
        return tree


def _subject_modifiers(words: Sequence[str], method_name: str) -> Optional[int]:
    limit = None
    for i, word in enumerate(words):
        if word in ("first", "top"):
            following = words[i + 1] if i + 1 < len(words) else ""
            limit = int(following) if following.isdigit() else 1
        elif word.isdigit() or word in ("all", "one", "distinct", ""):
            continue
        else:
            log.debug(f"Ignoring subject word '{word}' in '{method_name}'")
    return limit


def match_property(tokens: Sequence[str], model: type) -> Optional[str]:
    """
    Greedily matches underscore ``tokens`` to a dotted attribute path of ``model``.

    Longer attribute names win; nested models are descended into when tokens
    remain. Returns None when the tokens do not spell a complete path.
    """
    if not tokens or model is None:
        return None
    names = set(model_attribute_names(model))
    for end in range(len(tokens), 0, -1):
        candidate = "_".join(tokens[:end])
        if candidate not in names:
            continue
        if end == len(tokens):
            return candidate
        nested = attribute_type(model, candidate)
        if is_model_class(nested):
            rest = match_property(tokens[end:], nested)
            if rest is not None:
                return f"{candidate}.{rest}"
    return None


def _property_for(text: str, model: type) -> Optional[str]:
    return match_property(text.split("_"), model) if text else None


def _parse_part(term: str, model: type) -> Part:
    # Tag and text matching is already case-insensitive
    term = _IGNORE_CASE.sub("", term)

    # The whole term naming a property means plain equality
    path = _property_for(term, model)
    if path is not None:
        return Part(path, PartType.SIMPLE_PROPERTY)

    for keyword, part_type in _KEYWORDS_BY_LENGTH:
        if term.endswith("_" + keyword):
            prefix = term[: -len(keyword) - 1]
            path = _property_for(prefix, model)
            if path is not None:
                return Part(path, part_type)

    # Unknown property: keep the raw name, resolution later decides its fate
    for keyword, part_type in _KEYWORDS_BY_LENGTH:
        if term.endswith("_" + keyword):
            return Part(term[: -len(keyword) - 1], part_type)
    return Part(term, PartType.SIMPLE_PROPERTY)


def _parse_orders(order: str, model: type) -> Tuple[Order, ...]:
    tokens = [t for t in order.split("_") if t and t != "and"]
    orders = []
    while tokens:
        path = None
        for end in range(len(tokens), 0, -1):
            path = match_property(tokens[:end], model)
            if path is not None:
                tokens = tokens[end:]
                break
        if path is None:
            # Unknown property: consume up to the next direction word
            end = next((i for i, t in enumerate(tokens) if t in ("asc", "desc")), len(tokens))
            path, tokens = "_".join(tokens[:end]) or tokens[0], tokens[max(end, 1):]
            log.info(f"Sort property '{path}' does not match an attribute")
        ascending = True
        if tokens and tokens[0] in ("asc", "desc"):
            ascending = tokens.pop(0) == "asc"
        orders.append(Order(path, ascending))
    return tuple(orders)
