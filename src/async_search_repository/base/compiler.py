# src/async_search_repository/base/compiler.py
"""
Query Compiler.

Renders a plan plus bound values into the backend's textual query syntax:
structured rendering of clause conjunctions, single-pass placeholder
substitution for explicit templates, and the existence-filter predicates used
for null checks.
"""

import logging
import re
from typing import Any, Dict, List, Sequence

from .clauses import Clause
from .plan import ConjunctivePlan, SearchPlan, Term
from .utils import escape, to_index_value

log = logging.getLogger(__name__)

MATCH_ALL = "*"
KEY_FIELD = "@__key"

# $name or $0, not followed by more identifier characters
_PLACEHOLDER = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*|\d+)(?![A-Za-z0-9_])")


def is_collection(value: Any) -> bool:
    """Lists, tuples and sets; named tuples such as ``Point`` are single values."""
    return isinstance(value, (list, tuple, set, frozenset)) and not hasattr(value, "_fields")


def _template_value(value: Any) -> str:
    if is_collection(value):
        return " | ".join(to_index_value(v) for v in value)
    return to_index_value(value)


def substitute(template: str, param_names: Sequence[str], values: Sequence[Any]) -> str:
    """
    Replaces ``$name`` and ``$<position>`` placeholders in one pass.

    Unknown placeholders are left untouched. Collection values become an
    OR-joined list (``a | b``).
    """
    named: Dict[str, Any] = dict(zip(param_names, values))

    def replace(match: "re.Match") -> str:
        token = match.group(1)
        if token.isdigit():
            position = int(token)
            if position < len(values):
                return _template_value(values[position])
            return match.group(0)
        if token in named:
            return _template_value(named[token])
        return match.group(0)

    return _PLACEHOLDER.sub(replace, template)


def _term_values(term: Term, values: Sequence[Any], cursor: int) -> Sequence[Any]:
    start = term.first_param if term.first_param is not None else cursor
    return values[start:start + term.clause.arity]


def render_conjunctions(plan: ConjunctivePlan, values: Sequence[Any]) -> str:
    """Structured rendering; sentinel clauses never appear in the query string."""
    rendered_parts: List[str] = []
    cursor = 0
    for conjunction in plan.or_parts:
        clauses = []
        for term in conjunction:
            if term.clause.is_sentinel:
                continue
            args = _term_values(term, values, cursor)
            cursor += term.clause.arity
            clauses.append(term.clause.prepare_query(escape(term.key), args))
        rendered = " ".join(c for c in clauses if c)
        if not rendered:
            # An empty conjunction matches everything, and so does the disjunction
            return MATCH_ALL
        rendered_parts.append(rendered)

    if not rendered_parts:
        return MATCH_ALL
    if len(rendered_parts) == 1:
        return rendered_parts[0]
    return " | ".join(f"({part})" for part in rendered_parts)


def compile_query(plan: ConjunctivePlan, values: Sequence[Any]) -> str:
    """Backend query string for a search or delete plan."""
    if isinstance(plan, SearchPlan) and plan.template:
        query = substitute(plan.template, plan.param_names, values).strip()
    else:
        query = render_conjunctions(plan, values)
    query = query or MATCH_ALL
    log.debug(f"Compiled query: {query}")
    return query


def compile_template(template: str, param_names: Sequence[str], values: Sequence[Any]) -> str:
    query = substitute(template or MATCH_ALL, param_names, values).strip()
    return query or MATCH_ALL


# --- Existence filters ---
def existence_filter(term: Term) -> str:
    """Aggregation FILTER predicate for a sentinel term."""
    ref = f"@{term.key}"
    is_null = term.clause is Clause.IS_NULL
    if term.index_missing:
        return f"ismissing({ref})" if is_null else f"!ismissing({ref})"
    return f"!exists({ref})" if is_null else f"exists({ref})"


def existence_filters(plan: ConjunctivePlan) -> List[str]:
    return [existence_filter(term) for term in plan.null_terms]


def null_load_fields(plan: ConjunctivePlan) -> List[str]:
    """The key plus every field under a null test, each loaded once."""
    fields = [KEY_FIELD]
    for term in plan.null_terms:
        ref = f"@{term.key}"
        if ref not in fields:
            fields.append(ref)
    return fields
