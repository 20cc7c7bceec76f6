# src/async_search_repository/base/plan.py
"""
Query plans.

A plan is built once per query method and never mutated afterwards; one frozen
dataclass per query kind. Per-invocation state lives in the executor.
"""

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import ClassVar, List, NamedTuple, Optional, Tuple

from .clauses import Clause, total_arity

log = logging.getLogger(__name__)


class QueryKind(Enum):
    SEARCH = "search"
    AGGREGATE = "aggregate"
    DELETE = "delete"
    TAG_VALUES = "tag_values"
    AUTOCOMPLETE = "autocomplete"


class Dialect(IntEnum):
    ONE = 1
    TWO = 2
    THREE = 3
    FOUR = 4


def field_ref(name: str) -> str:
    """``department`` -> ``@department``; already referenced names are kept."""
    return name if name.startswith(("@", "$")) else f"@{name}"


# --- Aggregation building blocks ---
@dataclass(frozen=True)
class SortedField:
    field: str
    ascending: bool = True

    @classmethod
    def asc(cls, field: str) -> "SortedField":
        return cls(field, True)

    @classmethod
    def desc(cls, field: str) -> "SortedField":
        return cls(field, False)

    def to_args(self) -> List[str]:
        return [field_ref(self.field), "ASC" if self.ascending else "DESC"]


class ReducerFunction(Enum):
    COUNT = "COUNT"
    COUNT_DISTINCT = "COUNT_DISTINCT"
    COUNT_DISTINCTISH = "COUNT_DISTINCTISH"
    SUM = "SUM"
    MIN = "MIN"
    MAX = "MAX"
    AVG = "AVG"
    STDDEV = "STDDEV"
    QUANTILE = "QUANTILE"
    TOLIST = "TOLIST"
    FIRST_VALUE = "FIRST_VALUE"
    RANDOM_SAMPLE = "RANDOM_SAMPLE"


@dataclass(frozen=True)
class Reducer:
    function: ReducerFunction
    args: Tuple[str, ...] = ()
    alias: Optional[str] = None
    by: Optional[SortedField] = None

    @property
    def output_name(self) -> str:
        if self.alias:
            return self.alias
        # Same naming scheme the backend uses for un-aliased reducers
        arg = self.args[0].lstrip("@") if self.args else ""
        return f"__generated_alias{self.function.value.lower()}{arg}"

    def to_args(self) -> List[str]:
        args = list(self.args)
        if self.by is not None:
            args += ["BY", *self.by.to_args()]
        out = ["REDUCE", self.function.value, str(len(args)), *args]
        if self.alias:
            out += ["AS", self.alias]
        return out


def make_reducer(
    function: ReducerFunction, args: Tuple[str, ...] = (), alias: Optional[str] = None
) -> Reducer:
    """
    Builds a reducer from its declarative form.

    Argument-count defects (e.g. a quantile without its percentile) raise
    IndexError here, at plan construction.
    """
    alias = alias if alias and alias.strip() else None
    arg0 = field_ref(args[0]) if args else None

    if function is ReducerFunction.COUNT:
        return Reducer(function, (), alias)
    if function is ReducerFunction.QUANTILE:
        percentile = float(args[1])
        return Reducer(function, (arg0, str(percentile)), alias)
    if function is ReducerFunction.RANDOM_SAMPLE:
        sample_size = int(args[1])
        return Reducer(function, (arg0, str(sample_size)), alias)
    if function is ReducerFunction.FIRST_VALUE:
        if len(args) > 1:
            ascending = len(args) > 2 and args[2].upper() == "ASC"
            return Reducer(function, (arg0,), alias, SortedField(args[1], ascending))
        return Reducer(function, (arg0,), alias)
    return Reducer(function, (arg0,) if arg0 else (), alias)


@dataclass(frozen=True)
class Group:
    properties: Tuple[str, ...]
    reducers: Tuple[Reducer, ...] = ()

    def to_args(self) -> List[str]:
        props = [field_ref(p) for p in self.properties]
        out = ["GROUPBY", str(len(props)), *props]
        for reducer in self.reducers:
            out += reducer.to_args()
        return out


# --- Plans ---
class Term(NamedTuple):
    """A ``(field key, clause)`` pair.

    ``first_param`` is the index of the first bound value the clause consumes;
    None means "next values in term order". ``index_missing`` tells null checks
    which existence predicate the field supports.
    """

    key: str
    clause: Clause
    first_param: Optional[int] = None
    index_missing: bool = False


Conjunction = Tuple[Term, ...]


@dataclass(frozen=True)
class QueryPlan:
    """Base of all plan variants; ``kind`` is fixed per subclass."""

    kind: ClassVar[QueryKind]
    dialect: int = Dialect.ONE

    @property
    def requires_fallback_aggregation(self) -> bool:
        return False


@dataclass(frozen=True)
class ConjunctivePlan(QueryPlan):
    """Plans driven by a disjunction of conjunctions of (field key, clause) terms."""

    or_parts: Tuple[Conjunction, ...] = ()
    sort_by: Optional[str] = None
    sort_ascending: bool = True
    offset: Optional[int] = None
    limit: Optional[int] = None
    has_null_check: bool = False

    @property
    def requires_fallback_aggregation(self) -> bool:
        return self.has_null_check

    @property
    def terms(self) -> List[Term]:
        return [term for conjunction in self.or_parts for term in conjunction]

    @property
    def null_terms(self) -> List[Term]:
        return [term for term in self.terms if term.clause.is_sentinel]

    @property
    def arity(self) -> int:
        """Number of bound values the rendered query consumes."""
        return total_arity(term.clause for term in self.terms)


@dataclass(frozen=True)
class SearchPlan(ConjunctivePlan):
    kind: ClassVar[QueryKind] = QueryKind.SEARCH

    template: Optional[str] = None
    return_fields: Tuple[str, ...] = ()
    param_names: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.template and self.or_parts:
            raise ValueError("A search plan is driven by a template or by clauses, not both")


@dataclass(frozen=True)
class DeletePlan(ConjunctivePlan):
    kind: ClassVar[QueryKind] = QueryKind.DELETE


@dataclass(frozen=True)
class AggregationPlan(QueryPlan):
    kind: ClassVar[QueryKind] = QueryKind.AGGREGATE

    template: str = "*"
    load: Tuple[Tuple[str, Optional[str]], ...] = ()
    apply: Tuple[Tuple[str, str], ...] = ()
    groups: Tuple[Group, ...] = ()
    filters: Tuple[str, ...] = ()
    sorted_fields: Tuple[SortedField, ...] = ()
    sort_by_max: Optional[int] = None
    sort_by: Optional[str] = None
    sort_ascending: bool = True
    timeout: Optional[int] = None
    verbatim: bool = False
    offset: Optional[int] = None
    limit: Optional[int] = None
    param_names: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TagValuesPlan(QueryPlan):
    kind: ClassVar[QueryKind] = QueryKind.TAG_VALUES

    field: str = ""


@dataclass(frozen=True)
class AutocompletePlan(QueryPlan):
    kind: ClassVar[QueryKind] = QueryKind.AUTOCOMPLETE

    field: str = ""
    dictionary: str = ""
