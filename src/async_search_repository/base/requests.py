# src/async_search_repository/base/requests.py
"""
Backend request descriptions.

``SearchRequest`` and ``AggregateRequest`` are immutable values; ``to_args``
renders them into ``FT.SEARCH`` / ``FT.AGGREGATE`` argument lists (without the
command name). Aggregation pipelines are ordered tuples of typed steps so that
backends can either render or interpret them.
"""

from dataclasses import dataclass, replace
from typing import List, Optional, Tuple, Union

from .plan import Group, SortedField, field_ref


@dataclass(frozen=True)
class SearchRequest:
    index: str
    query: str = "*"
    offset: int = 0
    limit: int = 10
    sort_by: Optional[str] = None
    sort_ascending: bool = True
    return_fields: Tuple[Tuple[str, Optional[str]], ...] = ()
    language: Optional[str] = None
    dialect: int = 1
    no_content: bool = False

    def to_args(self) -> List[str]:
        args = [self.index, self.query]
        if self.no_content:
            args.append("NOCONTENT")
        if self.return_fields:
            fields: List[str] = []
            for name, alias in self.return_fields:
                fields.append(name)
                if alias:
                    fields += ["AS", alias]
            args += ["RETURN", str(len(fields)), *fields]
        if self.language:
            args += ["LANGUAGE", self.language]
        if self.sort_by:
            args += ["SORTBY", self.sort_by, "ASC" if self.sort_ascending else "DESC"]
        args += ["LIMIT", str(self.offset), str(self.limit)]
        args += ["DIALECT", str(self.dialect)]
        return args


# --- Aggregation steps ---
@dataclass(frozen=True)
class LoadStep:
    fields: Tuple[Tuple[str, Optional[str]], ...]

    def to_args(self) -> List[str]:
        if any(name == "*" for name, _ in self.fields):
            return ["LOAD", "*"]
        tokens: List[str] = []
        for name, alias in self.fields:
            tokens.append(name)
            if alias:
                tokens += ["AS", alias]
        return ["LOAD", str(len(tokens)), *tokens]


@dataclass(frozen=True)
class GroupStep:
    group: Group

    def to_args(self) -> List[str]:
        return self.group.to_args()


@dataclass(frozen=True)
class FilterStep:
    expression: str

    def to_args(self) -> List[str]:
        return ["FILTER", self.expression]


@dataclass(frozen=True)
class SortStep:
    fields: Tuple[SortedField, ...]
    max: Optional[int] = None

    def to_args(self) -> List[str]:
        tokens: List[str] = []
        for sorted_field in self.fields:
            tokens += sorted_field.to_args()
        args = ["SORTBY", str(len(tokens)), *tokens]
        if self.max is not None:
            args += ["MAX", str(self.max)]
        return args


@dataclass(frozen=True)
class ApplyStep:
    expression: str
    alias: str

    def to_args(self) -> List[str]:
        return ["APPLY", self.expression, "AS", self.alias]


@dataclass(frozen=True)
class LimitStep:
    offset: int
    num: int

    def to_args(self) -> List[str]:
        return ["LIMIT", str(self.offset), str(self.num)]


Step = Union[LoadStep, GroupStep, FilterStep, SortStep, ApplyStep, LimitStep]


@dataclass(frozen=True)
class AggregateRequest:
    index: str
    query: str = "*"
    steps: Tuple[Step, ...] = ()
    timeout: Optional[int] = None
    verbatim: bool = False
    dialect: int = 1

    def _with(self, step: Step) -> "AggregateRequest":
        return replace(self, steps=self.steps + (step,))

    def load(self, *fields: Union[str, Tuple[str, Optional[str]]]) -> "AggregateRequest":
        pairs = tuple(
            (f, None) if isinstance(f, str) else (f[0], f[1]) for f in fields
        )
        return self._with(LoadStep(tuple((field_ref(n) if n != "*" else n, a) for n, a in pairs)))

    def group_by(self, group: Group) -> "AggregateRequest":
        return self._with(GroupStep(group))

    def filter(self, expression: str) -> "AggregateRequest":
        return self._with(FilterStep(expression))

    def sort_by(self, *fields: SortedField, max: Optional[int] = None) -> "AggregateRequest":
        return self._with(SortStep(tuple(fields), max))

    def apply(self, expression: str, alias: str) -> "AggregateRequest":
        return self._with(ApplyStep(expression, alias))

    def limit(self, offset: int, num: int) -> "AggregateRequest":
        return self._with(LimitStep(offset, num))

    def to_args(self) -> List[str]:
        args = [self.index, self.query]
        if self.timeout is not None:
            args += ["TIMEOUT", str(self.timeout)]
        if self.verbatim:
            args.append("VERBATIM")
        for step in self.steps:
            args += step.to_args()
        args += ["DIALECT", str(self.dialect)]
        return args
