# src/async_search_repository/base/results.py
"""Paging parameters and result containers returned by query execution."""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Order:
    property: str
    ascending: bool = True


@dataclass(frozen=True)
class Sort:
    orders: Tuple[Order, ...] = ()

    @classmethod
    def by(cls, *properties: str, ascending: bool = True) -> "Sort":
        return cls(tuple(Order(p, ascending) for p in properties))

    @classmethod
    def unsorted(cls) -> "Sort":
        return cls()

    @property
    def is_sorted(self) -> bool:
        return bool(self.orders)

    def __iter__(self):
        return iter(self.orders)


@dataclass(frozen=True)
class Pageable:
    """Zero-based page request."""

    page: int = 0
    size: int = 20
    sort: Sort = field(default_factory=Sort)

    def __post_init__(self):
        if self.page < 0:
            raise ValueError("Page index must not be negative")
        if self.size < 1:
            raise ValueError("Page size must be at least 1")

    @property
    def offset(self) -> int:
        return self.page * self.size


@dataclass
class Page(Generic[T]):
    content: List[T]
    pageable: Pageable
    total_elements: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_elements / self.pageable.size) if self.pageable.size else 0

    @property
    def number(self) -> int:
        return self.pageable.page

    @property
    def has_next(self) -> bool:
        return self.number + 1 < self.total_pages

    def __len__(self) -> int:
        return len(self.content)

    def __iter__(self):
        return iter(self.content)


@dataclass
class Document:
    """A single search hit: backend key plus its returned fields."""

    id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    score: Optional[float] = None


@dataclass
class SearchResult:
    total: int
    documents: List[Document] = field(default_factory=list)


@dataclass
class AggregationResult:
    total: int
    rows: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class Suggestion:
    """An autocomplete hit."""

    string: str
    score: Optional[float] = None
    payload: Optional[str] = None


@dataclass(frozen=True)
class AutoCompleteOptions:
    fuzzy: bool = False
    limit: int = 5
    with_score: bool = False
    with_payload: bool = False
