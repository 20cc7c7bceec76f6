# src/async_search_repository/__init__.py

"""
Async Search Repository Library Initialization.

This package translates repository query methods (derived method names,
explicit query templates and declarative aggregations) into RediSearch-style
queries and executes them against a search backend.

It initializes a logger with a NullHandler and makes the query machinery,
result types, exceptions, and backend implementations available at the top
level.
"""

import logging

# --------------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------------
# Library logs are discarded unless the consuming application configures
# logging.
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False  # Prevent log messages from propagating to the root logger

# --------------------------------------------------------------------------
# Core Interface and Exception Exports
# --------------------------------------------------------------------------
from .base.interfaces import DocumentMapper, SearchBackend
from .base.exceptions import (
    InvalidPathError,
    ObjectNotFoundException,
    QueryPlanException,
    QuerySyntaxError,
    ValidationError,
    ValueTypeError,
)

# --------------------------------------------------------------------------
# Model Registration Exports
# --------------------------------------------------------------------------
from .base.fields import (
    AutoComplete,
    Bloom,
    CountMin,
    Cuckoo,
    Distance,
    GeoIndexed,
    Indexed,
    NumericIndexed,
    Point,
    Searchable,
    TagIndexed,
    TextIndexed,
)
from .base.indexer import Indexer

# --------------------------------------------------------------------------
# Query Method Exports
# --------------------------------------------------------------------------
# Decorators attach static metadata to repository method stubs;
# RepositoryQuery plans a method once and executes it per call.
from .base.method import (
    Apply,
    GroupBy,
    Load,
    QueryMethod,
    Reduce,
    SearchLanguage,
    SortBy,
    aggregation,
    query,
    use_dialect,
)
from .base.plan import ReducerFunction
from .base.executor import RepositoryQuery
from .base.settings import QuerySettings
from .base.mapper import PydanticDocumentMapper

# --------------------------------------------------------------------------
# Result Exports
# --------------------------------------------------------------------------
from .base.results import (
    AggregationResult,
    AutoCompleteOptions,
    Document,
    Order,
    Page,
    Pageable,
    SearchResult,
    Sort,
    Suggestion,
)

# --------------------------------------------------------------------------
# Backend Implementation Exports
# --------------------------------------------------------------------------
from .db_implementations.redis_backend import RedisSearchBackend
from .memory.base import InMemorySearchBackend

__all__ = [
    # Core
    "SearchBackend",
    "DocumentMapper",
    # Exceptions
    "ObjectNotFoundException",
    "QueryPlanException",
    "QuerySyntaxError",
    "ValidationError",
    "InvalidPathError",
    "ValueTypeError",
    # Models
    "Indexed",
    "TextIndexed",
    "Searchable",
    "TagIndexed",
    "NumericIndexed",
    "GeoIndexed",
    "Bloom",
    "Cuckoo",
    "CountMin",
    "AutoComplete",
    "Point",
    "Distance",
    "Indexer",
    # Query methods
    "query",
    "aggregation",
    "use_dialect",
    "Load",
    "Apply",
    "GroupBy",
    "Reduce",
    "SortBy",
    "ReducerFunction",
    "SearchLanguage",
    "QueryMethod",
    "RepositoryQuery",
    "QuerySettings",
    "PydanticDocumentMapper",
    # Results
    "Page",
    "Pageable",
    "Sort",
    "Order",
    "Document",
    "SearchResult",
    "AggregationResult",
    "Suggestion",
    "AutoCompleteOptions",
    # Implementations
    "RedisSearchBackend",
    "InMemorySearchBackend",
    # Logging
    "logger",
]
