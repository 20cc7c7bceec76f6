# src/async_search_repository/base/method.py
"""
Static query-method metadata.

Repository method stubs carry their query intent either in their name (derived
queries) or through the ``query`` / ``aggregation`` decorators. ``QueryMethod``
captures everything the planner and executor need from a stub: its parameters,
its declared result shape and the decorator metadata.
"""

import inspect
import logging
from collections.abc import Iterable as IterableABC, Mapping as MappingABC
from dataclasses import dataclass, replace
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Optional,
    Sequence,
    Tuple,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from .plan import ReducerFunction
from .results import AggregationResult, Page, Pageable, SearchResult
from .schema import is_model_class

log = logging.getLogger(__name__)

_QUERY_ATTR = "__search_query__"
_AGGREGATION_ATTR = "__search_aggregation__"
_DIALECT_ATTR = "__search_dialect__"


class SearchLanguage(Enum):
    """Stemming language hint passed with a search."""

    ARABIC = "arabic"
    BASQUE = "basque"
    CATALAN = "catalan"
    DANISH = "danish"
    DUTCH = "dutch"
    ENGLISH = "english"
    FINNISH = "finnish"
    FRENCH = "french"
    GERMAN = "german"
    GREEK = "greek"
    HUNGARIAN = "hungarian"
    INDONESIAN = "indonesian"
    IRISH = "irish"
    ITALIAN = "italian"
    NORWEGIAN = "norwegian"
    PORTUGUESE = "portuguese"
    ROMANIAN = "romanian"
    RUSSIAN = "russian"
    SPANISH = "spanish"
    SWEDISH = "swedish"
    TURKISH = "turkish"
    CHINESE = "chinese"


class ReturnShape(Enum):
    SINGLE = "single"
    LIST = "list"
    PAGE = "page"
    SEARCH_RESULT = "search_result"
    AGGREGATION_RESULT = "aggregation_result"
    MAPS = "maps"
    COUNT = "count"
    BOOLEAN = "boolean"
    TAG_VALUES = "tag_values"


# --- Decorator metadata ---
@dataclass(frozen=True)
class Load:
    property: str
    alias: Optional[str] = None


@dataclass(frozen=True)
class Apply:
    alias: str
    expression: str


@dataclass(frozen=True)
class Reduce:
    function: ReducerFunction
    args: Tuple[str, ...] = ()
    alias: Optional[str] = None


@dataclass(frozen=True)
class GroupBy:
    properties: Tuple[str, ...] = ()
    reduce: Tuple[Reduce, ...] = ()


@dataclass(frozen=True)
class SortBy:
    field: str
    ascending: bool = True


@dataclass(frozen=True)
class QueryAnnotation:
    value: Optional[str] = None
    return_fields: Tuple[str, ...] = ()
    offset: Optional[int] = None
    limit: Optional[int] = None
    sort_by: Optional[str] = None
    sort_ascending: bool = True


@dataclass(frozen=True)
class AggregationAnnotation:
    value: str = "*"
    load: Tuple[Load, ...] = ()
    apply: Tuple[Apply, ...] = ()
    group_by: Tuple[GroupBy, ...] = ()
    filter: Tuple[str, ...] = ()
    sort_by: Tuple[SortBy, ...] = ()
    sort_by_max: Optional[int] = None
    timeout: Optional[int] = None
    verbatim: bool = False
    offset: Optional[int] = None
    limit: Optional[int] = None


def query(
    value: Optional[str] = None,
    *,
    return_fields: Sequence[str] = (),
    offset: Optional[int] = None,
    limit: Optional[int] = None,
    sort_by: Optional[str] = None,
    sort_ascending: bool = True,
) -> Callable:
    """
    Marks a repository method as an explicit search query.

    ``value`` is a query template with ``$name`` / ``$0`` placeholders bound to
    the method's arguments; when omitted the method name is parsed instead and
    the other options override its paging and sorting.
    """
    annotation = QueryAnnotation(
        value, tuple(return_fields), offset, limit, sort_by, sort_ascending
    )

    def decorator(fn: Callable) -> Callable:
        setattr(fn, _QUERY_ATTR, annotation)
        return fn

    return decorator


def aggregation(
    value: str = "*",
    *,
    load: Sequence[Load] = (),
    apply: Sequence[Apply] = (),
    group_by: Sequence[GroupBy] = (),
    filter: Sequence[str] = (),
    sort_by: Sequence[SortBy] = (),
    sort_by_max: Optional[int] = None,
    timeout: Optional[int] = None,
    verbatim: bool = False,
    offset: Optional[int] = None,
    limit: Optional[int] = None,
) -> Callable:
    """Marks a repository method as an aggregation pipeline over ``value``."""
    annotation = AggregationAnnotation(
        value,
        tuple(load),
        tuple(apply),
        tuple(group_by),
        tuple(filter),
        tuple(sort_by),
        sort_by_max,
        timeout,
        verbatim,
        offset,
        limit,
    )

    def decorator(fn: Callable) -> Callable:
        setattr(fn, _AGGREGATION_ATTR, annotation)
        return fn

    return decorator


def use_dialect(dialect: int) -> Callable:
    def decorator(fn: Callable) -> Callable:
        setattr(fn, _DIALECT_ATTR, int(dialect))
        return fn

    return decorator


# --- Method introspection ---
@dataclass(frozen=True)
class Parameter:
    name: str
    index: int
    annotation: Any = None

    @property
    def is_special(self) -> bool:
        """Paging and language parameters never bind to clauses or placeholders."""
        return _is_subclass(self.annotation, (Pageable, SearchLanguage))

    @property
    def is_pageable(self) -> bool:
        return _is_subclass(self.annotation, Pageable)

    @property
    def is_language(self) -> bool:
        return _is_subclass(self.annotation, SearchLanguage)


def _is_subclass(tp: Any, classes) -> bool:
    tp = _strip_optional(tp)
    return inspect.isclass(tp) and issubclass(tp, classes)


def _strip_optional(tp: Any) -> Any:
    if get_origin(tp) is Union:
        args = [a for a in get_args(tp) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return tp


@dataclass(frozen=True)
class QueryMethod:
    name: str
    entity_type: type
    parameters: Tuple[Parameter, ...] = ()
    return_shape: ReturnShape = ReturnShape.LIST
    result_type: Any = None
    query: Optional[QueryAnnotation] = None
    aggregation: Optional[AggregationAnnotation] = None
    dialect: Optional[int] = None

    @property
    def bindable_parameters(self) -> Tuple[Parameter, ...]:
        return tuple(p for p in self.parameters if not p.is_special)

    @property
    def parameter_names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.bindable_parameters)

    @property
    def is_paged(self) -> bool:
        return self.return_shape is ReturnShape.PAGE

    @property
    def is_collection(self) -> bool:
        return self.return_shape in (ReturnShape.LIST, ReturnShape.PAGE, ReturnShape.MAPS)

    @property
    def returns_maps(self) -> bool:
        return self.return_shape is ReturnShape.MAPS or (
            self.is_paged and _is_subclass(self.result_type, (dict,))
        )

    @property
    def is_projection(self) -> bool:
        return (
            is_model_class(self.result_type)
            and self.result_type is not self.entity_type
            and not issubclass(self.entity_type, self.result_type)
        )

    @property
    def is_closed_projection(self) -> bool:
        """Projection whose every property is a stored field (no computed fields)."""
        if not self.is_projection:
            return False
        return not getattr(self.result_type, "model_computed_fields", None)

    def with_shape(self, shape: ReturnShape) -> "QueryMethod":
        return replace(self, return_shape=shape)

    @classmethod
    def from_function(cls, fn: Callable, entity_type: type) -> "QueryMethod":
        """Introspects a repository method stub."""
        hints = _function_hints(fn)
        signature = inspect.signature(fn)
        parameters = []
        for param in signature.parameters.values():
            if param.name in ("self", "cls", "logger"):
                continue
            parameters.append(
                Parameter(param.name, len(parameters), hints.get(param.name))
            )

        shape, result_type = _return_shape(hints.get("return"), entity_type)
        method = cls(
            name=fn.__name__,
            entity_type=entity_type,
            parameters=tuple(parameters),
            return_shape=shape,
            result_type=result_type,
            query=getattr(fn, _QUERY_ATTR, None),
            aggregation=getattr(fn, _AGGREGATION_ATTR, None),
            dialect=getattr(fn, _DIALECT_ATTR, None),
        )
        log.debug(
            f"Method {method.name}: shape={shape.name}, "
            f"result={getattr(result_type, '__name__', result_type)}, "
            f"params={method.parameter_names}"
        )
        return method


def _function_hints(fn: Callable) -> Dict[str, Any]:
    try:
        return get_type_hints(fn)
    except (TypeError, NameError) as e:
        log.warning(
            f"get_type_hints failed for {fn.__name__}: {e}. Falling back to __annotations__."
        )
        return dict(getattr(fn, "__annotations__", {}))


def _is_map_type(tp: Any) -> bool:
    origin = get_origin(tp) or tp
    return inspect.isclass(origin) and issubclass(origin, MappingABC)


def _return_shape(annotation: Any, entity_type: type) -> Tuple[ReturnShape, Any]:
    if annotation is None or annotation is type(None) or annotation is inspect.Signature.empty:
        return ReturnShape.LIST, entity_type

    annotation = _strip_optional(annotation)
    origin = get_origin(annotation)
    args = get_args(annotation)

    if origin is Page or annotation is Page:
        element = args[0] if args else entity_type
        return ReturnShape.PAGE, (dict if _is_map_type(element) else element)
    if annotation is SearchResult:
        return ReturnShape.SEARCH_RESULT, entity_type
    if annotation is AggregationResult:
        return ReturnShape.AGGREGATION_RESULT, entity_type
    if annotation is bool:
        return ReturnShape.BOOLEAN, bool
    if annotation is int:
        return ReturnShape.COUNT, int
    if (
        origin is not None
        and inspect.isclass(origin)
        and issubclass(origin, IterableABC)
        and not issubclass(origin, (str, MappingABC))
    ):
        element = args[0] if args else entity_type
        if _is_map_type(element):
            return ReturnShape.MAPS, dict
        return ReturnShape.LIST, element
    return ReturnShape.SINGLE, annotation
