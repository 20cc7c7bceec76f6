# src/async_search_repository/base/executor.py
"""
Execution Dispatcher.

``RepositoryQuery`` wraps one repository method: it builds the method's plan
once, at construction, and on every ``execute`` call picks the strategy for the
plan's kind (direct search, existence-filter aggregation, delete-by-query,
aggregation pipeline, tag values or autocomplete), issues the backend calls and
reshapes the results into the method's declared return type.

The plan is never written after construction, so concurrent executions of the
same query object need no locking.
"""

import logging
from logging import LoggerAdapter
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .compiler import (
    compile_query,
    compile_template,
    existence_filters,
    is_collection,
    null_load_fields,
    substitute,
)
from .delegates import StructureDelegate, find_delegate
from .exceptions import QueryPlanException
from .indexer import Indexer
from .interfaces import DocumentMapper, SearchBackend
from .mapper import PydanticDocumentMapper
from .method import QueryMethod, ReturnShape, SearchLanguage
from .plan import (
    AggregationPlan,
    AutocompletePlan,
    ConjunctivePlan,
    DeletePlan,
    QueryPlan,
    SortedField,
    TagValuesPlan,
)
from .planner import build_plan, shape_for
from .requests import AggregateRequest, SearchRequest
from .resolver import json_path_for
from .results import (
    AggregationResult,
    AutoCompleteOptions,
    Page,
    Pageable,
    SearchResult,
)
from .settings import QuerySettings
from .utils import to_index_value

log = logging.getLogger(__name__)

KEY_COLUMN = "__key"


class RepositoryQuery:
    """A prepared query for one repository method."""

    def __init__(
        self,
        method: QueryMethod,
        backend: SearchBackend,
        indexer: Indexer,
        mapper: Optional[DocumentMapper] = None,
        settings: Optional[QuerySettings] = None,
    ):
        self.method = method
        self.backend = backend
        self.indexer = indexer
        self.mapper = mapper or PydanticDocumentMapper()
        self.settings = settings or QuerySettings()
        self.delegate: Optional[StructureDelegate] = find_delegate(method, indexer)
        self.plan: Optional[QueryPlan] = None

        if self.delegate is None:
            try:
                self.plan = build_plan(method, indexer, self.settings)
                self.method = shape_for(self.plan, method)
            except QueryPlanException as e:
                log.error(
                    f"Could not build a query plan for "
                    f"{method.entity_type.__name__}.{method.name}: {e}"
                )

    @classmethod
    def for_function(
        cls,
        fn: Callable,
        entity_type: type,
        backend: SearchBackend,
        indexer: Indexer,
        mapper: Optional[DocumentMapper] = None,
        settings: Optional[QuerySettings] = None,
    ) -> "RepositoryQuery":
        return cls(QueryMethod.from_function(fn, entity_type), backend, indexer, mapper, settings)

    @property
    def entity_type(self) -> type:
        return self.method.entity_type

    @property
    def index_name(self) -> str:
        return self.indexer.index_name(self.entity_type)

    # --- Dispatch ---

    async def execute(self, parameters: Sequence[Any], logger: LoggerAdapter) -> Any:
        """
        Runs the query with ``parameters`` (the method's arguments, in order).

        Returns None when the method has no usable plan.
        """
        if self.delegate is not None:
            values, _, _ = self._bind(parameters)
            return await self.delegate.execute(values, self.backend, logger)

        plan = self.plan
        if plan is None:
            logger.warning(f"{self.method.name} has no query plan; returning None")
            return None

        if isinstance(plan, AggregationPlan):
            return await self.execute_aggregation(plan, parameters, logger)
        if isinstance(plan, TagValuesPlan):
            return await self.backend.tag_vals(self.index_name, plan.field, logger)
        if isinstance(plan, AutocompletePlan):
            return await self.execute_autocomplete(plan, parameters, logger)
        if isinstance(plan, DeletePlan):
            return await self.execute_delete_query(plan, parameters, logger)
        if plan.requires_fallback_aggregation:
            return await self.execute_null_query(plan, parameters, logger)
        return await self.execute_query(plan, parameters, logger)

    # --- Parameter binding ---

    def _bind(
        self, parameters: Sequence[Any]
    ) -> Tuple[List[Any], Optional[Pageable], Optional[SearchLanguage]]:
        values: List[Any] = []
        pageable, language = None, None
        params = self.method.parameters
        for position, value in enumerate(parameters):
            param = params[position] if position < len(params) else None
            if isinstance(value, Pageable) or (param is not None and param.is_pageable):
                pageable = value
            elif isinstance(value, SearchLanguage) or (param is not None and param.is_language):
                language = value
            else:
                values.append(value)
        return values, pageable, language

    @staticmethod
    def _has_empty_collection(values: Sequence[Any]) -> bool:
        return any(is_collection(v) and len(v) == 0 for v in values)

    def _page_window(self, plan_offset: Optional[int], plan_limit: Optional[int],
                     pageable: Optional[Pageable]) -> Tuple[int, int]:
        if pageable is not None:
            return pageable.offset, pageable.size
        offset = plan_offset if plan_offset is not None else 0
        limit = plan_limit if plan_limit is not None else self.settings.default_limit
        return offset, limit

    def _alias(self, prop: str) -> str:
        return self.indexer.alias(self.entity_type, prop) or prop

    def _sort(self, plan: ConjunctivePlan, pageable: Optional[Pageable]) -> Tuple[Optional[str], bool]:
        if pageable is not None and pageable.sort.is_sorted:
            order = pageable.sort.orders[0]
            return self._alias(order.property), order.ascending
        return plan.sort_by, plan.sort_ascending

    # --- Result shaping ---

    def _empty_result(self, pageable: Optional[Pageable]) -> Any:
        shape = self.method.return_shape
        if shape is ReturnShape.PAGE:
            return Page([], pageable or Pageable(0, 1), 0)
        if shape is ReturnShape.SINGLE:
            return None
        if shape is ReturnShape.COUNT:
            return 0
        if shape is ReturnShape.BOOLEAN:
            return False
        if shape is ReturnShape.SEARCH_RESULT:
            return SearchResult(0, [])
        if shape is ReturnShape.AGGREGATION_RESULT:
            return AggregationResult(0, [])
        return []

    def _decode(self, raw: Dict[str, Any], key: str, target_type: Optional[type] = None) -> Any:
        definition = self.indexer.definition(self.entity_type)
        entity = self.mapper.decode(raw, target_type or self.entity_type)
        return self.mapper.attach_key(entity, key, definition.id_field, definition.key_prefix)

    def _result_type(self) -> type:
        result_type = self.method.result_type
        if isinstance(result_type, type) and result_type not in (dict, bool, int, str):
            return result_type
        return self.entity_type

    def _shape_entities(self, entities: List[Any], total: int, pageable: Optional[Pageable],
                        limit: int) -> Any:
        shape = self.method.return_shape
        if shape is ReturnShape.SINGLE:
            return entities[0] if entities else None
        if shape is ReturnShape.PAGE:
            return Page(entities, pageable or Pageable(0, max(limit, 1)), total)
        if shape is ReturnShape.COUNT:
            return total
        if shape is ReturnShape.BOOLEAN:
            return total > 0
        return entities

    def _return_fields(self, plan: ConjunctivePlan) -> Tuple[Tuple[str, Optional[str]], ...]:
        if self.method.is_closed_projection:
            names = getattr(self.method.result_type, "model_fields", {})
            return tuple((json_path_for(name.split(".")), name) for name in names)
        explicit = getattr(plan, "return_fields", ())
        if explicit:
            return tuple(
                (f if f.startswith(("$", "@")) else json_path_for(f.split(".")), f.lstrip("$.@"))
                for f in explicit
            )
        return tuple((f, None) for f in self.settings.default_return_fields)

    # --- Strategies ---

    async def execute_query(
        self, plan: ConjunctivePlan, parameters: Sequence[Any], logger: LoggerAdapter
    ) -> Any:
        """Direct indexed search."""
        values, pageable, language = self._bind(parameters)
        if self._has_empty_collection(values):
            logger.debug(f"{self.method.name}: empty collection argument, no backend call")
            return self._empty_result(pageable)

        offset, limit = self._page_window(plan.offset, plan.limit, pageable)
        sort_by, ascending = self._sort(plan, pageable)
        shape = self.method.return_shape
        counting = shape in (ReturnShape.COUNT, ReturnShape.BOOLEAN)
        return_fields = () if counting else self._return_fields(plan)
        request = SearchRequest(
            index=self.index_name,
            query=compile_query(plan, values),
            offset=0 if counting else offset,
            limit=0 if counting else limit,
            sort_by=sort_by,
            sort_ascending=ascending,
            return_fields=return_fields,
            language=language.value if language else None,
            dialect=plan.dialect,
            no_content=counting,
        )
        logger.debug(f"{self.method.name}: FT.SEARCH {request.to_args()}")
        result = await self.backend.search(request, logger)

        if shape is ReturnShape.SEARCH_RESULT:
            return result
        if self.method.returns_maps:
            rows = [dict(doc.fields) for doc in result.documents]
            if shape is ReturnShape.PAGE:
                return Page(rows, pageable or Pageable(0, max(limit, 1)), result.total)
            return rows

        target = self._result_type()
        entities = [self._decode(doc.fields, doc.id, target) for doc in result.documents]
        return self._shape_entities(entities, result.total, pageable, limit)

    def _key_aggregation(
        self, plan: ConjunctivePlan, values: Sequence[Any], pageable: Optional[Pageable]
    ) -> AggregateRequest:
        """Loads keys (plus null-tested fields) and applies one existence filter per null check."""
        request = AggregateRequest(
            index=self.index_name,
            query=compile_query(plan, values),
            dialect=plan.dialect,
        )
        load = null_load_fields(plan)
        sort_by, ascending = self._sort(plan, pageable)
        if sort_by and f"@{sort_by}" not in load:
            load.append(f"@{sort_by}")
        request = request.load(*load)
        for predicate in existence_filters(plan):
            request = request.filter(predicate)
        if sort_by:
            request = request.sort_by(SortedField(sort_by, ascending))
        offset, limit = self._page_window(plan.offset, plan.limit, pageable)
        return request.limit(offset, limit)

    async def _matching_keys(
        self, plan: ConjunctivePlan, values: Sequence[Any], pageable: Optional[Pageable],
        logger: LoggerAdapter
    ) -> Tuple[List[str], int]:
        request = self._key_aggregation(plan, values, pageable)
        logger.debug(f"{self.method.name}: FT.AGGREGATE {request.to_args()}")
        result = await self.backend.aggregate(request, logger)
        keys = [row[KEY_COLUMN] for row in result.rows if row.get(KEY_COLUMN)]
        return keys, result.total

    async def execute_null_query(
        self, plan: ConjunctivePlan, parameters: Sequence[Any], logger: LoggerAdapter
    ) -> Any:
        """Existence-filter aggregation, then a single-key fetch per matched key."""
        values, pageable, _ = self._bind(parameters)
        if self._has_empty_collection(values):
            return self._empty_result(pageable)

        keys, total = await self._matching_keys(plan, values, pageable, logger)
        target = self._result_type()
        entities = []
        for key in keys:
            raw = await self.backend.get(key, logger)
            if raw is None:
                logger.debug(f"{self.method.name}: key {key} vanished before fetch")
                continue
            entities.append(self._decode(raw, key, target))

        _, limit = self._page_window(plan.offset, plan.limit, pageable)
        if pageable is None:
            total = len(entities)
        return self._shape_entities(entities, total, pageable, limit)

    async def execute_delete_query(
        self, plan: DeletePlan, parameters: Sequence[Any], logger: LoggerAdapter
    ) -> Any:
        """Collects matching keys, then deletes them; optionally returns the deleted entities."""
        values, pageable, _ = self._bind(parameters)
        counting = self.method.return_shape is ReturnShape.COUNT
        if self._has_empty_collection(values):
            return 0 if counting else self._empty_result(pageable)

        keys, _ = await self._matching_keys(plan, values, pageable, logger)
        if counting:
            if not keys:
                return 0
            deleted = await self.backend.delete(keys, logger)
            if deleted != len(keys):
                logger.warning(
                    f"{self.method.name}: matched {len(keys)} key(s) but deleted {deleted}"
                )
            return len(keys)

        if not keys:
            return self._empty_result(pageable)
        # All records in one round trip, fully decoded before the delete is issued
        raws = await self.backend.get_many(keys, logger)
        target = self._result_type()
        entities = [self._decode(raw, key, target) for key, raw in zip(keys, raws) if raw is not None]
        await self.backend.delete(keys, logger)
        logger.info(f"{self.method.name}: deleted {len(keys)} {self.entity_type.__name__}(s)")
        if self.method.return_shape is ReturnShape.SINGLE:
            return entities[0] if entities else None
        return entities

    async def execute_aggregation(
        self, plan: AggregationPlan, parameters: Sequence[Any], logger: LoggerAdapter
    ) -> Any:
        """The aggregation pipeline, assembled in a fixed step order."""
        values, pageable, _ = self._bind(parameters)
        request = AggregateRequest(
            index=self.index_name,
            query=compile_template(plan.template, plan.param_names, values),
            timeout=plan.timeout,
            verbatim=plan.verbatim,
            dialect=plan.dialect,
        )
        if plan.load:
            request = request.load(*plan.load)
        for group in plan.groups:
            request = request.group_by(group)
        for expression in plan.filters:
            request = request.filter(substitute(expression, plan.param_names, values))

        if pageable is not None and pageable.sort.is_sorted:
            request = request.sort_by(
                *(SortedField(self._alias(o.property), o.ascending) for o in pageable.sort),
                max=plan.sort_by_max,
            )
        elif plan.sort_by:
            request = request.sort_by(
                SortedField(plan.sort_by, plan.sort_ascending), max=plan.sort_by_max
            )
        elif plan.sorted_fields:
            request = request.sort_by(*plan.sorted_fields, max=plan.sort_by_max)

        for alias, expression in plan.apply:
            request = request.apply(expression, alias)

        offset, limit = self._page_window(plan.offset, plan.limit, pageable)
        request = request.limit(offset, limit)

        logger.debug(f"{self.method.name}: FT.AGGREGATE {request.to_args()}")
        result = await self.backend.aggregate(request, logger)

        shape = self.method.return_shape
        if shape is ReturnShape.AGGREGATION_RESULT:
            return result
        if shape is ReturnShape.COUNT:
            return result.total
        rows = [{k: to_index_value(v) for k, v in row.items()} for row in result.rows]
        if shape is ReturnShape.PAGE:
            return Page(rows, pageable or Pageable(0, max(limit, 1)), result.total)
        if shape is ReturnShape.SINGLE:
            return rows[0] if rows else None
        return rows

    async def execute_autocomplete(
        self, plan: AutocompletePlan, parameters: Sequence[Any], logger: LoggerAdapter
    ) -> Any:
        values, _, _ = self._bind(parameters)
        if not values:
            raise ValueError(f"{self.method.name} needs a prefix argument")
        options = next((v for v in values[1:] if isinstance(v, AutoCompleteOptions)), None)
        return await self.backend.suggest(plan.dictionary, str(values[0]), logger, options)
