import asyncio
import copy
import json
import math
import random
import statistics
from itertools import product
from logging import LoggerAdapter
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from async_search_repository.base.exceptions import ObjectNotFoundException, QuerySyntaxError
from async_search_repository.base.indexer import IndexedAttribute, Indexer
from async_search_repository.base.interfaces import RawDocument, SearchBackend
from async_search_repository.base.plan import Reducer, ReducerFunction, SortedField
from async_search_repository.base.requests import (
    AggregateRequest,
    ApplyStep,
    FilterStep,
    GroupStep,
    LimitStep,
    LoadStep,
    SearchRequest,
    SortStep,
)
from async_search_repository.base.results import (
    AggregationResult,
    AutoCompleteOptions,
    Document,
    SearchResult,
    Suggestion,
)
from async_search_repository.base.schema import FieldType
from async_search_repository.base.utils import to_index_value
from async_search_repository.memory.expressions import compile_expression, to_number, truthy
from async_search_repository.memory.query_parser import evaluate, parse_query

KEY_NAME = "__key"


def _path_values(node: Any, segments: Sequence[str]) -> List[Any]:
    """
    Collect the leaf values at a dotted path, descending into lists.
    """
    if not segments:
        if node is None:
            return []
        if isinstance(node, list):
            values = []
            for item in node:
                values.extend(_path_values(item, ()))
            return values
        return [node]
    if isinstance(node, list):
        values = []
        for item in node:
            values.extend(_path_values(item, segments))
        return values
    if isinstance(node, dict) and segments[0] in node:
        return _path_values(node[segments[0]], segments[1:])
    return []


def _project(document: RawDocument, json_path: str) -> Any:
    """Value at a ``$.a.b`` / ``$.a[*]`` path, or None when absent."""
    path = json_path[2:] if json_path.startswith("$.") else json_path.lstrip("$")
    if path.endswith("[*]"):
        path = path[:-3]
    node: Any = document
    for segment in path.split(".") if path else ():
        if not isinstance(node, dict) or segment not in node:
            return None
        node = node[segment]
    return node


def _indexed_value(attribute: IndexedAttribute, value: Any) -> Any:
    if attribute.field_type is FieldType.NUMERIC:
        return to_number(value)
    if attribute.field_type is FieldType.TAG:
        return to_index_value(value)
    return str(value)


def _reply_value(value: Any) -> str:
    """Values come back from the engine as strings."""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return to_index_value(value)


def _order_key(value: Any) -> Tuple[int, Any]:
    number = to_number(value)
    if number is not None and not isinstance(value, bool):
        return 0, number
    return 1, str(value).lower()


def _sorted(items: List[Any], value_of: Callable[[Any], Any], ascending: bool) -> List[Any]:
    """Stable sort; items without a value go last in either direction."""
    present = [item for item in items if value_of(item) is not None]
    missing = [item for item in items if value_of(item) is None]
    present.sort(key=lambda item: _order_key(value_of(item)), reverse=not ascending)
    return present + missing


def _first(values: Optional[List[Any]]) -> Any:
    if not values:
        return None
    return values[0] if len(values) == 1 else values


def _flatten(values: Iterable[Any]) -> List[Any]:
    flat = []
    for value in values:
        if isinstance(value, list):
            flat.extend(v for v in value if v is not None)
        elif value is not None:
            flat.append(value)
    return flat


def _levenshtein(a: str, b: str) -> int:
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + (ca != cb)))
        previous = current
    return previous[-1]


class _Row:
    """An aggregation row; until a GROUPBY it can still read its source document."""

    __slots__ = ("values", "key", "indexed")

    def __init__(self, values: Dict[str, Any], key: Optional[str] = None,
                 indexed: Optional[Dict[str, List[Any]]] = None):
        self.values = values
        self.key = key
        self.indexed = indexed

    def get(self, name: str) -> Any:
        name = name.lstrip("@")
        if name in self.values:
            return self.values[name]
        if name == KEY_NAME:
            return self.key
        if self.indexed is not None:
            return _first(self.indexed.get(name))
        return None


class InMemorySearchBackend(SearchBackend):
    """
    A dictionary-backed stand-in for the search engine.

    Interprets the query strings and aggregation pipelines the executor emits
    against documents held in memory; indexes are taken from the ``Indexer``
    (documents belong to an index through their key prefix).
    """

    def __init__(self, indexer: Indexer):
        self._indexer = indexer
        self._store: Dict[str, RawDocument] = {}
        self._blooms: Dict[str, Set[str]] = {}
        self._cuckoos: Dict[str, Set[str]] = {}
        self._sketches: Dict[str, Dict[str, int]] = {}
        self._dictionaries: Dict[str, Dict[str, Tuple[float, Optional[str]]]] = {}

    # --- Index helpers ---

    def _model(self, index: str) -> type:
        model = self._indexer.model_for_index(index)
        if model is None:
            raise ObjectNotFoundException(f"Unknown index name '{index}'")
        return model

    def _documents(self, model: type) -> List[Tuple[str, RawDocument]]:
        prefix = self._indexer.key_prefix(model)
        return [(key, doc) for key, doc in self._store.items() if key.startswith(prefix)]

    def _index_values(
        self, attributes: Sequence[IndexedAttribute], document: RawDocument
    ) -> Dict[str, List[Any]]:
        indexed: Dict[str, List[Any]] = {}
        for attribute in attributes:
            raw = _path_values(document, attribute.path.split("."))
            values = [_indexed_value(attribute, v) for v in raw]
            indexed[attribute.alias] = [v for v in values if v is not None]
        return indexed

    def _matches(self, index: str, query: str) -> List[Tuple[str, RawDocument, Dict[str, List[Any]]]]:
        model = self._model(index)
        attributes = self._indexer.indexed_attributes(model)
        aliases = {a.alias for a in attributes}
        text_aliases = [a.alias for a in attributes if a.field_type is FieldType.TEXT]
        node = parse_query(query)

        matches = []
        for key, document in self._documents(model):
            indexed = self._index_values(attributes, document)

            def values_of(field: Optional[str]) -> Optional[List[Any]]:
                if field not in aliases:
                    raise QuerySyntaxError(f"Unknown field '{field}' in index '{index}'")
                return indexed[field]

            def text_values() -> List[Any]:
                return [v for alias in text_aliases for v in indexed[alias]]

            if evaluate(node, values_of, text_values):
                matches.append((key, document, indexed))
        return matches

    def _missing_allowed(self, index: str) -> Callable[[str], bool]:
        attributes = self._indexer.indexed_attributes(self._model(index))
        tracked = {a.alias for a in attributes if a.index_missing}
        return lambda field: field in tracked

    # --- Index operations ---

    async def search(self, request: SearchRequest, logger: LoggerAdapter) -> SearchResult:
        await asyncio.sleep(0)
        logger.debug(f"In-memory search on {request.index}: {request.query}")
        matches = self._matches(request.index, request.query)
        if request.sort_by:
            matches = _sorted(matches, lambda m: _first(m[2].get(request.sort_by)),
                              request.sort_ascending)
        page = matches[request.offset:request.offset + request.limit]

        documents = []
        for key, document, indexed in page:
            if request.no_content:
                documents.append(Document(key))
            elif request.return_fields:
                documents.append(Document(key, self._returned(document, indexed, request)))
            else:
                documents.append(Document(key, copy.deepcopy(document)))
        return SearchResult(len(matches), documents)

    @staticmethod
    def _returned(document: RawDocument, indexed: Dict[str, List[Any]],
                  request: SearchRequest) -> Dict[str, Any]:
        fields = {}
        for name, alias in request.return_fields:
            if name.startswith("$"):
                value = _project(document, name)
            else:
                value = _first(indexed.get(name.lstrip("@")))
            if value is not None:
                fields[alias or name] = _reply_value(value)
        return fields

    async def aggregate(
        self, request: AggregateRequest, logger: LoggerAdapter
    ) -> AggregationResult:
        await asyncio.sleep(0)
        logger.debug(f"In-memory aggregate on {request.index}: {request.to_args()}")
        rows = [
            _Row({}, key, indexed) for key, _, indexed in self._matches(request.index, request.query)
        ]
        documents = dict(self._store)
        total: Optional[int] = None

        for step in request.steps:
            if isinstance(step, LoadStep):
                for row in rows:
                    self._load(row, step, documents.get(row.key))
            elif isinstance(step, GroupStep):
                rows = self._group(rows, step)
            elif isinstance(step, FilterStep):
                predicate = compile_expression(step.expression, self._missing_allowed(request.index))
                rows = [row for row in rows if truthy(predicate(row.get))]
            elif isinstance(step, ApplyStep):
                expression = compile_expression(step.expression, self._missing_allowed(request.index))
                for row in rows:
                    row.values[step.alias] = expression(row.get)
            elif isinstance(step, SortStep):
                rows = self._sort_rows(rows, step.fields)
                if step.max is not None:
                    rows = rows[:step.max]
            elif isinstance(step, LimitStep):
                total = len(rows)
                rows = rows[step.offset:step.offset + step.num]

        result_rows = [
            {name: _reply_value(value) for name, value in row.values.items() if value is not None}
            for row in rows
        ]
        return AggregationResult(len(rows) if total is None else total, result_rows)

    @staticmethod
    def _load(row: _Row, step: LoadStep, document: Optional[RawDocument]):
        for name, alias in step.fields:
            if name == "*":
                for field, values in (row.indexed or {}).items():
                    if values:
                        row.values[field] = _first(values)
                continue
            if name.startswith("$"):
                value = _project(document or {}, name)
                output = alias or name
            else:
                value = row.get(name)
                output = alias or name.lstrip("@")
            if value is not None:
                row.values[output] = value

    @staticmethod
    def _group(rows: List[_Row], step: GroupStep) -> List[_Row]:
        properties = [p.lstrip("@") for p in step.group.properties]
        groups: Dict[Tuple[str, ...], Tuple[Tuple[Any, ...], List[_Row]]] = {}
        for row in rows:
            choices = []
            for prop in properties:
                value = row.get(prop)
                choices.append(value if isinstance(value, list) and value else [value])
            # A multi-valued property puts the row into one group per value
            for combination in product(*choices):
                group_key = tuple("" if v is None else _reply_value(v) for v in combination)
                groups.setdefault(group_key, (combination, []))[1].append(row)

        grouped = []
        for combination, members in groups.values():
            values = {prop: value for prop, value in zip(properties, combination)}
            for reducer in step.group.reducers:
                values[reducer.output_name] = _reduce(reducer, members)
            grouped.append(_Row(values))
        return grouped

    @staticmethod
    def _sort_rows(rows: List[_Row], fields: Sequence[SortedField]) -> List[_Row]:
        for sorted_field in reversed(fields):
            name = sorted_field.field.lstrip("@")
            rows = _sorted(rows, lambda row: row.get(name), sorted_field.ascending)
        return rows

    async def tag_vals(self, index: str, field: str, logger: LoggerAdapter) -> List[str]:
        await asyncio.sleep(0)
        model = self._model(index)
        attributes = [a for a in self._indexer.indexed_attributes(model) if a.alias == field]
        if not attributes or attributes[0].field_type is not FieldType.TAG:
            raise QuerySyntaxError(f"'{field}' is not a tag field of index '{index}'")
        values = set()
        for _, document in self._documents(model):
            indexed = self._index_values(attributes, document)
            values.update(v.lower() for v in indexed[field])
        return sorted(values)

    # --- Key-value operations ---

    async def get(self, key: str, logger: LoggerAdapter) -> Optional[RawDocument]:
        await asyncio.sleep(0)
        document = self._store.get(key)
        return copy.deepcopy(document) if document is not None else None

    async def get_many(
        self, keys: Sequence[str], logger: LoggerAdapter
    ) -> List[Optional[RawDocument]]:
        await asyncio.sleep(0)
        return [copy.deepcopy(self._store.get(key)) for key in keys]

    async def put(self, key: str, document: RawDocument, logger: LoggerAdapter) -> None:
        await asyncio.sleep(0)
        # Round trip through JSON so stored documents look exactly like persisted ones
        self._store[key] = json.loads(json.dumps(document))
        logger.debug(f"Stored {key}")

    async def delete(self, keys: Sequence[str], logger: LoggerAdapter) -> int:
        await asyncio.sleep(0)
        deleted = 0
        for key in keys:
            if self._store.pop(key, None) is not None:
                deleted += 1
        logger.debug(f"Deleted {deleted} of {len(keys)} key(s)")
        return deleted

    # --- Probabilistic structures and suggestions ---

    def bf_add(self, name: str, value: Any):
        self._blooms.setdefault(name, set()).add(to_index_value(value))

    async def bf_exists(self, name: str, value: Any, logger: LoggerAdapter) -> bool:
        await asyncio.sleep(0)
        return to_index_value(value) in self._blooms.get(name, set())

    def cf_add(self, name: str, value: Any):
        self._cuckoos.setdefault(name, set()).add(to_index_value(value))

    async def cf_exists(self, name: str, value: Any, logger: LoggerAdapter) -> bool:
        await asyncio.sleep(0)
        return to_index_value(value) in self._cuckoos.get(name, set())

    def cms_incrby(self, name: str, value: Any, increment: int = 1):
        sketch = self._sketches.setdefault(name, {})
        item = to_index_value(value)
        sketch[item] = sketch.get(item, 0) + increment

    async def cms_query(
        self, name: str, values: Sequence[Any], logger: LoggerAdapter
    ) -> List[int]:
        await asyncio.sleep(0)
        if name not in self._sketches:
            raise ObjectNotFoundException(f"Count-min sketch '{name}' does not exist")
        sketch = self._sketches[name]
        return [sketch.get(to_index_value(v), 0) for v in values]

    def suggest_add(self, dictionary: str, string: str, score: float = 1.0,
                    payload: Optional[str] = None, increment: bool = False):
        entries = self._dictionaries.setdefault(dictionary, {})
        if increment and string in entries:
            score += entries[string][0]
        entries[string] = (score, payload)

    async def suggest(
        self,
        dictionary: str,
        prefix: str,
        logger: LoggerAdapter,
        options: Optional[AutoCompleteOptions] = None,
    ) -> List[Suggestion]:
        await asyncio.sleep(0)
        options = options or AutoCompleteOptions()
        wanted = prefix.lower()
        hits = []
        for string, (score, payload) in self._dictionaries.get(dictionary, {}).items():
            head = string.lower()[:len(wanted)]
            if head == wanted or (options.fuzzy and _levenshtein(head, wanted) <= 1):
                hits.append((string, score, payload))
        hits.sort(key=lambda hit: (-hit[1], hit[0]))
        return [
            Suggestion(
                string,
                score if options.with_score else None,
                payload if options.with_payload else None,
            )
            for string, score, payload in hits[:options.limit]
        ]


def _reduce(reducer: Reducer, rows: List[_Row]) -> Any:
    function = reducer.function
    if function is ReducerFunction.COUNT:
        return len(rows)

    field = reducer.args[0] if reducer.args else None
    values = _flatten(row.get(field) for row in rows) if field else []
    numbers = [n for n in (to_number(v) for v in values) if n is not None and not math.isnan(n)]

    if function in (ReducerFunction.COUNT_DISTINCT, ReducerFunction.COUNT_DISTINCTISH):
        return len({_reply_value(v) for v in values})
    if function is ReducerFunction.SUM:
        return sum(numbers)
    if function is ReducerFunction.MIN:
        return min(numbers) if numbers else None
    if function is ReducerFunction.MAX:
        return max(numbers) if numbers else None
    if function is ReducerFunction.AVG:
        return statistics.mean(numbers) if numbers else None
    if function is ReducerFunction.STDDEV:
        return statistics.stdev(numbers) if len(numbers) > 1 else 0
    if function is ReducerFunction.QUANTILE:
        if not numbers:
            return None
        ordered = sorted(numbers)
        position = float(reducer.args[1]) * (len(ordered) - 1)
        return ordered[int(round(position))]
    if function is ReducerFunction.TOLIST:
        seen: Dict[str, Any] = {}
        for value in values:
            seen.setdefault(_reply_value(value), value)
        return list(seen.values())
    if function is ReducerFunction.FIRST_VALUE:
        candidates = rows
        if reducer.by is not None:
            by = reducer.by.field.lstrip("@")
            candidates = _sorted(list(rows), lambda row: row.get(by), reducer.by.ascending)
        for row in candidates:
            value = row.get(field)
            if value is not None:
                return value
        return None
    if function is ReducerFunction.RANDOM_SAMPLE:
        size = int(reducer.args[1])
        return random.sample(values, min(size, len(values)))
    raise QuerySyntaxError(f"Unsupported reducer {function.value}")
