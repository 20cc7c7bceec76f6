# src/async_search_repository/base/planner.py
"""
Intent Parser.

Turns a ``QueryMethod`` into an immutable ``QueryPlan``. There is one
constructor function per query kind; ``build_plan`` only decides which one
applies.
"""

import logging
from typing import List, Optional, Tuple

from .clauses import Clause, PartType
from .exceptions import InvalidPathError, QueryPlanException
from .fields import AutoComplete
from .indexer import Indexer
from .method import QueryMethod, ReturnShape
from .parts import Part, PartTree, match_property
from .plan import (
    AggregationPlan,
    AutocompletePlan,
    Conjunction,
    DeletePlan,
    Group,
    QueryPlan,
    SearchPlan,
    SortedField,
    TagValuesPlan,
    Term,
    field_ref,
    make_reducer,
)
from .resolver import default_key
from .schema import FieldType
from .settings import QuerySettings

log = logging.getLogger(__name__)

_TAG_VALUES_PREFIX = "get_all_"
_AUTOCOMPLETE_PREFIX = "autocomplete_"
_FULL_TEXT_METHOD = "search"


def build_plan(
    method: QueryMethod, indexer: Indexer, settings: Optional[QuerySettings] = None
) -> QueryPlan:
    """
    Builds the plan for ``method``.

    Raises QueryPlanException when the method matches no supported pattern and
    InvalidPathError for unknown properties under strict resolution.
    """
    settings = settings or QuerySettings()
    dialect = method.dialect or settings.default_dialect
    model = method.entity_type

    if method.aggregation is not None:
        plan = aggregation_plan(method, indexer, dialect)
    elif method.query is not None and method.query.value:
        plan = template_plan(method, indexer, dialect)
    elif method.name == _FULL_TEXT_METHOD:
        plan = full_text_plan(method, dialect)
    elif _tag_values_property(method, indexer):
        plan = tag_values_plan(method, indexer, dialect)
    elif _autocomplete_property(method, indexer):
        plan = autocomplete_plan(method, indexer, dialect)
    else:
        tree = PartTree.parse(method.name, model)
        if tree.is_delete:
            plan = delete_plan(tree, method, indexer, settings, dialect)
        else:
            plan = search_plan(tree, method, indexer, settings, dialect)

    log.info(f"Built {plan.kind.name} plan for {model.__name__}.{method.name}")
    log.debug(f"{method.name}: {plan}")
    return plan


# --- Derived (method-name) queries ---
def _conjunctions(
    tree: PartTree, method: QueryMethod, indexer: Indexer, strict: bool
) -> Tuple[Tuple[Conjunction, ...], bool]:
    model = method.entity_type
    or_parts: List[Conjunction] = []
    has_null_check = False
    param_index = 0

    for conjunction in tree.or_parts:
        terms: List[Term] = []
        for part in conjunction:
            first_param = param_index
            param_index += part.num_args
            term = _term_for(part, model, indexer, strict, first_param)
            if term is None:
                continue
            has_null_check = has_null_check or term.clause.is_sentinel
            terms.append(term)
        or_parts.append(tuple(terms))

    if param_index > len(method.bindable_parameters):
        raise QueryPlanException(
            f"{method.name} needs {param_index} argument(s) but declares "
            f"{len(method.bindable_parameters)}"
        )
    # Existence filters apply to the whole pipeline, so they cannot sit in one branch
    if has_null_check and len(or_parts) > 1:
        raise QueryPlanException(
            f"{method.name} combines a null check with '_or_'; "
            f"split it into one method per alternative"
        )
    return tuple(or_parts), has_null_check


def _term_for(
    part: Part, model: type, indexer: Indexer, strict: bool, first_param: int
) -> Optional[Term]:
    binding = indexer.resolve(model, part.property)

    # Null checks bypass type resolution
    if part.is_null_check:
        key = binding.key if binding else default_key(part.property)
        return Term(
            key,
            Clause.get(None, part.part_type),
            first_param,
            bool(binding and binding.index_missing),
        )

    if binding is None:
        if strict:
            raise InvalidPathError(
                f"Property '{part.property}' of {model.__name__} is not an indexed field"
            )
        log.info(f"Dropping term on unresolved property '{part.property}' of {model.__name__}")
        return None

    if part.part_type is PartType.CONTAINING_ALL:
        clause = Clause.containing_all(binding.field_type)
    else:
        clause = Clause.get(binding.field_type, part.part_type)
    return Term(binding.key, clause, first_param)


def _sort_key(model: type, indexer: Indexer, prop: Optional[str]) -> Optional[str]:
    if not prop:
        return None
    return indexer.alias(model, prop) or default_key(prop)


def _derived_fields(
    tree: PartTree, method: QueryMethod, indexer: Indexer, settings: QuerySettings
) -> dict:
    or_parts, has_null_check = _conjunctions(
        tree, method, indexer, settings.strict_property_resolution
    )
    model = method.entity_type
    sort_by, sort_ascending = None, True
    if tree.orders:
        sort_by = _sort_key(model, indexer, tree.orders[0].property)
        sort_ascending = tree.orders[0].ascending

    offset, limit = None, tree.limit
    annotation = method.query
    if annotation is not None:
        offset = annotation.offset if annotation.offset is not None else offset
        limit = annotation.limit if annotation.limit is not None else limit
        if annotation.sort_by:
            sort_by = _sort_key(model, indexer, annotation.sort_by)
            sort_ascending = annotation.sort_ascending

    return dict(
        or_parts=or_parts,
        has_null_check=has_null_check,
        sort_by=sort_by,
        sort_ascending=sort_ascending,
        offset=offset,
        limit=limit,
    )


def search_plan(
    tree: PartTree,
    method: QueryMethod,
    indexer: Indexer,
    settings: QuerySettings,
    dialect: int,
) -> SearchPlan:
    return_fields = method.query.return_fields if method.query else ()
    return SearchPlan(
        dialect=dialect,
        return_fields=return_fields,
        param_names=method.parameter_names,
        **_derived_fields(tree, method, indexer, settings),
    )


def delete_plan(
    tree: PartTree,
    method: QueryMethod,
    indexer: Indexer,
    settings: QuerySettings,
    dialect: int,
) -> DeletePlan:
    return DeletePlan(dialect=dialect, **_derived_fields(tree, method, indexer, settings))


def full_text_plan(method: QueryMethod, dialect: int) -> SearchPlan:
    """``search(text)``: one free-text clause over every text field."""
    if len(method.bindable_parameters) != 1:
        raise QueryPlanException(f"{method.name} must take exactly one text argument")
    return SearchPlan(
        dialect=dialect,
        or_parts=((Term("*", Clause.TEXT_ALL, 0),),),
        param_names=method.parameter_names,
    )


# --- Explicit queries ---
def template_plan(method: QueryMethod, indexer: Indexer, dialect: int) -> SearchPlan:
    annotation = method.query
    return SearchPlan(
        dialect=dialect,
        template=annotation.value,
        return_fields=annotation.return_fields,
        offset=annotation.offset,
        limit=annotation.limit,
        sort_by=_sort_key(method.entity_type, indexer, annotation.sort_by),
        sort_ascending=annotation.sort_ascending,
        param_names=method.parameter_names,
    )


def _field_key(model: type, indexer: Indexer, prop: str) -> str:
    """Resolves a declared property to its backend key; raw references are kept."""
    if prop.startswith(("@", "$")):
        return prop
    return indexer.alias(model, prop) or prop


def aggregation_plan(method: QueryMethod, indexer: Indexer, dialect: int) -> AggregationPlan:
    annotation = method.aggregation
    model = method.entity_type

    load = tuple(
        (field_ref(_field_key(model, indexer, item.property)), item.alias)
        for item in annotation.load
    )
    groups = []
    for group in annotation.group_by:
        reducers = []
        for reduce in group.reduce:
            args = tuple(reduce.args)
            if args:
                args = (_field_key(model, indexer, args[0]),) + args[1:]
            # Raises IndexError for missing required arguments
            reducers.append(make_reducer(reduce.function, args, reduce.alias))
        groups.append(
            Group(
                tuple(_field_key(model, indexer, p) for p in group.properties),
                tuple(reducers),
            )
        )
    sorted_fields = tuple(
        SortedField(_field_key(model, indexer, s.field), s.ascending)
        for s in annotation.sort_by
    )
    static_sort, static_ascending = None, True
    if method.query is not None and method.query.sort_by:
        static_sort = _field_key(model, indexer, method.query.sort_by)
        static_ascending = method.query.sort_ascending

    return AggregationPlan(
        dialect=dialect,
        template=annotation.value or "*",
        load=load,
        apply=tuple((a.alias, a.expression) for a in annotation.apply),
        groups=tuple(groups),
        filters=tuple(annotation.filter),
        sorted_fields=sorted_fields,
        sort_by_max=annotation.sort_by_max,
        sort_by=static_sort,
        sort_ascending=static_ascending,
        timeout=annotation.timeout,
        verbatim=annotation.verbatim,
        offset=annotation.offset,
        limit=annotation.limit,
        param_names=method.parameter_names,
    )


# --- Tag values / autocomplete ---
def _suffix_property(method: QueryMethod, prefix: str) -> Optional[str]:
    if not method.name.startswith(prefix):
        return None
    return match_property(method.name[len(prefix):].split("_"), method.entity_type)


def _tag_values_property(method: QueryMethod, indexer: Indexer) -> Optional[str]:
    prop = _suffix_property(method, _TAG_VALUES_PREFIX)
    if prop is None:
        return None
    binding = indexer.resolve(method.entity_type, prop)
    if binding is None or binding.field_type is not FieldType.TAG:
        raise QueryPlanException(
            f"{method.name} lists the values of '{prop}', which is not a tag field"
        )
    return prop


def tag_values_plan(method: QueryMethod, indexer: Indexer, dialect: int) -> TagValuesPlan:
    prop = _tag_values_property(method, indexer)
    return TagValuesPlan(dialect=dialect, field=indexer.alias(method.entity_type, prop))


def _autocomplete_property(method: QueryMethod, indexer: Indexer) -> Optional[str]:
    prop = _suffix_property(method, _AUTOCOMPLETE_PREFIX)
    if prop is None:
        return None
    entry = indexer.field_table(method.entity_type).get(prop.split(".")[0])
    return prop if entry is not None and entry.structure(AutoComplete) else None


def autocomplete_plan(method: QueryMethod, indexer: Indexer, dialect: int) -> AutocompletePlan:
    model = method.entity_type
    prop = _autocomplete_property(method, indexer)
    marker = indexer.field_table(model)[prop.split(".")[0]].structure(AutoComplete)
    return AutocompletePlan(
        dialect=dialect,
        field=prop,
        dictionary=marker.name or f"sugg:{model.__name__}:{prop}",
    )


def shape_for(plan: QueryPlan, method: QueryMethod) -> QueryMethod:
    """Tag-value plans always return the distinct values, whatever the annotation says."""
    if isinstance(plan, TagValuesPlan) and method.return_shape is not ReturnShape.TAG_VALUES:
        return method.with_shape(ReturnShape.TAG_VALUES)
    return method
