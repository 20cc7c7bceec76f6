# src/async_search_repository/base/schema.py
"""
Static field-metadata tables for registered domain models.

A model is introspected exactly once (``build_field_table``) and the resulting
table maps each attribute name to a ``FieldEntry`` carrying a tagged semantic
variant: ``Text``, ``Tag``, ``Numeric``, ``Geo``, ``Nested`` (with its own
table) or ``Unindexed``. Field resolution later works on these tables only.
"""

import logging
import uuid
from dataclasses import dataclass, field, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from inspect import isclass
from types import MappingProxyType
from typing import (
    Annotated,
    Any,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    Type,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from .fields import (
    GeoIndexed,
    IndexMarker,
    Indexed,
    NumericIndexed,
    Point,
    Searchable,
    StructureMarker,
    TagIndexed,
    TextIndexed,
)

log = logging.getLogger(__name__)


class FieldType(Enum):
    """Backend index field types."""

    TEXT = "TEXT"
    TAG = "TAG"
    NUMERIC = "NUMERIC"
    GEO = "GEO"


# --- Semantic variants ---
@dataclass(frozen=True)
class FieldSemantics:
    """Base class of the semantic variants."""

    @property
    def field_type(self) -> Optional[FieldType]:
        return None


@dataclass(frozen=True)
class Text(FieldSemantics):
    @property
    def field_type(self) -> FieldType:
        return FieldType.TEXT


@dataclass(frozen=True)
class Tag(FieldSemantics):
    @property
    def field_type(self) -> FieldType:
        return FieldType.TAG


@dataclass(frozen=True)
class Numeric(FieldSemantics):
    @property
    def field_type(self) -> FieldType:
        return FieldType.NUMERIC


@dataclass(frozen=True)
class Geo(FieldSemantics):
    @property
    def field_type(self) -> FieldType:
        return FieldType.GEO


@dataclass(frozen=True)
class Nested(FieldSemantics):
    """An indexed attribute whose type is itself a model; resolution recurses into ``table``."""

    table: Mapping[str, "FieldEntry"] = field(default_factory=dict)


@dataclass(frozen=True)
class Unindexed(FieldSemantics):
    pass


@dataclass(frozen=True)
class FieldEntry:
    """Metadata of one model attribute."""

    name: str
    semantics: FieldSemantics
    python_type: Any = None
    alias: Optional[str] = None
    index_missing: bool = False
    sortable: bool = False
    collection: bool = False
    structures: Tuple[StructureMarker, ...] = ()

    @property
    def field_type(self) -> Optional[FieldType]:
        return self.semantics.field_type

    def structure(self, marker_type: Type[StructureMarker]) -> Optional[StructureMarker]:
        for marker in self.structures:
            if isinstance(marker, marker_type):
                return marker
        return None


FieldTable = Mapping[str, FieldEntry]

_COLLECTION_ORIGINS = (list, List, set, Set, tuple, Tuple, frozenset, FrozenSet)
_TAG_LEAVES = (str, bool, uuid.UUID)
_NUMERIC_LEAVES = (int, float, Decimal, datetime, date)


def _is_none_type(t: Any) -> bool:
    return t is type(None)


def _unwrap_optional(tp: Any) -> Any:
    """Optional[X] -> X; other unions are returned unchanged."""
    if get_origin(tp) is Union:
        non_none = tuple(a for a in get_args(tp) if not _is_none_type(a))
        if len(non_none) == 1:
            return non_none[0]
    return tp


def _split_annotated(tp: Any) -> Tuple[Any, Tuple[Any, ...]]:
    if get_origin(tp) is Annotated:
        args = get_args(tp)
        return args[0], tuple(args[1:])
    return tp, ()


def _collection_element(tp: Any) -> Tuple[bool, Any]:
    origin = get_origin(tp)
    if origin in _COLLECTION_ORIGINS:
        args = get_args(tp)
        element = args[0] if args else Any
        return True, _unwrap_optional(element)
    return False, tp


def is_model_class(tp: Any) -> bool:
    """True for classes that carry their own attribute table (models, dataclasses)."""
    if not isclass(tp):
        return False
    if tp is Point or issubclass(tp, (str, bytes, Enum)) or tp in _NUMERIC_LEAVES:
        return False
    return (
        hasattr(tp, "model_fields")
        or is_dataclass(tp)
        or bool(getattr(tp, "__annotations__", None))
    )


def infer_semantics(leaf: Any) -> Optional[FieldSemantics]:
    """Type inference for generically ``Indexed`` leaves."""
    if not isclass(leaf):
        return None
    # Characters, booleans, enums and identifiers
    if issubclass(leaf, _TAG_LEAVES) or issubclass(leaf, Enum):
        return Tag()
    # Numbers and temporal values
    if issubclass(leaf, _NUMERIC_LEAVES):
        return Numeric()
    if leaf is Point:
        return Geo()
    return None


def _semantics_for(
    marker: IndexMarker, base_type: Any, collection: bool, element: Any, seen: Set[type]
) -> FieldSemantics:
    if isinstance(marker, (TextIndexed, Searchable)):
        return Text()
    if isinstance(marker, TagIndexed):
        return Tag()
    if isinstance(marker, NumericIndexed):
        return Numeric()
    if isinstance(marker, GeoIndexed):
        return Geo()

    # Generic Indexed: infer from the Python type
    if collection:
        inferred = infer_semantics(element)
        # Collections of anything else index as tags
        return inferred or Tag()

    inferred = infer_semantics(base_type)
    if inferred is not None:
        return inferred

    if is_model_class(base_type):
        if base_type in seen:
            log.warning(
                f"Recursive model reference to {base_type.__name__} is not indexed."
            )
            return Unindexed()
        return Nested(_build(base_type, seen | {base_type}))

    log.warning(f"Cannot infer an index type for {base_type!r}; leaving it unindexed.")
    return Unindexed()


def _resolve_hints(model_cls: type) -> Mapping[str, Any]:
    # Pydantic models: declared fields only, with their Annotated metadata restored
    model_fields = getattr(model_cls, "model_fields", None)
    if isinstance(model_fields, dict):
        return {name: info.rebuild_annotation() for name, info in model_fields.items()}
    try:
        return get_type_hints(model_cls, include_extras=True)
    except (TypeError, NameError) as e:
        log.warning(
            f"get_type_hints failed for {model_cls.__name__}: {e}. "
            "Falling back to __annotations__."
        )
        return getattr(model_cls, "__annotations__", {})


def _build(model_cls: type, seen: Set[type]) -> FieldTable:
    entries = {}
    for name, hint in _resolve_hints(model_cls).items():
        if name.startswith("_"):
            continue
        base_type, metadata = _split_annotated(hint)
        base_type = _unwrap_optional(base_type)
        # Optional[Annotated[...]] nests the metadata one level down
        if not metadata:
            base_type, metadata = _split_annotated(base_type)
            base_type = _unwrap_optional(base_type)

        markers = [m for m in metadata if isinstance(m, IndexMarker)]
        structures = tuple(m for m in metadata if isinstance(m, StructureMarker))
        collection, element = _collection_element(base_type)

        if markers:
            marker = markers[0]
            semantics = _semantics_for(marker, base_type, collection, element, seen)
            entries[name] = FieldEntry(
                name=name,
                semantics=semantics,
                python_type=element if collection else base_type,
                alias=marker.alias or None,
                index_missing=marker.index_missing,
                sortable=marker.sortable,
                collection=collection,
                structures=structures,
            )
        else:
            entries[name] = FieldEntry(
                name=name,
                semantics=Unindexed(),
                python_type=element if collection else base_type,
                collection=collection,
                structures=structures,
            )
    return MappingProxyType(entries)


def build_field_table(model_cls: type) -> FieldTable:
    """Introspects ``model_cls`` once and returns its immutable field table."""
    log.debug(f"Building field table for {model_cls.__name__}")
    table = _build(model_cls, {model_cls})
    log.debug(
        f"Field table for {model_cls.__name__}: "
        f"{ {k: type(v.semantics).__name__ for k, v in table.items()} }"
    )
    return table


def model_attribute_names(model_cls: type) -> List[str]:
    """Attribute names of a model, in declaration order."""
    return [n for n in _resolve_hints(model_cls) if not n.startswith("_")]


def attribute_type(model_cls: type, name: str) -> Any:
    """Declared (unwrapped) type of ``model_cls.name``, or None."""
    hints = _resolve_hints(model_cls)
    if name not in hints:
        return None
    return unwrap_type(hints[name])


def unwrap_type(hint: Any) -> Any:
    """Strips ``Annotated`` and ``Optional`` wrappers (in either nesting order)."""
    base_type, _ = _split_annotated(hint)
    base_type = _unwrap_optional(base_type)
    base_type, _ = _split_annotated(base_type)
    return _unwrap_optional(base_type)


def collection_element(hint: Any) -> Tuple[bool, Any]:
    """``(True, element type)`` for list/set/tuple hints, ``(False, hint)`` otherwise."""
    return _collection_element(unwrap_type(hint))


def model_hints(model_cls: type) -> Mapping[str, Any]:
    """Declared attribute hints of ``model_cls`` (Annotated metadata kept)."""
    return {n: h for n, h in _resolve_hints(model_cls).items() if not n.startswith("_")}
