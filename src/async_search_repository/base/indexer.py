# src/async_search_repository/base/indexer.py
"""
Index registry.

Keeps, per registered domain model, the physical index name, the key prefix of
its documents and its static field table. Everything that needs to map a
domain property to a backend field goes through here.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Type

from .resolver import FieldBinding, default_key, json_path_for, resolve
from .schema import FieldTable, FieldType, Nested, build_field_table

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexedAttribute:
    """A leaf field as the backend index sees it."""

    path: str
    alias: str
    json_path: str
    field_type: FieldType
    index_missing: bool = False
    sortable: bool = False
    collection: bool = False


@dataclass(frozen=True)
class IndexDefinition:
    model: type
    index_name: str
    key_prefix: str
    id_field: str
    table: FieldTable

    def key_for(self, id_value) -> str:
        return f"{self.key_prefix}{id_value}"


class Indexer:
    """Registry of index definitions, keyed by model class and by index name."""

    def __init__(self):
        self._by_model: Dict[type, IndexDefinition] = {}
        self._by_index: Dict[str, IndexDefinition] = {}
        self._lock = threading.Lock()

    def register(
        self,
        model: type,
        index_name: Optional[str] = None,
        key_prefix: Optional[str] = None,
        id_field: str = "id",
    ) -> IndexDefinition:
        """Registers ``model``; its field table is built once, here."""
        definition = IndexDefinition(
            model=model,
            index_name=index_name or f"{model.__name__}Idx",
            key_prefix=key_prefix or f"{model.__name__}:",
            id_field=id_field,
            table=build_field_table(model),
        )
        with self._lock:
            self._by_model[model] = definition
            self._by_index[definition.index_name] = definition
        log.info(
            f"Registered {model.__name__} as index '{definition.index_name}' "
            f"(prefix '{definition.key_prefix}')"
        )
        return definition

    def definition(self, model: type) -> IndexDefinition:
        existing = self._by_model.get(model)
        if existing is not None:
            return existing
        log.info(f"{model.__name__} was not registered; registering with defaults")
        return self.register(model)

    def is_registered(self, model: type) -> bool:
        return model in self._by_model

    def index_name(self, model: type) -> str:
        return self.definition(model).index_name

    def key_prefix(self, model: type) -> str:
        return self.definition(model).key_prefix

    def id_field(self, model: type) -> str:
        return self.definition(model).id_field

    def field_table(self, model: type) -> FieldTable:
        return self.definition(model).table

    def model_for_index(self, index_name: str) -> Optional[Type]:
        definition = self._by_index.get(index_name)
        return definition.model if definition else None

    def resolve(self, model: type, path: str) -> Optional[FieldBinding]:
        return resolve(self.field_table(model), path)

    def alias(self, model: type, path: str) -> Optional[str]:
        """Backend field key of ``path``, or None when it is not indexed."""
        binding = self.resolve(model, path)
        return binding.key if binding else None

    def is_missing_tracking_enabled(self, model: type, path: str) -> bool:
        binding = self.resolve(model, path)
        return bool(binding and binding.index_missing)

    def indexed_attributes(self, model: type) -> List[IndexedAttribute]:
        """All leaf fields of ``model``'s index, nested ones flattened."""
        attributes: List[IndexedAttribute] = []
        self._collect(self.field_table(model), [], attributes)
        return attributes

    def _collect(self, table: FieldTable, prefix: List[str], out: List[IndexedAttribute]):
        for name, entry in table.items():
            segments = prefix + [name]
            if isinstance(entry.semantics, Nested):
                self._collect(entry.semantics.table, segments, out)
                continue
            if entry.field_type is None:
                continue
            path = ".".join(segments)
            out.append(
                IndexedAttribute(
                    path=path,
                    alias=entry.alias or default_key(path),
                    json_path=json_path_for(segments, entry.collection),
                    field_type=entry.field_type,
                    index_missing=entry.index_missing,
                    sortable=entry.sortable,
                    collection=entry.collection,
                )
            )
