# src/async_search_repository/base/resolver.py
"""Field Resolver: maps a domain property path to its backend field binding."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from .schema import FieldEntry, FieldTable, FieldType, Nested

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldBinding:
    """Resolved (domain property path) -> (backend field key, field type, alias)."""

    path: str
    key: str
    field_type: FieldType
    json_path: str
    collection: bool
    index_missing: bool
    entry: FieldEntry

    @property
    def alias(self) -> str:
        return self.key


def default_key(path: str) -> str:
    """Backend key for an un-aliased property path (``address.city`` -> ``address_city``)."""
    return path.replace(".", "_")


def json_path_for(segments: Sequence[str], collection: bool = False) -> str:
    json_path = "$." + ".".join(segments)
    return f"{json_path}[*]" if collection else json_path


def resolve(table: FieldTable, path: Union[str, Sequence[str]]) -> Optional[FieldBinding]:
    """
    Walks ``path`` one segment at a time through ``table``.

    Returns None when a segment does not name an indexed field; callers decide
    whether that is fatal.
    """
    segments = path.split(".") if isinstance(path, str) else list(path)
    dotted = ".".join(segments)
    current = table

    for level, segment in enumerate(segments):
        entry = current.get(segment)
        if entry is None:
            log.info(f"Did not find a field named {default_key(dotted)}")
            return None

        semantics = entry.semantics
        if semantics.field_type is not None:
            consumed = segments[: level + 1]
            if level + 1 < len(segments):
                log.debug(
                    f"Path '{dotted}' continues past leaf field '{segment}'; "
                    f"binding to '{'.'.join(consumed)}'"
                )
            return FieldBinding(
                path=".".join(consumed),
                key=entry.alias or default_key(".".join(consumed)),
                field_type=semantics.field_type,
                json_path=json_path_for(consumed, entry.collection),
                collection=entry.collection,
                index_missing=entry.index_missing,
                entry=entry,
            )

        if isinstance(semantics, Nested):
            if level + 1 == len(segments):
                log.info(f"Field '{dotted}' is a nested object, not a queryable leaf")
                return None
            current = semantics.table
            continue

        log.info(f"Field '{segment}' of path '{dotted}' is not indexed")
        return None

    return None
