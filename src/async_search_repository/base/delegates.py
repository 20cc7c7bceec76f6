# src/async_search_repository/base/delegates.py
"""
Pass-through executors for methods backed by a probabilistic structure.

``exists_by_<prop>`` on a ``Bloom`` / ``Cuckoo`` property and ``count_<prop>``
on a ``CountMin`` property skip planning entirely and ask the structure.
"""

import logging
from abc import ABC, abstractmethod
from logging import LoggerAdapter
from typing import Any, Optional, Sequence

from .fields import Bloom, CountMin, Cuckoo, StructureMarker
from .indexer import Indexer
from .interfaces import SearchBackend
from .method import QueryMethod
from .parts import match_property
from .utils import to_index_value

log = logging.getLogger(__name__)


class StructureDelegate(ABC):
    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def execute(
        self, values: Sequence[Any], backend: SearchBackend, logger: LoggerAdapter
    ) -> Any:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class BloomDelegate(StructureDelegate):
    async def execute(self, values, backend, logger):
        return await backend.bf_exists(self.name, to_index_value(values[0]), logger)


class CuckooDelegate(StructureDelegate):
    async def execute(self, values, backend, logger):
        return await backend.cf_exists(self.name, to_index_value(values[0]), logger)


class CountMinDelegate(StructureDelegate):
    """Returns one count per value; a single scalar argument gets a scalar count."""

    async def execute(self, values, backend, logger):
        flat = []
        for value in values:
            if isinstance(value, (list, tuple, set, frozenset)):
                flat.extend(value)
            else:
                flat.append(value)
        counts = await backend.cms_query(self.name, [to_index_value(v) for v in flat], logger)
        scalar = len(values) == 1 and not isinstance(values[0], (list, tuple, set, frozenset))
        return counts[0] if scalar else counts


_DELEGATES = (
    ("exists_by_", Bloom, BloomDelegate, "bf"),
    ("exists_by_", Cuckoo, CuckooDelegate, "cf"),
    ("count_", CountMin, CountMinDelegate, "cms"),
)


def structure_name(prefix: str, model: type, prop: str, marker: StructureMarker) -> str:
    return marker.name or f"{prefix}:{model.__name__}:{prop}"


def find_delegate(method: QueryMethod, indexer: Indexer) -> Optional[StructureDelegate]:
    """The structure delegate for ``method``, or None when it is a regular query."""
    model = method.entity_type
    table = indexer.field_table(model)
    for verb, marker_type, delegate_type, prefix in _DELEGATES:
        if not method.name.startswith(verb):
            continue
        rest = method.name[len(verb):]
        if verb == "count_" and rest.startswith("by_"):
            continue
        prop = match_property(rest.split("_"), model)
        entry = table.get(prop) if prop else None
        marker = entry.structure(marker_type) if entry else None
        if marker is not None:
            delegate = delegate_type(structure_name(prefix, model, prop, marker))
            log.info(f"{model.__name__}.{method.name} delegates to {delegate}")
            return delegate
    return None
