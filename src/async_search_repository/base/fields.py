# src/async_search_repository/base/fields.py
"""
Index markers attached to domain model attributes via ``typing.Annotated``.

Example::

    class Person(BaseModel):
        id: Optional[str] = None
        name: Annotated[str, Searchable()]
        email: Annotated[Optional[str], Indexed(index_missing=True)] = None
        tags: Annotated[List[str], TagIndexed()] = []
        location: Annotated[Optional[Point], GeoIndexed()] = None
"""

from dataclasses import dataclass
from typing import Any, NamedTuple, Optional

from pydantic_core import core_schema


class Point(NamedTuple):
    """A geographic point, stored and queried as ``"lon,lat"``."""

    longitude: float
    latitude: float

    def __str__(self) -> str:
        return f"{self.longitude},{self.latitude}"

    @classmethod
    def parse(cls, value: str) -> "Point":
        lon, lat = (part.strip() for part in value.split(","))
        return cls(float(lon), float(lat))

    @classmethod
    def _validate(cls, value: Any) -> "Point":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        if isinstance(value, dict):
            return cls(float(value["longitude"]), float(value["latitude"]))
        if isinstance(value, (tuple, list)) and len(value) == 2:
            return cls(float(value[0]), float(value[1]))
        raise ValueError(f"Cannot interpret {value!r} as a Point")

    @classmethod
    def __get_pydantic_core_schema__(cls, source: Any, handler: Any) -> Any:
        # Stored and dumped as "lon,lat"
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.plain_serializer_function_ser_schema(str),
        )


class Distance(NamedTuple):
    """A radius for geo clauses; ``unit`` is one of m, km, mi, ft."""

    value: float
    unit: str = "km"

    def to_meters(self) -> float:
        return self.value * _METERS_PER_UNIT[self.unit.lower()]


_METERS_PER_UNIT = {"m": 1.0, "km": 1000.0, "mi": 1609.344, "ft": 0.3048}


@dataclass(frozen=True)
class IndexMarker:
    """Base class for all index markers."""

    alias: Optional[str] = None
    index_missing: bool = False
    sortable: bool = False


@dataclass(frozen=True)
class Indexed(IndexMarker):
    """Generic marker: the backend field type is inferred from the Python type."""

    pass


@dataclass(frozen=True)
class TextIndexed(IndexMarker):
    """Full-text field."""

    pass


@dataclass(frozen=True)
class Searchable(IndexMarker):
    """Full-text field (search oriented alias of ``TextIndexed``)."""

    pass


@dataclass(frozen=True)
class TagIndexed(IndexMarker):
    """Exact-match tag field."""

    separator: str = "|"


@dataclass(frozen=True)
class NumericIndexed(IndexMarker):
    pass


@dataclass(frozen=True)
class GeoIndexed(IndexMarker):
    pass


# --- Probabilistic structures / suggestion dictionaries ---
@dataclass(frozen=True)
class StructureMarker:
    """Base class for markers naming an auxiliary structure kept next to the index."""

    name: Optional[str] = None


@dataclass(frozen=True)
class Bloom(StructureMarker):
    capacity: int = 1000
    error_rate: float = 0.01


@dataclass(frozen=True)
class Cuckoo(StructureMarker):
    capacity: int = 1000


@dataclass(frozen=True)
class CountMin(StructureMarker):
    error_rate: float = 0.001
    probability: float = 0.01


@dataclass(frozen=True)
class AutoComplete(StructureMarker):
    pass
