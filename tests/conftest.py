# tests/conftest.py
import logging
from datetime import datetime
from typing import Annotated, List, Optional

import pytest
from pydantic import BaseModel, Field

from async_search_repository.base.executor import RepositoryQuery
from async_search_repository.base.fields import (
    AutoComplete,
    Bloom,
    CountMin,
    Cuckoo,
    GeoIndexed,
    Indexed,
    NumericIndexed,
    Point,
    Searchable,
    TagIndexed,
    TextIndexed,
)
from async_search_repository.base.indexer import Indexer
from async_search_repository.base.mapper import PydanticDocumentMapper
from async_search_repository.memory.base import InMemorySearchBackend


# --- Logger Fixture ---


@pytest.fixture(scope="session")
def logger():
    """Create a test logger."""
    _logger = logging.getLogger("test_search_logger")
    if not _logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.setLevel(logging.DEBUG)
        _logger.addHandler(handler)
        _logger.setLevel(logging.DEBUG)
        _logger.propagate = False
    return logging.LoggerAdapter(_logger, {})


# --- Test Models ---


class Address(BaseModel):
    """Nested structure for Person addresses."""

    city: Annotated[Optional[str], TagIndexed()] = None
    street: Annotated[Optional[str], TextIndexed()] = None
    zip_code: Optional[str] = None


class Person(BaseModel):
    """The indexed entity most tests query."""

    id: Optional[str] = None
    name: Annotated[str, Searchable(sortable=True), AutoComplete()] = ""
    status: Annotated[str, TagIndexed()] = "active"
    department: Annotated[str, TagIndexed(), CountMin()] = "A"
    age: Annotated[int, NumericIndexed(sortable=True)] = 30
    email: Annotated[Optional[str], TagIndexed(index_missing=True), Bloom()] = None
    nickname: Annotated[Optional[str], TagIndexed(), Cuckoo()] = None
    tags: Annotated[List[str], Indexed()] = Field(default_factory=list)
    address: Annotated[Optional[Address], Indexed()] = None
    location: Annotated[Optional[Point], GeoIndexed()] = None
    joined: Annotated[Optional[datetime], Indexed()] = None
    notes: Optional[str] = None


class PersonName(BaseModel):
    """Closed projection of Person."""

    name: str


class Scorecard(BaseModel):
    """Entity with a multi-valued numeric attribute."""

    id: Optional[str] = None
    scores: Annotated[List[int], Indexed()] = Field(default_factory=list)


# --- Backend Fixtures ---


class RecordingBackend(InMemorySearchBackend):
    """In-memory backend that remembers every index and key-value call."""

    def __init__(self, indexer: Indexer):
        super().__init__(indexer)
        self.calls = []

    def called(self, name: str) -> list:
        return [args for call, args in self.calls if call == name]

    async def search(self, request, logger):
        self.calls.append(("search", request))
        return await super().search(request, logger)

    async def aggregate(self, request, logger):
        self.calls.append(("aggregate", request))
        return await super().aggregate(request, logger)

    async def get(self, key, logger):
        self.calls.append(("get", key))
        return await super().get(key, logger)

    async def get_many(self, keys, logger):
        self.calls.append(("get_many", list(keys)))
        return await super().get_many(keys, logger)

    async def delete(self, keys, logger):
        self.calls.append(("delete", list(keys)))
        return await super().delete(keys, logger)


@pytest.fixture
def indexer() -> Indexer:
    indexer = Indexer()
    indexer.register(Person)
    return indexer


@pytest.fixture
def backend(indexer) -> RecordingBackend:
    return RecordingBackend(indexer)


@pytest.fixture
def mapper() -> PydanticDocumentMapper:
    return PydanticDocumentMapper()


@pytest.fixture
def store(backend, indexer, mapper, logger):
    """Stores entities under their index key, then forgets the recorded calls."""

    async def _store(*entities):
        for entity in entities:
            key = indexer.definition(type(entity)).key_for(entity.id)
            await backend.put(key, mapper.encode(entity), logger)
        backend.calls.clear()

    return _store


@pytest.fixture
def make_query(backend, indexer, mapper):
    def _make(fn, entity_type=Person, settings=None):
        return RepositoryQuery.for_function(fn, entity_type, backend, indexer, mapper, settings)

    return _make


@pytest.fixture
def people() -> List[Person]:
    return [
        Person(id="1", name="Alice Smith", status="active", department="A", age=31,
               email="alice@example.com", tags=["admin", "dev"],
               address=Address(city="Paris", street="Rue de Rivoli"),
               location=Point(2.3522, 48.8566)),
        Person(id="2", name="Bob Jones", status="active", department="A", age=25,
               tags=["dev"], address=Address(city="Lyon")),
        Person(id="3", name="Carol White", status="active", department="B", age=42,
               email="carol@example.com", nickname="cw"),
        Person(id="4", name="Dave Brown", status="inactive", department="A", age=58,
               email="dave@example.com", tags=["ops"], location=Point(-0.1276, 51.5072)),
        Person(id="5", name="Erin Black", status="inactive", department="B", age=19),
    ]
