# src/async_search_repository/base/interfaces.py

from abc import ABC, abstractmethod
from logging import LoggerAdapter
from typing import Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar

from async_search_repository.base.requests import AggregateRequest, SearchRequest
from async_search_repository.base.results import (
    AggregationResult,
    AutoCompleteOptions,
    SearchResult,
    Suggestion,
)

T = TypeVar("T")

RawDocument = Dict[str, Any]


class SearchBackend(ABC):
    """
    The indexed search engine and the key-value store underneath it.

    Implementations issue one backend round trip per call; none of them retry.
    Backend errors propagate to the caller unchanged.
    """

    # --- Index operations ---

    @abstractmethod
    async def search(self, request: SearchRequest, logger: LoggerAdapter) -> SearchResult:
        """
        Run a search request.

        Args:
            request: The rendered search request.
            logger: Logger adapter for recording operations.

        Returns:
            The total match count (independent of the requested page) and the
            documents of the requested page, each tagged with its key.
        """
        pass

    @abstractmethod
    async def aggregate(
        self, request: AggregateRequest, logger: LoggerAdapter
    ) -> AggregationResult:
        """
        Run an aggregation pipeline.

        Args:
            request: The aggregation request with its ordered steps.
            logger: Logger adapter for recording operations.

        Returns:
            The rows produced by the last pipeline step.
        """
        pass

    @abstractmethod
    async def tag_vals(self, index: str, field: str, logger: LoggerAdapter) -> List[str]:
        """
        Distinct values of a tag field.

        Args:
            index: The index name.
            field: The tag field's backend key.
            logger: Logger adapter for recording operations.
        """
        pass

    # --- Key-value operations ---

    @abstractmethod
    async def get(self, key: str, logger: LoggerAdapter) -> Optional[RawDocument]:
        """
        Fetch one stored document.

        Returns:
            The raw document, or None when the key does not exist.
        """
        pass

    @abstractmethod
    async def get_many(
        self, keys: Sequence[str], logger: LoggerAdapter
    ) -> List[Optional[RawDocument]]:
        """
        Fetch several documents in a single round trip.

        Returns:
            One entry per key, in order; None for missing keys.
        """
        pass

    @abstractmethod
    async def put(self, key: str, document: RawDocument, logger: LoggerAdapter) -> None:
        """Store (or replace) a document under ``key``."""
        pass

    @abstractmethod
    async def delete(self, keys: Sequence[str], logger: LoggerAdapter) -> int:
        """
        Delete keys in one call.

        Returns:
            The number of keys that existed and were removed.
        """
        pass

    # --- Probabilistic structures and suggestions ---

    @abstractmethod
    async def bf_exists(self, name: str, value: Any, logger: LoggerAdapter) -> bool:
        pass

    @abstractmethod
    async def cf_exists(self, name: str, value: Any, logger: LoggerAdapter) -> bool:
        pass

    @abstractmethod
    async def cms_query(
        self, name: str, values: Sequence[Any], logger: LoggerAdapter
    ) -> List[int]:
        pass

    @abstractmethod
    async def suggest(
        self,
        dictionary: str,
        prefix: str,
        logger: LoggerAdapter,
        options: Optional[AutoCompleteOptions] = None,
    ) -> List[Suggestion]:
        pass


class DocumentMapper(Generic[T], ABC):
    """Converts between stored documents and typed domain objects."""

    @abstractmethod
    def decode(self, raw: RawDocument, target_type: Type[T]) -> T:
        """
        Build a ``target_type`` instance from a raw document.

        Raises:
            ValidationError: If the document does not fit ``target_type``.
        """
        pass

    @abstractmethod
    def encode(self, entity: T) -> RawDocument:
        """Turn an entity into its stored form."""
        pass

    @abstractmethod
    def attach_key(
        self, entity: T, key: str, id_field: str = "id", prefix: Optional[str] = None
    ) -> T:
        """Set the entity's identifier from its backend key when it lacks one."""
        pass
