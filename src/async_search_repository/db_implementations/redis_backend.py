# src/async_search_repository/db_implementations/redis_backend.py

import json
import logging
from logging import LoggerAdapter
from typing import Any, Dict, List, Optional, Sequence

from redis.asyncio import Redis

from async_search_repository.base.interfaces import RawDocument, SearchBackend
from async_search_repository.base.requests import AggregateRequest, SearchRequest
from async_search_repository.base.results import (
    AggregationResult,
    AutoCompleteOptions,
    Document,
    SearchResult,
    Suggestion,
)

base_logger = logging.getLogger(__name__)

ROOT_PATH = "$"


# --- Response parsers (RESP2 replies with decoded strings) ---
def _pairs(flat: Sequence[Any]) -> Dict[str, Any]:
    return {flat[i]: flat[i + 1] for i in range(0, len(flat) - 1, 2)}


def _decode_root(fields: Dict[str, Any]) -> Dict[str, Any]:
    """A JSON document returned whole comes back under the ``$`` field."""
    if ROOT_PATH in fields and len(fields) == 1:
        document = json.loads(fields[ROOT_PATH])
        return document if isinstance(document, dict) else {ROOT_PATH: document}
    return fields


def parse_search_response(reply: Sequence[Any], no_content: bool = False) -> SearchResult:
    """
    Parses an ``FT.SEARCH`` reply: ``[total, key, [field, value, ...], key, ...]``
    (``[total, key, key, ...]`` with NOCONTENT).
    """
    if not reply:
        return SearchResult(0, [])
    total = int(reply[0])
    documents: List[Document] = []
    if no_content:
        documents = [Document(key) for key in reply[1:]]
        return SearchResult(total, documents)

    items = list(reply[1:])
    i = 0
    while i < len(items):
        key = items[i]
        fields: Dict[str, Any] = {}
        if i + 1 < len(items) and isinstance(items[i + 1], (list, tuple)):
            fields = _decode_root(_pairs(items[i + 1]))
            i += 2
        else:
            i += 1
        documents.append(Document(key, fields))
    return SearchResult(total, documents)


def parse_aggregate_response(reply: Sequence[Any]) -> AggregationResult:
    """Parses an ``FT.AGGREGATE`` reply: ``[total, [k, v, ...], [k, v, ...], ...]``."""
    if not reply:
        return AggregationResult(0, [])
    rows = [_pairs(row) for row in reply[1:] if isinstance(row, (list, tuple))]
    return AggregationResult(int(reply[0]), rows)


def parse_json_reply(reply: Optional[str]) -> Optional[RawDocument]:
    """``JSON.GET key $`` and ``JSON.MGET`` entries wrap the document in a list."""
    if reply is None:
        return None
    value = json.loads(reply)
    if isinstance(value, list):
        return value[0] if value else None
    return value


def parse_suggestions(
    reply: Sequence[Any], with_scores: bool = False, with_payloads: bool = False
) -> List[Suggestion]:
    step = 1 + int(with_scores) + int(with_payloads)
    suggestions = []
    for i in range(0, len(reply) - step + 1, step):
        string = reply[i]
        score = float(reply[i + 1]) if with_scores else None
        payload = reply[i + step - 1] if with_payloads else None
        suggestions.append(Suggestion(string, score, payload))
    return suggestions


def suggest_args(dictionary: str, prefix: str, options: Optional[AutoCompleteOptions]) -> List[str]:
    options = options or AutoCompleteOptions()
    args = [dictionary, prefix]
    if options.fuzzy:
        args.append("FUZZY")
    if options.with_score:
        args.append("WITHSCORES")
    if options.with_payload:
        args.append("WITHPAYLOADS")
    args += ["MAX", str(options.limit)]
    return args


class RedisSearchBackend(SearchBackend):
    """
    RediSearch over RedisJSON documents, through ``redis.asyncio``.

    The client must be created with ``decode_responses=True`` and the default
    RESP2 protocol. Connection management is the caller's business; Redis
    errors propagate unchanged.
    """

    def __init__(self, client: Redis):
        if not isinstance(client, Redis):
            raise TypeError("client must be an instance of redis.asyncio.Redis")
        self._client = client
        base_logger.info("Redis search backend created.")

    @classmethod
    def from_url(cls, url: str = "redis://localhost:6379/0") -> "RedisSearchBackend":
        return cls(Redis.from_url(url, decode_responses=True))

    async def search(self, request: SearchRequest, logger: LoggerAdapter) -> SearchResult:
        args = request.to_args()
        logger.debug(f"FT.SEARCH {' '.join(args)}")
        reply = await self._client.execute_command("FT.SEARCH", *args)
        return parse_search_response(reply, request.no_content)

    async def aggregate(
        self, request: AggregateRequest, logger: LoggerAdapter
    ) -> AggregationResult:
        args = request.to_args()
        logger.debug(f"FT.AGGREGATE {' '.join(args)}")
        reply = await self._client.execute_command("FT.AGGREGATE", *args)
        return parse_aggregate_response(reply)

    async def tag_vals(self, index: str, field: str, logger: LoggerAdapter) -> List[str]:
        logger.debug(f"FT.TAGVALS {index} {field}")
        reply = await self._client.execute_command("FT.TAGVALS", index, field)
        return list(reply or [])

    async def get(self, key: str, logger: LoggerAdapter) -> Optional[RawDocument]:
        reply = await self._client.execute_command("JSON.GET", key, ROOT_PATH)
        return parse_json_reply(reply)

    async def get_many(
        self, keys: Sequence[str], logger: LoggerAdapter
    ) -> List[Optional[RawDocument]]:
        if not keys:
            return []
        reply = await self._client.execute_command("JSON.MGET", *keys, ROOT_PATH)
        return [parse_json_reply(item) for item in reply]

    async def put(self, key: str, document: RawDocument, logger: LoggerAdapter) -> None:
        await self._client.execute_command("JSON.SET", key, ROOT_PATH, json.dumps(document))
        logger.debug(f"Stored {key}")

    async def delete(self, keys: Sequence[str], logger: LoggerAdapter) -> int:
        if not keys:
            return 0
        deleted = await self._client.execute_command("DEL", *keys)
        logger.debug(f"Deleted {deleted} of {len(keys)} key(s)")
        return int(deleted)

    async def bf_exists(self, name: str, value: Any, logger: LoggerAdapter) -> bool:
        return bool(await self._client.execute_command("BF.EXISTS", name, value))

    async def cf_exists(self, name: str, value: Any, logger: LoggerAdapter) -> bool:
        return bool(await self._client.execute_command("CF.EXISTS", name, value))

    async def cms_query(
        self, name: str, values: Sequence[Any], logger: LoggerAdapter
    ) -> List[int]:
        reply = await self._client.execute_command("CMS.QUERY", name, *values)
        return [int(v) for v in reply]

    async def suggest(
        self,
        dictionary: str,
        prefix: str,
        logger: LoggerAdapter,
        options: Optional[AutoCompleteOptions] = None,
    ) -> List[Suggestion]:
        options = options or AutoCompleteOptions()
        reply = await self._client.execute_command(
            "FT.SUGGET", *suggest_args(dictionary, prefix, options)
        )
        return parse_suggestions(reply or [], options.with_score, options.with_payload)
