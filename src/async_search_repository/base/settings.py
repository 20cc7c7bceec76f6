# src/async_search_repository/base/settings.py
"""Query execution settings."""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

log = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class QuerySettings:
    """Global defaults applied when a query method does not set its own."""

    default_limit: int = 10000
    default_dialect: int = 1
    default_return_fields: Tuple[str, ...] = ()
    strict_property_resolution: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "QuerySettings":
        """
        Reads ``SEARCH_QUERY_LIMIT``, ``SEARCH_QUERY_DIALECT``,
        ``SEARCH_QUERY_STRICT`` and ``SEARCH_QUERY_RETURN_FIELDS``
        (comma separated); unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        fields = env.get("SEARCH_QUERY_RETURN_FIELDS")
        settings = cls(
            default_limit=int(env.get("SEARCH_QUERY_LIMIT", defaults.default_limit)),
            default_dialect=int(env.get("SEARCH_QUERY_DIALECT", defaults.default_dialect)),
            default_return_fields=(
                tuple(f.strip() for f in fields.split(",") if f.strip())
                if fields
                else defaults.default_return_fields
            ),
            strict_property_resolution=(
                env.get("SEARCH_QUERY_STRICT", "").strip().lower() in _TRUE_VALUES
            ),
        )
        log.debug(f"Loaded {settings}")
        return settings
